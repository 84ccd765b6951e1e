"""Install the pvtrend package from the python/ source root."""

from setuptools import setup, find_packages

setup(
    name="pvtrend",
    version="0.1.0",
    description="Live windowed trending of EPICS PV time-series",
    package_dir={"": "python"},
    packages=find_packages("python", include=["pvtrend", "pvtrend.*"]),
    python_requires=">=3.9",
    install_requires=["numpy", "requests"],
    extras_require={
        "viewer": ["dearpygui"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "pvtrend=pvtrend.cli:main",
            "pvtrend-viewer=pvtrend.viewer:launch",
        ],
    },
)
