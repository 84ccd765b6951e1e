"""Test the PV registry: pens, limits, visibility and metadata binding.

    python3 tests/test_registry.py
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "python"))

from pvtrend.axes import AxisRegistry
from pvtrend.model import DataPoint, PenProperties, PVMetadata
from pvtrend.registry import PV_COLORS, PVRegistry, next_color


def _registry(max_pvs=100):
    axes = AxisRegistry()
    return axes, PVRegistry(axes, max_pvs=max_pvs)


def test_add_pv_palette():
    print("test_add_pv_palette...", end="")

    _, pvs = _registry()
    a = pvs.add_pv("PV:A")
    b = pvs.add_pv("PV:B")
    assert a.pen.color == PV_COLORS[0]
    assert b.pen.color == PV_COLORS[1]
    assert a.pen.line_width == 2.0
    assert a.visible
    assert pvs.names() == ["PV:A", "PV:B"]

    print(" OK")


def test_next_color_cycles():
    print("test_next_color_cycles...", end="")

    _, pvs = _registry()
    for i in range(len(PV_COLORS)):
        pvs.add_pv(f"PV:{i}")
    assert next_color(list(pvs)) == PV_COLORS[0]

    print(" OK")


def test_add_existing_replaces_pen():
    print("test_add_existing_replaces_pen...", end="")

    _, pvs = _registry()
    pv = pvs.add_pv("PV:A")
    pv.points.append(DataPoint(0.0, 1.0))
    again = pvs.add_pv("PV:A", PenProperties(color="#000000"))
    assert again is pv
    assert len(pvs) == 1
    assert pv.pen.color == "#000000"
    assert len(pv.points) == 1

    # no pen given: unchanged
    pvs.add_pv("PV:A")
    assert pv.pen.color == "#000000"

    print(" OK")


def test_invalid_pv_names():
    print("test_invalid_pv_names...", end="")

    axes, pvs = _registry()
    for bad in ("", "  bad name ", "PV:A\n", "PV;DROP", "x" * 256):
        try:
            pvs.add_pv(bad)
            assert False, f"expected ValueError for {bad!r}"
        except ValueError:
            pass
    assert len(pvs) == 0
    assert len(axes) == 0

    for good in ("ROOM:LI30:1:OUTSIDE_TEMP", "beam.current-2_A", "x" * 255):
        pvs.add_pv(good)
    assert len(pvs) == 3

    print(" OK")


def test_max_pvs():
    print("test_max_pvs...", end="")

    _, pvs = _registry(max_pvs=2)
    pvs.add_pv("PV:A")
    pvs.add_pv("PV:B")
    try:
        pvs.add_pv("PV:C")
        assert False, "expected ValueError"
    except ValueError:
        pass
    # re-adding an existing PV is still fine at the limit
    pvs.add_pv("PV:A")
    assert len(pvs) == 2

    print(" OK")


def test_remove_unbinds():
    print("test_remove_unbinds...", end="")

    axes, pvs = _registry()
    pvs.add_pv("PV:A")
    axis_id = pvs.attach_metadata("PV:A", PVMetadata(egu="V"))
    assert axis_id in axes
    pvs.remove_pv("PV:A")
    assert "PV:A" not in pvs
    assert axis_id not in axes

    # removing an unknown PV is a no-op
    pvs.remove_pv("PV:A")

    print(" OK")


def test_update_pen_and_visibility():
    print("test_update_pen_and_visibility...", end="")

    _, pvs = _registry()
    pvs.add_pv("PV:A")
    pen = pvs.update_pen("PV:A", line_width=3.5, show_points=True)
    assert pen.line_width == 3.5
    assert pen.show_points
    assert pvs.get("PV:A").pen is pen

    pvs.set_visibility("PV:A", False)
    assert not pvs.get("PV:A").visible

    try:
        pvs.update_pen("PV:missing", line_width=1)
        assert False, "expected KeyError"
    except KeyError:
        pass

    print(" OK")


def test_attach_metadata_limits():
    print("test_attach_metadata_limits...", end="")

    axes, pvs = _registry()
    pvs.add_pv("PV:A")
    pvs.add_pv("PV:B")
    a = pvs.attach_metadata("PV:A", PVMetadata(egu="mA", display_low=0, display_high=200))
    assert axes.get(a).range == (0, 200)

    # equal limits count as not provided
    b = pvs.attach_metadata("PV:B", PVMetadata(egu="W", display_low=5, display_high=5))
    assert axes.get(b).range == (-100, 100)

    print(" OK")


def test_metadata_rebinds():
    print("test_metadata_rebinds...", end="")

    axes, pvs = _registry()
    pvs.add_pv("PV:A")
    first = pvs.attach_metadata("PV:A", PVMetadata(egu="Value"))
    assert first == "value"

    second = pvs.attach_metadata("PV:A", PVMetadata(egu="degC"))
    assert second == "degc"
    assert pvs.get("PV:A").axis_id == "degc"
    assert "value" not in axes
    assert axes.get("degc").pvs == {"PV:A"}

    # same unit, different case: stays put
    third = pvs.attach_metadata("PV:A", PVMetadata(egu="DEGC"))
    assert third == "degc"
    assert len(axes) == 1

    print(" OK")


def test_reassign_axis():
    print("test_reassign_axis...", end="")

    axes, pvs = _registry()
    pvs.add_pv("PV:A")
    pvs.attach_metadata("PV:A", PVMetadata(egu="V"))
    user = axes.add_axis("Custom")
    pvs.reassign_axis("PV:A", user)
    assert pvs.get("PV:A").axis_id == user
    assert axes.get(user).pvs == {"PV:A"}
    assert "v" not in axes

    pvs.add_pv("PV:B")
    try:
        pvs.reassign_axis("PV:B", user)
        assert False, "expected KeyError"
    except KeyError:
        pass

    print(" OK")


def test_clear():
    print("test_clear...", end="")

    axes, pvs = _registry()
    for name, egu in (("PV:A", "V"), ("PV:B", "A")):
        pvs.add_pv(name)
        pvs.attach_metadata(name, PVMetadata(egu=egu))
    user = axes.add_axis("mm")
    pvs.clear()
    assert len(pvs) == 0
    assert list(axes) == [axes.get(user)]

    print(" OK")


if __name__ == "__main__":
    print("pvtrend registry tests")
    print("======================\n")

    test_add_pv_palette()
    test_next_color_cycles()
    test_add_existing_replaces_pen()
    test_invalid_pv_names()
    test_max_pvs()
    test_remove_unbinds()
    test_update_pen_and_visibility()
    test_attach_metadata_limits()
    test_metadata_rebinds()
    test_reassign_axis()
    test_clear()

    print("\nAll tests passed.")
