"""Engine constants and user configuration."""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Live interval estimation (ms)
DEFAULT_INTERVAL_MS = 1000
MIN_INTERVAL_MS = 1000
MAX_INTERVAL_MS = 30_000
INTERVAL_ROUNDING_MS = 1000

# Float-equality threshold used by de-noise and gap interpolation
VALUE_EPSILON = 1e-10

HEALTH_PROBE_INTERVAL_MS = 30_000
HEALTH_HISTORY = 100

DEFAULT_WINDOW_MS = 3_600_000

DEFAULT_UNIT = "Value"
DEFAULT_DISPLAY_LOW = -100.0
DEFAULT_DISPLAY_HIGH = 100.0

DEFAULT_BASE_URL = "http://lcls-archapp.slac.stanford.edu/retrieval"
DEFAULT_TIMEOUT_S = 30.0

MAX_PVS = 100
MAX_PENDING_BATCHES = 8


@dataclass
class EngineConfig:
    base_url: str = DEFAULT_BASE_URL
    timeout_s: float = DEFAULT_TIMEOUT_S
    probe_interval_ms: int = HEALTH_PROBE_INTERVAL_MS
    max_pending_batches: int = MAX_PENDING_BATCHES
    max_pvs: int = MAX_PVS
    default_window_ms: int = DEFAULT_WINDOW_MS


def default_config_path() -> Path:
    return Path.home() / ".config" / "pvtrend" / "config.json"


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Read an EngineConfig from a JSON file.

    A missing file yields the defaults.  Unknown keys are ignored.
    """
    cfg_path = Path(path) if path is not None else default_config_path()
    config = EngineConfig()
    if not cfg_path.exists():
        return config

    with open(cfg_path) as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{cfg_path}: expected a JSON object")

    known = {f.name for f in dataclasses.fields(EngineConfig)}
    updates = {}
    for key, value in data.items():
        if key not in known:
            logger.warning("%s: ignoring unknown key %r", cfg_path, key)
            continue
        updates[key] = value
    logger.info("loaded config from %s", cfg_path)
    return dataclasses.replace(config, **updates)
