"""pvtrend - Live windowed trending of EPICS PV time-series."""

from .model import (
    DataPoint, PenProperties, PVMetadata, PVSeries, Axis, AxisPosition,
    ViewerWindow, WindowMode, LiveConfig, LiveMode, PointValue, HistoricalSeries,
)
from .errors import (
    TrendError, FetchError, MetadataUnavailable, MalformedPoint,
    ConnectionLost, SubscriptionError, AxisError,
)
from .config import EngineConfig, load_config
from .axes import AxisRegistry
from .registry import PVRegistry
from .interval import estimate_update_interval
from .reconcile import reconcile_point, reconcile_batch, TickOutcome
from .backend import ArchiverBackend, SimulatedBackend, FetchOptions
from .controller import TrendController, LiveState

__all__ = [
    "DataPoint", "PenProperties", "PVMetadata", "PVSeries", "Axis", "AxisPosition",
    "ViewerWindow", "WindowMode", "LiveConfig", "LiveMode", "PointValue",
    "HistoricalSeries",
    "TrendError", "FetchError", "MetadataUnavailable", "MalformedPoint",
    "ConnectionLost", "SubscriptionError", "AxisError",
    "EngineConfig", "load_config",
    "AxisRegistry", "PVRegistry",
    "estimate_update_interval",
    "reconcile_point", "reconcile_batch", "TickOutcome",
    "ArchiverBackend", "SimulatedBackend", "FetchOptions",
    "TrendController", "LiveState",
]
