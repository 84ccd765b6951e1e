"""Data model for PV time-series, display axes and the viewer window."""

from __future__ import annotations

import enum
import numbers
from dataclasses import dataclass, field
from typing import Any

from .errors import MalformedPoint


class LineStyle(enum.Enum):
    SOLID = "solid"
    DASHED = "dashed"
    DOTTED = "dotted"


class AxisPosition(enum.Enum):
    LEFT = "left"
    RIGHT = "right"


class WindowMode(enum.Enum):
    FIXED = "fixed"
    ROLLING = "rolling"
    APPEND = "append"


class LiveMode(enum.Enum):
    ROLLING = "rolling"
    APPEND = "append"


@dataclass
class DataPoint:
    """One sample.  Live-derived points carry min == max == value, count 1."""

    timestamp: float  # ms since UTC epoch, fractional ms allowed
    value: float
    severity: int = 0
    status: int = 0
    min: float | None = None
    max: float | None = None
    stddev: float = 0.0
    count: int = 1

    def __post_init__(self) -> None:
        if self.min is None:
            self.min = self.value
        if self.max is None:
            self.max = self.value


@dataclass
class PenProperties:
    color: str = "#2563eb"
    opacity: float = 1.0
    line_width: float = 2.0
    style: LineStyle = LineStyle.SOLID
    show_points: bool = False
    point_size: float = 4.0


@dataclass
class PVMetadata:
    egu: str
    display_low: float | None = None
    display_high: float | None = None
    precision: int | None = None
    description: str | None = None

    @property
    def display_limits(self) -> tuple[float, float] | None:
        """(low, high) if the limits describe a usable range, else None."""
        if self.display_low is None or self.display_high is None:
            return None
        if self.display_low >= self.display_high:
            return None
        return self.display_low, self.display_high


@dataclass
class PVSeries:
    """A subscribed PV.  ``points`` stays strictly ascending by timestamp."""

    name: str
    pen: PenProperties = field(default_factory=PenProperties)
    metadata: PVMetadata | None = None
    axis_id: str | None = None
    visible: bool = True
    points: list[DataPoint] = field(default_factory=list)

    @property
    def last_point(self) -> DataPoint | None:
        return self.points[-1] if self.points else None


@dataclass
class Axis:
    id: str
    egu: str
    position: AxisPosition = AxisPosition.LEFT
    auto_range: bool = True
    range: tuple[float, float] | None = None
    pvs: set[str] = field(default_factory=set)
    user_added: bool = False


@dataclass
class ViewerWindow:
    start: float
    end: float
    mode: WindowMode = WindowMode.FIXED

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass
class LiveConfig:
    enabled: bool = False
    mode: LiveMode = LiveMode.ROLLING
    update_interval_ms: int = 1000


@dataclass
class PointValue:
    """A raw sample as delivered by the backend (historical or live)."""

    secs: int
    val: Any
    nanos: int = 0
    severity: int = 0
    status: int = 0

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PointValue:
        secs = int(d["secs"])
        nanos = int(d.get("nanos") or 0)
        if nanos >= 1_000_000_000:
            secs += nanos // 1_000_000_000
            nanos %= 1_000_000_000
        return cls(
            secs=secs,
            val=d.get("val"),
            nanos=nanos,
            severity=int(d.get("severity") or 0),
            status=int(d.get("status") or 0),
        )

    @property
    def timestamp_ms(self) -> float:
        return self.secs * 1000 + self.nanos / 1_000_000


def _is_number(v: Any) -> bool:
    return isinstance(v, numbers.Real) and not isinstance(v, bool)


def extract_value(val: Any) -> float:
    """Return the scalar plotted for a raw ``val``.

    Numbers pass through, sequences contribute their first element.
    Anything else (strings, byte buffers, empty arrays) raises MalformedPoint.
    """
    if _is_number(val):
        return float(val)
    if isinstance(val, (str, bytes, bytearray, memoryview)):
        raise MalformedPoint(f"non-numeric value of type {type(val).__name__}")
    if isinstance(val, dict):
        raise MalformedPoint("unexpected object value")
    try:
        first = val[0]
    except (TypeError, IndexError, KeyError):
        raise MalformedPoint(f"unsupported value {val!r}") from None
    if _is_number(first):
        return float(first)
    raise MalformedPoint(f"non-numeric array element {first!r}")


def point_from_value(pv: PointValue) -> DataPoint:
    """Convert a historical sample into a DataPoint.

    Binned archiver results deliver ``val`` as an object carrying the bin
    statistics; ``mean`` (or ``value``) becomes the plotted value.
    """
    val = pv.val
    if isinstance(val, dict):
        centre = val.get("mean", val.get("value"))
        if not _is_number(centre):
            raise MalformedPoint(f"binned value without mean: {val!r}")
        centre = float(centre)
        return DataPoint(
            timestamp=pv.timestamp_ms,
            value=centre,
            severity=pv.severity,
            status=pv.status,
            min=float(val.get("min", centre)),
            max=float(val.get("max", centre)),
            stddev=float(val.get("stddev", val.get("std", 0.0))),
            count=int(val.get("count", 1)),
        )
    value = extract_value(val)
    return DataPoint(timestamp=pv.timestamp_ms, value=value,
                     severity=pv.severity, status=pv.status)


@dataclass
class HistoricalSeries:
    """One PV's result from a historical fetch."""

    name: str
    metadata: PVMetadata | None
    points: list[DataPoint]
