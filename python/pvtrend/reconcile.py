"""Live reconciliation: merges pushed samples into per-PV point buffers.

Each incoming sample goes through, in order:

  1. value extraction (number, or first element of an array)
  2. timestamp conversion (secs/nanos -> fractional ms)
  3. exact-duplicate suppression
  4. de-noise: unchanged value faster than the update interval is dropped
  5. gap interpolation: after a silent gap longer than two intervals a
     step-hold point repeating the previous value is inserted first
  6. insertion of the real point at its chronological position

Rolling-window trimming happens once per batch for every buffer.

Nothing here mutates its inputs: new lists are returned so the caller can
commit a whole batch at once, and a failure leaves the old buffers intact.
"""

from __future__ import annotations

import bisect
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from .config import VALUE_EPSILON
from .errors import MalformedPoint
from .model import DataPoint, PointValue, extract_value

logger = logging.getLogger(__name__)


class TickOutcome(enum.Enum):
    APPENDED = "appended"
    INTERPOLATED = "interpolated"  # appended after a synthetic hold point
    DUPLICATE = "duplicate"
    UNCHANGED = "unchanged"


def _as_point_value(incoming: PointValue | Mapping[str, Any]) -> PointValue:
    if isinstance(incoming, PointValue):
        return incoming
    try:
        return PointValue.from_dict(incoming)
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedPoint(f"bad sample {incoming!r}: {e}") from e


def _insert_sorted(points: list[DataPoint], point: DataPoint) -> None:
    if not points or point.timestamp > points[-1].timestamp:
        points.append(point)
        return
    keys = [p.timestamp for p in points]
    points.insert(bisect.bisect_left(keys, point.timestamp), point)


def _has_timestamp(points: list[DataPoint], ts: float) -> bool:
    if not points:
        return False
    if points[-1].timestamp == ts:
        return True
    if ts > points[-1].timestamp:
        return False
    keys = [p.timestamp for p in points]
    i = bisect.bisect_left(keys, ts)
    return i < len(keys) and keys[i] == ts


def reconcile_point(points: list[DataPoint],
                    incoming: PointValue | Mapping[str, Any],
                    interval_ms: float) -> tuple[list[DataPoint], TickOutcome]:
    """Merge one live sample into *points*.

    Returns ``(new_points, outcome)``.  When the sample is skipped the
    original list is returned unchanged.  Raises MalformedPoint for values
    that cannot be plotted.
    """
    pv = _as_point_value(incoming)
    value = extract_value(pv.val)
    ts = pv.timestamp_ms

    if _has_timestamp(points, ts):
        return points, TickOutcome.DUPLICATE

    last = points[-1] if points else None
    changed = True
    if last is not None:
        changed = abs(value - last.value) >= VALUE_EPSILON
        if not changed and ts - last.timestamp < interval_ms:
            return points, TickOutcome.UNCHANGED

    new_points = list(points)
    outcome = TickOutcome.APPENDED

    if last is not None and changed and ts - last.timestamp > 2 * interval_ms:
        hold = DataPoint(
            timestamp=last.timestamp + interval_ms,
            value=last.value,
            severity=last.severity,
            status=last.status,
        )
        _insert_sorted(new_points, hold)
        outcome = TickOutcome.INTERPOLATED

    _insert_sorted(new_points, DataPoint(
        timestamp=ts,
        value=value,
        severity=pv.severity,
        status=pv.status,
    ))
    return new_points, outcome


def trim_before(points: list[DataPoint], cutoff: float) -> list[DataPoint]:
    """Drop points with ``timestamp < cutoff``."""
    if not points or points[0].timestamp >= cutoff:
        return points
    keys = [p.timestamp for p in points]
    return points[bisect.bisect_left(keys, cutoff):]


@dataclass
class BatchResult:
    """Outcome of reconciling one push-channel tick."""

    points: dict[str, list[DataPoint]] = field(default_factory=dict)
    outcomes: dict[str, TickOutcome] = field(default_factory=dict)
    malformed: list[str] = field(default_factory=list)

    @property
    def added(self) -> int:
        return sum(1 for o in self.outcomes.values()
                   if o in (TickOutcome.APPENDED, TickOutcome.INTERPOLATED))


def reconcile_batch(buffers: Mapping[str, list[DataPoint]],
                    batch: Mapping[str, PointValue | Mapping[str, Any]],
                    interval_ms: float,
                    cutoff: float | None = None) -> BatchResult:
    """Reconcile every PV of a tick independently.

    *buffers* maps PV name to its current points.  Samples for PVs not in
    *buffers* are ignored.  With *cutoff* set (rolling mode) every buffer is
    trimmed.  ``result.points`` holds only the buffers that changed.
    """
    result = BatchResult()
    for name, incoming in batch.items():
        points = buffers.get(name)
        if points is None:
            logger.debug("tick for unknown PV %s ignored", name)
            continue
        try:
            new_points, outcome = reconcile_point(points, incoming, interval_ms)
        except MalformedPoint as e:
            logger.debug("skipping %s this tick: %s", name, e)
            result.malformed.append(name)
            continue
        result.outcomes[name] = outcome
        if new_points is not points:
            result.points[name] = new_points
        else:
            logger.debug("%s: %s sample skipped", name, outcome.value)

    if cutoff is not None:
        for name, points in buffers.items():
            current = result.points.get(name, points)
            trimmed = trim_before(current, cutoff)
            if trimmed is not current:
                result.points[name] = trimmed

    return result


def merge_points(existing: list[DataPoint],
                 fetched: list[DataPoint]) -> list[DataPoint]:
    """Union of two point lists by timestamp; *fetched* wins on ties."""
    merged = {p.timestamp: p for p in existing}
    for p in fetched:
        merged[p.timestamp] = p
    return [merged[ts] for ts in sorted(merged)]
