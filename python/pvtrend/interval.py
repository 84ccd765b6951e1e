"""Live update interval estimation from historical sampling density."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence

import numpy as np

from .config import (
    DEFAULT_INTERVAL_MS, INTERVAL_ROUNDING_MS, MAX_INTERVAL_MS, MIN_INTERVAL_MS,
)
from .model import DataPoint

logger = logging.getLogger(__name__)


def median_spacing(timestamps: Sequence[float] | np.ndarray) -> float | None:
    """Median of the positive gaps between consecutive timestamps.

    Returns None when no positive gap exists.
    """
    ts = np.asarray(timestamps, dtype=np.float64)
    if ts.size < 2:
        return None
    diffs = np.diff(ts)
    diffs = diffs[diffs > 0]
    if diffs.size == 0:
        return None
    return float(np.median(diffs))


def estimate_update_interval(buffers: Iterable[Sequence[DataPoint]]) -> int:
    """Pick a live poll interval (ms) for a set of PV point buffers.

    The slowest PV (largest median spacing) sets the rate.  The result is
    clamped to [MIN_INTERVAL_MS, MAX_INTERVAL_MS] and rounded to the
    nearest INTERVAL_ROUNDING_MS.
    """
    medians = []
    for points in buffers:
        spacing = median_spacing([p.timestamp for p in points])
        medians.append(DEFAULT_INTERVAL_MS if spacing is None else spacing)

    if not medians:
        return DEFAULT_INTERVAL_MS

    slowest = max(medians)
    clamped = min(max(slowest, MIN_INTERVAL_MS), MAX_INTERVAL_MS)
    interval = int(math.floor(clamped / INTERVAL_ROUNDING_MS + 0.5)) * INTERVAL_ROUNDING_MS
    logger.debug("per-PV medians %s -> interval %d ms", medians, interval)
    return interval
