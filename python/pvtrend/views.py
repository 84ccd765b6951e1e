"""Render-ready shapes derived from the registries.

Two equivalent representations are offered for charting components:

* per-PV frames, ``SeriesFrame(meta, data)`` with the full DataPoint list
* a columnar frame with one shared, sorted timestamp column and one value
  column per PV, NaN where a PV has no sample at that timestamp
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .axes import AxisRegistry
from .model import AxisPosition, DataPoint, PenProperties
from .registry import PVRegistry


@dataclass
class SeriesMeta:
    name: str
    egu: str | None
    axis_id: str | None
    pen: PenProperties
    visible: bool
    precision: int | None = None
    display_limits: tuple[float, float] | None = None


@dataclass
class SeriesFrame:
    meta: SeriesMeta
    data: list[DataPoint]


@dataclass
class SeriesData:
    """Time-series arrays for one PV."""

    timestamps: np.ndarray  # float64, ms
    values: np.ndarray  # float64


@dataclass
class ColumnarFrame:
    timestamps: np.ndarray
    series: list[np.ndarray]
    meta: list[SeriesMeta]


@dataclass
class AxisView:
    id: str
    egu: str
    position: AxisPosition
    auto_range: bool
    range: tuple[float, float] | None
    member_pvs: list[str]


@dataclass
class Statistics:
    mean: float
    std_dev: float
    min: float
    max: float
    count: int
    first_timestamp: float
    last_timestamp: float


def _meta(pv) -> SeriesMeta:
    md = pv.metadata
    return SeriesMeta(
        name=pv.name,
        egu=md.egu if md else None,
        axis_id=pv.axis_id,
        pen=pv.pen,
        visible=pv.visible,
        precision=md.precision if md else None,
        display_limits=md.display_limits if md else None,
    )


def series_frames(pvs: PVRegistry,
                  visible_only: bool = False) -> list[SeriesFrame]:
    return [SeriesFrame(_meta(pv), list(pv.points))
            for pv in pvs if pv.visible or not visible_only]


def to_arrays(points: Sequence[DataPoint]) -> SeriesData:
    ts = np.fromiter((p.timestamp for p in points), dtype=np.float64, count=len(points))
    vals = np.fromiter((p.value for p in points), dtype=np.float64, count=len(points))
    return SeriesData(ts, vals)


def columnar_frame(pvs: PVRegistry,
                   visible_only: bool = False) -> ColumnarFrame:
    frames = series_frames(pvs, visible_only)
    arrays = [to_arrays(f.data) for f in frames]
    if arrays:
        timestamps = np.unique(np.concatenate([a.timestamps for a in arrays]))
    else:
        timestamps = np.array([], dtype=np.float64)

    columns = []
    for a in arrays:
        col = np.full(timestamps.shape, np.nan, dtype=np.float64)
        col[np.searchsorted(timestamps, a.timestamps)] = a.values
        columns.append(col)
    return ColumnarFrame(timestamps, columns, [f.meta for f in frames])


def column_to_arrays(frame: ColumnarFrame, index: int) -> SeriesData:
    """Recover one PV's samples from a columnar frame."""
    col = frame.series[index]
    mask = ~np.isnan(col)
    return SeriesData(frame.timestamps[mask], col[mask])


def axis_list(axes: AxisRegistry) -> list[AxisView]:
    return [AxisView(a.id, a.egu, a.position, a.auto_range, a.range, sorted(a.pvs))
            for a in axes]


def series_statistics(points: Sequence[DataPoint]) -> Statistics | None:
    if not points:
        return None
    data = to_arrays(points)
    return Statistics(
        mean=float(np.mean(data.values)),
        std_dev=float(np.std(data.values)),
        min=float(np.min(data.values)),
        max=float(np.max(data.values)),
        count=len(points),
        first_timestamp=float(data.timestamps[0]),
        last_timestamp=float(data.timestamps[-1]),
    )
