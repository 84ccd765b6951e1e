"""PV registry: subscribed PVs, their pens and per-point buffers."""

from __future__ import annotations

import dataclasses
import logging
import re

from .axes import AxisRegistry, normalize_unit
from .config import MAX_PVS
from .model import PenProperties, PVMetadata, PVSeries

logger = logging.getLogger(__name__)

_PV_NAME_RE = re.compile(r"[A-Za-z0-9_\-:.]{1,255}")

PV_COLORS = [
    "#2563eb",  # blue
    "#dc2626",  # red
    "#16a34a",  # green
    "#9333ea",  # purple
    "#ea580c",  # orange
    "#0891b2",  # cyan
    "#db2777",  # pink
    "#854d0e",  # amber
    "#2e4053",  # dark blue gray
    "#7c3aed",  # violet
    "#059669",  # emerald
    "#d97706",  # yellow
    "#be123c",  # rose
    "#475569",  # slate
    "#6366f1",  # indigo
    "#b45309",  # bronze
]


def validate_pv_name(name: str) -> str:
    if not isinstance(name, str) or not _PV_NAME_RE.fullmatch(name):
        raise ValueError(f"invalid PV name {name!r}")
    return name


def next_color(existing: list[PVSeries]) -> str:
    used = {pv.pen.color for pv in existing}
    for color in PV_COLORS:
        if color not in used:
            return color
    return PV_COLORS[len(existing) % len(PV_COLORS)]


class PVRegistry:
    """In-memory store of PVSeries keyed by name, in insertion order."""

    def __init__(self, axes: AxisRegistry, max_pvs: int = MAX_PVS) -> None:
        self._axes = axes
        self._pvs: dict[str, PVSeries] = {}
        self.max_pvs = max_pvs

    def __len__(self) -> int:
        return len(self._pvs)

    def __contains__(self, name: str) -> bool:
        return name in self._pvs

    def __iter__(self):
        return iter(list(self._pvs.values()))

    def names(self) -> list[str]:
        return list(self._pvs)

    def get(self, name: str) -> PVSeries | None:
        return self._pvs.get(name)

    def _require(self, name: str) -> PVSeries:
        pv = self._pvs.get(name)
        if pv is None:
            raise KeyError(f"unknown PV {name!r}")
        return pv

    def add_pv(self, name: str, pen: PenProperties | None = None) -> PVSeries:
        """Add a PV, or replace the pen of an existing one."""
        existing = self._pvs.get(name)
        if existing is not None:
            if pen is not None:
                existing.pen = pen
            return existing
        validate_pv_name(name)
        if len(self._pvs) >= self.max_pvs:
            raise ValueError(f"maximum number of PVs ({self.max_pvs}) reached")
        if pen is None:
            pen = PenProperties(color=next_color(list(self._pvs.values())))
        pv = PVSeries(name=name, pen=pen)
        self._pvs[name] = pv
        logger.info("added PV %s", name)
        return pv

    def remove_pv(self, name: str) -> None:
        pv = self._pvs.pop(name, None)
        if pv is None:
            return
        if pv.axis_id is not None:
            self._axes.unbind_pv(name, pv.axis_id)
        logger.info("removed PV %s", name)

    def update_pen(self, name: str, pen: PenProperties | None = None,
                   **changes) -> PenProperties:
        """Replace the pen, or patch individual pen fields by keyword."""
        pv = self._require(name)
        if pen is not None:
            pv.pen = pen
        if changes:
            pv.pen = dataclasses.replace(pv.pen, **changes)
        return pv.pen

    def set_visibility(self, name: str, visible: bool) -> None:
        self._require(name).visible = visible

    def attach_metadata(self, name: str, meta: PVMetadata) -> str:
        """Store metadata and bind the PV to the axis for its unit.

        A PV already sitting on an axis of another unit moves to the
        matching axis.  Returns the axis id.
        """
        pv = self._require(name)
        pv.metadata = meta
        if pv.axis_id is not None:
            current = self._axes.get(pv.axis_id)
            if current is not None and \
                    current.egu.casefold() == normalize_unit(meta.egu).casefold():
                current.pvs.add(name)
                return current.id
            self._axes.unbind_pv(name, pv.axis_id)
            pv.axis_id = None
        pv.axis_id = self._axes.bind_pv(name, meta.egu, meta.display_limits)
        return pv.axis_id

    def reassign_axis(self, name: str, to_axis_id: str) -> None:
        pv = self._require(name)
        if pv.axis_id is None:
            raise KeyError(f"PV {name!r} is not bound to an axis")
        self._axes.reassign(name, pv.axis_id, to_axis_id)
        pv.axis_id = to_axis_id

    def clear(self) -> None:
        for name in list(self._pvs):
            self.remove_pv(name)
