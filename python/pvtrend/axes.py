"""Axis registry: groups PVs onto shared display axes by engineering unit."""

from __future__ import annotations

import logging
import re

from .config import DEFAULT_DISPLAY_HIGH, DEFAULT_DISPLAY_LOW, DEFAULT_UNIT
from .errors import AxisError
from .model import Axis, AxisPosition

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]")


def normalize_unit(egu: str | None) -> str:
    """Strip the unit; empty or missing units become ``"Value"``."""
    if egu is None:
        return DEFAULT_UNIT
    egu = egu.strip()
    return egu or DEFAULT_UNIT


def _unit_key(egu: str | None) -> str:
    return normalize_unit(egu).casefold()


def slugify(egu: str) -> str:
    return _SLUG_RE.sub("_", egu.lower())


class AxisRegistry:
    """Owns the axes and their PV membership sets.

    Axes created by :meth:`bind_pv` are automatic and disappear as soon as
    their last PV leaves.  Axes created by :meth:`add_axis` belong to the user
    and may stay empty.
    """

    def __init__(self) -> None:
        self._axes: dict[str, Axis] = {}

    def __len__(self) -> int:
        return len(self._axes)

    def __contains__(self, axis_id: str) -> bool:
        return axis_id in self._axes

    def __iter__(self):
        return iter(list(self._axes.values()))

    def get(self, axis_id: str) -> Axis | None:
        return self._axes.get(axis_id)

    def find_by_unit(self, egu: str | None) -> Axis | None:
        key = _unit_key(egu)
        for axis in self._axes.values():
            if axis.egu.casefold() == key:
                return axis
        return None

    def _require(self, axis_id: str) -> Axis:
        axis = self._axes.get(axis_id)
        if axis is None:
            raise AxisError(f"unknown axis {axis_id!r}")
        return axis

    def _new_id(self, egu: str) -> str:
        base = slugify(egu)
        axis_id = base
        n = 2
        while axis_id in self._axes:
            axis_id = f"{base}_{n}"
            n += 1
        return axis_id

    def _next_position(self) -> AxisPosition:
        return AxisPosition.LEFT if len(self._axes) % 2 == 0 else AxisPosition.RIGHT

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def bind_pv(self, pv_name: str, egu: str | None,
                display_limits: tuple[float, float] | None = None) -> str:
        """Attach *pv_name* to the axis for *egu*, creating it if needed.

        Returns the axis id.  An existing axis keeps its range and position.
        """
        axis = self.find_by_unit(egu)
        if axis is not None:
            axis.pvs.add(pv_name)
            return axis.id

        unit = normalize_unit(egu)
        axis = Axis(
            id=self._new_id(unit),
            egu=unit,
            position=self._next_position(),
            auto_range=True,
            range=display_limits or (DEFAULT_DISPLAY_LOW, DEFAULT_DISPLAY_HIGH),
            pvs={pv_name},
        )
        self._axes[axis.id] = axis
        logger.info("created axis %s (%s, %s)", axis.id, axis.egu,
                    axis.position.value)
        return axis.id

    def unbind_pv(self, pv_name: str, axis_id: str) -> None:
        axis = self._axes.get(axis_id)
        if axis is None:
            return
        axis.pvs.discard(pv_name)
        self._collect(axis)

    def reassign(self, pv_name: str, from_axis_id: str, to_axis_id: str) -> None:
        """Move *pv_name* between axes.  Both axes are checked before mutating."""
        src = self._require(from_axis_id)
        dst = self._require(to_axis_id)
        if pv_name not in src.pvs:
            raise AxisError(f"{pv_name} is not bound to axis {from_axis_id!r}")
        if src is dst:
            return
        src.pvs.discard(pv_name)
        dst.pvs.add(pv_name)
        self._collect(src)

    def _collect(self, axis: Axis) -> None:
        if not axis.pvs and not axis.user_added:
            del self._axes[axis.id]
            logger.info("deleted empty axis %s", axis.id)

    # ------------------------------------------------------------------
    # User-managed axes
    # ------------------------------------------------------------------

    def add_axis(self, egu: str, position: AxisPosition | None = None,
                 range: tuple[float, float] | None = None) -> str:
        unit = normalize_unit(egu)
        axis = Axis(
            id=self._new_id(unit),
            egu=unit,
            position=position or self._next_position(),
            auto_range=range is None,
            range=range or (DEFAULT_DISPLAY_LOW, DEFAULT_DISPLAY_HIGH),
            user_added=True,
        )
        self._axes[axis.id] = axis
        logger.info("added user axis %s (%s)", axis.id, axis.egu)
        return axis.id

    def remove_axis(self, axis_id: str) -> None:
        axis = self._require(axis_id)
        if axis.pvs:
            raise AxisError(
                f"axis {axis_id!r} still has {len(axis.pvs)} PV(s) bound")
        del self._axes[axis_id]
        logger.info("removed axis %s", axis_id)

    def update_axis(self, axis_id: str, *, auto_range: bool | None = None,
                    range: tuple[float, float] | None = None,
                    position: AxisPosition | None = None) -> None:
        axis = self._require(axis_id)
        if range is not None:
            low, high = range
            if low >= high:
                raise AxisError(f"invalid range {range!r} for axis {axis_id!r}")
            axis.range = (float(low), float(high))
        if auto_range is not None:
            axis.auto_range = auto_range
        if position is not None:
            axis.position = position
