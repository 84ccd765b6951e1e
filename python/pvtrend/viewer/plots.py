"""Trend plot — one DearPyGui plot, one y-axis per unit, one line per PV."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import dearpygui.dearpygui as dpg

from ..model import ViewerWindow
from ..views import AxisView, SeriesFrame, to_arrays

logger = logging.getLogger(__name__)

# ImPlot supports up to three y-axes per plot
_Y_AXIS_KINDS = [
    dpg.mvYAxis,
    getattr(dpg, "mvYAxis2", dpg.mvYAxis),
    getattr(dpg, "mvYAxis3", dpg.mvYAxis),
]


def hex_to_rgba(color: str, opacity: float = 1.0) -> tuple[int, int, int, int]:
    """``"#rrggbb"`` to a DearPyGui colour tuple."""
    c = color.lstrip("#")
    if len(c) != 6:
        return (128, 128, 128, int(255 * opacity))
    r, g, b = (int(c[i:i + 2], 16) for i in (0, 2, 4))
    return (r, g, b, int(round(255 * max(0.0, min(1.0, opacity)))))


@dataclass
class _PlottedSeries:
    name: str
    axis_id: str | None
    line_tag: int | str | None = None
    theme_tag: int | str | None = None
    style: tuple = ()  # (color, opacity, line_width) the theme was built for


class TrendPlot:
    """Plot with time on x (seconds relative to the window end)."""

    def __init__(self, parent: int | str) -> None:
        self.plot_tag = dpg.add_plot(label="Trend", parent=parent,
                                     anti_aliased=True, width=-1, height=-1)
        dpg.add_plot_legend(parent=self.plot_tag)
        self.x_axis_tag = dpg.add_plot_axis(dpg.mvXAxis, label="Time (s)",
                                            parent=self.plot_tag)
        self._y_axes: dict[str, int | str] = {}
        self._series: dict[str, _PlottedSeries] = {}

    # ------------------------------------------------------------------
    # Axes
    # ------------------------------------------------------------------

    def sync_axes(self, axes: list[AxisView]) -> None:
        """Create/delete dpg y-axes to match the axis registry."""
        wanted = [a.id for a in axes[:len(_Y_AXIS_KINDS)]]
        if len(axes) > len(_Y_AXIS_KINDS):
            logger.debug("only %d y-axes can be shown, %d defined",
                         len(_Y_AXIS_KINDS), len(axes))

        for axis_id in list(self._y_axes):
            if axis_id not in wanted:
                self._drop_axis(axis_id)

        # y-axis slots are positional, so rebuild if the order changed
        if list(self._y_axes) != wanted[:len(self._y_axes)]:
            for axis_id in list(self._y_axes):
                self._drop_axis(axis_id)

        for i, a in enumerate(axes[:len(_Y_AXIS_KINDS)]):
            if a.id not in self._y_axes:
                self._y_axes[a.id] = dpg.add_plot_axis(
                    _Y_AXIS_KINDS[i], label=a.egu, parent=self.plot_tag)
            tag = self._y_axes[a.id]
            if a.auto_range or a.range is None:
                dpg.set_axis_limits_auto(tag)
            else:
                dpg.set_axis_limits(tag, a.range[0], a.range[1])

    def _drop_axis(self, axis_id: str) -> None:
        tag = self._y_axes.pop(axis_id)
        for s in self._series.values():
            if s.axis_id == axis_id:
                self._delete_series(s)
        if dpg.does_item_exist(tag):
            dpg.delete_item(tag)

    # ------------------------------------------------------------------
    # Series
    # ------------------------------------------------------------------

    def _delete_series(self, s: _PlottedSeries) -> None:
        for tag in (s.line_tag, s.theme_tag):
            if tag is not None and dpg.does_item_exist(tag):
                dpg.delete_item(tag)
        s.line_tag = s.theme_tag = None
        s.style = ()

    def _ensure_series(self, frame: SeriesFrame) -> _PlottedSeries | None:
        meta = frame.meta
        s = self._series.get(meta.name)
        if s is not None and s.axis_id != meta.axis_id:
            self._delete_series(s)
            s.axis_id = meta.axis_id
        if s is None:
            s = _PlottedSeries(meta.name, meta.axis_id)
            self._series[meta.name] = s

        parent = self._y_axes.get(meta.axis_id) if meta.axis_id else None
        if parent is None:
            return None
        if s.line_tag is None:
            label = f"{meta.name} [{meta.egu}]" if meta.egu else meta.name
            s.line_tag = dpg.add_line_series([], [], label=label, parent=parent)

        pen = meta.pen
        style = (pen.color, pen.opacity, pen.line_width)
        if style != s.style:
            if s.theme_tag is not None and dpg.does_item_exist(s.theme_tag):
                dpg.delete_item(s.theme_tag)
            with dpg.theme() as lt:
                with dpg.theme_component(dpg.mvLineSeries):
                    dpg.add_theme_color(dpg.mvPlotCol_Line,
                                        hex_to_rgba(pen.color, pen.opacity),
                                        category=dpg.mvThemeCat_Plots)
                    dpg.add_theme_style(dpg.mvPlotStyleVar_LineWeight,
                                        pen.line_width,
                                        category=dpg.mvThemeCat_Plots)
            s.theme_tag = lt
            s.style = style
            dpg.bind_item_theme(s.line_tag, lt)
        return s

    def push_data(self, frames: list[SeriesFrame], window: ViewerWindow) -> None:
        present = {f.meta.name for f in frames}
        for name in list(self._series):
            if name not in present:
                self._delete_series(self._series.pop(name))

        for frame in frames:
            s = self._ensure_series(frame)
            if s is None:
                continue
            dpg.configure_item(s.line_tag, show=frame.meta.visible)
            data = to_arrays(frame.data)
            x = (data.timestamps - window.end) / 1000.0
            dpg.configure_item(s.line_tag, x=x.tolist(), y=data.values.tolist())

        dpg.set_axis_limits(self.x_axis_tag, -window.duration / 1000.0, 0.0)
