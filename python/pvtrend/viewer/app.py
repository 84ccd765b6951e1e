"""DearPyGui application shell — menu bar, live controls, main loop."""

from __future__ import annotations

import logging

import dearpygui.dearpygui as dpg

from ..controller import TrendController
from ..model import LiveMode
from .plots import TrendPlot

logger = logging.getLogger(__name__)


class ViewerApp:
    """Top-level viewer application driving a :class:`TrendController`."""

    def __init__(self, controller: TrendController) -> None:
        self._ctl = controller
        self._plot: TrendPlot | None = None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup(self) -> None:
        dpg.create_context()
        dpg.create_viewport(title="pvtrend viewer", width=1280, height=720)
        self._build_layout()
        dpg.setup_dearpygui()
        dpg.show_viewport()
        dpg.set_primary_window("main_window", True)

    def _build_layout(self) -> None:
        with dpg.window(tag="main_window"):
            with dpg.menu_bar():
                with dpg.menu(label="File"):
                    dpg.add_menu_item(label="Refresh", callback=self._on_refresh)
                    dpg.add_separator()
                    dpg.add_menu_item(label="Quit",
                                      callback=lambda: dpg.stop_dearpygui())

            with dpg.group(horizontal=True):
                dpg.add_button(label="Live", tag="live_button",
                               callback=self._on_toggle_live)
                dpg.add_radio_button([m.value.capitalize() for m in LiveMode],
                                     default_value=self._ctl.live.mode.value.capitalize(),
                                     horizontal=True, callback=self._on_mode)
                dpg.add_text("", tag="window_text")
            dpg.add_text("Status: ready.", tag="status_bar")
            dpg.add_separator()

            self._plot = TrendPlot("main_window")

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _on_refresh(self) -> None:
        if self._ctl.refresh():
            self._set_status("fetched.")
        self._push()

    def _on_toggle_live(self) -> None:
        if self._ctl.is_live:
            self._ctl.disable_live(final_fetch=True)
        else:
            self._ctl.enable_live()
        self._push()

    def _on_mode(self, sender, app_data) -> None:
        self._ctl.set_live_mode(LiveMode(app_data.lower()))
        self._push()

    # ------------------------------------------------------------------
    # Status bar
    # ------------------------------------------------------------------

    def _set_status(self, text: str) -> None:
        if dpg.does_item_exist("status_bar"):
            dpg.set_value("status_bar", f"Status: {text}")

    def _update_status(self) -> None:
        ctl = self._ctl
        dpg.configure_item("live_button", label="Stop" if ctl.is_live else "Live")
        if ctl.last_error:
            self._set_status(ctl.last_error)
        elif ctl.is_live:
            text = (f"live ({ctl.live.mode.value}, "
                    f"{ctl.live.update_interval_ms} ms)")
            if ctl.dropped_count:
                text += f", {ctl.dropped_count} ticks dropped"
            self._set_status(text)
        status = ctl.health.status
        conn = "connected" if ctl.health.connected else "disconnected"
        if status is None:
            conn = "not probed"
        dpg.set_value("window_text",
                      f"{len(ctl.pvs)} PVs, {len(ctl.axes)} axes, "
                      f"{ctl.window.duration / 1000:.0f} s window, {conn}")

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def _push(self) -> None:
        if self._plot is None:
            return
        self._plot.sync_axes(self._ctl.axis_list())
        self._plot.push_data(self._ctl.series_frames(), self._ctl.window)
        self._update_status()

    def run(self) -> None:
        self._push()
        while dpg.is_dearpygui_running():
            # 1. Health probe + apply pending live batches
            if self._ctl.tick(background_probe=True) or self._ctl.is_live:
                self._push()
            else:
                self._update_status()

            dpg.render_dearpygui_frame()

        self._cleanup()

    def _cleanup(self) -> None:
        self._ctl.close()
        dpg.destroy_context()
