"""Window/mode controller: owns the engine state and drives live mode.

All state (PV registry, axis registry, window, live config) lives in one
:class:`TrendController`.  Mutations happen under a single lock and are
written as short transactions: snapshot what is needed, release the lock for
any backend I/O, then re-acquire and commit using the snapshot plus the
fetched data.  PVs removed while a fetch was in flight are skipped on
commit and pen edits are never overwritten by fetch results.

The controller owns no thread.  The application loop calls :meth:`tick`
(health probe + :meth:`poll`) every frame; live batches are applied there,
one at a time and in arrival order.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Any, Callable, Mapping

from .axes import AxisRegistry
from .backend import Backend, FetchOptions
from .config import DEFAULT_DISPLAY_HIGH, DEFAULT_DISPLAY_LOW, DEFAULT_UNIT, EngineConfig
from .errors import ConnectionLost, FetchError, MetadataUnavailable, SubscriptionError
from .health import HealthMonitor, HealthStatus
from .interval import estimate_update_interval
from .model import (
    HistoricalSeries, LiveConfig, LiveMode, PenProperties, PointValue,
    PVMetadata, PVSeries, ViewerWindow, WindowMode,
)
from .reconcile import merge_points, reconcile_batch
from .registry import PVRegistry
from .subscription import Subscription
from . import views

logger = logging.getLogger(__name__)

ONE_HOUR_MS = 3_600_000


class LiveState(enum.Enum):
    IDLE = "idle"
    LIVE = "live"


def wall_clock_ms() -> float:
    return time.time() * 1000.0


def default_metadata() -> PVMetadata:
    return PVMetadata(egu=DEFAULT_UNIT, display_low=DEFAULT_DISPLAY_LOW,
                      display_high=DEFAULT_DISPLAY_HIGH)


class TrendController:
    """Engine state container plus the live-mode state machine."""

    def __init__(self, backend: Backend, *, config: EngineConfig | None = None,
                 clock: Callable[[], float] | None = None) -> None:
        self.backend = backend
        self.config = config or EngineConfig()
        self._clock = clock or wall_clock_ms
        self._lock = threading.RLock()

        self.axes = AxisRegistry()
        self.pvs = PVRegistry(self.axes, max_pvs=self.config.max_pvs)
        now = self._clock()
        self.window = ViewerWindow(start=now - self.config.default_window_ms, end=now)
        self._duration = self.window.duration
        self.live = LiveConfig()
        self.state = LiveState.IDLE
        self.last_error: str | None = None
        self.health = HealthMonitor(backend.test_connection,
                                    self.config.probe_interval_ms)

        self._subscription: Subscription | None = None
        self._session = 0
        self._seeding = False
        self._busy = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_live(self) -> bool:
        return self.state is LiveState.LIVE

    @property
    def dropped_count(self) -> int:
        sub = self._subscription
        return sub.dropped_count if sub is not None else 0

    def now(self) -> float:
        return self._clock()

    def _set_error(self, message: str) -> None:
        self.last_error = message
        logger.warning("%s", message)

    # ------------------------------------------------------------------
    # PV management
    # ------------------------------------------------------------------

    def add_pv(self, name: str, pen: PenProperties | None = None, *,
               fetch_metadata: bool = True) -> PVSeries:
        """Add a PV (or replace its pen) and bind it to its unit axis."""
        with self._lock:
            pv = self.pvs.add_pv(name, pen)
            needs_meta = pv.metadata is None

        if needs_meta and fetch_metadata:
            meta = self._fetch_metadata(name)
            with self._lock:
                if name in self.pvs and self.pvs.get(name).metadata is None:
                    self.pvs.attach_metadata(name, meta)

        if self.is_live:
            self._resubscribe()
        return pv

    def _fetch_metadata(self, name: str) -> PVMetadata:
        try:
            return self.backend.fetch_metadata(name)
        except (MetadataUnavailable, FetchError) as e:
            logger.warning("%s; using default unit %r", e, DEFAULT_UNIT)
            return default_metadata()

    def remove_pv(self, name: str) -> None:
        with self._lock:
            present = name in self.pvs
            self.pvs.remove_pv(name)
        if present and self.is_live:
            self._resubscribe()

    def update_pen(self, name: str, pen: PenProperties | None = None,
                   **changes: Any) -> PenProperties:
        with self._lock:
            return self.pvs.update_pen(name, pen, **changes)

    def set_visibility(self, name: str, visible: bool) -> None:
        with self._lock:
            self.pvs.set_visibility(name, visible)

    def attach_metadata(self, name: str, meta: PVMetadata) -> str:
        with self._lock:
            return self.pvs.attach_metadata(name, meta)

    def reassign_axis(self, name: str, to_axis_id: str) -> None:
        with self._lock:
            self.pvs.reassign_axis(name, to_axis_id)

    # ------------------------------------------------------------------
    # Time range
    # ------------------------------------------------------------------

    def set_time_range(self, start: float, end: float) -> ViewerWindow:
        """Apply a user-selected range.

        A range whose start is not before its end becomes the hour ending
        at *end*.  In live mode the range only sets the rolling duration
        (rolling) or the fixed start (append).
        """
        if start >= end:
            logger.info("invalid range %s..%s, using the hour before end", start, end)
            start = end - ONE_HOUR_MS
        with self._lock:
            self._duration = end - start
            if not self.is_live:
                self.window = ViewerWindow(start, end, WindowMode.FIXED)
            else:
                now = self._clock()
                if self.live.mode is LiveMode.ROLLING:
                    self.window = ViewerWindow(now - self._duration, now, WindowMode.ROLLING)
                else:
                    self.window = ViewerWindow(start, now, WindowMode.APPEND)
            return self.window

    def set_live_mode(self, mode: LiveMode) -> None:
        """Switch between rolling and append; applies immediately when live."""
        with self._lock:
            self.live.mode = mode
            if self.is_live:
                self._advance_window(self._clock())

    def _advance_window(self, now: float) -> None:
        if self.live.mode is LiveMode.ROLLING:
            self.window = ViewerWindow(now - self._duration, now, WindowMode.ROLLING)
        else:
            self.window = ViewerWindow(self.window.start, now, WindowMode.APPEND)

    # ------------------------------------------------------------------
    # Historical data
    # ------------------------------------------------------------------

    def refresh(self, options: FetchOptions | None = None, *,
                merge: bool | None = None) -> bool:
        """Fetch the current window for every PV.

        Outside live mode the fetched points replace the buffers; in live
        mode (or with ``merge=True``) they are merged so live points are kept.
        """
        with self._lock:
            names = self.pvs.names()
            start, end = self.window.start, self.window.end
            if merge is None:
                merge = self.is_live
        if not names:
            self._set_error("No PVs selected")
            return False
        try:
            fetched = self.backend.fetch_historical(names, start, end, options)
        except FetchError as e:
            self._set_error(f"Fetch failed: {e}")
            return False

        with self._lock:
            self._commit_history(fetched, merge=merge)
            self.last_error = None
        logger.info("fetched %d points for %d PVs",
                    sum(len(s.points) for s in fetched), len(fetched))
        return True

    def _commit_history(self, fetched: list[HistoricalSeries], *, merge: bool) -> None:
        for series in fetched:
            pv = self.pvs.get(series.name)
            if pv is None:
                continue
            if merge:
                pv.points = merge_points(pv.points, series.points)
            else:
                pv.points = list(series.points)
            if pv.axis_id is not None:
                # a bound PV keeps its axis; only the metadata is refreshed
                if series.metadata is not None:
                    pv.metadata = series.metadata
            else:
                self.pvs.attach_metadata(series.name,
                                         series.metadata or default_metadata())

    # ------------------------------------------------------------------
    # Live mode
    # ------------------------------------------------------------------

    def enable_live(self, mode: LiveMode | None = None) -> bool:
        """Enter live mode.  Returns False (with ``last_error`` set) on failure.

        Estimates the update interval from buffered history, back-fills the
        gap between the newest buffered point and now, subscribes, then
        positions the window.
        """
        with self._lock:
            if self.is_live:
                return True
            if mode is not None:
                self.live.mode = mode
            names = self.pvs.names()
            if not names:
                self._set_error("No PVs selected")
                return False
            buffers = [list(pv.points) for pv in self.pvs]
            last_known = max((b[-1].timestamp for b in buffers if b),
                             default=self.window.start)
            self._session += 1
            session = self._session
            self._seeding = True

        interval = estimate_update_interval(buffers)
        logger.info("live update interval %d ms", interval)

        now = self._clock()
        try:
            if last_known < now:
                backfill = self.backend.fetch_historical(names, last_known, now)
                with self._lock:
                    self._commit_history(backfill, merge=True)
                logger.info("back-filled %d points",
                            sum(len(s.points) for s in backfill))
            with self._lock:
                names = self.pvs.names()
            subscription = self.backend.subscribe_live(names, interval)
        except FetchError as e:
            self._end_seeding(session)
            self._set_error(f"Live mode aborted: {e}")
            return False
        except (SubscriptionError, OSError) as e:
            self._end_seeding(session)
            self._set_error(f"Live subscription failed: {e}")
            return False

        with self._lock:
            if session != self._session:
                # disable_live() ran while we were seeding
                subscription.cancel()
                return False
            self._subscription = subscription
            self.live = LiveConfig(enabled=True, mode=self.live.mode,
                                   update_interval_ms=interval)
            self.state = LiveState.LIVE
            self._seeding = False
            self.last_error = None
            self._advance_window(self._clock())
        logger.info("live mode enabled (%s, %d PVs)", self.live.mode.value, len(names))
        return True

    def _end_seeding(self, session: int) -> None:
        with self._lock:
            if session == self._session:
                self._seeding = False

    def disable_live(self, *, final_fetch: bool = False) -> None:
        """Leave live mode.  The channel is cancelled before this returns."""
        with self._lock:
            sub = self._subscription
            self._subscription = None
            self._session += 1
            self._seeding = False
            was_live = self.is_live
            self.state = LiveState.IDLE
            self.live.enabled = False
            self.window = ViewerWindow(self.window.start, self.window.end,
                                       WindowMode.FIXED)
        if sub is not None:
            sub.cancel()
        if was_live:
            logger.info("live mode disabled")
        if final_fetch and was_live:
            self.refresh(merge=True)

    def _abort_live(self, message: str) -> None:
        self.disable_live()
        self._set_error(message)

    def _resubscribe(self) -> None:
        with self._lock:
            old = self._subscription
            if old is None:
                return
            names = self.pvs.names()
            interval = self.live.update_interval_ms
        old.cancel()
        if not names:
            self._abort_live("Live mode stopped: no PVs selected")
            return
        try:
            sub = self.backend.subscribe_live(names, interval)
        except (SubscriptionError, FetchError, OSError) as e:
            self._abort_live(f"Live subscription failed: {e}")
            return
        with self._lock:
            if self._subscription is old:
                self._subscription = sub
                return
        sub.cancel()

    # ------------------------------------------------------------------
    # Tick processing
    # ------------------------------------------------------------------

    def apply_batch(self, batch: Mapping[str, PointValue | Mapping[str, Any]],
                    now: float | None = None, *,
                    session: int | None = None) -> bool:
        """Reconcile one tick and advance the window as a single transaction.

        Returns True if any point was added.  Ticks arriving outside live
        mode, while seeding, or from an earlier live session are ignored.
        """
        with self._lock:
            if not self.is_live or self._seeding:
                logger.debug("tick ignored: live mode not ready")
                return False
            if session is not None and session != self._session:
                logger.debug("tick from stale live session ignored")
                return False
            if now is None:
                now = self._clock()
            cutoff = now - self._duration if self.live.mode is LiveMode.ROLLING else None
            buffers = {pv.name: pv.points for pv in self.pvs}
            result = reconcile_batch(buffers, batch, self.live.update_interval_ms,
                                     cutoff)
            for name, points in result.points.items():
                self.pvs.get(name).points = points
            self._advance_window(now)
            return result.added > 0

    def poll(self) -> bool:
        """Apply pending live batches in order.  Returns True on new data."""
        if self._busy:
            logger.debug("poll already in progress, skipping")
            return False
        self._busy = True
        try:
            with self._lock:
                sub = self._subscription
                session = self._session
            if sub is None:
                return False
            changed = False
            for batch in sub.drain():
                changed |= self.apply_batch(batch, session=session)
            if sub.error is not None:
                self._abort_live(f"Live mode stopped: {sub.error}")
            return changed
        finally:
            self._busy = False

    def check_health(self, now: float | None = None, *,
                     background: bool = False) -> HealthStatus | None:
        """Run the connection probe if due; a failure stops live mode.

        With *background* the probe runs on a worker thread and its result
        is acted on by a later call.
        """
        if now is None:
            now = self._clock()
        if background:
            status = self.health.maybe_check_background(now)
        else:
            status = self.health.maybe_check(now)
        if status is not None and not status.connected and self.is_live:
            err = ConnectionLost(status.error or "connection lost")
            self._abort_live(f"Live mode stopped: {err}")
        return status

    def tick(self, *, background_probe: bool = False) -> bool:
        """One iteration of the application loop."""
        self.check_health(background=background_probe)
        return self.poll()

    def close(self) -> None:
        self.disable_live()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def series_frames(self, visible_only: bool = False) -> list[views.SeriesFrame]:
        with self._lock:
            return views.series_frames(self.pvs, visible_only)

    def columnar(self, visible_only: bool = False) -> views.ColumnarFrame:
        with self._lock:
            return views.columnar_frame(self.pvs, visible_only)

    def axis_list(self) -> list[views.AxisView]:
        with self._lock:
            return views.axis_list(self.axes)
