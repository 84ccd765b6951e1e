"""Periodic backend connection probe."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable

from .config import HEALTH_HISTORY, HEALTH_PROBE_INTERVAL_MS

logger = logging.getLogger(__name__)


@dataclass
class HealthStatus:
    timestamp: float
    connected: bool
    error: str | None = None


class HealthMonitor:
    """Runs *probe* at most once per ``interval_ms`` of the caller's clock.

    The application loop calls :meth:`maybe_check` every frame and the probe
    fires when it is due.  :meth:`maybe_check_background` does the same but
    runs the probe on a short-lived worker thread and reports its result on a
    later call, so a slow or dead backend never blocks the caller.
    """

    def __init__(self, probe: Callable[[], bool],
                 interval_ms: int = HEALTH_PROBE_INTERVAL_MS,
                 max_history: int = HEALTH_HISTORY) -> None:
        self._probe = probe
        self.interval_ms = interval_ms
        self._last_check: float | None = None
        self._history: deque[HealthStatus] = deque(maxlen=max_history)
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._finished: HealthStatus | None = None

    @property
    def status(self) -> HealthStatus | None:
        return self._history[-1] if self._history else None

    @property
    def connected(self) -> bool:
        """Last probe result; True until the first probe has run."""
        status = self.status
        return True if status is None else status.connected

    @property
    def probing(self) -> bool:
        return self._worker is not None

    def history(self) -> list[HealthStatus]:
        return list(self._history)

    def due(self, now: float) -> bool:
        return self._last_check is None or now - self._last_check >= self.interval_ms

    def _run_probe(self, now: float) -> HealthStatus:
        try:
            ok = bool(self._probe())
            return HealthStatus(now, ok, None if ok else "connection test failed")
        except Exception as e:
            return HealthStatus(now, False, str(e))

    def _record(self, status: HealthStatus) -> None:
        previous = self.status
        if previous is not None and previous.connected != status.connected:
            if status.connected:
                logger.info("backend connection restored")
            else:
                logger.warning("backend connection lost: %s", status.error)
        self._history.append(status)

    def check(self, now: float) -> HealthStatus:
        self._last_check = now
        status = self._run_probe(now)
        self._record(status)
        return status

    def maybe_check(self, now: float) -> HealthStatus | None:
        if not self.due(now):
            return None
        return self.check(now)

    def _probe_worker(self, now: float) -> None:
        status = self._run_probe(now)
        with self._lock:
            self._finished = status

    def maybe_check_background(self, now: float) -> HealthStatus | None:
        """Collect a finished probe, or start one if due and none is running.

        Returns the status of a probe completed since the previous call.
        """
        with self._lock:
            finished, self._finished = self._finished, None
        if finished is not None:
            self._worker = None
            self._record(finished)
            return finished
        if self._worker is None and self.due(now):
            self._last_check = now
            self._worker = threading.Thread(target=self._probe_worker,
                                            args=(now,), name="pvtrend-health",
                                            daemon=True)
            self._worker.start()
        return None
