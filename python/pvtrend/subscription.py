"""Cancellable live subscription with an ordered, bounded batch queue.

A subscription delivers ticks as ``{pv_name: PointValue}`` batches.  Batches
come out of :meth:`drain` in the order they were produced.  When the
consumer falls behind and the queue is full, the newest tick is dropped and
counted rather than blocking the producer.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Mapping

from .config import MAX_PENDING_BATCHES
from .model import PointValue

logger = logging.getLogger(__name__)

Batch = Mapping[str, PointValue]


class Subscription:
    """Base channel: bounded FIFO of batches plus an error slot."""

    def __init__(self, pv_names: list[str], interval_ms: int, *,
                 max_pending: int = MAX_PENDING_BATCHES) -> None:
        self.pv_names = list(pv_names)
        self.interval_ms = interval_ms
        self._queue: queue.Queue[Batch] = queue.Queue(maxsize=max_pending)
        self._closed = threading.Event()
        self._error: str | None = None
        self._dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def error(self) -> str | None:
        """Description of a channel failure, or None while healthy."""
        return self._error

    @property
    def dropped_count(self) -> int:
        """Ticks discarded because the consumer was still busy."""
        return self._dropped

    def publish(self, batch: Batch) -> bool:
        """Enqueue a tick.  Returns False if it was dropped."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(batch)
        except queue.Full:
            self._dropped += 1
            logger.warning("live tick dropped: %d batches still pending",
                           self._queue.qsize())
            return False
        return True

    def fail(self, message: str) -> None:
        self._error = message
        self._closed.set()

    def drain(self) -> list[Batch]:
        """Return all pending batches, oldest first."""
        if self.closed and self._error is None:
            return []
        batches = []
        while True:
            try:
                batches.append(self._queue.get_nowait())
            except queue.Empty:
                return batches

    def cancel(self) -> None:
        """Stop delivery.  No batch is returned by drain() afterwards."""
        self._closed.set()
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break


class PollingSubscription(Subscription):
    """Emulates a push channel by polling a latest-value fetcher.

    A daemon thread calls *fetch_latest* every ``interval_ms`` and publishes
    the result.  The first failure closes the channel and records the error.
    """

    def __init__(self, fetch_latest: Callable[[list[str]], Batch],
                 pv_names: list[str], interval_ms: int, *,
                 max_pending: int = MAX_PENDING_BATCHES) -> None:
        super().__init__(pv_names, interval_ms, max_pending=max_pending)
        self._fetch_latest = fetch_latest
        self._thread = threading.Thread(target=self._run, daemon=True,
                                        name="pvtrend-live")

    def start(self) -> PollingSubscription:
        self._thread.start()
        return self

    def _run(self) -> None:
        period = self.interval_ms / 1000.0
        while not self._closed.is_set():
            try:
                batch = self._fetch_latest(self.pv_names)
            except Exception as e:
                logger.exception("live fetch failed")
                self.fail(f"live update failed: {e}")
                return
            if batch:
                self.publish(batch)
            self._closed.wait(period)

    def cancel(self) -> None:
        super().cancel()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=5.0)
