"""Test the live subscription channel and the health monitor.

    python3 tests/test_subscription.py
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "python"))

import threading
import time

from pvtrend.health import HealthMonitor
from pvtrend.model import PointValue
from pvtrend.subscription import PollingSubscription, Subscription


def _batch(i):
    return {"PV:A": PointValue(secs=i, val=float(i))}


def test_fifo_order():
    print("test_fifo_order...", end="")

    sub = Subscription(["PV:A"], 1000, max_pending=8)
    for i in range(5):
        assert sub.publish(_batch(i))
    drained = sub.drain()
    assert [b["PV:A"].secs for b in drained] == [0, 1, 2, 3, 4]
    assert sub.drain() == []

    print(" OK")


def test_drop_when_full():
    print("test_drop_when_full...", end="")

    sub = Subscription(["PV:A"], 1000, max_pending=2)
    assert sub.publish(_batch(0))
    assert sub.publish(_batch(1))
    assert not sub.publish(_batch(2))
    assert sub.dropped_count == 1
    # the queued (older) ticks survive, the newest was dropped
    assert [b["PV:A"].secs for b in sub.drain()] == [0, 1]
    assert sub.publish(_batch(3))

    print(" OK")


def test_cancel_stops_delivery():
    print("test_cancel_stops_delivery...", end="")

    sub = Subscription(["PV:A"], 1000)
    sub.publish(_batch(0))
    sub.cancel()
    assert sub.closed
    assert sub.drain() == []
    assert not sub.publish(_batch(1))
    assert sub.dropped_count == 0

    print(" OK")


def test_fail_keeps_pending():
    print("test_fail_keeps_pending...", end="")

    sub = Subscription(["PV:A"], 1000)
    sub.publish(_batch(0))
    sub.fail("socket closed")
    assert sub.closed
    assert sub.error == "socket closed"
    assert len(sub.drain()) == 1

    print(" OK")


def test_polling_publishes():
    print("test_polling_publishes...", end="")

    calls = []

    def fetch_latest(names):
        calls.append(list(names))
        return {n: PointValue(secs=len(calls), val=1.0) for n in names}

    sub = PollingSubscription(fetch_latest, ["PV:A", "PV:B"], 1000).start()
    deadline = time.monotonic() + 5
    batches = []
    while not batches and time.monotonic() < deadline:
        batches = sub.drain()
        time.sleep(0.01)
    sub.cancel()

    assert batches
    assert sorted(batches[0]) == ["PV:A", "PV:B"]
    assert calls[0] == ["PV:A", "PV:B"]
    assert not any(t.name == "pvtrend-live" and t.is_alive()
                   for t in threading.enumerate())

    print(" OK")


def test_polling_failure_recorded():
    print("test_polling_failure_recorded...", end="")

    def fetch_latest(names):
        raise ConnectionResetError("reset by peer")

    sub = PollingSubscription(fetch_latest, ["PV:A"], 1000).start()
    deadline = time.monotonic() + 5
    while not sub.closed and time.monotonic() < deadline:
        time.sleep(0.01)
    assert sub.closed
    assert "reset by peer" in sub.error
    sub.cancel()

    print(" OK")


def test_health_monitor():
    print("test_health_monitor...", end="")

    results = [True, False, True]

    def probe():
        return results.pop(0)

    mon = HealthMonitor(probe, interval_ms=30_000, max_history=2)
    assert mon.connected
    assert mon.status is None
    assert mon.maybe_check(0).connected
    assert mon.maybe_check(29_999) is None
    status = mon.maybe_check(30_000)
    assert not status.connected
    assert status.error == "connection test failed"
    assert not mon.connected
    mon.check(31_000)
    assert mon.connected
    # bounded history
    assert [s.timestamp for s in mon.history()] == [30_000, 31_000]

    print(" OK")


def test_health_probe_in_background():
    print("test_health_probe_in_background...", end="")

    release = threading.Event()
    calls = []

    def probe():
        calls.append(1)
        release.wait(5)
        return False

    mon = HealthMonitor(probe, interval_ms=30_000)
    assert mon.maybe_check_background(0) is None
    assert mon.probing
    # still running: nothing to report and no second probe
    assert mon.maybe_check_background(40_000) is None
    assert mon.status is None

    release.set()
    deadline = time.monotonic() + 5
    status = None
    while status is None and time.monotonic() < deadline:
        time.sleep(0.01)
        status = mon.maybe_check_background(40_000)
    assert status is not None and not status.connected
    assert status.timestamp == 0
    assert not mon.probing
    assert mon.history() == [status]
    assert len(calls) == 1

    # the next probe is due a full interval after the last one started
    assert mon.maybe_check_background(29_999) is None
    assert not mon.probing

    print(" OK")


def test_health_probe_exception():
    print("test_health_probe_exception...", end="")

    def probe():
        raise OSError("network unreachable")

    mon = HealthMonitor(probe)
    status = mon.check(0)
    assert not status.connected
    assert status.error == "network unreachable"

    print(" OK")


if __name__ == "__main__":
    print("pvtrend subscription tests")
    print("==========================\n")

    test_fifo_order()
    test_drop_when_full()
    test_cancel_stops_delivery()
    test_fail_keeps_pending()
    test_polling_publishes()
    test_polling_failure_recorded()
    test_health_monitor()
    test_health_probe_in_background()
    test_health_probe_exception()

    print("\nAll tests passed.")
