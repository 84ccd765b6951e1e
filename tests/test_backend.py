"""Test archiver JSON parsing and the HTTP backend against a local stub server.

    python3 tests/test_backend.py
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "python"))

import json
import threading
import time
import urllib.parse
from http.server import BaseHTTPRequestHandler, HTTPServer

from pvtrend.backend import (
    ArchiverBackend, FetchOptions, SimulatedBackend, metadata_from_archiver,
    select_operator, series_from_archiver,
)
from pvtrend.errors import FetchError, MetadataUnavailable

DAY = 86_400_000

SAMPLES = [
    {"secs": 1700000002, "nanos": 0, "val": 2.5, "severity": 0, "status": 0},
    {"secs": 1700000000, "nanos": 500000000, "val": 1.5, "severity": 1, "status": 3},
    {"secs": 1700000003, "nanos": 0, "val": "DISCONNECTED"},
    {"secs": 1700000004, "nanos": 0, "val": [7.0, 8.0]},
]


class _ArchiverStub(BaseHTTPRequestHandler):
    requests = []

    def log_message(self, format, *args):
        pass

    def _reply(self, code, body):
        raw = body if isinstance(body, bytes) else json.dumps(body).encode()
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def do_GET(self):
        url = urllib.parse.urlparse(self.path)
        q = dict(urllib.parse.parse_qsl(url.query))
        _ArchiverStub.requests.append((url.path, q))
        if url.path.endswith("/data/getData.json"):
            pv = q["pv"]
            if "BROKEN" in pv:
                self._reply(500, {"error": "boom"})
            elif "GARBAGE" in pv:
                self._reply(200, b"<html>not json</html>")
            elif "EMPTY" in pv:
                self._reply(200, [])
            else:
                self._reply(200, [{
                    "meta": {"name": pv, "EGU": "degC", "PREC": "2",
                             "LOPR": "0", "HOPR": "50"},
                    "data": SAMPLES,
                }])
        elif url.path.endswith("/bpl/getMetadata"):
            if q["pv"] == "PV:UNKNOWN":
                self._reply(404, {})
            else:
                self._reply(200, {"EGU": "mA", "PREC": "3", "LOPR": "-5",
                                  "HOPR": "5", "DESC": "beam current"})
        else:
            self._reply(404, {})

    def do_POST(self):
        url = urllib.parse.urlparse(self.path)
        length = int(self.headers.get("Content-Length", 0))
        names = json.loads(self.rfile.read(length))
        _ArchiverStub.requests.append((url.path, names))
        self._reply(200, {n: {"secs": 1700000010, "nanos": 0, "val": 4.0}
                          for n in names})


def start_stub():
    server = HTTPServer(("127.0.0.1", 0), _ArchiverStub)
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    host, port = server.server_address
    return server, f"http://{host}:{port}/retrieval"


def test_select_operator():
    print("test_select_operator...", end="")

    assert select_operator(0, DAY - 1) is None
    assert select_operator(0, DAY) == "optimized_2000"
    assert select_operator(0, 7 * DAY) == "optimized_3000"
    assert select_operator(0, 30 * DAY) == "optimized_4000"

    print(" OK")


def test_metadata_from_archiver():
    print("test_metadata_from_archiver...", end="")

    md = metadata_from_archiver({"EGU": "mm", "PREC": "4", "LOPR": "-1.5",
                                 "HOPR": "2", "DESC": "gap"})
    assert md.egu == "mm"
    assert md.precision == 4
    assert md.display_limits == (-1.5, 2.0)
    assert md.description == "gap"

    md = metadata_from_archiver({"EGU": "", "LOPR": "x", "HOPR": "2"})
    assert md.egu == ""
    assert md.display_limits is None
    assert md.precision is None

    md = metadata_from_archiver({"LOPR": "3", "HOPR": "3"})
    assert md.display_limits is None

    print(" OK")


def test_series_from_archiver():
    print("test_series_from_archiver...", end="")

    s = series_from_archiver("PV:T", {"meta": {"EGU": "degC"}, "data": SAMPLES})
    assert s.metadata.egu == "degC"
    assert [p.timestamp for p in s.points] == [1700000000500.0, 1700000002000.0,
                                               1700000004000.0]
    assert [p.value for p in s.points] == [1.5, 2.5, 7.0]
    assert (s.points[0].severity, s.points[0].status) == (1, 3)

    binned = series_from_archiver("PV:T", {"data": [
        {"secs": 10, "val": {"mean": 2.0, "min": 1.0, "max": 4.0,
                             "stddev": 0.5, "count": 12}},
    ]})
    assert binned.metadata is None
    p = binned.points[0]
    assert (p.value, p.min, p.max, p.stddev, p.count) == (2.0, 1.0, 4.0, 0.5, 12)

    # duplicate timestamps collapse to one point
    dup = series_from_archiver("PV:T", {"data": [
        {"secs": 1, "val": 1.0}, {"secs": 1, "val": 2.0}]})
    assert len(dup.points) == 1

    print(" OK")


def test_archiver_fetch_historical():
    print("test_archiver_fetch_historical...", end="")

    server, url = start_stub()
    try:
        _ArchiverStub.requests.clear()
        backend = ArchiverBackend(url, timeout=5.0)
        start = 1_700_000_000_000.0
        [series] = backend.fetch_historical(["PV:T"], start, start + 60_000)
        assert series.name == "PV:T"
        assert series.metadata.egu == "degC"
        assert series.metadata.display_limits == (0.0, 50.0)
        assert len(series.points) == 3

        path, q = _ArchiverStub.requests[-1]
        assert path == "/retrieval/data/getData.json"
        assert q["pv"] == "PV:T"
        assert q["from"] == "2023-11-14T22:13:20.000Z"
        assert q["fetchLatestMetadata"] == "true"

        backend.fetch_historical(["PV:T"], start, start + 2 * DAY)
        assert _ArchiverStub.requests[-1][1]["pv"] == "optimized_2000(PV:T)"

        backend.fetch_historical(["PV:T"], start, start + 60_000,
                                 FetchOptions(operator="mean_60"))
        assert _ArchiverStub.requests[-1][1]["pv"] == "mean_60(PV:T)"

        [empty] = backend.fetch_historical(["PV:EMPTY"], start, start + 1000)
        assert empty.points == [] and empty.metadata is None
    finally:
        server.shutdown()
        server.server_close()

    print(" OK")


def test_archiver_errors():
    print("test_archiver_errors...", end="")

    server, url = start_stub()
    try:
        backend = ArchiverBackend(url, timeout=5.0, probe_pv="PV:T")
        for pv, message in (("PV:BROKEN", "server returned 500"),
                            ("PV:GARBAGE", "failed to parse JSON")):
            try:
                backend.fetch_historical([pv], 0, 1000)
                assert False, f"expected FetchError for {pv}"
            except FetchError as e:
                assert message in str(e), str(e)
        try:
            backend.fetch_historical(["PV:T"], 1000, 1000)
            assert False, "expected FetchError for empty range"
        except FetchError:
            pass
        try:
            backend.fetch_metadata("PV:UNKNOWN")
            assert False, "expected MetadataUnavailable"
        except MetadataUnavailable as e:
            assert e.pv == "PV:UNKNOWN"
        assert backend.test_connection()
    finally:
        server.shutdown()
        server.server_close()

    # nothing listening any more
    assert not backend.test_connection()
    try:
        backend.fetch_latest(["PV:T"])
        assert False, "expected FetchError"
    except FetchError as e:
        assert "connection error" in str(e)

    print(" OK")


def test_archiver_metadata_and_latest():
    print("test_archiver_metadata_and_latest...", end="")

    server, url = start_stub()
    try:
        backend = ArchiverBackend(url, timeout=5.0)
        md = backend.fetch_metadata("PV:I")
        assert md.egu == "mA"
        assert md.display_limits == (-5.0, 5.0)
        assert md.precision == 3
        assert md.description == "beam current"

        latest = backend.fetch_latest(["PV:A", "PV:B"])
        assert sorted(latest) == ["PV:A", "PV:B"]
        assert latest["PV:A"].val == 4.0
        assert latest["PV:A"].timestamp_ms == 1700000010000.0
        path, body = _ArchiverStub.requests[-1]
        assert path == "/retrieval/data/getDataAtTime"
        assert body == ["PV:A", "PV:B"]
    finally:
        server.shutdown()
        server.server_close()

    print(" OK")


def test_archiver_subscription():
    print("test_archiver_subscription...", end="")

    server, url = start_stub()
    try:
        backend = ArchiverBackend(url, timeout=5.0)
        sub = backend.subscribe_live(["PV:A"], 1000)
        deadline = time.monotonic() + 5
        batches = []
        while not batches and time.monotonic() < deadline:
            batches = sub.drain()
            time.sleep(0.05)
        sub.cancel()
        assert batches
        assert batches[0]["PV:A"].val == 4.0
        assert sub.closed and sub.error is None
    finally:
        server.shutdown()
        server.server_close()

    print(" OK")


def test_simulated_backend():
    print("test_simulated_backend...", end="")

    now = [1_000_000.0]
    sim = SimulatedBackend(units={"SIM:T": "degC"}, period_ms=1000,
                           clock=lambda: now[0])
    [s] = sim.fetch_historical(["SIM:T"], 990_500.0, 1_000_000.0)
    assert [p.timestamp for p in s.points] == [float(t) for t in range(991_000, 1_000_001, 1000)]
    assert s.metadata.egu == "degC"
    assert all(-10.0 <= p.value <= 10.0 for p in s.points)
    assert sim.fetch_metadata("SIM:X").egu == "V"

    latest = sim.fetch_latest(["SIM:T"])
    assert latest["SIM:T"].timestamp_ms == 1_000_000.0

    sim.connected = False
    assert not sim.test_connection()
    try:
        sim.fetch_historical(["SIM:T"], 0, 1000)
        assert False, "expected FetchError"
    except FetchError:
        pass

    print(" OK")


if __name__ == "__main__":
    print("pvtrend backend tests")
    print("=====================\n")

    test_select_operator()
    test_metadata_from_archiver()
    test_series_from_archiver()
    test_archiver_fetch_historical()
    test_archiver_errors()
    test_archiver_metadata_and_latest()
    test_archiver_subscription()
    test_simulated_backend()

    print("\nAll tests passed.")
