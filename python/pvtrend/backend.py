"""Backend adapters: historical fetch, metadata, connection probe, live feed.

The engine never talks to an archiver directly; everything goes through an
object satisfying :class:`Backend` so the controller can work with arbitrary
sources (a real EPICS Archiver Appliance, a simulator, a test double).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

import requests
from requests.exceptions import HTTPError, RequestException

from .config import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_S, MAX_PENDING_BATCHES
from .errors import FetchError, MalformedPoint, MetadataUnavailable
from .model import HistoricalSeries, PointValue, PVMetadata, point_from_value
from .subscription import PollingSubscription, Subscription

logger = logging.getLogger(__name__)

DAY_MS = 86_400_000

_HEADERS = {"Accept": "application/json"}


@dataclass
class FetchOptions:
    operator: str | None = None  # e.g. "mean_60"; None selects by range
    fetch_latest_metadata: bool = True


class Backend(Protocol):
    """Abstract backend interface."""

    def fetch_historical(self, pv_names: list[str], start_ms: float,
                         end_ms: float,
                         options: FetchOptions | None = None) -> list[HistoricalSeries]: ...
    def fetch_metadata(self, pv_name: str) -> PVMetadata: ...
    def test_connection(self) -> bool: ...
    def subscribe_live(self, pv_names: list[str],
                       interval_ms: int) -> Subscription: ...


def select_operator(start_ms: float, end_ms: float) -> str | None:
    """Archiver post-processor for a time span; None means raw data."""
    span = end_ms - start_ms
    if span < DAY_MS:
        return None
    if span < 7 * DAY_MS:
        return "optimized_2000"
    if span < 30 * DAY_MS:
        return "optimized_3000"
    return "optimized_4000"


def _float_or_none(v: Any) -> float | None:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def metadata_from_archiver(meta: dict[str, Any]) -> PVMetadata:
    """Build PVMetadata from an archiver metadata map (all values strings)."""
    precision = _float_or_none(meta.get("PREC", meta.get("precision")))
    return PVMetadata(
        egu=str(meta.get("EGU", meta.get("egu", "")) or ""),
        display_low=_float_or_none(meta.get("LOPR", meta.get("display_low"))),
        display_high=_float_or_none(meta.get("HOPR", meta.get("display_high"))),
        precision=int(precision) if precision is not None else None,
        description=meta.get("DESC", meta.get("description")),
    )


def series_from_archiver(name: str, payload: dict[str, Any]) -> HistoricalSeries:
    """Convert one ``{"meta": ..., "data": [...]}`` block of getData.json."""
    meta_raw = payload.get("meta") or {}
    metadata = metadata_from_archiver(meta_raw) if meta_raw else None
    points = []
    skipped = 0
    for raw in payload.get("data") or []:
        try:
            points.append(point_from_value(PointValue.from_dict(raw)))
        except (MalformedPoint, KeyError, TypeError, ValueError):
            skipped += 1
    if skipped:
        logger.debug("%s: skipped %d non-numeric samples", name, skipped)
    points.sort(key=lambda p: p.timestamp)
    deduped = []
    for p in points:
        if deduped and deduped[-1].timestamp == p.timestamp:
            deduped[-1] = p
        else:
            deduped.append(p)
    return HistoricalSeries(name=name, metadata=metadata, points=deduped)


def _iso(ms: float) -> str:
    dt = datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ArchiverBackend:
    """EPICS Archiver Appliance over its JSON retrieval API."""

    PROBE_PV = "ROOM:LI30:1:OUTSIDE_TEMP"
    PROBE_SPAN_MS = 300_000

    def __init__(self, base_url: str = DEFAULT_BASE_URL,
                 timeout: float = DEFAULT_TIMEOUT_S, *,
                 probe_pv: str = PROBE_PV,
                 max_pending: int = MAX_PENDING_BATCHES) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.probe_pv = probe_pv
        self.max_pending = max_pending

    def _get_json(self, path: str, params: dict[str, str],
                  body: Any = None) -> Any:
        url = f"{self.base_url}/{path}"
        try:
            if body is None:
                resp = requests.get(url, params=params, headers=_HEADERS,
                                    timeout=self.timeout)
            else:
                resp = requests.post(url, params=params, json=body,
                                     headers=_HEADERS, timeout=self.timeout)
            resp.raise_for_status()
        except HTTPError as e:
            raise FetchError(f"server returned {e.response.status_code} for {url}") from e
        except RequestException as e:
            raise FetchError(f"connection error for {url}: {e}") from e
        try:
            return resp.json()
        except ValueError as e:
            raise FetchError(f"failed to parse JSON from {url}: {e}") from e

    def fetch_historical(self, pv_names: list[str], start_ms: float,
                         end_ms: float,
                         options: FetchOptions | None = None) -> list[HistoricalSeries]:
        if end_ms <= start_ms:
            raise FetchError("invalid time range specified")
        options = options or FetchOptions()
        operator = options.operator or select_operator(start_ms, end_ms)
        results = []
        for name in pv_names:
            query_pv = f"{operator}({name})" if operator else name
            body = self._get_json("data/getData.json", {
                "pv": query_pv,
                "from": _iso(start_ms),
                "to": _iso(end_ms),
                "fetchLatestMetadata": "true" if options.fetch_latest_metadata else "false",
            })
            if not isinstance(body, list):
                raise FetchError(f"unexpected response for {name}", pv=name)
            if not body:
                results.append(HistoricalSeries(name=name, metadata=None, points=[]))
                continue
            results.append(series_from_archiver(name, body[0]))
        return results

    def fetch_metadata(self, pv_name: str) -> PVMetadata:
        try:
            body = self._get_json("bpl/getMetadata", {"pv": pv_name})
        except FetchError as e:
            raise MetadataUnavailable(pv_name, str(e)) from e
        if not isinstance(body, dict) or not body:
            raise MetadataUnavailable(pv_name, "empty metadata")
        return metadata_from_archiver(body)

    def fetch_latest(self, pv_names: list[str]) -> dict[str, PointValue]:
        body = self._get_json("data/getDataAtTime", {
            "at": _iso(datetime.now(timezone.utc).timestamp() * 1000),
            "includeProxies": "true",
        }, body=list(pv_names))
        if not isinstance(body, dict):
            raise FetchError("unexpected getDataAtTime response")
        latest = {}
        for name, raw in body.items():
            try:
                latest[name] = PointValue.from_dict(raw)
            except (KeyError, TypeError, ValueError):
                logger.debug("%s: unusable latest sample %r", name, raw)
        return latest

    def test_connection(self) -> bool:
        end = datetime.now(timezone.utc).timestamp() * 1000
        try:
            self.fetch_historical([self.probe_pv], end - self.PROBE_SPAN_MS, end,
                                  FetchOptions(fetch_latest_metadata=False))
        except FetchError as e:
            logger.warning("connection test failed: %s", e)
            return False
        return True

    def subscribe_live(self, pv_names: list[str],
                       interval_ms: int) -> Subscription:
        return PollingSubscription(self.fetch_latest, pv_names, interval_ms,
                                   max_pending=self.max_pending).start()


class SimulatedBackend:
    """Deterministic in-process source for demos and offline use.

    Every PV is a sine wave sampled every ``period_ms``; its unit comes from
    *units* (default ``"V"``).  The simulated clock is wall time unless a
    *clock* callable (ms) is given.
    """

    def __init__(self, units: dict[str, str] | None = None,
                 period_ms: int = 1000, clock=None,
                 max_pending: int = MAX_PENDING_BATCHES) -> None:
        self.units = dict(units or {})
        self.period_ms = period_ms
        self.max_pending = max_pending
        self.connected = True
        self._clock = clock or (lambda: datetime.now(timezone.utc).timestamp() * 1000)

    def _value(self, name: str, ts_ms: float) -> float:
        phase = sum(name.encode()) % 360
        return 10.0 * math.sin(math.radians(phase) + ts_ms / 10_000.0)

    def _sample(self, name: str, ts_ms: float) -> PointValue:
        secs = int(ts_ms // 1000)
        nanos = int(round((ts_ms - secs * 1000) * 1_000_000))
        return PointValue(secs=secs, nanos=nanos, val=self._value(name, ts_ms))

    def fetch_historical(self, pv_names: list[str], start_ms: float,
                         end_ms: float,
                         options: FetchOptions | None = None) -> list[HistoricalSeries]:
        if not self.connected:
            raise FetchError("connection error")
        first = math.ceil(start_ms / self.period_ms) * self.period_ms
        results = []
        for name in pv_names:
            points = []
            ts = first
            while ts <= end_ms:
                points.append(point_from_value(self._sample(name, ts)))
                ts += self.period_ms
            results.append(HistoricalSeries(name=name,
                                            metadata=self.fetch_metadata(name),
                                            points=points))
        return results

    def fetch_metadata(self, pv_name: str) -> PVMetadata:
        if not self.connected:
            raise MetadataUnavailable(pv_name, "connection error")
        return PVMetadata(egu=self.units.get(pv_name, "V"),
                          display_low=-10.0, display_high=10.0, precision=3)

    def fetch_latest(self, pv_names: list[str]) -> dict[str, PointValue]:
        if not self.connected:
            raise FetchError("connection error")
        now = self._clock()
        ts = math.floor(now / self.period_ms) * self.period_ms
        return {name: self._sample(name, ts) for name in pv_names}

    def test_connection(self) -> bool:
        return self.connected

    def subscribe_live(self, pv_names: list[str],
                       interval_ms: int) -> Subscription:
        return PollingSubscription(self.fetch_latest, pv_names, interval_ms,
                                   max_pending=self.max_pending).start()
