"""Exceptions raised by pvtrend.

Every error carries a message suitable for a status bar; none is meant to
take the process down.
"""

from __future__ import annotations


class TrendError(Exception):
    """Base class for pvtrend errors."""


class FetchError(TrendError):
    """A historical or metadata fetch failed."""

    def __init__(self, message: str, pv: str | None = None) -> None:
        super().__init__(message)
        self.pv = pv


class MetadataUnavailable(TrendError):
    """No usable metadata for a PV.  Callers fall back to default unit/limits."""

    def __init__(self, pv: str, reason: str = "") -> None:
        msg = f"metadata unavailable for {pv}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
        self.pv = pv


class MalformedPoint(TrendError, ValueError):
    """A sample whose value cannot be plotted."""


class ConnectionLost(TrendError, ConnectionError):
    """The health probe reported the backend unreachable."""


class SubscriptionError(TrendError):
    """The live channel failed or could not be opened."""


class AxisError(TrendError, ValueError):
    """Invalid axis registry operation."""
