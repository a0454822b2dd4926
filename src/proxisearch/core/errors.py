"""
Exception hierarchy for proximity search.

All errors raised by the engine inherit from `ProximitySearchError` so transports
can catch them in one place. Validation errors also subclass `ValueError`, which
the API layer maps to a 400 response.
"""

from __future__ import annotations


class ProximitySearchError(Exception):
    """Base exception for all proximity search errors."""


class InvalidCoordinate(ProximitySearchError, ValueError):
    """A latitude/longitude pair is missing, non-finite, or out of range.

    Attributes:
        lat: The latitude as received (may be None or non-numeric).
        lon: The longitude as received.
    """

    def __init__(self, message: str, *, lat: object = None, lon: object = None):
        super().__init__(message)
        self.lat = lat
        self.lon = lon


class InvalidQuery(ProximitySearchError, ValueError):
    """A search query cannot be executed as given.

    Attributes:
        field: Name of the offending query field, when known.
    """

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field

    def __str__(self) -> str:
        base = super().__str__()
        if self.field:
            return f"{base} (field={self.field})"
        return base


class Cancelled(ProximitySearchError):
    """The caller's deadline passed or cancellation was requested mid-scan."""


class IndexInconsistent(ProximitySearchError, RuntimeError):
    """The spatial index violated one of its internal invariants.

    This should never happen; it is surfaced for operator alerting and the engine
    heals it by rebuilding the snapshot.
    """

    def __init__(self, message: str, *, record_id: str | None = None):
        super().__init__(message)
        self.record_id = record_id


class RecordLoadError(ProximitySearchError):
    """A record snapshot file could not be read or parsed."""
