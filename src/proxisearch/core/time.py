"""
Timestamp parsing and timezone normalization.

Record timestamps arrive from the store as ISO-8601 strings or unix epochs. We
normalize everything to timezone-aware datetimes so comparisons never mix naive
and aware values.
"""

from __future__ import annotations

from datetime import datetime, timezone as dt_timezone
from zoneinfo import ZoneInfo


def ensure_tz(dt: datetime, timezone: str = "UTC") -> datetime:
    """Ensure `dt` has tzinfo; attach `timezone` if naive."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=ZoneInfo(timezone))
    return dt


def parse_timestamp(value: str | int | float | datetime, timezone: str = "UTC") -> datetime:
    """Parse an ISO-8601 string, unix epoch seconds, or datetime into an aware datetime.

    Notes:
    - Accepts a trailing `Z` (UTC) and converts it to `+00:00` for `fromisoformat`.
    - Naive values get `timezone` attached; epochs are always UTC.
    """
    if isinstance(value, datetime):
        return ensure_tz(value, timezone)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value), tz=dt_timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_tz(datetime.fromisoformat(text), timezone)
