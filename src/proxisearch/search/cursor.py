"""
Opaque pagination cursors.

A cursor's meaning is the sort key of the last result a caller has seen
(distance, record id). Transports hand it around as a URL-safe token so clients
treat it as opaque; JSON keeps the float distance exact across the round trip.
"""

from __future__ import annotations

import base64
import binascii
import json
import math

from proxisearch.core.errors import InvalidQuery
from proxisearch.domain.models import SearchCursor


def encode_cursor(cursor: SearchCursor) -> str:
    payload = json.dumps({"d": cursor.distance_km, "id": cursor.record_id}, separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(token: str) -> SearchCursor:
    """Decode a token produced by `encode_cursor`.

    Raises:
        InvalidQuery: if the token is not a well-formed cursor.
    """
    text = (token or "").strip()
    if not text:
        raise InvalidQuery("cursor is empty", field="cursor")
    padded = text + "=" * (-len(text) % 4)
    try:
        raw = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        raise InvalidQuery("cursor is malformed", field="cursor") from None

    if not isinstance(raw, dict):
        raise InvalidQuery("cursor is malformed", field="cursor")
    distance = raw.get("d")
    record_id = raw.get("id")
    if isinstance(distance, bool) or not isinstance(distance, (int, float)) or not isinstance(record_id, str):
        raise InvalidQuery("cursor is malformed", field="cursor")
    if not math.isfinite(distance) or distance < 0:
        raise InvalidQuery("cursor distance must be a finite non-negative number", field="cursor")
    return SearchCursor(distance_km=float(distance), record_id=record_id)
