"""
Record snapshot loader.

The record store hands us a full snapshot as a local JSON file (default:
`data/records.json`): either a list of records or `{"records": [...]}`. Each record
may carry a nested `coordinate` object or flat `latitude`/`longitude` fields; both
absent means "no location".

Records whose coordinates fail validation are kept without a location (and logged)
when `skip_invalid_coordinates` is on, so a single bad fix never hides the rest of
the snapshot.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from proxisearch.core.env import resolve_project_path
from proxisearch.core.errors import RecordLoadError
from proxisearch.domain.models import GeoRecord

logger = logging.getLogger(__name__)

_COORDINATE_KEYS = ("coordinate", "latitude", "longitude")


def _is_coordinate_error(exc: ValidationError) -> bool:
    for err in exc.errors():
        loc = err.get("loc") or ()
        # Errors from the flat-field lifting validator carry an empty location.
        if not loc or loc[0] == "coordinate":
            continue
        return False
    return True


def parse_records(payload: Any, *, skip_invalid_coordinates: bool = True) -> list[GeoRecord]:
    """Validate a decoded snapshot payload into GeoRecords."""
    if isinstance(payload, dict):
        payload = payload.get("records")
    if not isinstance(payload, list):
        raise RecordLoadError("snapshot must be a list of records or {'records': [...]}")

    out: list[GeoRecord] = []
    for i, raw in enumerate(payload):
        if not isinstance(raw, dict):
            raise RecordLoadError(f"record #{i} is not an object")
        try:
            out.append(GeoRecord.model_validate(raw))
            continue
        except ValidationError as exc:
            if not (skip_invalid_coordinates and _is_coordinate_error(exc)):
                raise RecordLoadError(f"record #{i} ({raw.get('id')!r}) is invalid: {exc}") from exc
            logger.warning("Record %r has an invalid coordinate; loading it without a location", raw.get("id"))

        stripped = {k: v for k, v in raw.items() if k not in _COORDINATE_KEYS}
        try:
            out.append(GeoRecord.model_validate(stripped))
        except ValidationError as exc:
            raise RecordLoadError(f"record #{i} ({raw.get('id')!r}) is invalid: {exc}") from exc
    return out


def load_records(path: str | Path, *, skip_invalid_coordinates: bool = True) -> list[GeoRecord]:
    """Load and validate a record snapshot JSON file."""
    resolved = resolve_project_path(path)
    try:
        payload = json.loads(resolved.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise RecordLoadError(f"snapshot not found: {resolved}") from exc
    except json.JSONDecodeError as exc:
        raise RecordLoadError(f"snapshot is not valid JSON: {resolved}: {exc}") from exc
    records = parse_records(payload, skip_invalid_coordinates=skip_invalid_coordinates)
    logger.info("Loaded %d records from %s", len(records), resolved)
    return records
