"""
API routes.

Endpoints:
- POST   `/api/search`: ranked proximity search with cursor pagination.
- PUT    `/api/records/{record_id}`: record-store notification (create/move).
- DELETE `/api/records/{record_id}`: record-store notification (delete).
- GET    `/api/records/{record_id}`: indexed copy of a record (`?fresh=true` reloads first).
- POST   `/api/index/rebuild`: full rebuild from a posted snapshot or the configured file.
- GET    `/api/index/stats`: index size and version.
- GET    `/api/distance`: great-circle distance/bearing between two points.
- GET    `/health`
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Body, HTTPException
from pydantic import BaseModel, ValidationError, field_validator

from proxisearch.config.settings import get_settings
from proxisearch.core.cancellation import CancellationToken
from proxisearch.core.env import resolve_project_path
from proxisearch.core.errors import Cancelled, InvalidCoordinate, InvalidQuery, RecordLoadError
from proxisearch.core.geo import initial_bearing_deg
from proxisearch.core.validation import validate_coordinate
from proxisearch.domain.models import Coordinate, GeoRecord, RecordKind, SearchQuery, SearchResult
from proxisearch.records.loader import load_records, parse_records
from proxisearch.search.cursor import decode_cursor, encode_cursor
from proxisearch.search.engine import ProximityEngine

logger = logging.getLogger(__name__)

router = APIRouter()


class SearchRequest(BaseModel):
    """Wire shape of a search: like SearchQuery but with an opaque cursor token."""

    origin: Coordinate
    radius_km: float | None = None
    kind: RecordKind | None = None
    limit: int | None = None
    cursor: str | None = None
    fresh: bool = False

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper() or None
        return value


class SearchResponse(BaseModel):
    results: list[SearchResult]
    next_cursor: str | None = None
    meta: dict[str, Any]


def _error(status_code: int, code: str, exc: Exception) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": str(exc)})


@lru_cache
def _engine() -> ProximityEngine:
    """Build the process-wide engine and load the configured snapshot (cold start)."""
    settings = get_settings()
    snapshot_path = settings.records.snapshot_path
    if not snapshot_path:
        return ProximityEngine(settings)

    def source() -> list[GeoRecord]:
        return load_records(snapshot_path, skip_invalid_coordinates=settings.records.skip_invalid_coordinates)

    engine = ProximityEngine(settings, record_source=source)
    if resolve_project_path(snapshot_path).is_file():
        engine.refresh()
    else:
        logger.warning("Record snapshot %s not found; starting with an empty index", snapshot_path)
    return engine


@router.get("/health")
def get_health() -> dict:
    stats = _engine().index.stats()
    return {"status": "ok", "index_version": stats["version"], "records": stats["records"]}


@router.post("/api/search", response_model=SearchResponse)
def post_search(request: SearchRequest) -> SearchResponse:
    """Run a proximity search and return one page of ranked results."""
    engine = _engine()
    settings = engine.settings
    # Callers must not get substitute results when location services are off.
    if not settings.capabilities.location_services:
        raise HTTPException(
            status_code=503,
            detail={"code": "LOCATION_UNAVAILABLE", "message": "location services are disabled"},
        )

    try:
        cursor = decode_cursor(request.cursor) if request.cursor is not None else None
        query = SearchQuery(
            origin=request.origin,
            radius_km=request.radius_km,
            kind=request.kind,
            limit=request.limit,
            cursor=cursor,
            fresh=request.fresh,
        )
        cancel = CancellationToken(timeout_s=settings.search.request_timeout_seconds)
        page = engine.search_page(query, cancel=cancel)
    except InvalidQuery as e:
        raise _error(400, "VALIDATION_ERROR", e) from e
    except Cancelled as e:
        raise _error(408, "SEARCH_CANCELLED", e) from e
    except RecordLoadError as e:
        raise _error(503, "SNAPSHOT_UNAVAILABLE", e) from e

    return SearchResponse(
        results=page.results,
        next_cursor=encode_cursor(page.next_cursor) if page.next_cursor is not None else None,
        meta={**page.meta, "index_version": page.index_version},
    )


@router.get("/api/records/{record_id}", response_model=GeoRecord)
def get_record(record_id: str, fresh: bool = False) -> GeoRecord:
    """Return the indexed copy of a record; `fresh=true` reloads the snapshot first."""
    engine = _engine()
    if fresh:
        try:
            engine.refresh()
        except RecordLoadError as e:
            raise _error(503, "SNAPSHOT_UNAVAILABLE", e) from e
        except RuntimeError as e:
            raise _error(409, "NO_RECORD_SOURCE", e) from e
    record = engine.get_record(record_id)
    if record is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "NOT_INDEXED", "message": f"record {record_id!r} is not in the current index snapshot"},
        )
    return record


@router.put("/api/records/{record_id}")
def put_record(record_id: str, payload: dict[str, Any] = Body(...)) -> dict:
    """Apply a create/update notification from the record store."""
    engine = _engine()
    try:
        record = GeoRecord.model_validate({**payload, "id": record_id})
        indexed = engine.index_update(record)
    except (ValidationError, InvalidCoordinate) as e:
        raise _error(400, "VALIDATION_ERROR", e) from e
    return {"id": record_id, "indexed": indexed, "index_version": engine.index.snapshot.version}


@router.delete("/api/records/{record_id}")
def delete_record(record_id: str) -> dict:
    """Apply a delete notification from the record store."""
    engine = _engine()
    removed = engine.index_remove(record_id)
    return {"id": record_id, "removed": removed, "index_version": engine.index.snapshot.version}


@router.post("/api/index/rebuild")
def post_index_rebuild(records: list[dict[str, Any]] | None = Body(default=None)) -> dict:
    """Rebuild the index from the posted snapshot, or from the configured file when empty."""
    engine = _engine()
    settings = engine.settings
    try:
        if records is None:
            engine.refresh()
        else:
            parsed = parse_records(records, skip_invalid_coordinates=settings.records.skip_invalid_coordinates)
            engine.rebuild_snapshot(parsed)
    except RecordLoadError as e:
        raise _error(400 if records is not None else 503, "SNAPSHOT_INVALID", e) from e
    except RuntimeError as e:
        raise _error(409, "NO_RECORD_SOURCE", e) from e
    return engine.index.stats()


@router.get("/api/index/stats")
def get_index_stats() -> dict:
    return _engine().index.stats()


@router.get("/api/distance")
def get_distance(from_lat: float, from_lon: float, to_lat: float, to_lon: float) -> dict:
    """Great-circle distance (km) and initial bearing between two coordinates."""
    try:
        a = validate_coordinate(from_lat, from_lon)
        b = validate_coordinate(to_lat, to_lon)
    except InvalidCoordinate as e:
        raise _error(400, "VALIDATION_ERROR", e) from e
    return {
        "distance_km": _engine().distance_km(a, b),
        "bearing_deg": initial_bearing_deg(a, b),
    }
