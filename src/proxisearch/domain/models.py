"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- store-owned records (`GeoRecord`) that the index holds read-only copies of,
- search inputs (`SearchQuery`, `SearchCursor`),
- ranked output (`SearchResult`, `SearchPage`).

`Coordinate` itself carries no range constraints: range checks live in
`proxisearch.core.validation` so the engine can report a bad query origin as
`InvalidQuery` instead of a schema error. Records are validated on construction.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from proxisearch.core.accuracy import AccuracyTier
from proxisearch.core.geo import GeoPoint
from proxisearch.core.time import parse_timestamp
from proxisearch.core.validation import coordinate_or_absent, validate_coordinate


class RecordKind(str, Enum):
    USER = "USER"
    ITEM = "ITEM"


class Coordinate(BaseModel):
    """A latitude/longitude pair in decimal degrees."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float

    def to_point(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lon=self.lon)

    @classmethod
    def from_point(cls, point: GeoPoint) -> "Coordinate":
        return cls(lat=point.lat, lon=point.lon)


class GeoRecord(BaseModel):
    """A geotagged user or item as supplied by the record store.

    `coordinate=None` means the record has no location; it is never indexed.
    `updated_at=None` means the store did not say when the record last changed.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    kind: RecordKind
    coordinate: Coordinate | None = None
    updated_at: datetime | None = None
    accuracy_m: float | None = Field(default=None, ge=0, allow_inf_nan=False)

    @model_validator(mode="before")
    @classmethod
    def _lift_flat_coordinates(cls, data: Any) -> Any:
        # Stores commonly expose `latitude`/`longitude` columns instead of a nested object.
        if not isinstance(data, dict) or "coordinate" in data:
            return data
        if "latitude" not in data and "longitude" not in data:
            return data
        data = dict(data)
        lat = data.pop("latitude", None)
        lon = data.pop("longitude", None)
        point = coordinate_or_absent(lat, lon)
        data["coordinate"] = Coordinate.from_point(point) if point is not None else None
        return data

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("updated_at", mode="before")
    @classmethod
    def _parse_updated_at(cls, value: Any) -> Any:
        if value is None:
            return None
        return parse_timestamp(value)

    def is_newer_than(self, other: "GeoRecord") -> bool:
        """True only when both versions carry a timestamp and this one is later."""
        if self.updated_at is None or other.updated_at is None:
            return False
        return self.updated_at > other.updated_at

    @field_validator("coordinate")
    @classmethod
    def _validate_coordinate(cls, value: Coordinate | None) -> Coordinate | None:
        if value is None:
            return None
        point = validate_coordinate(value.lat, value.lon)
        return Coordinate.from_point(point)

    def point(self) -> GeoPoint | None:
        return self.coordinate.to_point() if self.coordinate is not None else None


class SearchCursor(BaseModel):
    """Continuation key: the sort key of the last result the caller has seen."""

    model_config = ConfigDict(frozen=True)

    distance_km: float
    record_id: str

    def sort_key(self) -> tuple[float, str]:
        return (self.distance_km, self.record_id)


class SearchQuery(BaseModel):
    """One proximity search request.

    `radius_km` and `limit` fall back to configured defaults when omitted.
    """

    origin: Coordinate
    radius_km: float | None = None
    kind: RecordKind | None = None
    limit: int | None = None
    cursor: SearchCursor | None = None
    fresh: bool = False

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper() or None
        return value


class SearchResult(BaseModel):
    record: GeoRecord
    distance_km: float
    bearing_deg: float
    accuracy_tier: AccuracyTier | None = None

    def sort_key(self) -> tuple[float, str]:
        return (self.distance_km, self.record.id)

    def cursor(self) -> SearchCursor:
        return SearchCursor(distance_km=self.distance_km, record_id=self.record.id)


class SearchPage(BaseModel):
    """One page of ranked results plus the cursor for the next page (if any)."""

    results: list[SearchResult]
    next_cursor: SearchCursor | None = None
    index_version: int
    meta: dict[str, Any] = Field(default_factory=dict)
