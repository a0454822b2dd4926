"""
Coordinate validation.

Every coordinate that enters the index or a query passes through here. `(0, 0)` is a
real place (Gulf of Guinea), so "no coordinate" is never inferred from zeros:
absence is an explicit `None` on both axes.
"""

from __future__ import annotations

import math
from numbers import Real

from proxisearch.core.errors import InvalidCoordinate
from proxisearch.core.geo import GeoPoint


def _as_float(value: object, *, axis: str, lat: object, lon: object) -> float:
    if value is None:
        raise InvalidCoordinate(f"{axis} is missing", lat=lat, lon=lon)
    # bool is a Real subclass; True/False are never coordinates.
    if isinstance(value, bool):
        raise InvalidCoordinate(f"{axis} must be a number, got bool", lat=lat, lon=lon)
    if isinstance(value, Real):
        out = float(value)
    elif isinstance(value, str):
        try:
            out = float(value.strip())
        except ValueError:
            raise InvalidCoordinate(f"{axis} is not numeric: {value!r}", lat=lat, lon=lon) from None
    else:
        raise InvalidCoordinate(f"{axis} must be a number, got {type(value).__name__}", lat=lat, lon=lon)
    if not math.isfinite(out):
        raise InvalidCoordinate(f"{axis} must be finite, got {out}", lat=lat, lon=lon)
    return out


def validate_coordinate(lat: object, lon: object) -> GeoPoint:
    """Validate and normalize a lat/lon pair.

    Raises:
        InvalidCoordinate: if either value is missing, non-numeric, non-finite, or
            outside [-90, 90] / [-180, 180].
    """
    lat_f = _as_float(lat, axis="latitude", lat=lat, lon=lon)
    lon_f = _as_float(lon, axis="longitude", lat=lat, lon=lon)
    if not -90.0 <= lat_f <= 90.0:
        raise InvalidCoordinate(f"latitude {lat_f} outside [-90, 90]", lat=lat, lon=lon)
    if not -180.0 <= lon_f <= 180.0:
        raise InvalidCoordinate(f"longitude {lon_f} outside [-180, 180]", lat=lat, lon=lon)
    return GeoPoint(lat=lat_f, lon=lon_f)


def coordinate_or_absent(lat: object, lon: object) -> GeoPoint | None:
    """Return a validated point, or None when both axes are explicitly absent.

    A half-set pair (one axis None) is rejected rather than treated as absent.
    """
    if lat is None and lon is None:
        return None
    return validate_coordinate(lat, lon)


def is_valid_coordinate(lat: object, lon: object) -> bool:
    try:
        validate_coordinate(lat, lon)
    except InvalidCoordinate:
        return False
    return True
