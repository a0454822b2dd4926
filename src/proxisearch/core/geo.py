from __future__ import annotations
from dataclasses import dataclass
from math import atan2, cos, degrees, pi, radians, sin, sqrt

"""
Geospatial helpers.

We keep a tiny geometry layer here so the index and the search engine can do
distance calculations without pulling in heavier GIS dependencies.
"""

EARTH_RADIUS_KM = 6371.0
# Slack on the box so floating-point rounding never makes it too tight.
BOX_PADDING = 1.01
# Floor for cos(latitude) so the longitude span stays finite near the poles.
MIN_COS_LAT = 0.01


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float


@dataclass(frozen=True)
class BoundingBox:
    """An axis-aligned lat/lon rectangle.

    When the box crosses the antimeridian, `min_lon > max_lon` and the box covers
    `[min_lon, 180]` plus `[-180, max_lon]`.
    """

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    @property
    def wraps(self) -> bool:
        return self.min_lon > self.max_lon

    def lon_ranges(self) -> list[tuple[float, float]]:
        """Return the longitude span as one or two non-wrapping ranges."""
        if self.wraps:
            return [(self.min_lon, 180.0), (-180.0, self.max_lon)]
        return [(self.min_lon, self.max_lon)]

    def contains(self, point: GeoPoint) -> bool:
        if not (self.min_lat <= point.lat <= self.max_lat):
            return False
        return any(lo <= point.lon <= hi for lo, hi in self.lon_ranges())


def haversine_km(a: GeoPoint, b: GeoPoint, *, radius_km: float = EARTH_RADIUS_KM) -> float:
    """Compute great-circle distance in kilometres between two points."""
    lat1 = radians(a.lat)
    lat2 = radians(b.lat)
    dlat = lat2 - lat1
    dlon = radians(b.lon - a.lon)

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Rounding can push h slightly outside [0, 1] near antipodal points.
    h = min(1.0, max(0.0, h))
    return 2 * radius_km * atan2(sqrt(h), sqrt(1 - h))


def initial_bearing_deg(a: GeoPoint, b: GeoPoint) -> float:
    """Initial great-circle bearing from `a` to `b`, clockwise from north in [0, 360)."""
    lat1 = radians(a.lat)
    lat2 = radians(b.lat)
    dlon = radians(b.lon - a.lon)
    x = sin(dlon) * cos(lat2)
    y = cos(lat1) * sin(lat2) - sin(lat1) * cos(lat2) * cos(dlon)
    return (degrees(atan2(x, y)) + 360.0) % 360.0


def _wrap_lon(lon: float) -> float:
    return ((lon + 180.0) % 360.0) - 180.0


def km_per_degree(earth_radius_km: float = EARTH_RADIUS_KM) -> float:
    """Arc length of one degree along a great circle of the given sphere."""
    return float(earth_radius_km) * pi / 180.0


def bounding_box(
    origin: GeoPoint, radius_km: float, *, earth_radius_km: float = EARTH_RADIUS_KM
) -> BoundingBox:
    """Compute a conservative box around `origin` covering `radius_km`.

    Only used as a coarse candidate filter; inclusion is always decided by
    `haversine_km`. Pass the same `earth_radius_km` the distances use.
    """
    dlat = float(radius_km) / km_per_degree(earth_radius_km) * BOX_PADDING
    min_lat = origin.lat - dlat
    max_lat = origin.lat + dlat

    # Any box touching a pole spans every meridian.
    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(max(-90.0, min_lat), min(90.0, max_lat), -180.0, 180.0)

    # The box is widest in longitude at its highest absolute latitude.
    widest = max(abs(min_lat), abs(max_lat))
    dlon = dlat / max(cos(radians(widest)), MIN_COS_LAT)
    if dlon >= 180.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    min_lon = origin.lon - dlon
    max_lon = origin.lon + dlon
    if min_lon < -180.0 or max_lon > 180.0:
        return BoundingBox(min_lat, max_lat, _wrap_lon(min_lon), _wrap_lon(max_lon))
    return BoundingBox(min_lat, max_lat, min_lon, max_lon)
