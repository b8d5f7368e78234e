"""Spherical geodesy helpers used by the radar.

All functions are pure. NaN inputs propagate to NaN outputs, so callers
validate coordinates before they get here.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

EARTH_RADIUS_M = 6_371_000
# Half the equatorial circumference; no two points on the sphere are further apart.
MAX_SURFACE_DISTANCE_M = math.pi * EARTH_RADIUS_M

_COMPASS_POINTS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")


def to_radians(degrees: float) -> float:
    return degrees * math.pi / 180.0


def to_degrees(radians: float) -> float:
    return radians * 180.0 / math.pi


def distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the great-circle distance between two points in meters."""

    phi1, phi2 = to_radians(lat1), to_radians(lat2)
    dphi = to_radians(lat2 - lat1)
    dlambda = to_radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # Rounding can push `a` a hair past 1 for antipodal points.
    a = min(1.0, a)
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the initial compass bearing from point 1 to point 2.

    0 is north and angles grow clockwise, so east is 90 and west is 270.
    The result is always in ``[0, 360)``.
    """

    phi1, phi2 = to_radians(lat1), to_radians(lat2)
    dlambda = to_radians(lon2 - lon1)
    x = math.sin(dlambda) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlambda)
    theta = to_degrees(math.atan2(x, y))
    result = (theta + 360.0) % 360.0
    # (-tiny + 360) % 360 rounds to exactly 360.0
    return 0.0 if result >= 360.0 else result


def compass_label(degrees: float) -> str:
    """Eight-point compass label for a bearing."""
    index = int(math.floor((degrees % 360.0) / 45.0 + 0.5)) % len(_COMPASS_POINTS)
    return _COMPASS_POINTS[index]


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Latitude/longitude rectangle approximating a search circle."""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float
    center_lat: float
    center_lon: float
    radius_m: float

    @property
    def wraps_globe(self) -> bool:
        return self.min_lon <= -180.0 and self.max_lon >= 180.0

    def contains(self, lat: float, lon: float) -> bool:
        if lat < self.min_lat or lat > self.max_lat:
            return False
        if self.wraps_globe or self.min_lon <= lon <= self.max_lon:
            return True
        # Boxes near the antimeridian extend past +/-180.
        return self.min_lon <= lon + 360.0 <= self.max_lon or self.min_lon <= lon - 360.0 <= self.max_lon

    def circumscribed_radius_m(self) -> float:
        """Radius of the smallest circle around the center that covers every corner."""
        corners = (
            (self.min_lat, self.min_lon),
            (self.min_lat, self.max_lon),
            (self.max_lat, self.min_lon),
            (self.max_lat, self.max_lon),
        )
        reach = max(distance(self.center_lat, self.center_lon, lat, lon) for lat, lon in corners)
        return min(MAX_SURFACE_DISTANCE_M, max(reach, self.radius_m))


def bounding_box(lat: float, lon: float, radius_m: float) -> BoundingBox:
    """Return the lat/lon rectangle enclosing a circle of ``radius_m`` around a point.

    Longitude degrees shrink by ``cos(latitude)`` away from the equator, so the
    longitude span is widened accordingly. Near the poles, or when the radius
    covers the globe, the box falls back to the full longitude range.
    """

    lat_delta = to_degrees(radius_m / EARTH_RADIUS_M)
    min_lat = max(-90.0, lat - lat_delta)
    max_lat = min(90.0, lat + lat_delta)
    cos_lat = math.cos(to_radians(lat))
    if cos_lat <= 1e-9 or min_lat <= -90.0 or max_lat >= 90.0:
        lon_delta = 180.0
    else:
        lon_delta = min(180.0, lat_delta / cos_lat)
    if lon_delta >= 180.0:
        min_lon, max_lon = -180.0, 180.0
    else:
        min_lon, max_lon = lon - lon_delta, lon + lon_delta
    return BoundingBox(
        min_lat=min_lat,
        max_lat=max_lat,
        min_lon=min_lon,
        max_lon=max_lon,
        center_lat=lat,
        center_lon=lon,
        radius_m=radius_m,
    )


__all__ = [
    "EARTH_RADIUS_M",
    "BoundingBox",
    "bearing",
    "bounding_box",
    "compass_label",
    "distance",
    "to_degrees",
    "to_radians",
]
