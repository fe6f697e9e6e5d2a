from __future__ import annotations

"""Great-circle helpers shared by the stores and the discovery service."""

import math
from typing import NamedTuple

from whisperwalls.core.errors import InvalidLocation
from whisperwalls.models.message import GeoPoint

__all__ = ["EARTH_RADIUS_METERS", "BoundingBox", "haversine_meters", "validate_location", "bounding_box"]

EARTH_RADIUS_METERS = 6_371_000.0


class BoundingBox(NamedTuple):
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @property
    def wraps_antimeridian(self) -> bool:
        return self.min_lng > self.max_lng


def haversine_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Distance in meters between two points along the earth's surface."""

    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.longitude - a.longitude)

    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))


def validate_location(point: GeoPoint) -> GeoPoint:
    """Raise :class:`InvalidLocation` unless *point* is a usable coordinate.

    ``(0, 0)`` ("null island") is what an unset client location serialises
    to, so it is rejected along with out-of-range and non-finite values.
    """

    lng, lat = point.longitude, point.latitude
    if not (math.isfinite(lng) and math.isfinite(lat)):
        raise InvalidLocation("Coordinates must be finite numbers")
    if not -180.0 <= lng <= 180.0:
        raise InvalidLocation("Longitude must be between -180 and 180")
    if not -90.0 <= lat <= 90.0:
        raise InvalidLocation("Latitude must be between -90 and 90")
    if lng == 0.0 and lat == 0.0:
        raise InvalidLocation("Location (0, 0) is not a valid position")
    return point


def bounding_box(center: GeoPoint, radius_meters: float) -> BoundingBox:
    """Lat/lng box that fully contains the circle around *center*.

    Near the poles the longitude span covers the whole globe.  When the box
    crosses the antimeridian ``min_lng > max_lng``.
    """

    angular = radius_meters / EARTH_RADIUS_METERS
    d_lat = math.degrees(angular)
    min_lat = max(-90.0, center.latitude - d_lat)
    max_lat = min(90.0, center.latitude + d_lat)

    cos_lat = math.cos(math.radians(center.latitude))
    if min_lat <= -90.0 or max_lat >= 90.0 or angular >= math.pi / 2:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    ratio = math.sin(angular) / cos_lat
    if ratio >= 1.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)
    d_lng = math.degrees(math.asin(ratio))

    min_lng = center.longitude - d_lng
    max_lng = center.longitude + d_lng
    if min_lng < -180.0:
        min_lng += 360.0
    if max_lng > 180.0:
        max_lng -= 360.0
    return BoundingBox(min_lat, max_lat, min_lng, max_lng)
