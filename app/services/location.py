from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from math import asin, cos, radians, sin, sqrt
from typing import Any

from app.errors import ValidationError
from app.models import AttendanceLocation, LocationType

EARTH_RADIUS_M = 6371000.0


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return EARTH_RADIUS_M * c


def parse_polygon_coordinates(raw: Any) -> list[tuple[float, float]]:
    """Accept a list of {lat, lng} dicts, [lat, lng] pairs, or their JSON text."""
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise ValidationError("polygon_coordinates is not valid JSON.") from exc
    if not isinstance(raw, list):
        raise ValidationError("polygon_coordinates must be a list of points.")

    points: list[tuple[float, float]] = []
    for item in raw:
        if isinstance(item, dict):
            lat = item.get("lat", item.get("latitude"))
            lng = item.get("lng", item.get("longitude"))
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            lat, lng = item
        else:
            raise ValidationError("polygon point must be {lat, lng} or [lat, lng].")
        if lat is None or lng is None:
            raise ValidationError("polygon point is missing lat or lng.")
        points.append((float(lat), float(lng)))
    return points


def point_in_polygon(lat: float, lng: float, polygon: Sequence[tuple[float, float]]) -> bool:
    # Ray casting along the longitude axis; the last vertex connects back to the first.
    if len(polygon) < 3:
        return False

    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        lat_i, lng_i = polygon[i]
        lat_j, lng_j = polygon[j]
        if (lat_i > lat) != (lat_j > lat):
            crossing_lng = (lng_j - lng_i) * (lat - lat_i) / (lat_j - lat_i) + lng_i
            if lng < crossing_lng:
                inside = not inside
        j = i
    return inside


def location_contains(location: AttendanceLocation, lat: float, lng: float) -> bool:
    if location.location_type == LocationType.POLYGON:
        polygon = parse_polygon_coordinates(location.polygon_coordinates)
        return point_in_polygon(lat, lng, polygon)

    if location.radius_meters is None:
        return False
    return distance_m(location.latitude, location.longitude, lat, lng) <= location.radius_meters


def is_within_location(
    lat: float,
    lng: float,
    locations: Iterable[AttendanceLocation],
) -> AttendanceLocation | None:
    for location in locations:
        if not location.is_active:
            continue
        if location_contains(location, lat, lng):
            return location
    return None


def validate_location_shape(
    *,
    location_type: LocationType,
    radius_meters: float | None,
    polygon_coordinates: Any,
) -> list[tuple[float, float]]:
    if location_type == LocationType.RADIUS:
        if radius_meters is None or radius_meters <= 0:
            raise ValidationError("radius_meters must be greater than 0 for a radius location.")
        return []

    polygon = parse_polygon_coordinates(polygon_coordinates)
    if len(polygon) < 3:
        raise ValidationError("A polygon location needs at least 3 points.")
    return polygon
