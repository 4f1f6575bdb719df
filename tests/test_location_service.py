from __future__ import annotations

import unittest

from app.errors import ValidationError
from app.models import AttendanceLocation, LocationType
from app.services.location import (
    distance_m,
    is_within_location,
    location_contains,
    parse_polygon_coordinates,
    point_in_polygon,
    validate_location_shape,
)
from tests.factories import SCHOOL_LAT, SCHOOL_LNG, offset_north

SQUARE = [
    (-6.9905, 110.4195),
    (-6.9905, 110.4205),
    (-6.9895, 110.4205),
    (-6.9895, 110.4195),
]


def radius_zone(radius_meters: float = 100.0, *, is_active: bool = True) -> AttendanceLocation:
    return AttendanceLocation(
        name="Gerbang Utama",
        location_type=LocationType.RADIUS,
        latitude=SCHOOL_LAT,
        longitude=SCHOOL_LNG,
        radius_meters=radius_meters,
        is_active=is_active,
    )


def polygon_zone() -> AttendanceLocation:
    return AttendanceLocation(
        name="Lapangan",
        location_type=LocationType.POLYGON,
        latitude=-6.99,
        longitude=110.42,
        polygon_coordinates=[{"lat": lat, "lng": lng} for lat, lng in SQUARE],
        is_active=True,
    )


class LocationServiceTests(unittest.TestCase):
    def test_distance_m_zero_for_same_point(self) -> None:
        value = distance_m(SCHOOL_LAT, SCHOOL_LNG, SCHOOL_LAT, SCHOOL_LNG)
        self.assertAlmostEqual(value, 0.0, places=6)

    def test_distance_m_known_reference(self) -> None:
        # Approximate distance for 1 degree longitude on equator.
        value = distance_m(0.0, 0.0, 0.0, 1.0)
        self.assertAlmostEqual(value, 111_195, delta=300)

    def test_radius_zone_contains_center_and_edge(self) -> None:
        zone = radius_zone(100.0)

        self.assertTrue(location_contains(zone, SCHOOL_LAT, SCHOOL_LNG))
        self.assertTrue(location_contains(zone, offset_north(SCHOOL_LAT, 99.0), SCHOOL_LNG))
        self.assertFalse(location_contains(zone, offset_north(SCHOOL_LAT, 101.0), SCHOOL_LNG))

    def test_radius_zone_without_radius_contains_nothing(self) -> None:
        zone = radius_zone(100.0)
        zone.radius_meters = None

        self.assertFalse(location_contains(zone, SCHOOL_LAT, SCHOOL_LNG))

    def test_convex_polygon_inside_and_outside(self) -> None:
        self.assertTrue(point_in_polygon(-6.99, 110.42, SQUARE))
        self.assertFalse(point_in_polygon(-6.99, 110.4210, SQUARE))
        self.assertFalse(point_in_polygon(-6.9880, 110.42, SQUARE))

    def test_polygon_needs_three_points(self) -> None:
        self.assertFalse(point_in_polygon(-6.99, 110.42, SQUARE[:2]))

    def test_polygon_zone_uses_stored_coordinates(self) -> None:
        zone = polygon_zone()

        self.assertTrue(location_contains(zone, -6.99, 110.42))
        self.assertFalse(location_contains(zone, SCHOOL_LAT, 110.43))

    def test_is_within_location_skips_inactive_zones(self) -> None:
        inactive = radius_zone(500.0, is_active=False)
        active = polygon_zone()

        self.assertIsNone(is_within_location(SCHOOL_LAT, SCHOOL_LNG, [inactive]))
        self.assertIs(is_within_location(-6.99, 110.42, [inactive, active]), active)

    def test_parse_polygon_coordinates_accepts_dicts_pairs_and_json(self) -> None:
        expected = [(-6.0, 110.0), (-6.1, 110.1), (-6.2, 110.0)]

        self.assertEqual(
            parse_polygon_coordinates([{"lat": -6.0, "lng": 110.0}, [-6.1, 110.1], {"latitude": -6.2, "longitude": 110.0}]),
            expected,
        )
        self.assertEqual(
            parse_polygon_coordinates('[[-6.0, 110.0], [-6.1, 110.1], [-6.2, 110.0]]'),
            expected,
        )
        self.assertEqual(parse_polygon_coordinates(None), [])

    def test_parse_polygon_coordinates_rejects_bad_input(self) -> None:
        with self.assertRaises(ValidationError):
            parse_polygon_coordinates("not json")
        with self.assertRaises(ValidationError):
            parse_polygon_coordinates({"lat": -6.0})
        with self.assertRaises(ValidationError):
            parse_polygon_coordinates([{"lat": -6.0}])

    def test_validate_location_shape(self) -> None:
        self.assertEqual(
            validate_location_shape(location_type=LocationType.RADIUS, radius_meters=50.0, polygon_coordinates=None),
            [],
        )
        with self.assertRaises(ValidationError):
            validate_location_shape(location_type=LocationType.RADIUS, radius_meters=0, polygon_coordinates=None)
        with self.assertRaises(ValidationError):
            validate_location_shape(
                location_type=LocationType.POLYGON,
                radius_meters=None,
                polygon_coordinates=[[-6.0, 110.0], [-6.1, 110.1]],
            )


if __name__ == "__main__":
    unittest.main()
