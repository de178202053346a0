from __future__ import annotations

import unittest

from site_attendance.errors import ApiError
from site_attendance.models import EventType
from site_attendance.services.geofence import (
    check_for_noise,
    distance_m,
    evaluate_noise,
    find_nearest_site,
    is_point_within_site,
    is_within_geofence,
    validate_coordinates,
)
from tests.fakes import FakeAttendanceStore, make_event, make_settings_row, utc

SITE_LAT = 53.3498
SITE_LON = -6.2603
METERS_PER_DEGREE_LAT = 111_195.0


def _north_of_site(meters: float) -> float:
    return SITE_LAT + meters / METERS_PER_DEGREE_LAT


class DistanceTests(unittest.TestCase):
    def test_distance_zero_for_same_point(self) -> None:
        self.assertAlmostEqual(distance_m(SITE_LAT, SITE_LON, SITE_LAT, SITE_LON), 0.0, places=6)

    def test_distance_one_degree_longitude_on_equator(self) -> None:
        self.assertAlmostEqual(distance_m(0.0, 0.0, 0.0, 1.0), 111_195, delta=300)

    def test_distance_is_symmetric(self) -> None:
        forward = distance_m(53.3498, -6.2603, 51.8985, -8.4756)
        backward = distance_m(51.8985, -8.4756, 53.3498, -6.2603)
        self.assertAlmostEqual(forward, backward, places=6)

    def test_antipodal_points_do_not_fail(self) -> None:
        value = distance_m(0.0, 0.0, 0.0, 180.0)
        self.assertAlmostEqual(value, 20_015_086, delta=1_000)


class CoordinateValidationTests(unittest.TestCase):
    def test_accepts_missing_pair(self) -> None:
        validate_coordinates(None, None)

    def test_rejects_half_pair(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            validate_coordinates(53.0, None)
        self.assertEqual(ctx.exception.code, "INVALID_COORDINATES")

    def test_rejects_out_of_range_latitude(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            validate_coordinates(91.0, 0.0)
        self.assertEqual(ctx.exception.status_code, 422)

    def test_rejects_out_of_range_longitude(self) -> None:
        with self.assertRaises(ApiError):
            validate_coordinates(0.0, -180.5)


class GeofenceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = FakeAttendanceStore()
        self.site = self.store.add_site(10, latitude=SITE_LAT, longitude=SITE_LON)

    def test_point_exactly_on_radius_is_inside(self) -> None:
        lat = _north_of_site(100)
        radius = distance_m(SITE_LAT, SITE_LON, lat, SITE_LON)
        self.assertTrue(is_point_within_site(self.site, radius, lat, SITE_LON))

    def test_point_beyond_radius_is_outside(self) -> None:
        self.assertFalse(is_point_within_site(self.site, 100, _north_of_site(150), SITE_LON))

    def test_site_without_coordinates_accepts_any_point(self) -> None:
        site = self.store.add_site(11)
        self.assertTrue(is_point_within_site(site, 10, 0.0, 0.0))

    def test_unknown_site_is_outside(self) -> None:
        self.assertFalse(is_within_geofence(self.store, tenant_id=1, site_id=999, lat=SITE_LAT, lon=SITE_LON))

    def test_uses_tenant_default_radius(self) -> None:
        self.store.settings.rows[1] = make_settings_row(geofence_radius_m=200)
        self.assertTrue(
            is_within_geofence(self.store, tenant_id=1, site_id=10, lat=_north_of_site(150), lon=SITE_LON)
        )

    def test_site_radius_overrides_tenant_radius(self) -> None:
        self.store.settings.rows[1] = make_settings_row(geofence_radius_m=200)
        self.site.geofence_radius_m = 50
        self.assertFalse(
            is_within_geofence(self.store, tenant_id=1, site_id=10, lat=_north_of_site(150), lon=SITE_LON)
        )

    def test_site_from_other_tenant_is_not_visible(self) -> None:
        self.assertFalse(is_within_geofence(self.store, tenant_id=2, site_id=10, lat=SITE_LAT, lon=SITE_LON))


class NearestSiteTests(unittest.TestCase):
    def test_returns_closest_site_with_coordinates(self) -> None:
        store = FakeAttendanceStore()
        store.add_site(1, latitude=SITE_LAT, longitude=SITE_LON)
        store.add_site(2, latitude=51.8985, longitude=-8.4756)
        store.add_site(3)

        site, distance_value = find_nearest_site(store, tenant_id=1, lat=51.90, lon=-8.47)

        self.assertIsNotNone(site)
        self.assertEqual(site.id, 2)
        self.assertLess(distance_value, 1_000)

    def test_returns_none_without_candidate_sites(self) -> None:
        store = FakeAttendanceStore()
        store.add_site(3)
        store.add_site(4, latitude=SITE_LAT, longitude=SITE_LON, is_active=False)

        self.assertEqual(find_nearest_site(store, tenant_id=1, lat=SITE_LAT, lon=SITE_LON), (None, None))


class NoiseTests(unittest.TestCase):
    def test_ping_far_from_claimed_site_is_noise(self) -> None:
        store = FakeAttendanceStore()
        store.add_site(10, latitude=SITE_LAT, longitude=SITE_LON)
        store.settings.rows[1] = make_settings_row(noise_threshold_m=250)
        event = make_event(employee_id=1, site_id=10, event_type=EventType.ENTER, ts_utc=utc(2026, 10, 15, 8))
        event.latitude = _north_of_site(400)
        event.longitude = SITE_LON

        result = check_for_noise(store, event, 1)

        self.assertTrue(result.is_noise)
        self.assertAlmostEqual(result.distance_m, 400, delta=2)
        self.assertEqual(result.distance_m, round(result.distance_m, 2))

    def test_ping_inside_threshold_is_not_noise(self) -> None:
        store = FakeAttendanceStore()
        site = store.add_site(10, latitude=SITE_LAT, longitude=SITE_LON)

        result = evaluate_noise(site, _north_of_site(100), SITE_LON, 150)

        self.assertFalse(result.is_noise)

    def test_event_without_coordinates_is_not_noise(self) -> None:
        store = FakeAttendanceStore()
        store.add_site(10, latitude=SITE_LAT, longitude=SITE_LON)
        event = make_event(employee_id=1, site_id=10, event_type=EventType.ENTER, ts_utc=utc(2026, 10, 15, 8))

        result = check_for_noise(store, event, 1)

        self.assertFalse(result.is_noise)
        self.assertIsNone(result.distance_m)

    def test_site_without_coordinates_never_marks_noise(self) -> None:
        store = FakeAttendanceStore()
        site = store.add_site(10)

        result = evaluate_noise(site, 0.0, 0.0, 10)

        self.assertFalse(result.is_noise)


if __name__ == "__main__":
    unittest.main()
