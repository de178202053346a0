from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt
from typing import TYPE_CHECKING, Iterable

from site_attendance.errors import ApiError
from site_attendance.models import AttendanceEvent, Site
from site_attendance.services.tenant_settings import resolve_tenant_settings

if TYPE_CHECKING:
    from site_attendance.repositories import AttendanceStore

EARTH_RADIUS_M = 6371000.0


@dataclass(frozen=True, slots=True)
class NoiseCheck:
    is_noise: bool
    distance_m: float | None


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(min(1.0, sqrt(a)))
    return EARTH_RADIUS_M * c


def validate_coordinates(lat: float | None, lon: float | None) -> None:
    if (lat is None) != (lon is None):
        raise ApiError(
            status_code=422,
            code="INVALID_COORDINATES",
            message="Latitude and longitude must be provided together.",
        )
    if lat is None or lon is None:
        return
    if not -90.0 <= lat <= 90.0:
        raise ApiError(
            status_code=422,
            code="INVALID_COORDINATES",
            message=f"Latitude {lat} is outside [-90, 90].",
        )
    if not -180.0 <= lon <= 180.0:
        raise ApiError(
            status_code=422,
            code="INVALID_COORDINATES",
            message=f"Longitude {lon} is outside [-180, 180].",
        )


def site_has_coordinates(site: Site) -> bool:
    return site.latitude is not None and site.longitude is not None


def distance_to_site_m(site: Site, lat: float, lon: float) -> float | None:
    if not site_has_coordinates(site):
        return None
    return distance_m(site.latitude, site.longitude, lat, lon)  # type: ignore[arg-type]


def is_point_within_site(site: Site, radius_m: float, lat: float, lon: float) -> bool:
    distance_value = distance_to_site_m(site, lat, lon)
    if distance_value is None:
        # Sites without registered coordinates accept any position.
        return True
    return distance_value <= radius_m


def nearest_site(sites: Iterable[Site], lat: float, lon: float) -> tuple[Site | None, float | None]:
    best_site: Site | None = None
    best_distance: float | None = None
    for site in sites:
        distance_value = distance_to_site_m(site, lat, lon)
        if distance_value is None:
            continue
        if best_distance is None or distance_value < best_distance:
            best_site = site
            best_distance = distance_value
    return best_site, best_distance


def evaluate_noise(
    site: Site,
    lat: float | None,
    lon: float | None,
    noise_threshold_m: float,
) -> NoiseCheck:
    """Compare a ping against its claimed site only; other sites are never consulted."""
    if lat is None or lon is None:
        return NoiseCheck(is_noise=False, distance_m=None)

    distance_value = distance_to_site_m(site, lat, lon)
    if distance_value is None:
        return NoiseCheck(is_noise=False, distance_m=None)

    rounded = round(distance_value, 2)
    return NoiseCheck(is_noise=distance_value > noise_threshold_m, distance_m=rounded)


def is_within_geofence(
    store: AttendanceStore,
    *,
    tenant_id: int,
    site_id: int,
    lat: float,
    lon: float,
) -> bool:
    validate_coordinates(lat, lon)
    site = store.sites.get(tenant_id, site_id)
    if site is None:
        return False

    tenant_settings = resolve_tenant_settings(store, tenant_id)
    radius_m = site.geofence_radius_m or tenant_settings.geofence_radius_m
    return is_point_within_site(site, radius_m, lat, lon)


def find_nearest_site(
    store: AttendanceStore,
    *,
    tenant_id: int,
    lat: float,
    lon: float,
) -> tuple[Site | None, float | None]:
    validate_coordinates(lat, lon)
    return nearest_site(store.sites.list_active(tenant_id), lat, lon)


def check_for_noise(store: AttendanceStore, event: AttendanceEvent, tenant_id: int) -> NoiseCheck:
    if event.latitude is None or event.longitude is None:
        return NoiseCheck(is_noise=False, distance_m=None)

    site = store.sites.get(tenant_id, event.site_id)
    if site is None:
        return NoiseCheck(is_noise=False, distance_m=None)

    tenant_settings = resolve_tenant_settings(store, tenant_id)
    return evaluate_noise(site, event.latitude, event.longitude, tenant_settings.noise_threshold_m)
