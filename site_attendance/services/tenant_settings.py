from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from site_attendance.errors import ApiError
from site_attendance.settings import get_settings

if TYPE_CHECKING:
    from site_attendance.repositories import AttendanceStore

MIN_DISTANCE_SETTING_M = 10
MAX_DISTANCE_SETTING_M = 10_000


@dataclass(frozen=True, slots=True)
class TenantAttendanceSettings:
    tenant_id: int
    expected_hours_per_day: Decimal
    geofence_radius_m: int
    noise_threshold_m: int
    spa_grace_period_minutes: int
    include_saturday: bool = False
    include_sunday: bool = False
    configured: bool = True


def _check_distance_bound(name: str, value: int) -> None:
    if MIN_DISTANCE_SETTING_M <= value <= MAX_DISTANCE_SETTING_M:
        return
    raise ApiError(
        status_code=500,
        code="INVALID_ATTENDANCE_SETTINGS",
        message=f"{name}={value} is outside [{MIN_DISTANCE_SETTING_M}, {MAX_DISTANCE_SETTING_M}] meters.",
    )


def resolve_tenant_settings(store: AttendanceStore, tenant_id: int) -> TenantAttendanceSettings:
    defaults = get_settings()
    row = store.settings.get(tenant_id)
    if row is None:
        return TenantAttendanceSettings(
            tenant_id=tenant_id,
            expected_hours_per_day=Decimal(str(defaults.default_expected_hours_per_day)),
            geofence_radius_m=defaults.default_geofence_radius_m,
            noise_threshold_m=defaults.default_noise_threshold_m,
            spa_grace_period_minutes=defaults.default_spa_grace_period_minutes,
            configured=False,
        )

    expected_hours = row.expected_hours_per_day
    if expected_hours is None or Decimal(str(expected_hours)) <= 0:
        expected_hours = Decimal(str(defaults.default_expected_hours_per_day))

    _check_distance_bound("geofence_radius_m", row.geofence_radius_m)
    _check_distance_bound("noise_threshold_m", row.noise_threshold_m)

    return TenantAttendanceSettings(
        tenant_id=tenant_id,
        expected_hours_per_day=Decimal(str(expected_hours)),
        geofence_radius_m=row.geofence_radius_m,
        noise_threshold_m=row.noise_threshold_m,
        spa_grace_period_minutes=max(0, row.spa_grace_period_minutes),
        include_saturday=bool(row.include_saturday),
        include_sunday=bool(row.include_sunday),
    )
