from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from site_attendance.errors import ApiError
from site_attendance.models import SitePhotoAttendance
from site_attendance.schemas import SitePhotoAttendanceCreate
from site_attendance.services.clock import utcnow
from site_attendance.services.geofence import distance_to_site_m, validate_coordinates

if TYPE_CHECKING:
    from site_attendance.repositories import AttendanceStore

logger = logging.getLogger("site_attendance.spa")


def _spa_conflict(payload: SitePhotoAttendanceCreate) -> ApiError:
    return ApiError(
        status_code=409,
        code="SPA_ALREADY_EXISTS",
        message=(
            f"Site photo attendance already exists for employee {payload.employee_id} "
            f"at site {payload.site_id} on {payload.event_date.isoformat()}."
        ),
    )


def create_site_photo_attendance(
    store: AttendanceStore,
    *,
    tenant_id: int,
    payload: SitePhotoAttendanceCreate,
    today_utc: date | None = None,
) -> SitePhotoAttendance:
    validate_coordinates(payload.latitude, payload.longitude)
    today = today_utc or utcnow().date()
    if payload.event_date > today:
        raise ApiError(
            status_code=422,
            code="EVENT_IN_FUTURE",
            message="Site photo attendance cannot be recorded for a future date.",
        )

    if store.employees.get(tenant_id, payload.employee_id) is None:
        raise ApiError(
            status_code=404,
            code="EMPLOYEE_NOT_FOUND",
            message=f"Employee {payload.employee_id} not found.",
        )
    site = store.sites.get(tenant_id, payload.site_id)
    if site is None:
        raise ApiError(
            status_code=404,
            code="SITE_NOT_FOUND",
            message=f"Site {payload.site_id} not found.",
        )

    if store.spa.exists(tenant_id, payload.employee_id, payload.site_id, payload.event_date):
        raise _spa_conflict(payload)

    distance_value: float | None = None
    if payload.latitude is not None and payload.longitude is not None:
        distance_value = distance_to_site_m(site, payload.latitude, payload.longitude)

    record = SitePhotoAttendance(
        tenant_id=tenant_id,
        employee_id=payload.employee_id,
        site_id=payload.site_id,
        event_date=payload.event_date,
        latitude=payload.latitude,
        longitude=payload.longitude,
        distance_to_site_m=round(distance_value, 2) if distance_value is not None else None,
        weather_conditions=payload.weather_conditions,
        notes=payload.notes,
        created_at=utcnow(),
    )
    try:
        store.spa.add(record)
        store.commit()
    except IntegrityError as exc:
        store.rollback()
        raise _spa_conflict(payload) from exc

    logger.info(
        "site_photo_attendance_recorded",
        extra={
            "tenant_id": tenant_id,
            "employee_id": payload.employee_id,
            "site_id": payload.site_id,
            "event_date": payload.event_date.isoformat(),
        },
    )
    return record
