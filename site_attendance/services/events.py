from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from site_attendance.audit import log_audit
from site_attendance.errors import ApiError
from site_attendance.models import AttendanceEvent, AuditActorType, DeviceRegistration, EventType
from site_attendance.schemas import AttendanceEventCreate
from site_attendance.services.clock import normalize_ts, utcnow
from site_attendance.services.geofence import evaluate_noise, validate_coordinates
from site_attendance.services.tenant_settings import resolve_tenant_settings
from site_attendance.settings import get_settings

if TYPE_CHECKING:
    from site_attendance.repositories import AttendanceStore

logger = logging.getLogger("site_attendance.events")

EnterNotifier = Callable[["AttendanceStore", AttendanceEvent], Any]


def _resolve_event_ts(ts_utc: datetime | None, now_utc: datetime) -> datetime:
    if ts_utc is None:
        return now_utc
    normalized = normalize_ts(ts_utc)
    tolerance = timedelta(minutes=get_settings().event_clock_skew_minutes)
    if normalized > now_utc + tolerance:
        raise ApiError(
            status_code=422,
            code="EVENT_IN_FUTURE",
            message=f"Event timestamp {normalized.isoformat()} is in the future.",
        )
    return normalized


def _resolve_device(
    store: AttendanceStore,
    *,
    tenant_id: int,
    employee_id: int,
    device_identifier: str | None,
) -> DeviceRegistration | None:
    if device_identifier is None or not device_identifier.strip():
        return None

    device = store.devices.get_by_identifier(tenant_id, device_identifier.strip())
    if device is None or not device.is_active:
        raise ApiError(
            status_code=404,
            code="DEVICE_NOT_REGISTERED",
            message="Device is not registered for this tenant.",
        )
    if device.employee_id is not None and device.employee_id != employee_id:
        raise ApiError(
            status_code=403,
            code="DEVICE_EMPLOYEE_MISMATCH",
            message="Device is registered to a different employee.",
        )
    return device


def record_attendance_event(
    store: AttendanceStore,
    *,
    tenant_id: int,
    payload: AttendanceEventCreate,
    now_utc: datetime | None = None,
    notifier: EnterNotifier | None = None,
    request_id: str | None = None,
) -> AttendanceEvent:
    now = normalize_ts(now_utc) if now_utc is not None else utcnow()
    validate_coordinates(payload.latitude, payload.longitude)
    ts_utc = _resolve_event_ts(payload.ts_utc, now)

    employee = store.employees.get(tenant_id, payload.employee_id)
    if employee is None:
        raise ApiError(
            status_code=404,
            code="EMPLOYEE_NOT_FOUND",
            message=f"Employee {payload.employee_id} not found.",
        )

    site = store.sites.get(tenant_id, payload.site_id)
    if site is None or not site.is_active:
        raise ApiError(
            status_code=404,
            code="SITE_NOT_FOUND",
            message=f"Active site {payload.site_id} not found.",
        )

    device = _resolve_device(
        store,
        tenant_id=tenant_id,
        employee_id=payload.employee_id,
        device_identifier=payload.device_identifier,
    )

    tenant_settings = resolve_tenant_settings(store, tenant_id)
    noise = evaluate_noise(site, payload.latitude, payload.longitude, tenant_settings.noise_threshold_m)

    event = AttendanceEvent(
        tenant_id=tenant_id,
        employee_id=payload.employee_id,
        site_id=payload.site_id,
        event_type=payload.event_type,
        ts_utc=ts_utc,
        latitude=payload.latitude,
        longitude=payload.longitude,
        trigger_method=payload.trigger_method,
        device_registration_id=device.id if device is not None else None,
        is_noise=noise.is_noise,
        distance_to_site_m=noise.distance_m,
        processed=False,
        created_at=now,
    )
    store.events.add(event)
    store.commit()

    log_audit(
        store,
        tenant_id=tenant_id,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(payload.employee_id),
        action="ATTENDANCE_EVENT_RECORDED",
        success=True,
        entity_type="attendance_event",
        entity_id=str(event.id),
        details={
            "site_id": payload.site_id,
            "event_type": payload.event_type.value,
            "is_noise": noise.is_noise,
            "distance_to_site_m": noise.distance_m,
        },
        request_id=request_id,
    )
    logger.info(
        "attendance_event_recorded",
        extra={
            "request_id": request_id,
            "tenant_id": tenant_id,
            "event_id": event.id,
            "employee_id": event.employee_id,
            "site_id": event.site_id,
            "event_type": event.event_type.value,
            "is_noise": event.is_noise,
            "distance_to_site_m": event.distance_to_site_m,
        },
    )

    if notifier is not None and event.event_type == EventType.ENTER and not event.is_noise:
        try:
            notifier(store, event)
        except Exception:
            store.rollback()
            logger.exception(
                "spa_notification_hook_failed",
                extra={"tenant_id": tenant_id, "event_id": event.id},
            )

    return event


def list_employee_events(
    store: AttendanceStore,
    *,
    tenant_id: int,
    employee_id: int,
    from_date: date | None = None,
    to_date: date | None = None,
) -> list[AttendanceEvent]:
    _check_range(from_date, to_date)
    return store.events.list_by_employee(tenant_id, employee_id, from_date=from_date, to_date=to_date)


def list_site_events(
    store: AttendanceStore,
    *,
    tenant_id: int,
    site_id: int,
    from_date: date | None = None,
    to_date: date | None = None,
) -> list[AttendanceEvent]:
    _check_range(from_date, to_date)
    return store.events.list_by_site(tenant_id, site_id, from_date=from_date, to_date=to_date)


def get_processing_stats(
    store: AttendanceStore,
    *,
    tenant_id: int,
    from_date: date,
    to_date: date,
) -> dict[str, Any]:
    _check_range(from_date, to_date)
    stats = store.events.processing_stats(tenant_id)
    return {
        **stats,
        "by_date": store.events.counts_by_date(tenant_id, from_date, to_date),
    }


def _check_range(from_date: date | None, to_date: date | None) -> None:
    if from_date is not None and to_date is not None and from_date > to_date:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message="from_date must not be after to_date.",
        )
