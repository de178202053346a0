from __future__ import annotations

from datetime import date, timedelta

from fastapi import APIRouter, Depends, Header, Query, Request, status
from sqlalchemy.orm import Session

from site_attendance.db import get_db
from site_attendance.errors import ApiError, DailyAttendanceJobError
from site_attendance.models import AttendanceSummary
from site_attendance.repositories import AttendanceStore
from site_attendance.schemas import (
    AttendanceEventCreate,
    AttendanceEventRead,
    AttendanceSummaryRead,
    DashboardKpis,
    EmployeePerformancePage,
    GeofenceCheckRequest,
    GeofenceCheckResponse,
    NearestSiteRequest,
    NearestSiteResponse,
    ProcessDailyRequest,
    ProcessDailyResponse,
    ProcessingStats,
    ProcessRangeRequest,
    ProcessRangeResponse,
    SiteActivity,
    SitePhotoAttendanceCreate,
    SitePhotoAttendanceRead,
)
from site_attendance.services.analytics import get_dashboard_kpis, get_employee_performance, get_site_activity
from site_attendance.services.clock import utcnow
from site_attendance.services.daily_attendance import backfill_window, process_attendance_range, process_daily_attendance
from site_attendance.services.events import (
    get_processing_stats,
    list_employee_events,
    list_site_events,
    record_attendance_event,
)
from site_attendance.services.geofence import find_nearest_site, is_within_geofence
from site_attendance.services.notifications import SpaReminderNotifier
from site_attendance.services.spa import create_site_photo_attendance
from site_attendance.settings import get_settings

router = APIRouter(prefix="/api/site-attendance", tags=["site-attendance"])
spa_reminder_notifier = SpaReminderNotifier()


def get_tenant_id(x_tenant_id: str | None = Header(default=None)) -> int:
    raw = (x_tenant_id or "").strip()
    if not raw.isdigit() or int(raw) < 1:
        raise ApiError(
            status_code=400,
            code="TENANT_REQUIRED",
            message="A positive integer X-Tenant-Id header is required.",
        )
    return int(raw)


def get_store(db: Session = Depends(get_db)) -> AttendanceStore:
    return AttendanceStore(db)


def _summary_read(summary: AttendanceSummary) -> AttendanceSummaryRead:
    employee = getattr(summary, "employee", None)
    site = getattr(summary, "site", None)
    return AttendanceSummaryRead(
        id=summary.id,
        employee_id=summary.employee_id,
        employee_name=employee.full_name if employee is not None else None,
        site_id=summary.site_id,
        site_name=site.name if site is not None else None,
        summary_date=summary.summary_date,
        expected_hours=summary.expected_hours,
        first_entry_utc=summary.first_entry_utc,
        last_exit_utc=summary.last_exit_utc,
        total_minutes=summary.total_minutes,
        utilization_percent=summary.utilization_percent,
        entry_count=summary.entry_count,
        exit_count=summary.exit_count,
        has_spa=summary.has_spa,
        status=summary.status,
    )


def _check_summary_range(from_date: date, to_date: date) -> None:
    if from_date > to_date:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message="from_date must not be after to_date.",
        )


@router.post("/events", response_model=AttendanceEventRead, status_code=status.HTTP_201_CREATED)
def create_event(
    payload: AttendanceEventCreate,
    request: Request,
    tenant_id: int = Depends(get_tenant_id),
    store: AttendanceStore = Depends(get_store),
) -> AttendanceEventRead:
    request.state.actor = "employee"
    event = record_attendance_event(
        store,
        tenant_id=tenant_id,
        payload=payload,
        notifier=spa_reminder_notifier,
        request_id=getattr(request.state, "request_id", None),
    )
    request.state.employee_id = event.employee_id
    request.state.event_id = event.id
    return AttendanceEventRead.model_validate(event)


@router.get("/events/employee/{employee_id}", response_model=list[AttendanceEventRead])
def employee_events(
    employee_id: int,
    from_date: date | None = Query(default=None),
    to_date: date | None = Query(default=None),
    tenant_id: int = Depends(get_tenant_id),
    store: AttendanceStore = Depends(get_store),
) -> list[AttendanceEventRead]:
    events = list_employee_events(
        store,
        tenant_id=tenant_id,
        employee_id=employee_id,
        from_date=from_date,
        to_date=to_date,
    )
    return [AttendanceEventRead.model_validate(item) for item in events]


@router.get("/events/site/{site_id}", response_model=list[AttendanceEventRead])
def site_events(
    site_id: int,
    from_date: date | None = Query(default=None),
    to_date: date | None = Query(default=None),
    tenant_id: int = Depends(get_tenant_id),
    store: AttendanceStore = Depends(get_store),
) -> list[AttendanceEventRead]:
    events = list_site_events(store, tenant_id=tenant_id, site_id=site_id, from_date=from_date, to_date=to_date)
    return [AttendanceEventRead.model_validate(item) for item in events]


@router.get("/events/stats", response_model=ProcessingStats)
def processing_stats(
    from_date: date = Query(...),
    to_date: date = Query(...),
    tenant_id: int = Depends(get_tenant_id),
    store: AttendanceStore = Depends(get_store),
) -> ProcessingStats:
    return ProcessingStats.model_validate(
        get_processing_stats(store, tenant_id=tenant_id, from_date=from_date, to_date=to_date)
    )


@router.post("/geofence/check", response_model=GeofenceCheckResponse)
def geofence_check(
    payload: GeofenceCheckRequest,
    tenant_id: int = Depends(get_tenant_id),
    store: AttendanceStore = Depends(get_store),
) -> GeofenceCheckResponse:
    within = is_within_geofence(
        store,
        tenant_id=tenant_id,
        site_id=payload.site_id,
        lat=payload.latitude,
        lon=payload.longitude,
    )
    return GeofenceCheckResponse(site_id=payload.site_id, within_geofence=within)


@router.post("/geofence/nearest-site", response_model=NearestSiteResponse)
def nearest_site(
    payload: NearestSiteRequest,
    tenant_id: int = Depends(get_tenant_id),
    store: AttendanceStore = Depends(get_store),
) -> NearestSiteResponse:
    site, distance_value = find_nearest_site(store, tenant_id=tenant_id, lat=payload.latitude, lon=payload.longitude)
    if site is None:
        return NearestSiteResponse()
    return NearestSiteResponse(
        site_id=site.id,
        site_name=site.name,
        distance_m=round(distance_value, 2) if distance_value is not None else None,
    )


@router.post("/spa", response_model=SitePhotoAttendanceRead, status_code=status.HTTP_201_CREATED)
def register_spa(
    payload: SitePhotoAttendanceCreate,
    tenant_id: int = Depends(get_tenant_id),
    store: AttendanceStore = Depends(get_store),
) -> SitePhotoAttendanceRead:
    record = create_site_photo_attendance(store, tenant_id=tenant_id, payload=payload)
    return SitePhotoAttendanceRead.model_validate(record)


@router.post("/jobs/process-daily", response_model=ProcessDailyResponse)
def trigger_daily_job(
    payload: ProcessDailyRequest,
    request: Request,
    tenant_id: int = Depends(get_tenant_id),
    store: AttendanceStore = Depends(get_store),
) -> ProcessDailyResponse:
    request.state.actor = "admin"
    target_date = payload.target_date or utcnow().date() - timedelta(days=1)
    try:
        result = process_daily_attendance(
            store,
            tenant_id=tenant_id,
            target_date=target_date,
            actor_id="manual",
        )
    except DailyAttendanceJobError as exc:
        raise ApiError(status_code=503, code="DAILY_JOB_FAILED", message=exc.message) from exc
    return ProcessDailyResponse(**result.to_dict())


@router.post("/jobs/process-range", response_model=ProcessRangeResponse)
def trigger_range_job(
    payload: ProcessRangeRequest,
    request: Request,
    tenant_id: int = Depends(get_tenant_id),
    store: AttendanceStore = Depends(get_store),
) -> ProcessRangeResponse:
    request.state.actor = "admin"
    to_date = payload.to_date or utcnow().date() - timedelta(days=1)
    from_date = payload.from_date or backfill_window(to_date, get_settings().daily_job_lookback_days)[0]
    try:
        result = process_attendance_range(
            store,
            tenant_id=tenant_id,
            from_date=from_date,
            to_date=to_date,
            actor_id="manual",
        )
    except DailyAttendanceJobError as exc:
        raise ApiError(status_code=503, code="DAILY_JOB_FAILED", message=exc.message) from exc
    return ProcessRangeResponse(**result.to_dict())


@router.get("/summaries", response_model=list[AttendanceSummaryRead])
def summaries(
    from_date: date = Query(...),
    to_date: date = Query(...),
    employee_id: int | None = Query(default=None, ge=1),
    site_id: int | None = Query(default=None, ge=1),
    tenant_id: int = Depends(get_tenant_id),
    store: AttendanceStore = Depends(get_store),
) -> list[AttendanceSummaryRead]:
    _check_summary_range(from_date, to_date)
    rows = store.summaries.list_by_date_range(
        tenant_id,
        from_date,
        to_date,
        employee_id=employee_id,
        site_id=site_id,
    )
    return [_summary_read(item) for item in rows]


@router.get("/reports/dashboard", response_model=DashboardKpis)
def dashboard(
    from_date: date = Query(...),
    to_date: date = Query(...),
    tenant_id: int = Depends(get_tenant_id),
    store: AttendanceStore = Depends(get_store),
) -> DashboardKpis:
    return get_dashboard_kpis(store, tenant_id=tenant_id, from_date=from_date, to_date=to_date)


@router.get("/reports/employee-performance", response_model=EmployeePerformancePage)
def employee_performance(
    from_date: date = Query(...),
    to_date: date = Query(...),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
    tenant_id: int = Depends(get_tenant_id),
    store: AttendanceStore = Depends(get_store),
) -> EmployeePerformancePage:
    return get_employee_performance(
        store,
        tenant_id=tenant_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )


@router.get("/reports/site-activity", response_model=list[SiteActivity])
def site_activity(
    from_date: date = Query(...),
    to_date: date = Query(...),
    tenant_id: int = Depends(get_tenant_id),
    store: AttendanceStore = Depends(get_store),
) -> list[SiteActivity]:
    return get_site_activity(store, tenant_id=tenant_id, from_date=from_date, to_date=to_date)
