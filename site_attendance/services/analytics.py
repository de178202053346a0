from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from site_attendance.errors import ApiError
from site_attendance.models import AttendanceStatus, AttendanceSummary
from site_attendance.schemas import (
    DashboardKpis,
    EmployeePerformance,
    EmployeePerformancePage,
    SiteActivity,
    StatusCounts,
)
from site_attendance.services.status import calculate_utilization, utilization_band
from site_attendance.services.tenant_settings import resolve_tenant_settings

if TYPE_CHECKING:
    from site_attendance.repositories import AttendanceStore

HOURS_QUANTUM = Decimal("0.01")
MAX_REPORT_RANGE_DAYS = 366
SATURDAY = 5
SUNDAY = 6


def _hours(total_minutes: Decimal) -> Decimal:
    return (Decimal(total_minutes) / Decimal(60)).quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)


def _ratio(numerator: Decimal, denominator: int) -> Decimal:
    if denominator <= 0:
        return Decimal("0.00")
    return (numerator / Decimal(denominator)).quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)


def _validate_report_range(from_date: date, to_date: date) -> None:
    if from_date > to_date:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message="from_date must not be after to_date.",
        )
    if (to_date - from_date).days + 1 > MAX_REPORT_RANGE_DAYS:
        raise ApiError(
            status_code=422,
            code="DATE_RANGE_TOO_LARGE",
            message=f"Report range cannot exceed {MAX_REPORT_RANGE_DAYS} days.",
        )


def count_working_days(store: AttendanceStore, *, tenant_id: int, from_date: date, to_date: date) -> int:
    _validate_report_range(from_date, to_date)
    tenant_settings = resolve_tenant_settings(store, tenant_id)
    holidays = store.bank_holidays.dates_between(tenant_id, from_date, to_date)

    working_days = 0
    current = from_date
    while current <= to_date:
        weekday = current.weekday()
        is_weekend = (weekday == SATURDAY and not tenant_settings.include_saturday) or (
            weekday == SUNDAY and not tenant_settings.include_sunday
        )
        if not is_weekend and current not in holidays:
            working_days += 1
        current += timedelta(days=1)
    return working_days


def _total_minutes(summaries: list[AttendanceSummary]) -> Decimal:
    return sum((Decimal(item.total_minutes or 0) for item in summaries), Decimal("0"))


def _total_expected(summaries: list[AttendanceSummary]) -> Decimal:
    return sum((Decimal(item.expected_hours or 0) for item in summaries), Decimal("0"))


def get_dashboard_kpis(store: AttendanceStore, *, tenant_id: int, from_date: date, to_date: date) -> DashboardKpis:
    working_days = count_working_days(store, tenant_id=tenant_id, from_date=from_date, to_date=to_date)
    summaries = store.summaries.list_by_date_range(tenant_id, from_date, to_date)

    total_minutes = _total_minutes(summaries)
    actual_hours = _hours(total_minutes)
    expected_hours = _total_expected(summaries)
    statuses = Counter(item.status for item in summaries)

    return DashboardKpis(
        from_date=from_date,
        to_date=to_date,
        working_days=working_days,
        overall_utilization_percent=calculate_utilization(total_minutes, expected_hours),
        average_hours_per_summary=_ratio(actual_hours, len(summaries)),
        active_employees=len({item.employee_id for item in summaries}),
        active_sites=len({item.site_id for item in summaries}),
        expected_hours=expected_hours,
        actual_hours=actual_hours,
        variance_hours=actual_hours - expected_hours,
        status_counts=StatusCounts(
            excellent=statuses[AttendanceStatus.EXCELLENT],
            good=statuses[AttendanceStatus.GOOD],
            below_target=statuses[AttendanceStatus.BELOW_TARGET],
            absent=statuses[AttendanceStatus.ABSENT],
            incomplete=statuses[AttendanceStatus.INCOMPLETE],
        ),
    )


def get_employee_performance(
    store: AttendanceStore,
    *,
    tenant_id: int,
    from_date: date,
    to_date: date,
    page: int = 1,
    page_size: int = 50,
) -> EmployeePerformancePage:
    if page < 1 or page_size < 1:
        raise ApiError(status_code=422, code="INVALID_PAGINATION", message="page and page_size must be positive.")

    working_days = count_working_days(store, tenant_id=tenant_id, from_date=from_date, to_date=to_date)
    summaries = store.summaries.list_by_date_range(tenant_id, from_date, to_date)
    spa_counts = Counter(record.employee_id for record in store.spa.list_by_date_range(tenant_id, from_date, to_date))

    grouped: dict[int, list[AttendanceSummary]] = defaultdict(list)
    for summary in summaries:
        grouped[summary.employee_id].append(summary)
    employees = store.employees.get_many(tenant_id, grouped.keys())

    rows: list[EmployeePerformance] = []
    for employee_id, items in grouped.items():
        total_minutes = _total_minutes(items)
        expected_hours = _total_expected(items)
        utilization = calculate_utilization(total_minutes, expected_hours)
        days_present = sum(1 for item in items if item.status != AttendanceStatus.ABSENT)
        employee = employees.get(employee_id)
        rows.append(
            EmployeePerformance(
                employee_id=employee_id,
                employee_name=employee.full_name if employee is not None else f"Employee {employee_id}",
                total_hours=_hours(total_minutes),
                expected_hours=expected_hours,
                utilization_percent=utilization,
                status=utilization_band(utilization) or AttendanceStatus.ABSENT,
                days_present=days_present,
                days_absent=max(0, working_days - days_present),
                spa_count=spa_counts[employee_id],
            )
        )

    rows.sort(key=lambda row: (-row.utilization_percent, row.employee_id))
    offset = (page - 1) * page_size
    return EmployeePerformancePage(
        items=rows[offset : offset + page_size],
        total=len(rows),
        page=page,
        page_size=page_size,
    )


def get_site_activity(store: AttendanceStore, *, tenant_id: int, from_date: date, to_date: date) -> list[SiteActivity]:
    _validate_report_range(from_date, to_date)
    summaries = store.summaries.list_by_date_range(tenant_id, from_date, to_date)
    event_counts = Counter(event.site_id for event in store.events.list_by_date_range(tenant_id, from_date, to_date))

    grouped: dict[int, list[AttendanceSummary]] = defaultdict(list)
    for summary in summaries:
        grouped[summary.site_id].append(summary)
    sites = store.sites.get_many(tenant_id, grouped.keys())

    activity: list[SiteActivity] = []
    for site_id, items in grouped.items():
        total_hours = _hours(_total_minutes(items))
        employee_count = len({item.employee_id for item in items})
        site = sites.get(site_id)
        activity.append(
            SiteActivity(
                site_id=site_id,
                site_name=site.name if site is not None else f"Site {site_id}",
                employee_count=employee_count,
                total_hours=total_hours,
                average_hours_per_employee=_ratio(total_hours, employee_count),
                total_events=event_counts[site_id],
                days_active=len({item.summary_date for item in items}),
            )
        )

    activity.sort(key=lambda row: (-row.total_hours, row.site_id))
    return activity
