from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable

from site_attendance.audit import log_audit
from site_attendance.errors import ApiError, DailyAttendanceJobError
from site_attendance.models import AttendanceEvent, AttendanceSummary, AuditActorType
from site_attendance.services.clock import normalize_ts, utcnow
from site_attendance.services.status import calculate_utilization, classify_status
from site_attendance.services.tenant_settings import resolve_tenant_settings
from site_attendance.services.time_on_site import DayPresence, summarize_presence

if TYPE_CHECKING:
    from site_attendance.repositories import AttendanceStore

logger = logging.getLogger("site_attendance.job")

GroupKey = tuple[int, int]


@dataclass
class ProcessDailyAttendanceResult:
    tenant_id: int
    target_date: date
    events_processed: int = 0
    summaries_created: int = 0
    summaries_updated: int = 0
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "target_date": self.target_date.isoformat(),
            "events_processed": self.events_processed,
            "summaries_created": self.summaries_created,
            "summaries_updated": self.summaries_updated,
            "errors": list(self.errors),
            "cancelled": self.cancelled,
        }


@dataclass(frozen=True, slots=True)
class GroupOutcome:
    key: GroupKey
    created: bool = False
    events_marked: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def split_noise(events: Iterable[AttendanceEvent]) -> tuple[list[AttendanceEvent], list[AttendanceEvent]]:
    """Return (counted, noise)."""
    counted: list[AttendanceEvent] = []
    noise: list[AttendanceEvent] = []
    for event in events:
        (noise if event.is_noise else counted).append(event)
    return counted, noise


def partition_events(events: Iterable[AttendanceEvent]) -> dict[GroupKey, list[AttendanceEvent]]:
    groups: dict[GroupKey, list[AttendanceEvent]] = {}
    for event in events:
        groups.setdefault((event.employee_id, event.site_id), []).append(event)
    for group_events in groups.values():
        group_events.sort(key=lambda item: normalize_ts(item.ts_utc))
    return groups


def _merge_day_events(
    stored: Iterable[AttendanceEvent],
    pending: Iterable[AttendanceEvent],
) -> list[AttendanceEvent]:
    merged: dict[object, AttendanceEvent] = {}
    for event in [*stored, *pending]:
        key: object = event.id if event.id is not None else ("pending", id(event))
        merged.setdefault(key, event)
    return list(merged.values())


def apply_presence(
    summary: AttendanceSummary,
    presence: DayPresence,
    *,
    floor_minutes: Decimal | None = None,
) -> None:
    """Write a day's presence onto its summary.

    ``floor_minutes`` is the total already stored for the day. Re-pairing a
    day that gained overlapping late events can yield fewer minutes than a
    previous run credited, and a summary total never goes down.
    """
    total_minutes = presence.time_on_site.total_minutes
    if floor_minutes is not None and Decimal(floor_minutes) > total_minutes:
        total_minutes = Decimal(floor_minutes)

    summary.first_entry_utc = presence.first_entry_utc
    summary.last_exit_utc = presence.last_exit_utc
    summary.total_minutes = total_minutes
    summary.entry_count = presence.entry_count
    summary.exit_count = presence.exit_count
    summary.utilization_percent = calculate_utilization(total_minutes, summary.expected_hours)
    summary.status = classify_status(
        total_minutes=total_minutes,
        expected_hours=summary.expected_hours,
        has_events=presence.has_events,
        has_open_session=presence.time_on_site.open_session,
    )


def _process_group(
    store: AttendanceStore,
    *,
    tenant_id: int,
    target_date: date,
    key: GroupKey,
    pending: list[AttendanceEvent],
    expected_hours: Decimal,
) -> GroupOutcome:
    employee_id, site_id = key
    try:
        summary = store.summaries.get(tenant_id, employee_id, site_id, target_date)
        created = summary is None
        if summary is None:
            summary = AttendanceSummary(
                tenant_id=tenant_id,
                employee_id=employee_id,
                site_id=site_id,
                summary_date=target_date,
                expected_hours=expected_hours,
            )

        # Recompute from every non-noise event of the day so re-runs never double count.
        stored = store.events.list_for_employee_site_day(tenant_id, employee_id, site_id, target_date)
        day_events = [event for event in _merge_day_events(stored, pending) if not event.is_noise]
        apply_presence(
            summary,
            summarize_presence(day_events),
            floor_minutes=None if created else summary.total_minutes,
        )
        summary.has_spa = store.spa.exists(tenant_id, employee_id, site_id, target_date)

        if created:
            store.summaries.add(summary)
        else:
            store.summaries.update(summary)

        marked = store.events.mark_processed(tenant_id, pending)
        store.commit()
    except Exception as exc:
        store.rollback()
        logger.warning(
            "daily_attendance_group_failed",
            exc_info=True,
            extra={
                "tenant_id": tenant_id,
                "target_date": target_date.isoformat(),
                "employee_id": employee_id,
                "site_id": site_id,
                "pending_events": len(pending),
            },
        )
        return GroupOutcome(
            key=key,
            error=f"Error processing events for employee {employee_id} at site {site_id}: {exc}",
        )

    return GroupOutcome(key=key, created=created, events_marked=marked)


def _mark_noise_processed(
    store: AttendanceStore,
    *,
    tenant_id: int,
    noise: list[AttendanceEvent],
) -> GroupOutcome:
    try:
        marked = store.events.mark_processed(tenant_id, noise)
        store.commit()
    except Exception as exc:
        store.rollback()
        logger.warning(
            "daily_attendance_noise_mark_failed",
            exc_info=True,
            extra={"tenant_id": tenant_id, "noise_events": len(noise)},
        )
        return GroupOutcome(key=(0, 0), error=f"Error marking {len(noise)} noise events processed: {exc}")
    return GroupOutcome(key=(0, 0), events_marked=marked)


def _fold(result: ProcessDailyAttendanceResult, outcome: GroupOutcome, *, count_summary: bool = True) -> None:
    if not outcome.ok:
        result.errors.append(outcome.error or "Unknown error")
        return
    result.events_processed += outcome.events_marked
    if not count_summary:
        return
    if outcome.created:
        result.summaries_created += 1
    else:
        result.summaries_updated += 1


def process_daily_attendance(
    store: AttendanceStore,
    *,
    tenant_id: int,
    target_date: date,
    today_utc: date | None = None,
    cancel_event: threading.Event | None = None,
    actor_id: str = "scheduler",
) -> ProcessDailyAttendanceResult:
    """Reduce a tenant's unprocessed pings for one UTC day into attendance summaries.

    Each employee+site group commits on its own: a failing group is rolled
    back, reported in ``errors`` and its events stay unprocessed for the next
    run. Settings or event-fetch failures abort the whole run with
    :class:`DailyAttendanceJobError` before anything is written.
    """
    today = today_utc or utcnow().date()
    if target_date > today:
        raise ApiError(
            status_code=422,
            code="INVALID_TARGET_DATE",
            message=f"Cannot process attendance for a future date ({target_date.isoformat()}).",
        )

    try:
        tenant_settings = resolve_tenant_settings(store, tenant_id)
        pending = store.events.list_unprocessed(tenant_id, target_date)
    except Exception as exc:
        logger.error(
            "daily_attendance_fatal",
            exc_info=True,
            extra={"tenant_id": tenant_id, "target_date": target_date.isoformat()},
        )
        raise DailyAttendanceJobError(
            tenant_id,
            f"Fatal error processing daily attendance: {exc}",
        ) from exc

    result = ProcessDailyAttendanceResult(tenant_id=tenant_id, target_date=target_date)
    counted, noise = split_noise(pending)
    groups = partition_events(counted)

    for key, group_events in groups.items():
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
            break
        outcome = _process_group(
            store,
            tenant_id=tenant_id,
            target_date=target_date,
            key=key,
            pending=group_events,
            expected_hours=tenant_settings.expected_hours_per_day,
        )
        _fold(result, outcome)

    if noise and not result.cancelled:
        _fold(result, _mark_noise_processed(store, tenant_id=tenant_id, noise=noise), count_summary=False)

    logger.info(
        "daily_attendance_processed",
        extra={
            **result.to_dict(),
            "pending_events": len(pending),
            "noise_events": len(noise),
            "groups": len(groups),
        },
    )
    if pending:
        log_audit(
            store,
            tenant_id=tenant_id,
            actor_type=AuditActorType.SYSTEM,
            actor_id=actor_id,
            action="DAILY_ATTENDANCE_PROCESSED",
            success=not result.errors,
            entity_type="attendance_summary",
            entity_id=target_date.isoformat(),
            details=result.to_dict(),
        )
    return result


MAX_BACKFILL_DAYS = 366


@dataclass
class ProcessAttendanceRangeResult:
    tenant_id: int
    from_date: date
    to_date: date
    details: list[ProcessDailyAttendanceResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def dates_processed(self) -> int:
        return len(self.details)

    @property
    def events_processed(self) -> int:
        return sum(item.events_processed for item in self.details)

    @property
    def errors(self) -> list[str]:
        return [error for item in self.details for error in item.errors]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "from_date": self.from_date.isoformat(),
            "to_date": self.to_date.isoformat(),
            "dates_processed": self.dates_processed,
            "events_processed": self.events_processed,
            "summaries_created": sum(item.summaries_created for item in self.details),
            "summaries_updated": sum(item.summaries_updated for item in self.details),
            "cancelled": self.cancelled,
            "details": [item.to_dict() for item in self.details],
        }


def backfill_window(end_date: date, lookback_days: int) -> tuple[date, date]:
    return end_date - timedelta(days=max(1, lookback_days) - 1), end_date


def _validate_backfill_range(from_date: date, to_date: date, today: date) -> None:
    if from_date > to_date:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message="from_date must not be after to_date.",
        )
    if to_date > today:
        raise ApiError(
            status_code=422,
            code="INVALID_TARGET_DATE",
            message=f"Cannot process attendance for a future date ({to_date.isoformat()}).",
        )
    if (to_date - from_date).days + 1 > MAX_BACKFILL_DAYS:
        raise ApiError(
            status_code=422,
            code="DATE_RANGE_TOO_LARGE",
            message=f"Processing range cannot exceed {MAX_BACKFILL_DAYS} days.",
        )


def process_attendance_range(
    store: AttendanceStore,
    *,
    tenant_id: int,
    from_date: date,
    to_date: date,
    today_utc: date | None = None,
    cancel_event: threading.Event | None = None,
    actor_id: str = "scheduler",
) -> ProcessAttendanceRangeResult:
    """Run the daily reduction for every day in the range that still has unprocessed events.

    This is how failed groups, days missed while the worker was down and
    late-synced pings for older days get picked up again. A fatal error on
    one day is recorded in that day's detail and the remaining days still run.
    """
    today = today_utc or utcnow().date()
    _validate_backfill_range(from_date, to_date, today)

    try:
        pending_dates = store.events.list_unprocessed_dates(tenant_id, from_date, to_date)
    except Exception as exc:
        logger.error(
            "attendance_backfill_fatal",
            exc_info=True,
            extra={"tenant_id": tenant_id, "from_date": from_date.isoformat(), "to_date": to_date.isoformat()},
        )
        raise DailyAttendanceJobError(tenant_id, f"Fatal error listing unprocessed dates: {exc}") from exc

    result = ProcessAttendanceRangeResult(tenant_id=tenant_id, from_date=from_date, to_date=to_date)
    for target_date in pending_dates:
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
            break
        try:
            day_result = process_daily_attendance(
                store,
                tenant_id=tenant_id,
                target_date=target_date,
                today_utc=today,
                cancel_event=cancel_event,
                actor_id=actor_id,
            )
        except DailyAttendanceJobError as exc:
            day_result = ProcessDailyAttendanceResult(
                tenant_id=tenant_id,
                target_date=target_date,
                errors=[exc.message],
            )
        result.details.append(day_result)
        if day_result.cancelled:
            result.cancelled = True
            break

    logger.info(
        "attendance_backfill_processed",
        extra={
            "tenant_id": tenant_id,
            "from_date": from_date.isoformat(),
            "to_date": to_date.isoformat(),
            "pending_dates": len(pending_dates),
            "dates_processed": result.dates_processed,
            "events_processed": result.events_processed,
            "errors": len(result.errors),
            "cancelled": result.cancelled,
        },
    )
    return result
