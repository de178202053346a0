from __future__ import annotations

from collections import Counter
from datetime import date, datetime
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from site_attendance.errors import ApiError
from site_attendance.models import (
    AttendanceEvent,
    AttendanceNotification,
    AttendanceSettings,
    AttendanceSummary,
    AuditLog,
    BankHoliday,
    DeviceRegistration,
    Employee,
    EventType,
    NotificationReason,
    Site,
    SitePhotoAttendance,
)
from site_attendance.services.clock import normalize_ts, utc_day_bounds, utc_range_bounds


class AttendanceEventRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def add(self, event: AttendanceEvent) -> AttendanceEvent:
        self.db.add(event)
        self.db.flush()
        return event

    def get(self, tenant_id: int, event_id: int) -> AttendanceEvent | None:
        return self.db.scalar(
            select(AttendanceEvent).where(
                AttendanceEvent.tenant_id == tenant_id,
                AttendanceEvent.id == event_id,
            )
        )

    def list_unprocessed(self, tenant_id: int, day: date) -> list[AttendanceEvent]:
        start, end = utc_day_bounds(day)
        return list(
            self.db.scalars(
                select(AttendanceEvent)
                .where(
                    AttendanceEvent.tenant_id == tenant_id,
                    AttendanceEvent.processed.is_(False),
                    AttendanceEvent.ts_utc >= start,
                    AttendanceEvent.ts_utc < end,
                )
                .order_by(AttendanceEvent.ts_utc.asc(), AttendanceEvent.id.asc())
            ).all()
        )

    def list_unprocessed_dates(self, tenant_id: int, from_date: date, to_date: date) -> list[date]:
        start, end = utc_range_bounds(from_date, to_date)
        rows = self.db.scalars(
            select(AttendanceEvent.ts_utc).where(
                AttendanceEvent.tenant_id == tenant_id,
                AttendanceEvent.processed.is_(False),
                AttendanceEvent.ts_utc >= start,
                AttendanceEvent.ts_utc < end,
            )
        ).all()
        return sorted({normalize_ts(ts_utc).date() for ts_utc in rows})

    def list_enters_between(self, tenant_id: int, start: datetime, end: datetime) -> list[AttendanceEvent]:
        return list(
            self.db.scalars(
                select(AttendanceEvent)
                .where(
                    AttendanceEvent.tenant_id == tenant_id,
                    AttendanceEvent.event_type == EventType.ENTER,
                    AttendanceEvent.is_noise.is_(False),
                    AttendanceEvent.ts_utc >= start,
                    AttendanceEvent.ts_utc <= end,
                )
                .order_by(AttendanceEvent.ts_utc.asc(), AttendanceEvent.id.asc())
            ).all()
        )

    def list_for_employee_site_day(
        self,
        tenant_id: int,
        employee_id: int,
        site_id: int,
        day: date,
    ) -> list[AttendanceEvent]:
        start, end = utc_day_bounds(day)
        return list(
            self.db.scalars(
                select(AttendanceEvent)
                .where(
                    AttendanceEvent.tenant_id == tenant_id,
                    AttendanceEvent.employee_id == employee_id,
                    AttendanceEvent.site_id == site_id,
                    AttendanceEvent.ts_utc >= start,
                    AttendanceEvent.ts_utc < end,
                )
                .order_by(AttendanceEvent.ts_utc.asc(), AttendanceEvent.id.asc())
            ).all()
        )

    def _list_in_range(
        self,
        tenant_id: int,
        *conditions,
        from_date: date | None,
        to_date: date | None,
    ) -> list[AttendanceEvent]:
        statement = select(AttendanceEvent).where(AttendanceEvent.tenant_id == tenant_id, *conditions)
        if from_date is not None:
            statement = statement.where(AttendanceEvent.ts_utc >= utc_day_bounds(from_date)[0])
        if to_date is not None:
            statement = statement.where(AttendanceEvent.ts_utc < utc_day_bounds(to_date)[1])
        statement = statement.order_by(AttendanceEvent.ts_utc.desc(), AttendanceEvent.id.desc())
        return list(self.db.scalars(statement).all())

    def list_by_employee(
        self,
        tenant_id: int,
        employee_id: int,
        *,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> list[AttendanceEvent]:
        return self._list_in_range(
            tenant_id,
            AttendanceEvent.employee_id == employee_id,
            from_date=from_date,
            to_date=to_date,
        )

    def list_by_site(
        self,
        tenant_id: int,
        site_id: int,
        *,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> list[AttendanceEvent]:
        return self._list_in_range(
            tenant_id,
            AttendanceEvent.site_id == site_id,
            from_date=from_date,
            to_date=to_date,
        )

    def list_by_date_range(self, tenant_id: int, from_date: date, to_date: date) -> list[AttendanceEvent]:
        return self._list_in_range(tenant_id, from_date=from_date, to_date=to_date)

    def mark_processed(self, tenant_id: int, events: Iterable[AttendanceEvent]) -> int:
        marked = 0
        for event in events:
            if event.tenant_id != tenant_id:
                raise ValueError(f"Event {event.id} does not belong to tenant {tenant_id}.")
            if event.processed:
                continue
            event.processed = True
            marked += 1
        self.db.flush()
        return marked

    def processing_stats(self, tenant_id: int) -> dict[str, int]:
        rows = self.db.execute(
            select(AttendanceEvent.processed, func.count(AttendanceEvent.id))
            .where(AttendanceEvent.tenant_id == tenant_id)
            .group_by(AttendanceEvent.processed)
        ).all()
        processed = sum(int(count) for flag, count in rows if flag)
        unprocessed = sum(int(count) for flag, count in rows if not flag)
        return {
            "total": processed + unprocessed,
            "processed": processed,
            "unprocessed": unprocessed,
        }

    def counts_by_date(self, tenant_id: int, from_date: date, to_date: date) -> list[dict[str, object]]:
        start, end = utc_range_bounds(from_date, to_date)
        rows = self.db.execute(
            select(AttendanceEvent.ts_utc, AttendanceEvent.processed).where(
                AttendanceEvent.tenant_id == tenant_id,
                AttendanceEvent.ts_utc >= start,
                AttendanceEvent.ts_utc < end,
            )
        ).all()
        totals: Counter[date] = Counter()
        processed: Counter[date] = Counter()
        for ts_utc, is_processed in rows:
            day = normalize_ts(ts_utc).date()
            totals[day] += 1
            if is_processed:
                processed[day] += 1
        return [
            {
                "day": day,
                "total": totals[day],
                "processed": processed[day],
                "unprocessed": totals[day] - processed[day],
            }
            for day in sorted(totals, reverse=True)
        ]


class AttendanceSummaryRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, tenant_id: int, employee_id: int, site_id: int, day: date) -> AttendanceSummary | None:
        return self.db.scalar(
            select(AttendanceSummary).where(
                AttendanceSummary.tenant_id == tenant_id,
                AttendanceSummary.employee_id == employee_id,
                AttendanceSummary.site_id == site_id,
                AttendanceSummary.summary_date == day,
            )
        )

    def add(self, summary: AttendanceSummary) -> AttendanceSummary:
        self.db.add(summary)
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise ApiError(
                status_code=409,
                code="SUMMARY_ALREADY_EXISTS",
                message=(
                    f"Summary already exists for employee {summary.employee_id} at site {summary.site_id} "
                    f"on {summary.summary_date.isoformat()}."
                ),
            ) from exc
        return summary

    def update(self, summary: AttendanceSummary) -> AttendanceSummary:
        self.db.flush()
        return summary

    def list_by_date_range(
        self,
        tenant_id: int,
        from_date: date,
        to_date: date,
        *,
        employee_id: int | None = None,
        site_id: int | None = None,
    ) -> list[AttendanceSummary]:
        statement = select(AttendanceSummary).where(
            AttendanceSummary.tenant_id == tenant_id,
            AttendanceSummary.summary_date >= from_date,
            AttendanceSummary.summary_date <= to_date,
        )
        if employee_id is not None:
            statement = statement.where(AttendanceSummary.employee_id == employee_id)
        if site_id is not None:
            statement = statement.where(AttendanceSummary.site_id == site_id)
        statement = statement.order_by(
            AttendanceSummary.summary_date.desc(),
            AttendanceSummary.employee_id.asc(),
            AttendanceSummary.site_id.asc(),
        )
        return list(self.db.scalars(statement).unique().all())


class AttendanceSettingsRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, tenant_id: int) -> AttendanceSettings | None:
        return self.db.scalar(select(AttendanceSettings).where(AttendanceSettings.tenant_id == tenant_id))


class SitePhotoAttendanceRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def exists(self, tenant_id: int, employee_id: int, site_id: int, day: date) -> bool:
        found = self.db.scalar(
            select(SitePhotoAttendance.id).where(
                SitePhotoAttendance.tenant_id == tenant_id,
                SitePhotoAttendance.employee_id == employee_id,
                SitePhotoAttendance.site_id == site_id,
                SitePhotoAttendance.event_date == day,
            )
        )
        return found is not None

    def add(self, record: SitePhotoAttendance) -> SitePhotoAttendance:
        self.db.add(record)
        self.db.flush()
        return record

    def list_by_date_range(self, tenant_id: int, from_date: date, to_date: date) -> list[SitePhotoAttendance]:
        return list(
            self.db.scalars(
                select(SitePhotoAttendance).where(
                    SitePhotoAttendance.tenant_id == tenant_id,
                    SitePhotoAttendance.event_date >= from_date,
                    SitePhotoAttendance.event_date <= to_date,
                )
            ).all()
        )


class SiteRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, tenant_id: int, site_id: int) -> Site | None:
        return self.db.scalar(select(Site).where(Site.tenant_id == tenant_id, Site.id == site_id))

    def list_active(self, tenant_id: int) -> list[Site]:
        return list(
            self.db.scalars(
                select(Site).where(Site.tenant_id == tenant_id, Site.is_active.is_(True)).order_by(Site.id.asc())
            ).all()
        )

    def get_many(self, tenant_id: int, site_ids: Iterable[int]) -> dict[int, Site]:
        ids = set(site_ids)
        if not ids:
            return {}
        rows = self.db.scalars(select(Site).where(Site.tenant_id == tenant_id, Site.id.in_(ids))).all()
        return {site.id: site for site in rows}

    def list_tenant_ids(self) -> list[int]:
        return [
            int(tenant_id)
            for tenant_id in self.db.scalars(
                select(Site.tenant_id).where(Site.is_active.is_(True)).distinct().order_by(Site.tenant_id.asc())
            ).all()
        ]


class EmployeeRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, tenant_id: int, employee_id: int) -> Employee | None:
        return self.db.scalar(select(Employee).where(Employee.tenant_id == tenant_id, Employee.id == employee_id))

    def get_many(self, tenant_id: int, employee_ids: Iterable[int]) -> dict[int, Employee]:
        ids = set(employee_ids)
        if not ids:
            return {}
        rows = self.db.scalars(
            select(Employee).where(Employee.tenant_id == tenant_id, Employee.id.in_(ids))
        ).all()
        return {employee.id: employee for employee in rows}


class DeviceRegistrationRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_by_identifier(self, tenant_id: int, device_identifier: str) -> DeviceRegistration | None:
        return self.db.scalar(
            select(DeviceRegistration).where(
                DeviceRegistration.tenant_id == tenant_id,
                DeviceRegistration.device_identifier == device_identifier,
            )
        )


class BankHolidayRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def dates_between(self, tenant_id: int, from_date: date, to_date: date) -> set[date]:
        return set(
            self.db.scalars(
                select(BankHoliday.holiday_date).where(
                    BankHoliday.tenant_id == tenant_id,
                    BankHoliday.holiday_date >= from_date,
                    BankHoliday.holiday_date <= to_date,
                )
            ).all()
        )


class AttendanceNotificationRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def add(self, notification: AttendanceNotification) -> AttendanceNotification:
        self.db.add(notification)
        self.db.flush()
        return notification

    def has_missing_spa_reminder(self, tenant_id: int, employee_id: int, site_id: int, day: date) -> bool:
        start, end = utc_day_bounds(day)
        found = self.db.scalar(
            select(AttendanceNotification.id)
            .join(AttendanceEvent, AttendanceEvent.id == AttendanceNotification.related_event_id)
            .where(
                AttendanceNotification.tenant_id == tenant_id,
                AttendanceNotification.employee_id == employee_id,
                AttendanceNotification.reason == NotificationReason.MISSING_SPA,
                AttendanceEvent.site_id == site_id,
                AttendanceEvent.ts_utc >= start,
                AttendanceEvent.ts_utc < end,
            )
            .limit(1)
        )
        return found is not None


class AuditLogRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def add(self, entry: AuditLog) -> AuditLog:
        self.db.add(entry)
        return entry


class AttendanceStore:
    """Tenant-scoped repositories sharing one session and one transaction."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.events = AttendanceEventRepository(db)
        self.summaries = AttendanceSummaryRepository(db)
        self.settings = AttendanceSettingsRepository(db)
        self.spa = SitePhotoAttendanceRepository(db)
        self.sites = SiteRepository(db)
        self.employees = EmployeeRepository(db)
        self.devices = DeviceRegistrationRepository(db)
        self.bank_holidays = BankHolidayRepository(db)
        self.notifications = AttendanceNotificationRepository(db)
        self.audit_logs = AuditLogRepository(db)

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
