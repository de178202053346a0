from __future__ import annotations

from datetime import date
from decimal import Decimal
import threading
import unittest

from site_attendance.errors import ApiError, DailyAttendanceJobError
from site_attendance.models import AttendanceStatus, EventType, SitePhotoAttendance
from site_attendance.services.daily_attendance import (
    partition_events,
    process_attendance_range,
    process_daily_attendance,
    split_noise,
)
from tests.fakes import FakeAttendanceStore, make_event, make_settings_row, utc

TARGET_DAY = date(2026, 10, 15)
TODAY = date(2026, 10, 19)


def _add(store: FakeAttendanceStore, employee_id: int, site_id: int, event_type: EventType, hour: int, **kwargs):  # type: ignore[no-untyped-def]
    minute = kwargs.pop("minute", 0)
    event = make_event(
        employee_id=employee_id,
        site_id=site_id,
        event_type=event_type,
        ts_utc=utc(2026, 10, 15, hour, minute),
        **kwargs,
    )
    return store.events.add(event)


def _run(store: FakeAttendanceStore, **kwargs):  # type: ignore[no-untyped-def]
    return process_daily_attendance(store, tenant_id=1, target_date=TARGET_DAY, today_utc=TODAY, **kwargs)


class PartitionTests(unittest.TestCase):
    def test_groups_by_employee_and_site_in_time_order(self) -> None:
        store = FakeAttendanceStore()
        late = _add(store, 1, 10, EventType.EXIT, 16)
        early = _add(store, 1, 10, EventType.ENTER, 8)
        other = _add(store, 2, 10, EventType.ENTER, 9)

        groups = partition_events(store.events.rows)

        self.assertEqual(groups[(1, 10)], [early, late])
        self.assertEqual(groups[(2, 10)], [other])

    def test_split_noise(self) -> None:
        store = FakeAttendanceStore()
        kept = _add(store, 1, 10, EventType.ENTER, 8)
        noise = _add(store, 1, 10, EventType.EXIT, 9, is_noise=True)

        self.assertEqual(split_noise(store.events.rows), ([kept], [noise]))


class ProcessDailyAttendanceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = FakeAttendanceStore()
        self.store.settings.rows[1] = make_settings_row(expected_hours_per_day=Decimal("8.00"))

    def test_no_events_writes_nothing(self) -> None:
        result = _run(self.store)

        self.assertEqual(result.events_processed, 0)
        self.assertEqual(result.summaries_created, 0)
        self.assertEqual(result.summaries_updated, 0)
        self.assertEqual(result.errors, [])
        self.assertEqual(self.store.summaries.rows, {})
        self.assertEqual(self.store.audit_logs.rows, [])

    def test_full_day_creates_excellent_summary(self) -> None:
        _add(self.store, 1, 10, EventType.ENTER, 8)
        _add(self.store, 1, 10, EventType.EXIT, 16)

        result = _run(self.store)

        self.assertEqual(result.events_processed, 2)
        self.assertEqual(result.summaries_created, 1)
        summary = self.store.summaries.get(1, 1, 10, TARGET_DAY)
        self.assertIsNotNone(summary)
        self.assertEqual(summary.total_minutes, Decimal("480.00"))
        self.assertEqual(summary.utilization_percent, Decimal("100.00"))
        self.assertEqual(summary.status, AttendanceStatus.EXCELLENT)
        self.assertEqual(summary.expected_hours, Decimal("8.00"))
        self.assertEqual(summary.first_entry_utc, utc(2026, 10, 15, 8))
        self.assertEqual(summary.last_exit_utc, utc(2026, 10, 15, 16))
        self.assertEqual((summary.entry_count, summary.exit_count), (1, 1))
        self.assertFalse(summary.has_spa)
        self.assertTrue(all(event.processed for event in self.store.events.rows))
        self.assertEqual(len(self.store.audit_logs.rows), 1)
        self.assertEqual(self.store.audit_logs.rows[0].action, "DAILY_ATTENDANCE_PROCESSED")

    def test_enter_without_exit_is_incomplete(self) -> None:
        _add(self.store, 1, 10, EventType.ENTER, 8)

        result = _run(self.store)

        self.assertEqual(result.events_processed, 1)
        summary = self.store.summaries.get(1, 1, 10, TARGET_DAY)
        self.assertEqual(summary.total_minutes, Decimal("0.00"))
        self.assertEqual(summary.status, AttendanceStatus.INCOMPLETE)

    def test_noise_is_excluded_from_time_but_marked_processed(self) -> None:
        _add(self.store, 1, 10, EventType.ENTER, 8)
        _add(self.store, 1, 10, EventType.EXIT, 9, is_noise=True)
        _add(self.store, 1, 10, EventType.EXIT, 12)

        result = _run(self.store)

        self.assertEqual(result.events_processed, 3)
        summary = self.store.summaries.get(1, 1, 10, TARGET_DAY)
        self.assertEqual(summary.total_minutes, Decimal("240.00"))
        self.assertEqual(summary.exit_count, 1)
        self.assertTrue(all(event.processed for event in self.store.events.rows))

    def test_noise_only_day_creates_no_summary(self) -> None:
        _add(self.store, 1, 10, EventType.ENTER, 8, is_noise=True)

        result = _run(self.store)

        self.assertEqual(result.events_processed, 1)
        self.assertEqual(result.summaries_created, 0)
        self.assertEqual(self.store.summaries.rows, {})

    def test_rerun_without_new_events_changes_nothing(self) -> None:
        _add(self.store, 1, 10, EventType.ENTER, 8)
        _add(self.store, 1, 10, EventType.EXIT, 16)
        _run(self.store)

        result = _run(self.store)

        self.assertEqual(result.events_processed, 0)
        self.assertEqual(result.summaries_created, 0)
        self.assertEqual(result.summaries_updated, 0)
        summary = self.store.summaries.get(1, 1, 10, TARGET_DAY)
        self.assertEqual(summary.total_minutes, Decimal("480.00"))

    def test_late_events_extend_existing_summary(self) -> None:
        _add(self.store, 1, 10, EventType.ENTER, 8)
        _add(self.store, 1, 10, EventType.EXIT, 12)
        _run(self.store)
        summary = self.store.summaries.get(1, 1, 10, TARGET_DAY)
        self.assertEqual(summary.total_minutes, Decimal("240.00"))
        self.assertEqual(summary.status, AttendanceStatus.BELOW_TARGET)

        _add(self.store, 1, 10, EventType.ENTER, 13)
        _add(self.store, 1, 10, EventType.EXIT, 17)
        result = _run(self.store)

        self.assertEqual(result.events_processed, 2)
        self.assertEqual(result.summaries_updated, 1)
        self.assertEqual(result.summaries_created, 0)
        self.assertIs(self.store.summaries.get(1, 1, 10, TARGET_DAY), summary)
        self.assertEqual(summary.total_minutes, Decimal("480.00"))
        self.assertEqual(summary.entry_count, 2)
        self.assertEqual(summary.status, AttendanceStatus.EXCELLENT)

    def test_overlapping_late_session_never_lowers_total(self) -> None:
        _add(self.store, 1, 10, EventType.ENTER, 8)
        _add(self.store, 1, 10, EventType.EXIT, 16)
        _run(self.store)
        summary = self.store.summaries.get(1, 1, 10, TARGET_DAY)
        self.assertEqual(summary.total_minutes, Decimal("480.00"))

        # Re-pairing Enter 08, Enter 10, Exit 12, Exit 16 only credits 10:00-12:00.
        _add(self.store, 1, 10, EventType.ENTER, 10)
        _add(self.store, 1, 10, EventType.EXIT, 12)
        result = _run(self.store)

        self.assertEqual(result.events_processed, 2)
        self.assertEqual(result.summaries_updated, 1)
        self.assertEqual(summary.total_minutes, Decimal("480.00"))
        self.assertEqual(summary.utilization_percent, Decimal("100.00"))
        self.assertEqual(summary.status, AttendanceStatus.EXCELLENT)
        self.assertEqual(summary.entry_count, 2)
        self.assertEqual(summary.exit_count, 2)

    def test_events_outside_target_day_are_ignored(self) -> None:
        self.store.events.add(
            make_event(employee_id=1, site_id=10, event_type=EventType.ENTER, ts_utc=utc(2026, 10, 14, 23, 30))
        )
        _add(self.store, 1, 10, EventType.EXIT, 1)

        result = _run(self.store)

        self.assertEqual(result.events_processed, 1)
        self.assertFalse(self.store.events.rows[0].processed)
        summary = self.store.summaries.get(1, 1, 10, TARGET_DAY)
        self.assertEqual(summary.total_minutes, Decimal("0.00"))
        self.assertEqual(summary.status, AttendanceStatus.INCOMPLETE)

    def test_has_spa_reflects_photo_attendance(self) -> None:
        self.store.spa.add(SitePhotoAttendance(tenant_id=1, employee_id=1, site_id=10, event_date=TARGET_DAY))
        _add(self.store, 1, 10, EventType.ENTER, 8)
        _add(self.store, 1, 10, EventType.EXIT, 15)

        _run(self.store)

        self.assertTrue(self.store.summaries.get(1, 1, 10, TARGET_DAY).has_spa)

    def test_default_expected_hours_without_settings_row(self) -> None:
        self.store.settings.rows.clear()
        _add(self.store, 1, 10, EventType.ENTER, 8)
        _add(self.store, 1, 10, EventType.EXIT, 15, minute=30)

        _run(self.store)

        summary = self.store.summaries.get(1, 1, 10, TARGET_DAY)
        self.assertEqual(summary.expected_hours, Decimal("7.5"))
        self.assertEqual(summary.utilization_percent, Decimal("100.00"))

    def test_failing_group_is_isolated(self) -> None:
        _add(self.store, 1, 10, EventType.ENTER, 8)
        _add(self.store, 1, 10, EventType.EXIT, 16)
        failing_enter = _add(self.store, 2, 10, EventType.ENTER, 8)
        failing_exit = _add(self.store, 2, 10, EventType.EXIT, 16)

        original_exists = self.store.spa.exists

        def exists(tenant_id, employee_id, site_id, day):  # type: ignore[no-untyped-def]
            if employee_id == 2:
                raise RuntimeError("boom")
            return original_exists(tenant_id, employee_id, site_id, day)

        self.store.spa.exists = exists  # type: ignore[method-assign]

        result = _run(self.store)

        self.assertEqual(result.summaries_created, 1)
        self.assertEqual(result.events_processed, 2)
        self.assertEqual(result.errors, ["Error processing events for employee 2 at site 10: boom"])
        self.assertIsNone(self.store.summaries.get(1, 2, 10, TARGET_DAY))
        self.assertFalse(failing_enter.processed)
        self.assertFalse(failing_exit.processed)
        self.assertGreaterEqual(self.store.rollbacks, 1)
        self.assertFalse(self.store.audit_logs.rows[-1].success)

    def test_invalid_settings_abort_the_run(self) -> None:
        self.store.settings.rows[1] = make_settings_row(noise_threshold_m=5)
        _add(self.store, 1, 10, EventType.ENTER, 8)

        with self.assertRaises(DailyAttendanceJobError) as ctx:
            _run(self.store)

        self.assertEqual(ctx.exception.tenant_id, 1)
        self.assertFalse(self.store.events.rows[0].processed)
        self.assertEqual(self.store.summaries.rows, {})

    def test_event_fetch_failure_aborts_the_run(self) -> None:
        def list_unprocessed(_tenant_id, _day):  # type: ignore[no-untyped-def]
            raise RuntimeError("database unavailable")

        self.store.events.list_unprocessed = list_unprocessed  # type: ignore[method-assign]

        with self.assertRaises(DailyAttendanceJobError) as ctx:
            _run(self.store)

        self.assertIn("database unavailable", ctx.exception.message)

    def test_future_target_date_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            process_daily_attendance(self.store, tenant_id=1, target_date=date(2026, 10, 20), today_utc=TODAY)

        self.assertEqual(ctx.exception.status_code, 422)
        self.assertEqual(ctx.exception.code, "INVALID_TARGET_DATE")

    def test_cancelled_run_returns_partial_result(self) -> None:
        _add(self.store, 1, 10, EventType.ENTER, 8)
        _add(self.store, 1, 10, EventType.EXIT, 9, is_noise=True)
        cancel_event = threading.Event()
        cancel_event.set()

        result = _run(self.store, cancel_event=cancel_event)

        self.assertTrue(result.cancelled)
        self.assertEqual(result.events_processed, 0)
        self.assertFalse(any(event.processed for event in self.store.events.rows))

    def test_other_tenants_are_untouched(self) -> None:
        _add(self.store, 1, 10, EventType.ENTER, 8)
        foreign = _add(self.store, 1, 10, EventType.ENTER, 8, tenant_id=2)

        _run(self.store)

        self.assertFalse(foreign.processed)

    def test_result_to_dict(self) -> None:
        _add(self.store, 1, 10, EventType.ENTER, 8)

        payload = _run(self.store).to_dict()

        self.assertEqual(payload["target_date"], "2026-10-15")
        self.assertEqual(payload["events_processed"], 1)
        self.assertFalse(payload["cancelled"])


class ProcessAttendanceRangeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = FakeAttendanceStore()
        self.store.settings.rows[1] = make_settings_row()

    def _add_day(self, day: int) -> None:
        for hour, event_type in ((8, EventType.ENTER), (16, EventType.EXIT)):
            self.store.events.add(
                make_event(employee_id=1, site_id=10, event_type=event_type, ts_utc=utc(2026, 10, day, hour))
            )

    def _run_range(self, from_day: int, to_day: int, **kwargs):  # type: ignore[no-untyped-def]
        return process_attendance_range(
            self.store,
            tenant_id=1,
            from_date=date(2026, 10, from_day),
            to_date=date(2026, 10, to_day),
            today_utc=TODAY,
            **kwargs,
        )

    def test_only_days_with_unprocessed_events_run(self) -> None:
        self._add_day(12)
        self._add_day(14)
        process_daily_attendance(self.store, tenant_id=1, target_date=date(2026, 10, 14), today_utc=TODAY)

        result = self._run_range(10, 18)

        self.assertEqual([item.target_date for item in result.details], [date(2026, 10, 12)])
        self.assertEqual(result.events_processed, 2)
        payload = result.to_dict()
        self.assertEqual(payload["dates_processed"], 1)
        self.assertEqual(payload["summaries_created"], 1)
        self.assertEqual(payload["details"][0]["target_date"], "2026-10-12")

    def test_fatal_day_is_reported_and_later_days_still_run(self) -> None:
        self._add_day(12)
        self._add_day(13)
        original = self.store.events.list_unprocessed

        def list_unprocessed(tenant_id, day):  # type: ignore[no-untyped-def]
            if day == date(2026, 10, 12):
                raise RuntimeError("statement timeout")
            return original(tenant_id, day)

        self.store.events.list_unprocessed = list_unprocessed  # type: ignore[method-assign]

        result = self._run_range(12, 13)

        self.assertEqual(len(result.details), 2)
        self.assertIn("statement timeout", result.details[0].errors[0])
        self.assertEqual(result.details[1].events_processed, 2)

    def test_cancel_stops_before_next_day(self) -> None:
        self._add_day(12)
        self._add_day(13)
        cancel_event = threading.Event()
        cancel_event.set()

        result = self._run_range(12, 13, cancel_event=cancel_event)

        self.assertTrue(result.cancelled)
        self.assertEqual(result.details, [])

    def test_invalid_ranges(self) -> None:
        cases = [
            ((15, 14), "INVALID_DATE_RANGE"),
            ((15, 20), "INVALID_TARGET_DATE"),
        ]
        for (from_day, to_day), code in cases:
            with self.assertRaises(ApiError) as ctx:
                self._run_range(from_day, to_day)
            self.assertEqual(ctx.exception.code, code)

        with self.assertRaises(ApiError) as ctx:
            process_attendance_range(
                self.store,
                tenant_id=1,
                from_date=date(2025, 1, 1),
                to_date=date(2026, 10, 15),
                today_utc=TODAY,
            )
        self.assertEqual(ctx.exception.code, "DATE_RANGE_TOO_LARGE")

    def test_listing_failure_is_fatal(self) -> None:
        def list_unprocessed_dates(_tenant_id, _from_date, _to_date):  # type: ignore[no-untyped-def]
            raise RuntimeError("database unavailable")

        self.store.events.list_unprocessed_dates = list_unprocessed_dates  # type: ignore[method-assign]

        with self.assertRaises(DailyAttendanceJobError):
            self._run_range(12, 13)


if __name__ == "__main__":
    unittest.main()
