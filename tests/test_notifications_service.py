from __future__ import annotations

from datetime import date
import unittest

from site_attendance.models import EventType, NotificationReason, NotificationType, SitePhotoAttendance
from site_attendance.services.notifications import (
    EMAIL_NOT_CONFIGURED,
    SMS_NOT_CONFIGURED,
    SpaReminderNotifier,
    notify_missing_spa,
    send_due_spa_reminders,
)
from tests.fakes import FakeAttendanceStore, make_event, make_settings_row, utc


class MissingSpaNotificationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = FakeAttendanceStore()
        self.store.settings.rows[1] = make_settings_row()
        self.event = self.store.events.add(
            make_event(employee_id=7, site_id=10, event_type=EventType.ENTER, ts_utc=utc(2026, 10, 15, 8))
        )

    def test_push_reminder_recorded_when_spa_missing(self) -> None:
        created = notify_missing_spa(self.store, self.event, now_utc=utc(2026, 10, 15, 8, 15))

        self.assertEqual(len(created), 1)
        notification = created[0]
        self.assertEqual(notification.notification_type, NotificationType.PUSH)
        self.assertEqual(notification.reason, NotificationReason.MISSING_SPA)
        self.assertTrue(notification.delivered)
        self.assertEqual(notification.related_event_id, self.event.id)
        self.assertEqual(self.store.notifications.rows, created)
        self.assertEqual(self.store.commits, 1)

    def test_channels_without_provider_are_marked_failed(self) -> None:
        self.store.settings.rows[1] = make_settings_row(
            enable_push_notifications=False,
            enable_email_notifications=True,
            enable_sms_notifications=True,
        )

        created = notify_missing_spa(self.store, self.event)

        self.assertEqual([item.notification_type for item in created], [NotificationType.EMAIL, NotificationType.SMS])
        self.assertEqual([item.delivered for item in created], [False, False])
        self.assertEqual([item.error_message for item in created], [EMAIL_NOT_CONFIGURED, SMS_NOT_CONFIGURED])

    def test_skipped_when_spa_already_submitted(self) -> None:
        self.store.spa.add(SitePhotoAttendance(tenant_id=1, employee_id=7, site_id=10, event_date=date(2026, 10, 15)))

        self.assertEqual(notify_missing_spa(self.store, self.event), [])
        self.assertEqual(self.store.notifications.rows, [])

    def test_skipped_without_settings_row(self) -> None:
        self.store.settings.rows.clear()
        self.assertEqual(notify_missing_spa(self.store, self.event), [])

    def test_skipped_for_exit_events(self) -> None:
        exit_event = make_event(employee_id=7, site_id=10, event_type=EventType.EXIT, ts_utc=utc(2026, 10, 15, 16))
        self.assertEqual(notify_missing_spa(self.store, exit_event), [])

    def test_no_commit_when_all_channels_disabled(self) -> None:
        self.store.settings.rows[1] = make_settings_row(enable_push_notifications=False)

        self.assertEqual(notify_missing_spa(self.store, self.event), [])
        self.assertEqual(self.store.commits, 0)

    def test_notifier_is_callable_hook(self) -> None:
        created = SpaReminderNotifier()(self.store, self.event)
        self.assertEqual(len(created), 1)

    def test_reminder_waits_for_grace_period(self) -> None:
        self.assertEqual(notify_missing_spa(self.store, self.event, now_utc=utc(2026, 10, 15, 8, 14)), [])
        self.assertEqual(self.store.notifications.rows, [])

        self.store.settings.rows[1] = make_settings_row(spa_grace_period_minutes=0)
        created = notify_missing_spa(self.store, self.event, now_utc=utc(2026, 10, 15, 8))
        self.assertEqual(len(created), 1)

    def test_one_reminder_per_employee_site_and_day(self) -> None:
        notify_missing_spa(self.store, self.event, now_utc=utc(2026, 10, 15, 9))
        second_enter = self.store.events.add(
            make_event(employee_id=7, site_id=10, event_type=EventType.ENTER, ts_utc=utc(2026, 10, 15, 13))
        )

        self.assertEqual(notify_missing_spa(self.store, second_enter, now_utc=utc(2026, 10, 15, 14)), [])
        self.assertEqual(len(self.store.notifications.rows), 1)

        other_site = self.store.events.add(
            make_event(employee_id=7, site_id=11, event_type=EventType.ENTER, ts_utc=utc(2026, 10, 15, 13))
        )
        self.assertEqual(len(notify_missing_spa(self.store, other_site, now_utc=utc(2026, 10, 15, 14))), 1)


class DueReminderSweepTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = FakeAttendanceStore()
        self.store.settings.rows[1] = make_settings_row(spa_grace_period_minutes=30)

    def _enter(self, employee_id: int, hour: int, minute: int = 0, **kwargs):  # type: ignore[no-untyped-def]
        return self.store.events.add(
            make_event(
                employee_id=employee_id,
                site_id=10,
                event_type=EventType.ENTER,
                ts_utc=utc(2026, 10, 15, hour, minute),
                **kwargs,
            )
        )

    def test_sweeps_first_enter_past_grace_period(self) -> None:
        due = self._enter(7, 8)
        self._enter(7, 9)
        self._enter(8, 9, 45)
        self._enter(9, 8, is_noise=True)

        created = send_due_spa_reminders(self.store, tenant_id=1, now_utc=utc(2026, 10, 15, 10))

        self.assertEqual([item.employee_id for item in created], [7])
        self.assertEqual(created[0].related_event_id, due.id)

    def test_second_sweep_sends_nothing_new(self) -> None:
        self._enter(7, 8)
        send_due_spa_reminders(self.store, tenant_id=1, now_utc=utc(2026, 10, 15, 10))

        self.assertEqual(send_due_spa_reminders(self.store, tenant_id=1, now_utc=utc(2026, 10, 15, 11)), [])
        self.assertEqual(len(self.store.notifications.rows), 1)

    def test_yesterdays_enters_are_not_swept(self) -> None:
        self.store.events.add(
            make_event(employee_id=7, site_id=10, event_type=EventType.ENTER, ts_utc=utc(2026, 10, 14, 22))
        )

        self.assertEqual(send_due_spa_reminders(self.store, tenant_id=1, now_utc=utc(2026, 10, 15, 0, 10)), [])

    def test_no_settings_row_sends_nothing(self) -> None:
        self.store.settings.rows.clear()
        self._enter(7, 8)

        self.assertEqual(send_due_spa_reminders(self.store, tenant_id=1, now_utc=utc(2026, 10, 15, 10)), [])


if __name__ == "__main__":
    unittest.main()
