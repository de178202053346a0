from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from site_attendance.models import (
    AttendanceEvent,
    AttendanceNotification,
    EventType,
    NotificationReason,
    NotificationType,
)
from site_attendance.services.clock import normalize_ts, utc_day_bounds, utcnow
from site_attendance.services.tenant_settings import resolve_tenant_settings

if TYPE_CHECKING:
    from site_attendance.models import AttendanceSettings
    from site_attendance.repositories import AttendanceStore

logger = logging.getLogger("site_attendance.notifications")

EMAIL_NOT_CONFIGURED = "Email delivery is not configured for site attendance."
SMS_NOT_CONFIGURED = "SMS provider not configured."


def _enabled_channels(settings_row: AttendanceSettings) -> list[NotificationType]:
    channels: list[NotificationType] = []
    if settings_row.enable_push_notifications:
        channels.append(NotificationType.PUSH)
    if settings_row.enable_email_notifications:
        channels.append(NotificationType.EMAIL)
    if settings_row.enable_sms_notifications:
        channels.append(NotificationType.SMS)
    return channels


def _deliver(
    channel: NotificationType,
    notification: AttendanceNotification,
    *,
    title: str,
    deep_link: str,
) -> None:
    if channel == NotificationType.PUSH:
        logger.info(
            "push_notification_queued",
            extra={
                "tenant_id": notification.tenant_id,
                "employee_id": notification.employee_id,
                "title": title,
                "deep_link": deep_link,
                "related_event_id": notification.related_event_id,
            },
        )
        notification.delivered = True
        return

    notification.delivered = False
    notification.error_message = EMAIL_NOT_CONFIGURED if channel == NotificationType.EMAIL else SMS_NOT_CONFIGURED


def reminder_due_at(event: AttendanceEvent, grace_period_minutes: int) -> datetime:
    return normalize_ts(event.ts_utc) + timedelta(minutes=max(0, grace_period_minutes))


def notify_missing_spa(
    store: AttendanceStore,
    event: AttendanceEvent,
    *,
    now_utc: datetime | None = None,
) -> list[AttendanceNotification]:
    """Record a reminder per enabled channel when an Enter has no site photo attendance yet.

    Nothing is sent before the tenant's SPA grace period after the Enter has
    passed, and an employee gets at most one reminder per site and day.
    """
    if event.event_type != EventType.ENTER or event.is_noise:
        return []

    settings_row = store.settings.get(event.tenant_id)
    if settings_row is None:
        return []

    sent_at = normalize_ts(now_utc) if now_utc is not None else utcnow()
    grace_minutes = resolve_tenant_settings(store, event.tenant_id).spa_grace_period_minutes
    due_at = reminder_due_at(event, grace_minutes)
    if sent_at < due_at:
        logger.debug(
            "spa_reminder_deferred",
            extra={"tenant_id": event.tenant_id, "event_id": event.id, "due_at": due_at},
        )
        return []

    event_day = normalize_ts(event.ts_utc).date()
    if store.spa.exists(event.tenant_id, event.employee_id, event.site_id, event_day):
        return []
    if store.notifications.has_missing_spa_reminder(event.tenant_id, event.employee_id, event.site_id, event_day):
        return []

    deep_link = f"/attendance/spa/new?siteId={event.site_id}"
    created: list[AttendanceNotification] = []
    for channel in _enabled_channels(settings_row):
        notification = AttendanceNotification(
            tenant_id=event.tenant_id,
            employee_id=event.employee_id,
            notification_type=channel,
            reason=NotificationReason.MISSING_SPA,
            message=settings_row.notification_message,
            sent_at=sent_at,
            delivered=False,
            related_event_id=event.id,
        )
        _deliver(channel, notification, title=settings_row.notification_title, deep_link=deep_link)
        store.notifications.add(notification)
        created.append(notification)

    if created:
        store.commit()
        logger.info(
            "missing_spa_notifications_recorded",
            extra={
                "tenant_id": event.tenant_id,
                "employee_id": event.employee_id,
                "site_id": event.site_id,
                "event_id": event.id,
                "channels": [item.notification_type.value for item in created],
            },
        )
    return created


def send_due_spa_reminders(
    store: AttendanceStore,
    *,
    tenant_id: int,
    now_utc: datetime | None = None,
) -> list[AttendanceNotification]:
    """Remind everyone whose first Enter today is past the grace period and who has no SPA yet."""
    settings_row = store.settings.get(tenant_id)
    if settings_row is None:
        return []

    now = normalize_ts(now_utc) if now_utc is not None else utcnow()
    day_start, _ = utc_day_bounds(now.date())
    grace_minutes = resolve_tenant_settings(store, tenant_id).spa_grace_period_minutes
    cutoff = now - timedelta(minutes=grace_minutes)
    if cutoff < day_start:
        return []

    first_enters: dict[tuple[int, int], AttendanceEvent] = {}
    for event in store.events.list_enters_between(tenant_id, day_start, cutoff):
        first_enters.setdefault((event.employee_id, event.site_id), event)

    created: list[AttendanceNotification] = []
    for event in first_enters.values():
        created.extend(notify_missing_spa(store, event, now_utc=now))
    return created


class SpaReminderNotifier:
    """Enter-event hook that reminds employees to submit site photo attendance."""

    def check_and_notify(self, store: AttendanceStore, event: AttendanceEvent) -> list[AttendanceNotification]:
        return notify_missing_spa(store, event)

    def __call__(self, store: AttendanceStore, event: AttendanceEvent) -> list[AttendanceNotification]:
        return self.check_and_notify(store, event)
