from __future__ import annotations

import asyncio
import logging
import threading
from datetime import date, datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from site_attendance.db import SessionLocal
from site_attendance.errors import ApiError, DailyAttendanceJobError
from site_attendance.repositories import AttendanceStore
from site_attendance.services.clock import normalize_ts, utcnow
from site_attendance.services.daily_attendance import (
    ProcessAttendanceRangeResult,
    backfill_window,
    process_attendance_range,
)
from site_attendance.services.notifications import send_due_spa_reminders
from site_attendance.settings import get_settings

logger = logging.getLogger("site_attendance.job")

SessionFactory = Callable[[], Session]


def due_target_date(now_utc: datetime, last_completed: date | None, run_hour_utc: int) -> date | None:
    """Return the last day of today's processing window, or None when today's run already happened or is not due yet."""
    now = normalize_ts(now_utc)
    if now.hour < run_hour_utc:
        return None
    target = now.date() - timedelta(days=1)
    if last_completed is not None and last_completed >= target:
        return None
    return target


def list_job_tenants(session_factory: SessionFactory = SessionLocal) -> list[int]:
    db = session_factory()
    try:
        return AttendanceStore(db).sites.list_tenant_ids()
    finally:
        db.close()


def run_tenant_daily_job(
    tenant_id: int,
    target_date: date,
    *,
    lookback_days: int | None = None,
    cancel_event: threading.Event | None = None,
    session_factory: SessionFactory = SessionLocal,
) -> ProcessAttendanceRangeResult | None:
    """Process every day in the lookback window ending at ``target_date`` that still has unprocessed events."""
    if lookback_days is None:
        lookback_days = get_settings().daily_job_lookback_days
    from_date, to_date = backfill_window(target_date, lookback_days)

    db = session_factory()
    try:
        return process_attendance_range(
            AttendanceStore(db),
            tenant_id=tenant_id,
            from_date=from_date,
            to_date=to_date,
            cancel_event=cancel_event,
        )
    except (DailyAttendanceJobError, ApiError) as exc:
        logger.error(
            "daily_attendance_tenant_failed",
            extra={
                "tenant_id": tenant_id,
                "from_date": from_date.isoformat(),
                "target_date": to_date.isoformat(),
                "error": str(exc),
            },
        )
        return None
    finally:
        db.close()


async def run_daily_job_tick(
    target_date: date,
    *,
    lookback_days: int | None = None,
    cancel_event: threading.Event | None = None,
    session_factory: SessionFactory = SessionLocal,
) -> list[ProcessAttendanceRangeResult]:
    tenant_ids = await asyncio.to_thread(list_job_tenants, session_factory)
    outcomes = await asyncio.gather(
        *(
            asyncio.to_thread(
                run_tenant_daily_job,
                tenant_id,
                target_date,
                lookback_days=lookback_days,
                cancel_event=cancel_event,
                session_factory=session_factory,
            )
            for tenant_id in tenant_ids
        )
    )
    results = [item for item in outcomes if item is not None]
    logger.info(
        "daily_attendance_tick",
        extra={
            "target_date": target_date.isoformat(),
            "tenants": len(tenant_ids),
            "tenants_failed": len(tenant_ids) - len(results),
            "dates_processed": sum(item.dates_processed for item in results),
            "events_processed": sum(item.events_processed for item in results),
            "errors": sum(len(item.errors) for item in results),
        },
    )
    return results


def run_tenant_reminder_sweep(
    tenant_id: int,
    now_utc: datetime,
    *,
    session_factory: SessionFactory = SessionLocal,
) -> int:
    db = session_factory()
    store = AttendanceStore(db)
    try:
        return len(send_due_spa_reminders(store, tenant_id=tenant_id, now_utc=now_utc))
    except Exception:
        store.rollback()
        logger.exception("spa_reminder_sweep_failed", extra={"tenant_id": tenant_id})
        return 0
    finally:
        db.close()


async def run_spa_reminder_tick(
    now_utc: datetime,
    *,
    session_factory: SessionFactory = SessionLocal,
) -> int:
    tenant_ids = await asyncio.to_thread(list_job_tenants, session_factory)
    counts = await asyncio.gather(
        *(
            asyncio.to_thread(run_tenant_reminder_sweep, tenant_id, now_utc, session_factory=session_factory)
            for tenant_id in tenant_ids
        )
    )
    sent = sum(counts)
    if sent:
        logger.info("spa_reminder_tick", extra={"tenants": len(tenant_ids), "notifications": sent})
    return sent


async def daily_job_worker_loop(stop_event: asyncio.Event, cancel_event: threading.Event) -> None:
    settings = get_settings()
    interval_seconds = max(30, int(settings.daily_job_interval_seconds))
    last_completed: date | None = None
    while not stop_event.is_set():
        now = utcnow()
        target_date = due_target_date(now, last_completed, settings.daily_job_run_hour_utc)
        if target_date is not None:
            try:
                await run_daily_job_tick(
                    target_date,
                    lookback_days=settings.daily_job_lookback_days,
                    cancel_event=cancel_event,
                )
            except Exception:
                logger.exception("daily_job_tick_failed", extra={"target_date": target_date.isoformat()})
            else:
                last_completed = target_date

        if settings.spa_reminder_sweep_enabled:
            try:
                await run_spa_reminder_tick(now)
            except Exception:
                logger.exception("spa_reminder_tick_failed")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue
