from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return utcnow()

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def utc_day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def utc_range_bounds(from_date: date, to_date: date) -> tuple[datetime, datetime]:
    start, _ = utc_day_bounds(from_date)
    _, end = utc_day_bounds(to_date)
    return start, end
