from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Protocol

from site_attendance.models import EventType
from site_attendance.services.clock import normalize_ts

MINUTES_QUANTUM = Decimal("0.01")


class PresenceEvent(Protocol):
    event_type: EventType
    ts_utc: datetime
    is_noise: bool


@dataclass(frozen=True, slots=True)
class TimeOnSite:
    total_minutes: Decimal
    closed_sessions: int
    open_session: bool
    unmatched_exits: int

    @property
    def total_hours(self) -> Decimal:
        return self.total_minutes / Decimal(60)


@dataclass(frozen=True, slots=True)
class DayPresence:
    time_on_site: TimeOnSite
    first_entry_utc: datetime | None
    last_exit_utc: datetime | None
    entry_count: int
    exit_count: int

    @property
    def has_events(self) -> bool:
        return (self.entry_count + self.exit_count) > 0


ZERO_TIME_ON_SITE = TimeOnSite(
    total_minutes=Decimal("0.00"),
    closed_sessions=0,
    open_session=False,
    unmatched_exits=0,
)


def _ordered_presence_events(events: Iterable[PresenceEvent]) -> list[PresenceEvent]:
    return sorted(
        (event for event in events if not event.is_noise),
        key=lambda event: normalize_ts(event.ts_utc),
    )


def calculate_time_on_site(events: Iterable[PresenceEvent]) -> TimeOnSite:
    """Pair each Enter with the next Exit and sum the closed sessions.

    A second Enter before any Exit discards the first one, so an unclosed
    session never contributes time. Exits with nothing open are ignored.
    Day bucketing is the caller's job: every event passed in counts.
    """
    ordered = _ordered_presence_events(events)
    if not ordered:
        return ZERO_TIME_ON_SITE

    total_seconds = Decimal(0)
    closed_sessions = 0
    unmatched_exits = 0
    open_entry: datetime | None = None

    for event in ordered:
        ts = normalize_ts(event.ts_utc)
        if event.event_type == EventType.ENTER:
            open_entry = ts
            continue

        if open_entry is None:
            unmatched_exits += 1
            continue

        duration_seconds = Decimal(str((ts - open_entry).total_seconds()))
        if duration_seconds > 0:
            total_seconds += duration_seconds
        closed_sessions += 1
        open_entry = None

    total_minutes = (total_seconds / Decimal(60)).quantize(MINUTES_QUANTUM, rounding=ROUND_HALF_UP)
    return TimeOnSite(
        total_minutes=total_minutes,
        closed_sessions=closed_sessions,
        open_session=open_entry is not None,
        unmatched_exits=unmatched_exits,
    )


def summarize_presence(events: Iterable[PresenceEvent]) -> DayPresence:
    ordered = _ordered_presence_events(events)
    entries = [normalize_ts(event.ts_utc) for event in ordered if event.event_type == EventType.ENTER]
    exits = [normalize_ts(event.ts_utc) for event in ordered if event.event_type == EventType.EXIT]
    return DayPresence(
        time_on_site=calculate_time_on_site(ordered),
        first_entry_utc=min(entries) if entries else None,
        last_exit_utc=max(exits) if exits else None,
        entry_count=len(entries),
        exit_count=len(exits),
    )
