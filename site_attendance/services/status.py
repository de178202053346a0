from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from site_attendance.models import AttendanceStatus

EXCELLENT_THRESHOLD_PERCENT = Decimal("90")
GOOD_THRESHOLD_PERCENT = Decimal("75")
PERCENT_QUANTUM = Decimal("0.01")


def _as_decimal(value: Decimal | float | int) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def calculate_utilization(
    total_minutes: Decimal | float | int,
    expected_hours: Decimal | float | int,
) -> Decimal:
    expected = _as_decimal(expected_hours)
    if expected <= 0:
        return Decimal("0.00")
    actual_hours = _as_decimal(total_minutes) / Decimal(60)
    return (actual_hours / expected * Decimal(100)).quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


def utilization_band(utilization_percent: Decimal) -> AttendanceStatus | None:
    if utilization_percent >= EXCELLENT_THRESHOLD_PERCENT:
        return AttendanceStatus.EXCELLENT
    if utilization_percent >= GOOD_THRESHOLD_PERCENT:
        return AttendanceStatus.GOOD
    if utilization_percent > 0:
        return AttendanceStatus.BELOW_TARGET
    return None


def classify_status(
    *,
    total_minutes: Decimal | float | int,
    expected_hours: Decimal | float | int,
    has_events: bool,
    has_open_session: bool,
) -> AttendanceStatus:
    if not has_events:
        return AttendanceStatus.ABSENT
    # A day that ends mid-session is incomplete whatever its closed sessions add up to.
    if has_open_session:
        return AttendanceStatus.INCOMPLETE

    band = utilization_band(calculate_utilization(total_minutes, expected_hours))
    if band is None:
        return AttendanceStatus.INCOMPLETE
    return band
