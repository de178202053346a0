from __future__ import annotations

from decimal import Decimal
import unittest

from site_attendance.models import AttendanceStatus
from site_attendance.services.status import calculate_utilization, classify_status, utilization_band


def _minutes_for_percent(percent: str, expected_hours: str = "10") -> Decimal:
    return Decimal(percent) / Decimal(100) * Decimal(expected_hours) * Decimal(60)


class UtilizationTests(unittest.TestCase):
    def test_full_day(self) -> None:
        self.assertEqual(calculate_utilization(Decimal("480"), Decimal("8")), Decimal("100.00"))

    def test_zero_expected_hours(self) -> None:
        self.assertEqual(calculate_utilization(Decimal("480"), Decimal("0")), Decimal("0.00"))

    def test_rounds_half_up(self) -> None:
        # 449.97 of 500 minutes is 89.994 percent
        self.assertEqual(calculate_utilization(Decimal("449.97"), Decimal("500") / 60), Decimal("89.99"))
        self.assertEqual(calculate_utilization(Decimal("539.97"), Decimal("10")), Decimal("90.00"))

    def test_classification_uses_rounded_utilization(self) -> None:
        status = classify_status(
            total_minutes=Decimal("539.97"),
            expected_hours=Decimal("10"),
            has_events=True,
            has_open_session=False,
        )
        self.assertEqual(status, AttendanceStatus.EXCELLENT)


class StatusBandTests(unittest.TestCase):
    def test_band_boundaries(self) -> None:
        self.assertEqual(utilization_band(Decimal("90.00")), AttendanceStatus.EXCELLENT)
        self.assertEqual(utilization_band(Decimal("89.99")), AttendanceStatus.GOOD)
        self.assertEqual(utilization_band(Decimal("75.00")), AttendanceStatus.GOOD)
        self.assertEqual(utilization_band(Decimal("74.99")), AttendanceStatus.BELOW_TARGET)
        self.assertEqual(utilization_band(Decimal("0.01")), AttendanceStatus.BELOW_TARGET)
        self.assertIsNone(utilization_band(Decimal("0")))

    def test_classify_excellent_at_ninety_percent(self) -> None:
        status = classify_status(
            total_minutes=_minutes_for_percent("90"),
            expected_hours=Decimal("10"),
            has_events=True,
            has_open_session=False,
        )
        self.assertEqual(status, AttendanceStatus.EXCELLENT)

    def test_classify_good_just_below_ninety(self) -> None:
        status = classify_status(
            total_minutes=_minutes_for_percent("89.99"),
            expected_hours=Decimal("10"),
            has_events=True,
            has_open_session=False,
        )
        self.assertEqual(status, AttendanceStatus.GOOD)

    def test_classify_below_target_just_below_seventy_five(self) -> None:
        status = classify_status(
            total_minutes=_minutes_for_percent("74.99"),
            expected_hours=Decimal("10"),
            has_events=True,
            has_open_session=False,
        )
        self.assertEqual(status, AttendanceStatus.BELOW_TARGET)

    def test_absent_without_events(self) -> None:
        status = classify_status(
            total_minutes=Decimal("0"),
            expected_hours=Decimal("8"),
            has_events=False,
            has_open_session=False,
        )
        self.assertEqual(status, AttendanceStatus.ABSENT)

    def test_open_session_wins_over_utilization(self) -> None:
        status = classify_status(
            total_minutes=Decimal("480"),
            expected_hours=Decimal("8"),
            has_events=True,
            has_open_session=True,
        )
        self.assertEqual(status, AttendanceStatus.INCOMPLETE)

    def test_events_without_time_are_incomplete(self) -> None:
        status = classify_status(
            total_minutes=Decimal("0"),
            expected_hours=Decimal("8"),
            has_events=True,
            has_open_session=False,
        )
        self.assertEqual(status, AttendanceStatus.INCOMPLETE)


if __name__ == "__main__":
    unittest.main()
