from __future__ import annotations

import unittest
from datetime import datetime, time, timezone

from marketday.services.availability.calculator import (
    CLOSED_REASON,
    compute_market_availability,
    local_day_of_week,
)
from marketday.services.dto import MarketRecord, ScheduleRecord


def _market(schedules, *, market_type="traditional", cutoff_hours=None, tz="America/Chicago", active=True):
    return MarketRecord(
        id=7,
        name="Riverside",
        market_type=market_type,
        timezone=tz,
        cutoff_hours=cutoff_hours,
        active=active,
        schedules=tuple(
            ScheduleRecord(id=i + 1, day_of_week=day, start_time=start, end_time=end)
            for i, (day, start, end) in enumerate(schedules)
        ),
    )


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


FRIDAY_EVENING = [(5, time(17, 0), time(20, 0))]
SATURDAY_MORNING = [(6, time(8, 0), time(12, 0))]


class MarketAvailabilityCalculatorTestCase(unittest.TestCase):
    def test_pickup_after_dst_end_uses_standard_offset(self):
        result = compute_market_availability(_market(FRIDAY_EVENING), _utc(2025, 11, 1, 17, 0))
        self.assertTrue(result.is_accepting)
        self.assertEqual(result.next_pickup_at, _utc(2025, 11, 7, 23, 0))
        self.assertEqual(result.cutoff_at, _utc(2025, 11, 7, 5, 0))
        self.assertEqual(result.cutoff_hours, 18.0)

    def test_pickup_before_dst_end_uses_daylight_offset(self):
        result = compute_market_availability(_market(FRIDAY_EVENING), _utc(2025, 10, 25, 17, 0))
        self.assertEqual(result.next_pickup_at, _utc(2025, 10, 31, 22, 0))
        self.assertEqual(result.cutoff_at, _utc(2025, 10, 31, 4, 0))

    def test_same_day_after_start_rolls_to_next_week(self):
        # Saturday 09:00 CDT, market started at 08:00.
        result = compute_market_availability(_market(SATURDAY_MORNING), _utc(2025, 6, 7, 14, 0))
        self.assertTrue(result.is_accepting)
        self.assertEqual(result.next_pickup_at, _utc(2025, 6, 14, 13, 0))

    def test_passed_cutoff_closes_market_without_looking_a_week_ahead(self):
        # Friday 15:00 CDT, one hour after the cutoff for Saturday 08:00.
        result = compute_market_availability(_market(SATURDAY_MORNING), _utc(2025, 6, 6, 20, 0))
        self.assertFalse(result.is_accepting)
        self.assertIsNone(result.next_pickup_at)
        self.assertIsNone(result.cutoff_at)
        self.assertEqual(result.reason, CLOSED_REASON)

    def test_earliest_open_schedule_wins(self):
        schedules = SATURDAY_MORNING + [(2, time(16, 0), time(19, 0))]
        wednesday = compute_market_availability(_market(schedules), _utc(2025, 6, 4, 15, 0))
        self.assertEqual(wednesday.next_pickup_at, _utc(2025, 6, 7, 13, 0))
        self.assertEqual(wednesday.start_time, time(8, 0))

        # Saturday's cutoff has passed, so Tuesday's pickup is the next open one.
        friday = compute_market_availability(_market(schedules), _utc(2025, 6, 6, 20, 0))
        self.assertTrue(friday.is_accepting)
        self.assertEqual(friday.next_pickup_at, _utc(2025, 6, 10, 21, 0))
        self.assertEqual(friday.cutoff_at, _utc(2025, 6, 10, 3, 0))

    def test_private_pickup_default_and_market_override(self):
        private = compute_market_availability(_market(SATURDAY_MORNING, market_type="private_pickup"), _utc(2025, 6, 4, 15, 0))
        self.assertEqual(private.cutoff_hours, 10.0)
        self.assertEqual(private.cutoff_at, _utc(2025, 6, 7, 3, 0))

        custom = compute_market_availability(_market(SATURDAY_MORNING, cutoff_hours=2.5), _utc(2025, 6, 4, 15, 0))
        self.assertEqual(custom.cutoff_at, _utc(2025, 6, 7, 10, 30))

    def test_inactive_or_unscheduled_market_is_skipped(self):
        self.assertIsNone(compute_market_availability(_market(SATURDAY_MORNING, active=False), _utc(2025, 6, 4, 15, 0)))
        self.assertIsNone(compute_market_availability(_market([]), _utc(2025, 6, 4, 15, 0)))

    def test_to_dict_renders_utc_and_clock_strings(self):
        payload = compute_market_availability(_market(SATURDAY_MORNING), _utc(2025, 6, 4, 15, 0)).to_dict()
        self.assertEqual(payload["next_pickup_at"], "2025-06-07T13:00:00Z")
        self.assertEqual(payload["cutoff_at"], "2025-06-06T19:00:00Z")
        self.assertEqual(payload["start_time"], "08:00")
        self.assertEqual(payload["end_time"], "12:00")

    def test_local_day_of_week_counts_from_sunday(self):
        self.assertEqual(local_day_of_week(datetime(2025, 6, 8)), 0)
        self.assertEqual(local_day_of_week(datetime(2025, 6, 7)), 6)

    def test_schedule_rejects_out_of_range_day(self):
        with self.assertRaises(ValueError):
            ScheduleRecord(id=1, day_of_week=7, start_time=time(8, 0), end_time=time(9, 0))


if __name__ == "__main__":
    unittest.main()
