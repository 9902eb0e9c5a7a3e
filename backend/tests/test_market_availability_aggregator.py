from __future__ import annotations

import unittest
from datetime import datetime, time, timezone

from marketday.services.availability.aggregator import aggregate_market_availability
from marketday.services.dto import MarketRecord, ScheduleRecord


def _market(market_id, name, day, start, *, cutoff_hours=None):
    return MarketRecord(
        id=market_id,
        name=name,
        market_type="traditional",
        timezone="America/Chicago",
        cutoff_hours=cutoff_hours,
        active=True,
        schedules=(ScheduleRecord(id=market_id, day_of_week=day, start_time=start, end_time=time(23, 0)),),
    )


# Wednesday 2025-06-04 10:00 CDT.
NOW = datetime(2025, 6, 4, 15, 0, tzinfo=timezone.utc)


class MarketAvailabilityAggregatorTestCase(unittest.TestCase):
    def test_open_markets_sort_first_then_by_name(self):
        markets = [
            _market(1, "zephyr Lane", 6, time(8, 0)),
            _market(2, "Closed Corner", 3, time(22, 0)),  # tonight 22:00, cutoff passed this morning
            _market(3, "apple Orchard", 6, time(9, 0)),
        ]
        result = aggregate_market_availability(markets, NOW)
        self.assertTrue(result.is_accepting_orders)
        self.assertEqual([m.market_name for m in result.markets], ["apple Orchard", "zephyr Lane", "Closed Corner"])
        self.assertFalse(result.markets[-1].is_accepting)

    def test_hours_until_earliest_cutoff(self):
        result = aggregate_market_availability([_market(1, "Sat", 6, time(8, 0))], NOW)
        self.assertFalse(result.closing_soon)
        self.assertEqual(result.hours_until_cutoff, 52.0)

    def test_closing_soon_inside_a_day(self):
        # Thursday 18:00 CDT pickup with an 18h cutoff closes Thursday 00:00 CDT.
        result = aggregate_market_availability([_market(1, "Thu", 4, time(18, 0))], NOW)
        self.assertTrue(result.closing_soon)
        self.assertEqual(result.hours_until_cutoff, 14.0)

    def test_no_open_market(self):
        result = aggregate_market_availability([_market(2, "Closed Corner", 3, time(22, 0))], NOW)
        self.assertFalse(result.is_accepting_orders)
        self.assertIsNone(result.hours_until_cutoff)
        self.assertEqual(len(result.markets), 1)

    def test_no_markets(self):
        result = aggregate_market_availability([], NOW)
        self.assertFalse(result.is_accepting_orders)
        self.assertEqual(result.markets, ())
        self.assertTrue(result.reason)


if __name__ == "__main__":
    unittest.main()
