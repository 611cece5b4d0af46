from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from airshark.rate_limit import HourlyRateLimiter


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


class TestHourlyRateLimiter(unittest.TestCase):
    def test_budget_is_enforced_over_a_rolling_hour(self) -> None:
        clock = _Clock(datetime(2025, 10, 1, tzinfo=timezone.utc))
        limiter = HourlyRateLimiter(2, clock=clock)

        self.assertTrue(limiter.try_acquire())
        clock.now += timedelta(minutes=30)
        self.assertTrue(limiter.try_acquire())
        self.assertFalse(limiter.try_acquire())
        self.assertEqual(limiter.remaining(), 0)

        # First call leaves the window.
        clock.now += timedelta(minutes=30)
        self.assertEqual(limiter.remaining(), 1)
        self.assertTrue(limiter.try_acquire())
        self.assertFalse(limiter.try_acquire())

    def test_rejects_non_positive_budget(self) -> None:
        with self.assertRaises(ValueError):
            HourlyRateLimiter(0)


if __name__ == "__main__":
    unittest.main()
