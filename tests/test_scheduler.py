from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from airshark.scheduler import QueryRotation

_T0 = datetime(2025, 10, 1, 12, 0, tzinfo=timezone.utc)


class TestQueryRotation(unittest.TestCase):
    def test_round_robin(self) -> None:
        rot = QueryRotation(["a", "b", "c"])
        self.assertEqual([rot.select_next_query() for _ in range(5)], ["a", "b", "c", "a", "b"])
        self.assertEqual(rot.current_index, 2)

    def test_blank_queries_are_dropped(self) -> None:
        rot = QueryRotation(["  ", "(airdrop   solana)"])
        self.assertEqual(rot.queries, ("(airdrop solana)",))

        with self.assertRaises(ValueError):
            QueryRotation(["", "   "])

    def test_should_fetch_now_throttle(self) -> None:
        rot = QueryRotation(["a"], fetch_interval=timedelta(minutes=10))
        self.assertTrue(rot.should_fetch_now(_T0))
        self.assertFalse(rot.has_fetched)

        rot.mark_fetch_completed(_T0)
        self.assertTrue(rot.has_fetched)
        self.assertFalse(rot.should_fetch_now(_T0 + timedelta(minutes=9, seconds=59)))
        self.assertTrue(rot.should_fetch_now(_T0 + timedelta(minutes=10)))

    def test_full_empty_rotation_resets_to_first_query(self) -> None:
        rot = QueryRotation(["a", "b", "c"])
        rot.select_next_query()
        rot.select_next_query()

        self.assertFalse(rot.record_cycle(0))
        self.assertFalse(rot.record_cycle(0))
        self.assertEqual(rot.consecutive_empty, 2)
        self.assertTrue(rot.record_cycle(0))

        self.assertEqual(rot.consecutive_empty, 0)
        self.assertEqual(rot.select_next_query(), "a")

    def test_productive_cycle_clears_empty_streak(self) -> None:
        rot = QueryRotation(["a", "b"])
        rot.record_cycle(0)
        rot.record_cycle(3)
        self.assertEqual(rot.consecutive_empty, 0)
        self.assertFalse(rot.record_cycle(0))


if __name__ == "__main__":
    unittest.main()
