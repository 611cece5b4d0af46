from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError

from airshark.feed import FeedService, FilterOptions, get_feed, paginate, sort_posts
from airshark.ingest import IngestionOrchestrator
from airshark.post import Author, Metrics, Post, ScamAssessment
from airshark.scheduler import QueryRotation
from airshark.search_client import SearchPage
from airshark.store import FeedStore

_NOW = datetime(2025, 10, 15, 12, 0, tzinfo=timezone.utc)


def _post(
    post_id: str,
    *,
    token: str | None,
    scam: bool = False,
    verified: bool = False,
    likes: int = 0,
    retweets: int = 0,
    views: int = 0,
    hours_ago: int = 1,
    text: str | None = None,
    user_name: str = "someone",
) -> Post:
    return Post(
        id=post_id,
        url=f"https://x.com/{user_name}/status/{post_id}",
        text=text or f"post {post_id}",
        created_at=_NOW - timedelta(hours=hours_ago),
        author=Author(
            user_name=user_name,
            display_name=user_name.title(),
            profile_image_url="https://img",
            is_verified=verified,
        ),
        metrics=Metrics(likes=likes, retweets=retweets, views=views),
        token=token,
        scam=ScamAssessment(is_suspicious=scam, matched_patterns=("DM solicitation",) if scam else ()),
    )


def _store(*posts: Post) -> FeedStore:
    store = FeedStore(clock=lambda: _NOW)
    for p in posts:
        res = store.accept(p, now=_NOW)
        assert res.accepted, res
    return store


class TestGetFeed(unittest.TestCase):
    def setUp(self) -> None:
        self.store = _store(
            _post("1", token="AAA", likes=10, retweets=1, views=500, hours_ago=3, verified=True),
            _post("2", token="BBB", scam=True, likes=50, views=100, hours_ago=2, user_name="scammer"),
            _post("3", token=None, likes=1, retweets=30, views=50, hours_ago=1, text="gm from the jupiter team"),
            _post("4", token="JUPITER", likes=5, views=9000, hours_ago=26),
        )

    def _ids(self, options: FilterOptions) -> list[str]:
        return [p.id for p in get_feed(self.store, options, now=_NOW)]

    def test_default_is_most_recent_first(self) -> None:
        self.assertEqual(self._ids(FilterOptions()), ["3", "2", "1", "4"])

    def test_both_scam_flags_off_yields_empty(self) -> None:
        opts = FilterOptions(show_scam_posts=False, show_non_scam_posts=False)
        self.assertEqual(self._ids(opts), [])
        self.assertEqual(len(self.store), 4)

    def test_scam_and_verified_filters(self) -> None:
        self.assertEqual(self._ids(FilterOptions(show_non_scam_posts=False)), ["2"])
        self.assertEqual(self._ids(FilterOptions(show_scam_posts=False)), ["3", "1", "4"])
        self.assertEqual(self._ids(FilterOptions(show_non_verified=False)), ["1"])
        self.assertEqual(self._ids(FilterOptions(show_verified=False, show_non_verified=False)), [])

    def test_unknown_token_toggle(self) -> None:
        self.assertEqual(self._ids(FilterOptions(show_unknown_tokens=False)), ["2", "1", "4"])

    def test_search_matches_text_and_author(self) -> None:
        self.assertEqual(self._ids(FilterOptions(search_text="JUPITER")), ["3"])
        self.assertEqual(self._ids(FilterOptions(search_text="scamm")), ["2"])

    def test_token_substring_filter_excludes_unknown(self) -> None:
        self.assertEqual(self._ids(FilterOptions(token_filter="jup")), ["4"])
        self.assertEqual(self._ids(FilterOptions(token_filter="  ")), ["3", "2", "1", "4"])

    def test_min_engagement_and_date(self) -> None:
        self.assertEqual(self._ids(FilterOptions(min_engagement=31)), ["3", "2"])
        self.assertEqual(self._ids(FilterOptions(date_filter=date(2025, 10, 14))), ["4"])

    def test_sort_options(self) -> None:
        self.assertEqual(self._ids(FilterOptions(sort_by="most_likes")), ["2", "1", "4", "3"])
        self.assertEqual(self._ids(FilterOptions(sort_by="most_retweets")), ["3", "1", "2", "4"])
        self.assertEqual(self._ids(FilterOptions(sort_by="most_views")), ["4", "1", "2", "3"])

    def test_get_feed_sweeps_first(self) -> None:
        later = _NOW + timedelta(days=31)
        self.assertEqual(get_feed(self.store, FilterOptions(), now=later), [])
        self.assertEqual(len(self.store), 0)

    def test_invalid_options_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            FilterOptions(sort_by="random")  # type: ignore[arg-type]
        with self.assertRaises(ValidationError):
            FilterOptions(min_engagement=-1)

    def test_sort_rejects_unknown_key(self) -> None:
        with self.assertRaises(ValueError):
            sort_posts([], "random")  # type: ignore[arg-type]


class TestPaginate(unittest.TestCase):
    def test_pages_and_cursor(self) -> None:
        posts = [_post(str(i), token=None) for i in range(5)]

        page, more, cursor = paginate(posts, cursor=None, page_size=2)
        self.assertEqual([p.id for p in page], ["0", "1"])
        self.assertTrue(more)
        self.assertEqual(cursor, "2")

        page, more, cursor = paginate(posts, cursor="4", page_size=2)
        self.assertEqual([p.id for p in page], ["4"])
        self.assertFalse(more)
        self.assertIsNone(cursor)

    def test_invalid_cursor_restarts(self) -> None:
        posts = [_post(str(i), token=None) for i in range(3)]
        page, _, _ = paginate(posts, cursor="garbage", page_size=2)
        self.assertEqual([p.id for p in page], ["0", "1"])


class _FakeClient:
    def __init__(self, items: list[dict[str, Any]]) -> None:
        self.items = items
        self.calls: list[str] = []

    def search(self, query: str, *, cursor: str | None = None) -> SearchPage:
        self.calls.append(query)
        return SearchPage(posts=list(self.items))


class TestFeedService(unittest.TestCase):
    def _service(self, client: _FakeClient, queries: list[str]) -> FeedService:
        store = FeedStore(clock=lambda: _NOW)
        orch = IngestionOrchestrator(client, store, QueryRotation(queries), clock=lambda: _NOW)
        return FeedService(store, orch, page_size=1, clock=lambda: _NOW)

    def test_query_bursts_on_cold_start_only(self) -> None:
        client = _FakeClient(
            [
                {"id": "1", "text": "$AAA up", "createdAt": "2025-10-15T11:00:00Z", "author": {"userName": "a"}},
                {"id": "2", "text": "$BBB up", "createdAt": "2025-10-15T10:00:00Z", "author": {"userName": "b"}},
            ]
        )
        service = self._service(client, ["q1", "q2"])

        first = service.query()
        self.assertEqual(first.newly_accepted_count, 2)
        self.assertEqual([p.id for p in first.posts], ["1"])
        self.assertTrue(first.has_more)
        self.assertEqual(client.calls, ["q1", "q2"])

        second = service.query(cursor=first.next_cursor)
        self.assertEqual(second.newly_accepted_count, 0)
        self.assertEqual([p.id for p in second.posts], ["2"])
        self.assertFalse(second.has_more)
        self.assertIsNone(second.next_cursor)
        self.assertEqual(client.calls, ["q1", "q2"])

    def test_refresh_is_throttled(self) -> None:
        client = _FakeClient([])
        service = self._service(client, ["q1"])

        service.query()
        page = service.refresh()

        self.assertEqual(page.newly_accepted_count, 0)
        self.assertEqual(client.calls, ["q1"])

    def test_without_orchestrator_only_reads(self) -> None:
        store = _store(_post("1", token="AAA"))
        page = FeedService(store, clock=lambda: _NOW).refresh()
        self.assertEqual([p.id for p in page.posts], ["1"])
        self.assertEqual(page.newly_accepted_count, 0)


if __name__ == "__main__":
    unittest.main()
