from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Callable, Iterable, Literal, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .post import Post
from .store import FeedStore

if TYPE_CHECKING:
    from .ingest import IngestionOrchestrator
    from .run_log import RunLogger

SortBy = Literal["most_recent", "most_likes", "most_retweets", "most_views"]

DEFAULT_PAGE_SIZE = 20


class FilterOptions(BaseModel):
    """
    Client-supplied feed filters. Paired show_* flags both False yield an empty feed.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    show_scam_posts: bool = True
    show_non_scam_posts: bool = True
    show_verified: bool = True
    show_non_verified: bool = True
    show_unknown_tokens: bool = True

    search_text: str | None = None
    min_engagement: int = Field(default=0, ge=0)
    date_filter: date | None = None
    token_filter: str | None = None
    sort_by: SortBy = "most_recent"

    @field_validator("search_text", "token_filter")
    @classmethod
    def _blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        s = v.strip()
        return s or None


@dataclass(frozen=True)
class FeedPage:
    posts: Sequence[Post]
    has_more: bool
    next_cursor: str | None
    newly_accepted_count: int = 0


def _matches(post: Post, options: FilterOptions) -> bool:
    if post.scam.is_suspicious:
        if not options.show_scam_posts:
            return False
    elif not options.show_non_scam_posts:
        return False

    if post.author.is_verified:
        if not options.show_verified:
            return False
    elif not options.show_non_verified:
        return False

    if post.token is None and not options.show_unknown_tokens:
        return False

    if options.search_text is not None:
        needle = options.search_text.casefold()
        haystacks = (post.text, post.author.display_name, post.author.user_name)
        if not any(needle in (h or "").casefold() for h in haystacks):
            return False

    if post.metrics.engagement < options.min_engagement:
        return False

    if options.date_filter is not None:
        if post.created_at.astimezone(timezone.utc).date() != options.date_filter:
            return False

    if options.token_filter is not None:
        if post.token is None or options.token_filter.casefold() not in post.token.casefold():
            return False

    return True


def filter_posts(posts: Iterable[Post], options: FilterOptions) -> list[Post]:
    return [p for p in posts if _matches(p, options)]


_SORT_KEYS: dict[str, Callable[[Post], object]] = {
    "most_recent": lambda p: (p.created_at, p.id),
    "most_likes": lambda p: (p.metrics.likes, p.created_at, p.id),
    "most_retweets": lambda p: (p.metrics.retweets, p.created_at, p.id),
    "most_views": lambda p: (p.metrics.views, p.created_at, p.id),
}


def sort_posts(posts: Iterable[Post], sort_by: SortBy = "most_recent") -> list[Post]:
    """Descending by the chosen metric; ties fall back to recency, then id."""
    key = _SORT_KEYS.get(sort_by)
    if key is None:
        raise ValueError(f"Unknown sort_by: {sort_by!r}")
    return sorted(posts, key=key, reverse=True)  # type: ignore[arg-type]


def get_feed(
    store: FeedStore,
    options: FilterOptions | None = None,
    *,
    now: datetime | None = None,
) -> list[Post]:
    """
    Sweep expired records, then return a filtered, sorted copy of the store.
    """
    opts = options or FilterOptions()
    store.sweep(now=now)
    return sort_posts(filter_posts(store.snapshot(), opts), opts.sort_by)


def _parse_cursor(cursor: str | None) -> int:
    if cursor is None:
        return 0
    s = str(cursor).strip()
    if not s.isdigit():
        return 0
    return int(s)


def paginate(posts: Sequence[Post], *, cursor: str | None, page_size: int) -> tuple[list[Post], bool, str | None]:
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    start = _parse_cursor(cursor)
    end = start + page_size
    page = list(posts[start:end])
    has_more = end < len(posts)
    return page, has_more, (str(end) if has_more else None)


class FeedService:
    """
    Outbound feed operations: `query` for a page of the current feed, `refresh`
    to trigger a throttled ingestion pass before answering.
    """

    def __init__(
        self,
        store: FeedStore,
        orchestrator: IngestionOrchestrator | None = None,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        logger: RunLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._store = store
        self._orchestrator = orchestrator
        self._page_size = int(page_size)
        self._logger = logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def query(
        self,
        options: FilterOptions | None = None,
        *,
        cursor: str | None = None,
        page_size: int | None = None,
    ) -> FeedPage:
        newly = 0
        if self._orchestrator is not None and not self._orchestrator.rotation.has_fetched:
            newly = self._orchestrator.run_initial_burst()
        return self._page(options, cursor=cursor, page_size=page_size, newly=newly)

    def refresh(
        self,
        options: FilterOptions | None = None,
        *,
        page_size: int | None = None,
    ) -> FeedPage:
        newly = 0
        if self._orchestrator is not None:
            newly = self._orchestrator.run_if_due(now=self._clock())
        return self._page(options, cursor=None, page_size=page_size, newly=newly)

    def _page(
        self,
        options: FilterOptions | None,
        *,
        cursor: str | None,
        page_size: int | None,
        newly: int,
    ) -> FeedPage:
        posts = get_feed(self._store, options, now=self._clock())
        page, has_more, next_cursor = paginate(posts, cursor=cursor, page_size=page_size or self._page_size)
        if self._logger is not None:
            self._logger.debug("feed_served", matched=len(posts), returned=len(page), newly_accepted=newly)
        return FeedPage(posts=page, has_more=has_more, next_cursor=next_cursor, newly_accepted_count=newly)
