from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import TYPE_CHECKING, Callable, Literal

from .errors import StorageError
from .normalize import normalized_text_key
from .post import Post

if TYPE_CHECKING:
    from .run_log import RunLogger
    from .storage import SQLitePostCache

DEFAULT_STALENESS = timedelta(days=7)
DEFAULT_RETENTION = timedelta(days=30)

AcceptReason = Literal[
    "accepted",
    "replaced",
    "malformed",
    "stale",
    "duplicate_id",
    "duplicate_text",
    "unknown_token",
    "outranked",
]


@dataclass(frozen=True)
class StoredPost:
    post: Post
    timestamp: datetime
    score: float


@dataclass(frozen=True)
class AcceptResult:
    accepted: bool
    reason: AcceptReason
    replaced_id: str | None = None


def rank_key(post: Post) -> tuple[float, datetime, str]:
    """
    Total order used to pick a token's representative: score, then recency, then id.
    """
    return (post.quality_score, post.created_at, post.id)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FeedStore:
    """
    In-memory retained post set with three indexes kept in lockstep:

    - post id -> StoredPost
    - normalized text keys
    - token -> representative post id

    `accept` and `sweep` are the only mutators and run under one lock, so
    readers always see all three indexes in agreement.
    """

    def __init__(
        self,
        *,
        staleness: timedelta = DEFAULT_STALENESS,
        retention: timedelta = DEFAULT_RETENTION,
        keep_unknown_tokens: bool = True,
        cache: SQLitePostCache | None = None,
        logger: RunLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if staleness <= timedelta(0):
            raise ValueError("staleness must be positive")
        if retention < staleness:
            raise ValueError("retention must be >= staleness")

        self._staleness = staleness
        self._retention = retention
        self._keep_unknown_tokens = bool(keep_unknown_tokens)
        self._cache = cache
        self._logger = logger
        self._clock = clock or _utc_now

        self._by_id: dict[str, StoredPost] = {}
        self._text_keys: set[str] = set()
        self._by_token: dict[str, str] = {}
        self._lock = RLock()

    @property
    def staleness(self) -> timedelta:
        return self._staleness

    @property
    def retention(self) -> timedelta:
        return self._retention

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)

    def __contains__(self, post_id: object) -> bool:
        with self._lock:
            return post_id in self._by_id

    def accept(self, post: Post, *, now: datetime | None = None) -> AcceptResult:
        """
        Try to admit one normalized post. Never raises.

        Rejection reasons are checked in order: malformed, stale, duplicate_id,
        duplicate_text, unknown_token, outranked.
        """
        ts = now or self._clock()
        try:
            with self._lock:
                result = self._admit(post, now=ts, enforce_staleness=True, persist=True)
        except Exception as e:
            if self._logger is not None:
                self._logger.exception("post_rejected", exc=e, post_id=getattr(post, "id", None), reason="malformed")
            return AcceptResult(accepted=False, reason="malformed")

        self._log_result(post, result)
        return result

    def sweep(self, *, now: datetime | None = None) -> int:
        """
        Drop every record ingested longer ago than the retention ceiling.

        Returns how many records were removed; running it twice in a row is a no-op the second time.
        """
        ts = now or self._clock()
        cutoff = ts - self._retention

        with self._lock:
            expired = [pid for pid, rec in self._by_id.items() if rec.timestamp < cutoff]
            for pid in expired:
                self._remove(pid)

            if expired and self._cache is not None:
                try:
                    self._cache.delete_posts(expired)
                except StorageError as e:
                    self._log_cache_failure("delete", e)

            remaining = len(self._by_id)

        if self._logger is not None:
            self._logger.info("sweep_completed", removed=len(expired), remaining=remaining)
        return len(expired)

    def snapshot(self) -> list[Post]:
        """Copy of every retained post, oldest-ingested first."""
        with self._lock:
            records = list(self._by_id.values())
        return [r.post for r in records]

    def representative(self, token: str) -> Post | None:
        key = (token or "").strip().upper()
        with self._lock:
            pid = self._by_token.get(key)
            if pid is None:
                return None
            return self._by_id[pid].post

    def representatives(self) -> dict[str, Post]:
        with self._lock:
            return {tok: self._by_id[pid].post for tok, pid in self._by_token.items()}

    def load_from_cache(self, *, now: datetime | None = None) -> int:
        """
        Rehydrate from the durable cache, applying the retention ceiling first.

        Cached posts go through the same index rules as new ones, except the
        staleness window, which only gates fresh ingestion.
        """
        if self._cache is None:
            return 0

        ts = now or self._clock()
        self._cache.purge_ingested_before(ts - self._retention)
        cached = self._cache.load_posts()

        loaded = 0
        with self._lock:
            for post in cached:
                result = self._admit(post, now=ts, enforce_staleness=False, persist=False)
                if result.accepted:
                    loaded += 1
        return loaded

    def _admit(
        self,
        post: Post,
        *,
        now: datetime,
        enforce_staleness: bool,
        persist: bool,
    ) -> AcceptResult:
        if post.is_degraded or not post.id or not post.text.strip():
            return AcceptResult(accepted=False, reason="malformed")

        if enforce_staleness and now - post.created_at > self._staleness:
            return AcceptResult(accepted=False, reason="stale")

        if post.id in self._by_id:
            return AcceptResult(accepted=False, reason="duplicate_id")

        text_key = normalized_text_key(post.text)
        if text_key in self._text_keys:
            return AcceptResult(accepted=False, reason="duplicate_text")

        if post.token is None and not self._keep_unknown_tokens:
            return AcceptResult(accepted=False, reason="unknown_token")

        replaced_id: str | None = None
        if post.token is not None:
            current_id = self._by_token.get(post.token)
            if current_id is not None:
                current = self._by_id[current_id].post
                if rank_key(post) <= rank_key(current):
                    return AcceptResult(accepted=False, reason="outranked")
                replaced_id = current_id

        stored = post if post.ingested_at is not None else dataclasses.replace(post, ingested_at=now)
        assert stored.ingested_at is not None

        if replaced_id is not None:
            self._remove(replaced_id)

        self._by_id[stored.id] = StoredPost(post=stored, timestamp=stored.ingested_at, score=stored.quality_score)
        self._text_keys.add(text_key)
        if stored.token is not None:
            self._by_token[stored.token] = stored.id

        if persist and self._cache is not None:
            self._persist(stored, replaced_id)

        if replaced_id is not None:
            return AcceptResult(accepted=True, reason="replaced", replaced_id=replaced_id)
        return AcceptResult(accepted=True, reason="accepted")

    def _remove(self, post_id: str) -> None:
        rec = self._by_id.pop(post_id, None)
        if rec is None:
            return
        self._text_keys.discard(normalized_text_key(rec.post.text))
        token = rec.post.token
        if token is not None and self._by_token.get(token) == post_id:
            del self._by_token[token]

    def _persist(self, stored: Post, replaced_id: str | None) -> None:
        assert self._cache is not None
        try:
            self._cache.upsert_post(stored)
            if replaced_id is not None:
                self._cache.delete_posts([replaced_id])
        except StorageError as e:
            self._log_cache_failure("upsert", e, post_id=stored.id)

    def _log_cache_failure(self, op: str, err: BaseException, **data: object) -> None:
        if self._logger is not None:
            self._logger.warning("cache_write_failed", op=op, error=str(err), **data)

    def _log_result(self, post: Post, result: AcceptResult) -> None:
        if self._logger is None:
            return

        data = {
            "post_id": post.id,
            "token": post.token,
            "quality_score": post.quality_score,
        }
        if result.reason == "replaced":
            self._logger.info("post_replaced", replaced_id=result.replaced_id, **data)
        elif result.accepted:
            self._logger.info("post_accepted", **data)
        else:
            self._logger.debug("post_rejected", reason=result.reason, **data)
