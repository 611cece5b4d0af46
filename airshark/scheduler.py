from __future__ import annotations

from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import TYPE_CHECKING, Any, Iterable, Mapping

if TYPE_CHECKING:
    from .run_log import RunLogger

DEFAULT_FETCH_INTERVAL = timedelta(minutes=10)


def _coerce_int(value: object) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0


def _coerce_datetime(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


class QueryRotation:
    """
    Round-robin over a fixed list of search queries with a fetch throttle.

    `should_fetch_now` depends only on the recorded state and the `now` it is
    given; the caller owns the clock.
    """

    def __init__(
        self,
        queries: Iterable[str],
        *,
        fetch_interval: timedelta = DEFAULT_FETCH_INTERVAL,
        logger: RunLogger | None = None,
    ) -> None:
        items = tuple(q for q in (" ".join((q or "").split()) for q in queries) if q)
        if not items:
            raise ValueError("queries must contain at least one non-empty query")
        if fetch_interval <= timedelta(0):
            raise ValueError("fetch_interval must be positive")

        self._queries = items
        self._fetch_interval = fetch_interval
        self._logger = logger

        self._index = 0
        self._last_fetch_at: datetime | None = None
        self._consecutive_empty = 0
        self._lock = Lock()

    @property
    def queries(self) -> tuple[str, ...]:
        return self._queries

    @property
    def current_index(self) -> int:
        with self._lock:
            return self._index

    @property
    def consecutive_empty(self) -> int:
        with self._lock:
            return self._consecutive_empty

    @property
    def last_fetch_at(self) -> datetime | None:
        with self._lock:
            return self._last_fetch_at

    @property
    def has_fetched(self) -> bool:
        return self.last_fetch_at is not None

    def select_next_query(self) -> str:
        with self._lock:
            query = self._queries[self._index]
            self._index = (self._index + 1) % len(self._queries)
            return query

    def should_fetch_now(self, now: datetime) -> bool:
        with self._lock:
            if self._last_fetch_at is None:
                return True
            return now - self._last_fetch_at >= self._fetch_interval

    def mark_fetch_completed(self, now: datetime) -> None:
        """`now` is when the pass started, so the next interval tick is not skipped."""
        with self._lock:
            self._last_fetch_at = now

    def export_state(self) -> dict[str, object]:
        with self._lock:
            return {
                "index": self._index,
                "consecutive_empty": self._consecutive_empty,
                "last_fetch_at": self._last_fetch_at.isoformat() if self._last_fetch_at is not None else None,
            }

    def restore_state(self, state: Mapping[str, Any]) -> None:
        """
        Resume from `export_state` output. An index past the end of the current
        query list restarts the rotation.
        """
        index = _coerce_int(state.get("index"))
        empty = _coerce_int(state.get("consecutive_empty"))
        last = _coerce_datetime(state.get("last_fetch_at"))

        with self._lock:
            self._index = index if 0 <= index < len(self._queries) else 0
            self._consecutive_empty = empty if 0 <= empty < len(self._queries) else 0
            self._last_fetch_at = last

    def record_cycle(self, new_count: int) -> bool:
        """
        Track empty cycles; after a full unproductive rotation, restart from the first query.

        Returns True when the rotation was reset.
        """
        with self._lock:
            if new_count > 0:
                self._consecutive_empty = 0
                return False

            self._consecutive_empty += 1
            if self._consecutive_empty < len(self._queries):
                return False

            self._consecutive_empty = 0
            self._index = 0

        if self._logger is not None:
            self._logger.info("rotation_reset", queries=len(self._queries))
        return True
