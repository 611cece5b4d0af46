from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import TYPE_CHECKING, Any, Callable, Mapping, Protocol

from .errors import StorageError
from .fetch_errors import FailureKind, classify_fetch_failure
from .normalize import normalize
from .rate_limit import HourlyRateLimiter
from .scheduler import QueryRotation
from .search_client import SearchClient
from .store import FeedStore

if TYPE_CHECKING:
    from .run_log import RunLogger

DEFAULT_MAX_INCREMENTAL_CYCLES = 10

ROTATION_STATE_KEY = "rotation"
RATE_LIMIT_STATE_KEY = "rate_limit"


class FetchStateStore(Protocol):
    def load_state(self, key: str) -> dict[str, Any] | None: ...

    def save_state(self, key: str, value: Mapping[str, Any]) -> None: ...


@dataclass(frozen=True)
class CycleResult:
    query: str
    fetched: int = 0
    accepted: int = 0
    failure_kind: FailureKind | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.failure_kind is None and not self.skipped


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamps(values: object) -> list[datetime]:
    if not isinstance(values, list):
        return []
    out: list[datetime] = []
    for v in values:
        if not isinstance(v, str):
            continue
        try:
            ts = datetime.fromisoformat(v)
        except ValueError:
            continue
        out.append(ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc))
    return out


class IngestionOrchestrator:
    """
    Drives fetch cycles: search, normalize each record, offer it to the store.

    Every provider failure is absorbed here and reported as a zero-count cycle.
    Fetches never overlap; a second caller waits for the one in flight.
    """

    def __init__(
        self,
        client: SearchClient,
        store: FeedStore,
        rotation: QueryRotation,
        *,
        rate_limiter: HourlyRateLimiter | None = None,
        max_incremental_cycles: int = DEFAULT_MAX_INCREMENTAL_CYCLES,
        state_store: FetchStateStore | None = None,
        logger: RunLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_incremental_cycles <= 0:
            raise ValueError("max_incremental_cycles must be positive")

        self._client = client
        self._store = store
        self._rotation = rotation
        self._rate_limiter = rate_limiter
        self._max_incremental_cycles = int(max_incremental_cycles)
        self._state_store = state_store
        self._logger = logger
        self._clock = clock or _utc_now
        self._fetch_lock = Lock()

    @property
    def store(self) -> FeedStore:
        return self._store

    @property
    def rotation(self) -> QueryRotation:
        return self._rotation

    def run_fetch_cycle(self, query: str) -> int:
        """Run one search for `query`; returns the number of newly accepted posts."""
        return self.fetch_cycle(query).accepted

    def fetch_cycle(self, query: str) -> CycleResult:
        with self._fetch_lock:
            return self._fetch_cycle_locked(query)

    def run_initial_burst(self, *, now: datetime | None = None) -> int:
        """Search every query once, in rotation order, to populate a cold store."""
        started = now or self._clock()
        total = 0
        for query in self._rotation.queries:
            total += self.run_fetch_cycle(query)
        self._finish_pass(started)
        return total

    def run_incremental_cycle(self, max_cycles: int | None = None, *, now: datetime | None = None) -> int:
        """
        Advance the rotation one query at a time until a cycle adds nothing or the cap is hit.
        """
        limit = self._max_incremental_cycles if max_cycles is None else int(max_cycles)
        if limit <= 0:
            raise ValueError("max_cycles must be positive")

        started = now or self._clock()
        total = 0
        for _ in range(limit):
            query = self._rotation.select_next_query()
            accepted = self.run_fetch_cycle(query)
            total += accepted
            self._rotation.record_cycle(accepted)
            if accepted == 0:
                break

        self._finish_pass(started)
        return total

    def run_if_due(self, *, now: datetime | None = None) -> int:
        """
        Fetch only when the throttle allows it: the full burst on a cold start, otherwise an incremental pass.
        """
        ts = now or self._clock()
        if not self._rotation.should_fetch_now(ts):
            return 0
        return self.run_pass(now=ts)

    def run_pass(self, *, now: datetime | None = None) -> int:
        """Unthrottled pass: the burst on a cold start, otherwise an incremental pass."""
        ts = now or self._clock()
        if not self._rotation.has_fetched:
            return self.run_initial_burst(now=ts)
        return self.run_incremental_cycle(now=ts)

    def load_state(self) -> bool:
        """
        Restore rotation and call-budget state saved by an earlier process.

        Returns True when saved rotation state was found.
        """
        if self._state_store is None:
            return False

        try:
            rotation = self._state_store.load_state(ROTATION_STATE_KEY)
            budget = self._state_store.load_state(RATE_LIMIT_STATE_KEY)
        except StorageError as e:
            if self._logger is not None:
                self._logger.warning("fetch_state_read_failed", error=str(e))
            return False

        if rotation is not None:
            self._rotation.restore_state(rotation)
        if budget is not None and self._rate_limiter is not None:
            self._rate_limiter.restore(_parse_timestamps(budget.get("calls")))

        if self._logger is not None:
            self._logger.info(
                "fetch_state_loaded",
                found=rotation is not None,
                query_index=self._rotation.current_index,
                last_fetch_at=(rotation or {}).get("last_fetch_at"),
            )
        return rotation is not None

    def _finish_pass(self, started: datetime) -> None:
        # The pass start, not its end, anchors the throttle.
        self._rotation.mark_fetch_completed(started)
        self._save_state()

    def _save_state(self) -> None:
        if self._state_store is None:
            return
        try:
            self._state_store.save_state(ROTATION_STATE_KEY, self._rotation.export_state())
            if self._rate_limiter is not None:
                calls = [ts.isoformat() for ts in self._rate_limiter.call_history()]
                self._state_store.save_state(RATE_LIMIT_STATE_KEY, {"calls": calls})
        except StorageError as e:
            if self._logger is not None:
                self._logger.warning("fetch_state_write_failed", error=str(e))

    def _fetch_cycle_locked(self, query: str) -> CycleResult:
        log = self._logger.bind(query=query) if self._logger is not None else None

        if self._rate_limiter is not None and not self._rate_limiter.try_acquire():
            if log is not None:
                log.warning("fetch_skipped_rate_limit", max_calls_per_hour=self._rate_limiter.max_calls)
            return CycleResult(query=query, skipped=True)

        if log is not None:
            log.info("fetch_cycle_started")

        try:
            page = self._client.search(query)
        except Exception as e:
            kind = classify_fetch_failure(e)
            if log is not None:
                self._log_failure(log, kind, e)
            return CycleResult(query=query, failure_kind=kind)

        now = self._clock()
        fetched = 0
        accepted = 0
        replaced = 0
        rejected: dict[str, int] = {}

        for item in page.posts:
            fetched += 1
            post = normalize(item, search_query=query, now=now, logger=log)
            result = self._store.accept(post, now=now)
            if result.accepted:
                accepted += 1
                if result.replaced_id is not None:
                    replaced += 1
            else:
                rejected[result.reason] = rejected.get(result.reason, 0) + 1

        if log is not None:
            log.info(
                "fetch_cycle_completed",
                fetched=fetched,
                accepted=accepted,
                replaced=replaced,
                rejected=rejected,
                has_next_page=page.has_next_page,
            )
        return CycleResult(query=query, fetched=fetched, accepted=accepted)

    @staticmethod
    def _log_failure(log: RunLogger, kind: FailureKind, err: BaseException) -> None:
        status = getattr(err, "status_code", None)
        if kind == "unexpected":
            log.exception("fetch_cycle_failed", exc=err, failure_kind=kind)
        elif kind == "auth":
            log.error("fetch_cycle_failed", failure_kind=kind, status_code=status, error=str(err))
        else:
            log.warning("fetch_cycle_failed", failure_kind=kind, status_code=status, error=str(err))
