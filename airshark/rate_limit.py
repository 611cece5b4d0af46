"""
Rolling-window call budget shared by every outgoing provider request.
"""
from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HourlyRateLimiter:
    def __init__(
        self,
        max_calls: int,
        *,
        window: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_calls <= 0:
            raise ValueError("max_calls must be positive")
        self._max_calls = int(max_calls)
        self._window = window
        self._clock = clock or _utc_now
        self._calls: deque[datetime] = deque()
        self._lock = threading.Lock()

    @property
    def max_calls(self) -> int:
        return self._max_calls

    def _prune(self, now: datetime) -> None:
        cutoff = now - self._window
        while self._calls and self._calls[0] <= cutoff:
            self._calls.popleft()

    def remaining(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return self._max_calls - len(self._calls)

    def call_history(self) -> list[datetime]:
        """Timestamps of the calls still inside the window, oldest first."""
        with self._lock:
            self._prune(self._clock())
            return list(self._calls)

    def restore(self, calls: Iterable[datetime]) -> None:
        """Replace the recorded calls, e.g. with history saved by an earlier process."""
        with self._lock:
            self._calls = deque(sorted(calls))
            self._prune(self._clock())
            while len(self._calls) > self._max_calls:
                self._calls.popleft()

    def try_acquire(self) -> bool:
        """Record one call if the budget allows it; never blocks."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._calls) >= self._max_calls:
                return False
            self._calls.append(now)
            return True
