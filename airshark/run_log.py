from __future__ import annotations

import json
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, TextIO

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _truncate(text: str, *, limit: int) -> str:
    s = str(text or "")
    if limit <= 0:
        return ""
    if len(s) <= limit:
        return s
    return s[: max(0, limit - 1)] + "…"


class _Sink:
    """Shared, lock-protected JSONL file handle."""

    def __init__(self, path: Path, *, overwrite: bool) -> None:
        self.path = path
        self._overwrite = overwrite
        self._fp: TextIO | None = None
        self._opened = False
        self._lock = Lock()

    def ensure_open(self) -> None:
        with self._lock:
            if self._fp is not None:
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            mode = "w" if self._overwrite and not self._opened else "a"
            self._fp = self.path.open(mode, encoding="utf-8", newline="\n")
            self._opened = True

    def write(self, line: str) -> None:
        self.ensure_open()
        with self._lock:
            if self._fp is None:
                return
            self._fp.write(line + "\n")
            self._fp.flush()

    def close(self) -> None:
        with self._lock:
            if self._fp is not None:
                try:
                    self._fp.flush()
                finally:
                    self._fp.close()
                self._fp = None


class RunLogger:
    """
    JSONL event log for the ingestion pipeline.

    Each line is one JSON object: `ts`, `level`, `event`, `session_id`, any
    bound context (e.g. `query`), and the event's `data`.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        overwrite: bool = True,
        session_id: str | None = None,
        min_level: str = "INFO",
        _sink: _Sink | None = None,
        _context: dict[str, Any] | None = None,
    ) -> None:
        self._sink = _sink or _Sink(Path(path), overwrite=bool(overwrite))
        self._session_id = (session_id or "").strip() or uuid.uuid4().hex
        self._min_level = _LEVELS.get((min_level or "").strip().upper(), _LEVELS["INFO"])
        self._context = dict(_context or {})

    @classmethod
    def open(
        cls,
        path: str | Path,
        *,
        overwrite: bool = True,
        session_id: str | None = None,
        min_level: str = "INFO",
    ) -> "RunLogger":
        logger = cls(path, overwrite=overwrite, session_id=session_id, min_level=min_level)
        logger._sink.ensure_open()
        return logger

    @property
    def path(self) -> Path:
        return self._sink.path

    def bind(self, **context: Any) -> "RunLogger":
        """Return a logger writing to the same file with extra context on every line."""
        merged = dict(self._context)
        merged.update({k: v for k, v in context.items() if v is not None})
        child = RunLogger(
            self._sink.path,
            session_id=self._session_id,
            _sink=self._sink,
            _context=merged,
        )
        child._min_level = self._min_level
        return child

    def close(self) -> None:
        self._sink.close()

    def __enter__(self) -> "RunLogger":
        self._sink.ensure_open()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def debug(self, event: str, **data: Any) -> None:
        self.log("DEBUG", event, **data)

    def info(self, event: str, **data: Any) -> None:
        self.log("INFO", event, **data)

    def warning(self, event: str, **data: Any) -> None:
        self.log("WARN", event, **data)

    def error(self, event: str, **data: Any) -> None:
        self.log("ERROR", event, **data)

    def exception(self, event: str, *, exc: BaseException, **data: Any) -> None:
        err = {
            "type": type(exc).__name__,
            "message": _truncate(str(exc), limit=2000),
            "traceback": _truncate(
                "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                limit=12000,
            ),
        }
        self.log("ERROR", event, error=err, **data)

    def log(self, level: str, event: str, **data: Any) -> None:
        lvl = (level or "").strip().upper() or "INFO"
        if _LEVELS.get(lvl, _LEVELS["INFO"]) < self._min_level:
            return

        record: dict[str, Any] = {
            "ts": _utc_now_iso(),
            "level": lvl,
            "event": (event or "").strip() or "event",
            "session_id": self._session_id,
        }
        record.update(self._context)
        if data:
            record["data"] = data

        self._sink.write(
            json.dumps(
                record,
                ensure_ascii=False,
                sort_keys=True,
                separators=(",", ":"),
                default=str,
            )
        )
