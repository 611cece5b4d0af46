from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Iterable, Mapping

from .errors import StorageError
from .normalize import normalized_text_key
from .post import Post, post_from_dict, post_to_dict
from .storage_schema import initialize_sqlite


def _json_dumps(value: object) -> str:
    return json.dumps(
        value,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


class SQLitePostCache:
    """
    Durable backing for the in-memory feed store, keyed by post id.

    Only accepted posts are written here; the feed store remains the source of
    truth while the process runs.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row
        self._lock = Lock()

    @classmethod
    def open(cls, path: str | Path) -> "SQLitePostCache":
        db_path = str(path)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            # The feed store serializes writers; scheduler jobs may run on other threads.
            conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to open sqlite database: {db_path}: {e}") from e

        try:
            initialize_sqlite(conn)
        except Exception as e:
            conn.close()
            raise StorageError(f"Failed to initialize sqlite schema: {e}") from e

        return cls(conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "SQLitePostCache":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def upsert_post(self, post: Post) -> None:
        if not post.id:
            raise ValueError("post id must be non-empty")
        if post.ingested_at is None:
            raise ValueError("only accepted posts (with ingested_at) can be cached")

        try:
            with self._lock, self._conn:
                self._conn.execute(
                    """
                    INSERT INTO cached_posts(
                      post_id, token, text_key, created_at, ingested_at, post_json
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(post_id) DO UPDATE SET
                      token = excluded.token,
                      text_key = excluded.text_key,
                      created_at = excluded.created_at,
                      ingested_at = excluded.ingested_at,
                      post_json = excluded.post_json
                    """.strip(),
                    (
                        post.id,
                        post.token,
                        normalized_text_key(post.text),
                        post.created_at.isoformat(),
                        post.ingested_at.isoformat(),
                        _json_dumps(post_to_dict(post)),
                    ),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to cache post {post.id}: {e}") from e

    def delete_posts(self, post_ids: Iterable[str]) -> int:
        ids = [(pid,) for pid in post_ids if pid]
        if not ids:
            return 0

        try:
            with self._lock, self._conn:
                cur = self._conn.executemany("DELETE FROM cached_posts WHERE post_id = ?", ids)
                return int(cur.rowcount or 0)
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to delete cached posts: {e}") from e

    def purge_ingested_before(self, cutoff: datetime) -> int:
        try:
            with self._lock, self._conn:
                cur = self._conn.execute(
                    "DELETE FROM cached_posts WHERE ingested_at < ?",
                    (cutoff.isoformat(),),
                )
                return int(cur.rowcount or 0)
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to purge cached posts: {e}") from e

    def load_posts(self) -> list[Post]:
        """
        Return cached posts oldest-ingested first. Rows that no longer parse are skipped.
        """
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT post_json FROM cached_posts ORDER BY ingested_at ASC, post_id ASC"
                ).fetchall()
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to read cached posts: {e}") from e

        out: list[Post] = []
        for r in rows:
            try:
                out.append(post_from_dict(json.loads(r["post_json"])))
            except (ValueError, KeyError, TypeError):
                continue
        return out

    def save_state(self, key: str, value: Mapping[str, Any]) -> None:
        if not key:
            raise ValueError("state key must be non-empty")

        try:
            with self._lock, self._conn:
                self._conn.execute(
                    """
                    INSERT INTO fetch_state(state_key, state_json, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(state_key) DO UPDATE SET
                      state_json = excluded.state_json,
                      updated_at = excluded.updated_at
                    """.strip(),
                    (key, _json_dumps(dict(value)), datetime.now(timezone.utc).isoformat()),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to save fetch state {key}: {e}") from e

    def load_state(self, key: str) -> dict[str, Any] | None:
        """Saved mapping for `key`, or None when absent or unreadable."""
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT state_json FROM fetch_state WHERE state_key = ?",
                    (key,),
                ).fetchone()
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to read fetch state {key}: {e}") from e

        if row is None:
            return None
        try:
            value = json.loads(row["state_json"])
        except ValueError:
            return None
        return value if isinstance(value, dict) else None

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(1) FROM cached_posts").fetchone()
        return int(row[0]) if row is not None else 0
