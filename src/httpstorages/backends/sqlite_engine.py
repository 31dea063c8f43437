"""Single-file engine on the standard library :mod:`sqlite3`.

SQLite has no native TTL, so every row carries an ``expires_at`` column and
expired rows are treated as absent on read and deleted lazily. Each write is
one ``INSERT OR REPLACE`` inside its own transaction, which gives the atomic
per-key replacement the storer relies on.

One connection is shared by all threads (``check_same_thread=False``) and
serialised by a lock; WAL journaling keeps readers in other processes from
blocking on writers.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from httpstorages.exceptions import BackendIOError, InitFailure
from httpstorages.models import CacheEntry

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS entries (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL,
    expires_at REAL,
    stored_at REAL NOT NULL
)
"""


class SqliteEngine:
    """Key-value engine storing entries in one SQLite database file.

    Args:
        path: Database file, or ``":memory:"``. Parent directories are
            created on :meth:`open`.
        timeout: Seconds to wait on a locked database before failing.
    """

    name = "sqlite"

    def __init__(self, path: str | Path, timeout: float = 5.0) -> None:
        self._path = str(path)
        self._timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def location(self) -> Optional[str]:
        return self._path

    def open(self) -> None:
        with self._lock:
            if self._conn is not None:
                return
            try:
                if self._path != ":memory:":
                    Path(self._path).parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    self._path, timeout=self._timeout, check_same_thread=False
                )
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute(_SCHEMA)
                conn.commit()
            except (OSError, sqlite3.Error) as exc:
                raise InitFailure(f"Cannot open sqlite storage at {self._path}: {exc}") from exc
            self._conn = conn
        logger.debug("Opened sqlite database %s", self._path)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def _cursor(self, operation: str, key: str = "") -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._conn is None:
                raise BackendIOError("sqlite storage is not open")
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as exc:
                target = f" '{key}'" if key else ""
                raise BackendIOError(f"sqlite {operation}{target} failed: {exc}") from exc

    def raw_get(self, key: str) -> Optional[bytes]:
        with self._cursor("read", key) as conn:
            row = conn.execute(
                "SELECT value, expires_at, stored_at FROM entries WHERE key = ?", (key,)
            ).fetchone()
            if row is None:
                return None
            entry = CacheEntry(raw_bytes=row[0], expires_at=row[1], stored_at=row[2])
            if entry.is_expired():
                conn.execute(
                    "DELETE FROM entries WHERE key = ? AND expires_at = ?", (key, row[1])
                )
                return None
            return entry.raw_bytes

    def raw_set(self, key: str, value: bytes, expires_at: Optional[float]) -> None:
        entry = CacheEntry(raw_bytes=value, expires_at=expires_at)
        with self._cursor("write", key) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO entries (key, value, expires_at, stored_at) "
                "VALUES (?, ?, ?, ?)",
                (key, sqlite3.Binary(entry.raw_bytes), entry.expires_at, entry.stored_at),
            )

    def raw_delete(self, key: str) -> None:
        with self._cursor("delete", key) as conn:
            conn.execute("DELETE FROM entries WHERE key = ?", (key,))

    def raw_iterate(self, prefix: str = "") -> Iterator[tuple[str, bytes]]:
        with self._cursor("iterate") as conn:
            rows = conn.execute(
                "SELECT key, value FROM entries "
                "WHERE substr(key, 1, ?) = ? AND (expires_at IS NULL OR expires_at > ?) "
                "ORDER BY key",
                (len(prefix), prefix, time.time()),
            ).fetchall()
        for key, value in rows:
            yield key, bytes(value)

    def raw_clear(self) -> None:
        with self._cursor("clear") as conn:
            conn.execute("DELETE FROM entries")

    def raw_len(self) -> int:
        with self._cursor("count") as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM entries WHERE expires_at IS NULL OR expires_at > ?",
                (time.time(),),
            ).fetchone()
        return int(row[0])
