"""Disk-backed engine built on :mod:`diskcache`.

:class:`diskcache.Cache` already provides what the storer needs: native
per-key expiry and a directory that survives restarts. Values are kept inline
in diskcache's SQLite rows (``disk_min_file_size``), so replacing one is a
single transaction: diskcache removes a replaced side file right away, and a
reader still holding its name would otherwise get a miss. This engine is a
thin adapter mapping its exceptions onto
:class:`~httpstorages.exceptions.BackendIOError` and
:class:`~httpstorages.exceptions.InitFailure`.
"""

from __future__ import annotations

import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import diskcache

from httpstorages.exceptions import BackendIOError, InitFailure

# Values below this size stay in the SQLite row instead of a side file.
_INLINE_LIMIT = 2**30


@contextmanager
def _io(operation: str, key: str = "") -> Iterator[None]:
    try:
        yield
    except (diskcache.Timeout, OSError, sqlite3.Error) as exc:
        target = f" '{key}'" if key else ""
        raise BackendIOError(f"diskcache {operation}{target} failed: {exc}") from exc


class DiskcacheEngine:
    """Key-value engine storing entries in a :class:`diskcache.Cache` directory.

    Args:
        directory: Cache directory, created on :meth:`open`.
        timeout: SQLite lock timeout in seconds used by diskcache.
    """

    name = "diskcache"

    def __init__(self, directory: str | Path, timeout: float = 5.0) -> None:
        self._directory = Path(directory)
        self._timeout = timeout
        self._cache: Optional[diskcache.Cache] = None

    @property
    def location(self) -> Optional[str]:
        return str(self._directory)

    def open(self) -> None:
        if self._cache is not None:
            return
        try:
            self._cache = diskcache.Cache(
                str(self._directory),
                timeout=self._timeout,
                disk_min_file_size=_INLINE_LIMIT,
            )
        except (OSError, sqlite3.Error) as exc:
            raise InitFailure(
                f"Cannot open diskcache storage at {self._directory}: {exc}"
            ) from exc

    def close(self) -> None:
        if self._cache is not None:
            self._cache.close()
            self._cache = None

    def _require(self) -> diskcache.Cache:
        if self._cache is None:
            raise BackendIOError("diskcache storage is not open")
        return self._cache

    def raw_get(self, key: str) -> Optional[bytes]:
        cache = self._require()
        with _io("read", key):
            return cache.get(key, default=None, retry=True)

    def raw_set(self, key: str, value: bytes, expires_at: Optional[float]) -> None:
        cache = self._require()
        expire = None
        if expires_at is not None:
            expire = expires_at - time.time()
            if expire <= 0:
                self.raw_delete(key)
                return
        with _io("write", key):
            cache.set(key, value, expire=expire, retry=True)

    def raw_delete(self, key: str) -> None:
        cache = self._require()
        with _io("delete", key):
            cache.delete(key, retry=True)

    def raw_iterate(self, prefix: str = "") -> Iterator[tuple[str, bytes]]:
        cache = self._require()
        with _io("iterate"):
            matching = [key for key in cache.iterkeys() if isinstance(key, str) and key.startswith(prefix)]
        for key in matching:
            value = self.raw_get(key)
            if value is not None:
                yield key, value

    def raw_clear(self) -> None:
        cache = self._require()
        with _io("clear"):
            cache.clear(retry=True)

    def raw_len(self) -> int:
        cache = self._require()
        with _io("count"):
            cache.expire(retry=True)
            return len(cache)
