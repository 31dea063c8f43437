"""Process-local engine suitable for tests and short-lived workers."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Iterator, Optional

from httpstorages.exceptions import BackendIOError
from httpstorages.models import CacheEntry


@dataclass(slots=True)
class MemoryEngine:
    """Dict-backed engine with lazy expiry. Nothing survives the process."""

    name: str = "memory"
    _rows: dict[str, CacheEntry] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _open: bool = field(default=False, init=False)

    @property
    def location(self) -> Optional[str]:
        return None

    def open(self) -> None:
        self._open = True

    def close(self) -> None:
        self._open = False

    def _require(self) -> None:
        if not self._open:
            raise BackendIOError("memory storage is not open")

    def raw_get(self, key: str) -> Optional[bytes]:
        self._require()
        with self._lock:
            row = self._rows.get(key)
            if row is None:
                return None
            if row.is_expired():
                self._rows.pop(key, None)
                return None
            return row.raw_bytes

    def raw_set(self, key: str, value: bytes, expires_at: Optional[float]) -> None:
        self._require()
        row = CacheEntry(raw_bytes=value, expires_at=expires_at)
        with self._lock:
            self._rows[key] = row

    def raw_delete(self, key: str) -> None:
        self._require()
        with self._lock:
            self._rows.pop(key, None)

    def raw_iterate(self, prefix: str = "") -> Iterator[tuple[str, bytes]]:
        self._require()
        now = time.time()
        with self._lock:
            snapshot = [
                (key, row.raw_bytes)
                for key, row in self._rows.items()
                if key.startswith(prefix) and not row.is_expired(now)
            ]
        yield from snapshot

    def raw_clear(self) -> None:
        self._require()
        with self._lock:
            self._rows.clear()

    def raw_len(self) -> int:
        return sum(1 for _ in self.raw_iterate())
