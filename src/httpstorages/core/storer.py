"""The cache storer: one contract over any embedded key-value engine.

:class:`CacheStorer` composes a :class:`~httpstorages.core.base.KVEngine`
with the LZ4 compressor (:mod:`httpstorages.core.compression`), the response
codec (:mod:`httpstorages.core.codec`) and the
:class:`~httpstorages.core.index.KeyIndex`. Swapping the engine changes where
bytes live, never how the cache behaves.

Write path (:meth:`CacheStorer.set_multi_level`)::

    value --compress--> one buffer --raw_set--> engine[variant key]
                                     then index real key + surrogate keys

Read path (:meth:`CacheStorer.get`, :meth:`CacheStorer.get_multi_level`)
returns the stored bytes untouched; :meth:`CacheStorer.load_response` is the
explicit decompress-and-decode step.

Evict-now rule:
    A TTL of zero or less passed to :meth:`CacheStorer.set` (and therefore
    to :meth:`CacheStorer.set_multi_level`) deletes the key instead of
    storing it. Callers use ``ttl=-1`` as the invalidation idiom.

Corruption policy:
    ``get`` and ``get_multi_level`` never decode, so they never raise
    :class:`~httpstorages.exceptions.CodecError`. ``load_response`` always
    raises it for present-but-undecodable data; it never returns a partially
    decoded response.
"""

from __future__ import annotations

import logging
import re
import threading
import time
import uuid as uuidlib
from datetime import timedelta
from typing import Any, Callable, Iterable, Optional

from httpstorages.core import codec, compression, keys
from httpstorages.core.base import TTL, KVEngine
from httpstorages.core.index import KeyIndex
from httpstorages.exceptions import InvalidUsageError
from httpstorages.models import SerializedResponse

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


class CacheStorer:
    """HTTP response storage over a raw key-value engine.

    Thread-safe: entry writes are single engine calls, atomic per key, and
    index updates are serialised by the index lock. The storer owns its
    engine and closes it in :meth:`close`.

    Args:
        engine: The engine to store entries and index records in.
        default_ttl: TTL used when a write passes ``ttl=None``.
        chunk_size: Slice size fed to the LZ4 compressor.
        clock: Source of the current epoch time used to compute an entry's
            ``expires_at`` when it is written. Engines judge expiry against
            the real clock when reading, so a fake clock moves expiry
            deadlines but cannot make time pass.

    Example::

        storer = CacheStorer(MemoryEngine())
        storer.init()
        storer.set("key", b"payload", ttl=20)
        assert storer.get("key") == b"payload"
        storer.close()
    """

    def __init__(
        self,
        engine: KVEngine,
        default_ttl: TTL = DEFAULT_TTL_SECONDS,
        chunk_size: int = compression.DEFAULT_CHUNK_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._engine = engine
        self._default_ttl = _ttl_seconds(default_ttl, DEFAULT_TTL_SECONDS)
        self._chunk_size = chunk_size
        self._clock = clock
        self._index = KeyIndex(engine)
        self._init_lock = threading.Lock()
        self._ready = False

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def init(self) -> None:
        """Open the underlying engine. Calling it again is a no-op.

        Raises:
            InitFailure: If the engine cannot be opened.
        """
        with self._init_lock:
            if self._ready:
                return
            self._engine.open()
            self._ready = True
        logger.debug("Opened %s storage at %s", self._engine.name, self._engine.location)

    def close(self) -> None:
        """Close the engine. Safe to call more than once."""
        with self._init_lock:
            if not self._ready:
                return
            self._engine.close()
            self._ready = False
        logger.debug("Closed %s storage", self._engine.name)

    def __enter__(self) -> CacheStorer:
        self.init()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def index(self) -> KeyIndex:
        return self._index

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def name(self) -> str:
        """Return the engine name (``diskcache``, ``sqlite``, ``memory``...)."""
        return self._engine.name

    def uuid(self) -> str:
        """Return an identifier stable for a given engine and location."""
        seed = f"{self._engine.name}:{self._engine.location or id(self._engine)}"
        return str(uuidlib.uuid5(uuidlib.NAMESPACE_URL, seed))

    # ------------------------------------------------------------------ #
    # Single-key operations
    # ------------------------------------------------------------------ #

    def get(self, key: str) -> bytes:
        """Return the stored bytes for *key*, or ``b""`` if absent or expired."""
        self.init()
        return self._engine.raw_get(key) or b""

    def set(self, key: str, value: bytes, ttl: TTL = None) -> None:
        """Store *value* under *key* until ``now + ttl``.

        A TTL of zero or less evicts *key* (entry and index references)
        instead of storing *value*.

        Args:
            key: Entry key.
            value: Bytes to store verbatim.
            ttl: Seconds or :class:`~datetime.timedelta`; ``None`` uses the
                storer default.

        Raises:
            BackendIOError: If the engine write fails.
        """
        self.init()
        seconds = _ttl_seconds(ttl, self._default_ttl)
        if seconds <= 0:
            # EVICT_NOW: non-positive TTL deletes.
            logger.debug("Evicting %s (ttl=%s)", key, seconds)
            self.delete(key)
            return
        self._engine.raw_set(key, bytes(value), self._clock() + seconds)

    def delete(self, key: str) -> None:
        """Remove *key* and its index references. Missing keys are ignored.

        Raises:
            BackendIOError: If the engine delete fails.
        """
        self.init()
        with self._index.lock:
            self._engine.raw_delete(key)
            self._index.remove_variant(key)

    def delete_many(self, pattern: str) -> int:
        """Delete every entry whose key matches the regular expression *pattern*.

        Returns:
            Number of entries deleted.

        Raises:
            InvalidUsageError: If *pattern* is not a valid regular expression.
        """
        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            raise InvalidUsageError(f"Invalid key pattern '{pattern}': {exc}") from exc
        count = 0
        for key in self.list_keys():
            if compiled.search(key):
                self.delete(key)
                count += 1
        return count

    def list_keys(self) -> list[str]:
        """Return the keys of all live entries (index records excluded)."""
        self.init()
        return [key for key, _ in self._engine.raw_iterate("") if not keys.is_index_key(key)]

    def map_keys(self, prefix: str) -> dict[str, bytes]:
        """Return live entries under *prefix*, keyed without the prefix."""
        self.init()
        return {
            key[len(prefix) :]: value
            for key, value in self._engine.raw_iterate(prefix)
            if not keys.is_index_key(key)
        }

    def reset(self) -> None:
        """Remove every entry and index record."""
        self.init()
        self._engine.raw_clear()
        logger.debug("Reset %s storage", self._engine.name)

    # ------------------------------------------------------------------ #
    # Multi-level operations
    # ------------------------------------------------------------------ #

    def set_multi_level(
        self,
        real_key: str,
        variant_key: str,
        value: bytes,
        headers: keys.HeadersLike,
        variant_label: str,
        ttl: TTL,
        surrogate_keys: Iterable[str] = (),
    ) -> str:
        """Compress and store *value* as one variant of *real_key*.

        The whole value is compressed into a single buffer and written with
        one engine call, so readers see the previous entry or the new one,
        never a partial write. The write and the index update then run under
        the index lock, the same lock :meth:`delete` and
        :meth:`purge_by_surrogate` hold, so a racing removal never leaves a
        live entry unindexed.

        Args:
            real_key: Key of the logical resource.
            variant_key: Key for this variation; derived from *real_key*,
                *headers* and *variant_label* when empty.
            value: Uncompressed payload (typically an encoded response).
            headers: Request header values this variant was negotiated on.
            variant_label: Free-form disambiguation label (e.g. an ETag).
            ttl: As for :meth:`set`; zero or less evicts the variant.
            surrogate_keys: Tags to index the variant under.

        Returns:
            The variant key the value was stored (or evicted) under.

        Raises:
            BackendIOError: If an engine write fails.
            CodecError: If compression fails.
        """
        self.init()
        varied = keys.normalize_headers(headers)
        variant = variant_key or keys.variant_key(real_key, varied, variant_label)
        seconds = _ttl_seconds(ttl, self._default_ttl)
        if seconds <= 0:
            self.set(variant, b"", seconds)
            return variant

        payload = compression.compress(value, chunk_size=self._chunk_size)
        with self._index.lock:
            self.set(variant, payload, seconds)
            self._index.index_variant(real_key, variant, varied, variant_label)
            self._index.index_surrogates(variant, surrogate_keys)
        return variant

    def get_multi_level(
        self,
        real_key: str,
        headers: keys.HeadersLike = None,
        variant_label: Optional[str] = None,
    ) -> bytes:
        """Return the stored bytes of the newest variant matching a request.

        A variant matches when every header it was stored for has the same
        value in *headers* and, if *variant_label* is given, its label is
        equal. Variants whose entry has expired are unindexed on the way.

        Returns:
            The variant's stored (compressed) bytes, or ``b""``.
        """
        self.init()
        for variant in reversed(self._index.lookup_variants(real_key)):
            record = self._index.variant_record(variant)
            if record is None:
                continue
            if variant_label is not None and record.variant_label != variant_label:
                continue
            if not keys.headers_match(record.varied_headers, headers):
                continue
            raw = self._engine.raw_get(variant)
            if raw:
                return raw
            self._index.prune_variant(variant, self._entry_exists)
        return b""

    def purge_by_surrogate(self, tag: str) -> int:
        """Delete every variant tagged with *tag*.

        Returns:
            Number of entries removed.

        Raises:
            PurgeError: If some deletions failed; the rest are committed.
        """
        self.init()
        return self._index.purge_by_surrogate(tag, self._engine.raw_delete)

    def rebuild_index(self) -> int:
        """Drop index references to entries that expired or vanished."""
        self.init()
        return self._index.rebuild(self._entry_exists)

    # ------------------------------------------------------------------ #
    # Response helpers
    # ------------------------------------------------------------------ #

    def store_response(
        self,
        real_key: str,
        response: SerializedResponse,
        request_headers: keys.HeadersLike = None,
        variant_label: str = "",
        ttl: TTL = None,
        surrogate_keys: Optional[Iterable[str]] = None,
    ) -> str:
        """Encode *response* and store it as a variant of *real_key*.

        The variant is keyed on the request headers named by the response's
        ``Vary`` header. When *surrogate_keys* is ``None`` they are read from
        the response's space-separated ``Surrogate-Key`` header.

        Returns:
            The variant key used.
        """
        varied = keys.varied_request_headers(
            request_headers, keys.vary_fields(response.headers)
        )
        if surrogate_keys is None:
            surrogate_keys = " ".join(response.get_all("Surrogate-Key")).split()
        return self.set_multi_level(
            real_key,
            "",
            codec.encode(response),
            varied,
            variant_label,
            ttl,
            surrogate_keys,
        )

    def load_response(self, key: str) -> Optional[SerializedResponse]:
        """Decompress and decode the entry at *key*.

        Returns:
            The response, or ``None`` if *key* is absent.

        Raises:
            CodecError: If the entry is present but corrupted.
        """
        raw = self.get(key)
        if not raw:
            return None
        return codec.decode_compressed(raw)

    def load_multi_level_response(
        self,
        real_key: str,
        headers: keys.HeadersLike = None,
        variant_label: Optional[str] = None,
    ) -> Optional[SerializedResponse]:
        """Decoded form of :meth:`get_multi_level`."""
        raw = self.get_multi_level(real_key, headers, variant_label)
        if not raw:
            return None
        return codec.decode_compressed(raw)

    def stats(self) -> dict[str, Any]:
        """Return the backend name, location, entry count and default TTL."""
        return {
            "backend": self._engine.name,
            "location": self._engine.location,
            "entries": len(self.list_keys()),
            "default_ttl_seconds": self._default_ttl,
        }

    def _entry_exists(self, key: str) -> bool:
        return self._engine.raw_get(key) is not None


def _ttl_seconds(ttl: TTL, default: float) -> float:
    """Normalise a TTL to seconds; ``None`` means *default*."""
    if ttl is None:
        return float(default)
    if isinstance(ttl, timedelta):
        return ttl.total_seconds()
    return float(ttl)
