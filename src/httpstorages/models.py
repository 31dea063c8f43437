"""Canonical Pydantic models shared across all httpstorages modules.

This is the single source of truth for data shapes in the project. The models
fall into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`StorageConfig` and :class:`GlobalConfig`.

**Storage models** -- produced and consumed by the core:
    :class:`SerializedResponse` (the decoded form of a cached payload),
    :class:`CacheEntry` (one engine slot), and :class:`VariantRecord` (the
    reverse index record of one variant key).

All models use Pydantic v2 with ``model_config`` where needed.
"""

from __future__ import annotations

import time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Config ---


class StorageConfig(BaseModel):
    """Storage backend settings stored in :class:`GlobalConfig`.

    ``backend`` selects one of the engines registered in
    :mod:`httpstorages.backends.registry`. When ``path`` is ``None`` the
    engine stores its files under the XDG cache directory (see
    :func:`~httpstorages.config.get_cache_dir`).

    Example::

        StorageConfig(backend="sqlite", path="/var/cache/responses.db")
    """

    backend: str = Field(
        default="diskcache", description="Engine name: diskcache, sqlite, memory"
    )
    path: Optional[str] = Field(
        default=None, description="Storage directory or database file"
    )
    default_ttl_seconds: float = Field(
        default=300, description="TTL used when a write passes ttl=None"
    )
    timeout_seconds: float = Field(
        default=5.0, gt=0, description="Engine lock / busy timeout in seconds"
    )
    compression_chunk_size: int = Field(
        default=64 * 1024, gt=0, description="Bytes fed to the compressor per step"
    )


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/httpstorages/config.json``.

    Loaded and saved by :func:`~httpstorages.config.load_global_config` and
    :func:`~httpstorages.config.save_global_config`. Fields here have the
    lowest precedence and can be overridden by project config, environment
    variables, or CLI flags. See :func:`~httpstorages.config.resolve_config`
    for the full precedence chain.
    """

    storage: StorageConfig = Field(default_factory=StorageConfig)


# --- Storage models ---


class SerializedResponse(BaseModel):
    """An HTTP response in the shape the codec writes and reads.

    Headers are an ordered list of ``(name, value)`` pairs so that order and
    repeated names (``Set-Cookie``, ``Vary``) survive a round trip. Names keep
    their original case; lookups through :meth:`get_header` and
    :meth:`get_all` are case-insensitive.
    """

    model_config = ConfigDict(frozen=True)

    status_code: int = Field(ge=0, le=0xFFFF)
    reason: str = ""
    http_version: str = "HTTP/1.1"
    headers: list[tuple[str, str]] = Field(default_factory=list)
    body: bytes = b""

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return the first value of header *name*, or *default*."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return default

    def get_all(self, name: str) -> list[str]:
        """Return every value of header *name* in wire order."""
        lowered = name.lower()
        return [value for key, value in self.headers if key.lower() == lowered]

    @property
    def status_line(self) -> str:
        return f"{self.http_version} {self.status_code} {self.reason}".rstrip()


class CacheEntry(BaseModel):
    """One stored payload with its expiry metadata.

    Used by the engines that emulate expiry themselves (sqlite, memory).
    ``expires_at`` is absolute epoch seconds; ``None`` means the entry never
    expires (index records are stored that way).
    """

    raw_bytes: bytes
    expires_at: Optional[float] = None
    stored_at: float = Field(default_factory=time.time)

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (time.time() if now is None else now) >= self.expires_at


class VariantRecord(BaseModel):
    """Reverse index record for one variant key.

    Written by :meth:`~httpstorages.core.index.KeyIndex.index_variant` and
    :meth:`~httpstorages.core.index.KeyIndex.index_surrogates`, and read back
    when a variant is removed (to find every set that references it) and when
    :meth:`~httpstorages.core.storer.CacheStorer.get_multi_level` matches a
    request against the stored variations.
    """

    real_key: str = ""
    surrogate_keys: list[str] = Field(default_factory=list)
    varied_headers: dict[str, str] = Field(
        default_factory=dict,
        description="Lower-cased request header name -> value the variant was stored for",
    )
    variant_label: str = ""
