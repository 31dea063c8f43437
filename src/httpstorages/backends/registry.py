"""Engine registry and the :func:`create_storer` factory.

The registry maps an engine name to a *factory* that builds a fresh, unopened
engine from a :class:`~httpstorages.models.StorageConfig`. It never holds open
handles: every :func:`create_storer` call returns a new storer that the
caller owns and closes.
"""

from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import Callable, Optional

from httpstorages.backends.diskcache_engine import DiskcacheEngine
from httpstorages.backends.memory_engine import MemoryEngine
from httpstorages.backends.sqlite_engine import SqliteEngine
from httpstorages.core.base import TTL, KVEngine
from httpstorages.core.storer import CacheStorer
from httpstorages.exceptions import InvalidUsageError
from httpstorages.models import StorageConfig

EngineFactory = Callable[[StorageConfig], KVEngine]

_REGISTRY: dict[str, EngineFactory] = {}
_LOCK = Lock()


def _default_location(config: StorageConfig, leaf: str) -> Path:
    if config.path:
        return Path(config.path).expanduser()
    from httpstorages.config import get_cache_dir

    return get_cache_dir() / leaf


def _diskcache_factory(config: StorageConfig) -> KVEngine:
    return DiskcacheEngine(_default_location(config, "diskcache"), timeout=config.timeout_seconds)


def _sqlite_factory(config: StorageConfig) -> KVEngine:
    return SqliteEngine(_default_location(config, "storage.db"), timeout=config.timeout_seconds)


def _memory_factory(config: StorageConfig) -> KVEngine:
    return MemoryEngine()


def register_engine(name: str, factory: EngineFactory, *, overwrite: bool = False) -> None:
    """Register an engine factory under *name*.

    Raises:
        InvalidUsageError: If *name* is empty or already taken and
            *overwrite* is false.
    """
    key = name.strip().lower()
    if not key:
        raise InvalidUsageError("Engine name must be non-empty")

    with _LOCK:
        if key in _REGISTRY and not overwrite:
            raise InvalidUsageError(f"Engine already registered: {key}")
        _REGISTRY[key] = factory


def list_engines() -> list[str]:
    """List registered engine names."""
    with _LOCK:
        return sorted(_REGISTRY.keys())


def create_engine(config: StorageConfig) -> KVEngine:
    """Build an unopened engine for ``config.backend``.

    Raises:
        InvalidUsageError: If no engine is registered under that name.
    """
    key = config.backend.strip().lower()
    with _LOCK:
        factory = _REGISTRY.get(key)
    if factory is None:
        raise InvalidUsageError(
            f"Unknown storage backend '{config.backend}' (available: {', '.join(list_engines())})"
        )
    return factory(config)


def create_storer(config: Optional[StorageConfig] = None, default_ttl: TTL = None) -> CacheStorer:
    """Build and initialise a :class:`CacheStorer` for *config*.

    Args:
        config: Storage settings; defaults to a diskcache store under the
            XDG cache directory.
        default_ttl: Overrides ``config.default_ttl_seconds``.

    Raises:
        InvalidUsageError: If the backend name is unknown.
        InitFailure: If the engine cannot be opened.
    """
    config = config or StorageConfig()
    storer = CacheStorer(
        create_engine(config),
        default_ttl=config.default_ttl_seconds if default_ttl is None else default_ttl,
        chunk_size=config.compression_chunk_size,
    )
    storer.init()
    return storer


register_engine("diskcache", _diskcache_factory)
register_engine("sqlite", _sqlite_factory)
register_engine("memory", _memory_factory)
