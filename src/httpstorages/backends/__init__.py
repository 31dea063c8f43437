"""Embedded key-value engines and the engine registry.

Each engine implements :class:`~httpstorages.core.base.KVEngine` on its own:

* :class:`DiskcacheEngine` -- :mod:`diskcache` directory, native expiry.
* :class:`SqliteEngine` -- one SQLite file, expiry column checked on read.
* :class:`MemoryEngine` -- process-local dict, for tests.

:func:`create_storer` builds a ready :class:`~httpstorages.core.storer.CacheStorer`
for a :class:`~httpstorages.models.StorageConfig`.
"""

from httpstorages.backends.diskcache_engine import DiskcacheEngine
from httpstorages.backends.memory_engine import MemoryEngine
from httpstorages.backends.registry import (
    create_engine,
    create_storer,
    list_engines,
    register_engine,
)
from httpstorages.backends.sqlite_engine import SqliteEngine

__all__ = [
    "DiskcacheEngine",
    "MemoryEngine",
    "SqliteEngine",
    "create_engine",
    "create_storer",
    "list_engines",
    "register_engine",
]
