"""Storage core: compressor, response codec, key index and the storer.

* :mod:`~httpstorages.core.compression` -- LZ4 frame compress/decompress.
* :mod:`~httpstorages.core.codec` -- response <-> byte frame, httpx bridge.
* :mod:`~httpstorages.core.keys` -- variant key derivation and header matching.
* :mod:`~httpstorages.core.index` -- :class:`KeyIndex`, real-key and surrogate sets.
* :mod:`~httpstorages.core.storer` -- :class:`CacheStorer`, the storage contract.
"""

from httpstorages.core.base import KVEngine, Storer
from httpstorages.core.index import KeyIndex
from httpstorages.core.storer import CacheStorer

__all__ = ["CacheStorer", "KVEngine", "KeyIndex", "Storer"]
