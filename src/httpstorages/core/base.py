"""Protocols shared by the storer and the engines.

Two seams:

* :class:`KVEngine` -- the raw capability an embedded key-value engine must
  offer. Engines in :mod:`httpstorages.backends` each implement it on their
  own; none inherits from another or from a common base.
* :class:`Storer` -- the uniform cache contract callers program against,
  implemented by :class:`~httpstorages.core.storer.CacheStorer` on top of any
  ``KVEngine``.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, Iterator, Optional, Protocol, Union, runtime_checkable

from httpstorages.core.keys import HeadersLike

TTL = Union[float, int, timedelta, None]


@runtime_checkable
class KVEngine(Protocol):
    """Raw key-value capability required from an embedded engine.

    ``raw_set`` must replace a value atomically: a concurrent ``raw_get``
    sees either the old or the new value, never a mix. ``expires_at`` is
    absolute epoch seconds (``None`` for no expiry); engines without native
    expiry store it next to the value and treat expired rows as absent.

    ``open`` raises :class:`~httpstorages.exceptions.InitFailure`; the other
    methods raise :class:`~httpstorages.exceptions.BackendIOError` on real
    I/O failure and never for a missing key.
    """

    name: str

    @property
    def location(self) -> Optional[str]: ...

    def open(self) -> None: ...

    def close(self) -> None: ...

    def raw_get(self, key: str) -> Optional[bytes]: ...

    def raw_set(self, key: str, value: bytes, expires_at: Optional[float]) -> None: ...

    def raw_delete(self, key: str) -> None: ...

    def raw_iterate(self, prefix: str = "") -> Iterator[tuple[str, bytes]]: ...

    def raw_clear(self) -> None: ...

    def raw_len(self) -> int: ...


class Storer(Protocol):
    """Cache storage contract.

    ``get`` returns ``b""`` for absent or expired keys. ``set`` with a TTL
    of zero or less evicts the key instead of storing it.
    """

    def init(self) -> None: ...

    def name(self) -> str: ...

    def uuid(self) -> str: ...

    def get(self, key: str) -> bytes: ...

    def set(self, key: str, value: bytes, ttl: TTL = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_many(self, pattern: str) -> int: ...

    def list_keys(self) -> list[str]: ...

    def map_keys(self, prefix: str) -> dict[str, bytes]: ...

    def set_multi_level(
        self,
        real_key: str,
        variant_key: str,
        value: bytes,
        headers: HeadersLike,
        variant_label: str,
        ttl: TTL,
        surrogate_keys: Iterable[str] = (),
    ) -> str: ...

    def get_multi_level(
        self,
        real_key: str,
        headers: HeadersLike = None,
        variant_label: Optional[str] = None,
    ) -> bytes: ...

    def purge_by_surrogate(self, tag: str) -> int: ...

    def reset(self) -> None: ...

    def close(self) -> None: ...
