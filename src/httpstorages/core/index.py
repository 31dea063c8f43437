"""Persistent real-key / surrogate-key index.

The index lives in the same :class:`~httpstorages.core.base.KVEngine` as the
entries it describes, under reserved key prefixes, so it survives a restart
whenever the engine does:

* ``IDX_<real key>`` -- JSON list of variant keys, oldest first;
* ``SURROGATE_<tag>`` -- JSON list of variant keys tagged with ``tag``;
* ``VARIANT_<variant key>`` -- :class:`~httpstorages.models.VariantRecord`
  pointing back at the real key and tags, used to unlink a variant from
  every set in one pass.

Every read-modify-write runs under one re-entrant lock per index, so two
threads indexing different variants of the same real key both land. Writers
add the reverse record before the forward sets and removers drop it last,
so a forward reference without a reverse record cannot be observed.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Callable, Iterable, Mapping, Optional

from pydantic import ValidationError

from httpstorages.core.base import KVEngine
from httpstorages.core.keys import INDEX_PREFIX, SURROGATE_PREFIX, VARIANT_PREFIX
from httpstorages.exceptions import PurgeError, StorageError
from httpstorages.models import VariantRecord

logger = logging.getLogger(__name__)


class KeyIndex:
    """Index of variant keys by real key and by surrogate key.

    All operations are idempotent: indexing a pair twice equals indexing it
    once, and removing something absent is a no-op.

    Args:
        engine: The engine holding both the entries and the index records.
    """

    def __init__(self, engine: KVEngine) -> None:
        self._engine = engine
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        """Re-entrant lock guarding every index update.

        Callers hold it to make an entry write or delete and the matching
        index change a single step for other threads.
        """
        return self._lock

    # ------------------------------------------------------------------ #
    # Record helpers
    # ------------------------------------------------------------------ #

    def _load_list(self, key: str) -> list[str]:
        raw = self._engine.raw_get(key)
        if not raw:
            return []
        try:
            value = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Discarding unreadable index record %s", key)
            return []
        if not isinstance(value, list):
            logger.warning("Discarding malformed index record %s", key)
            return []
        return [str(item) for item in value]

    def _store_list(self, key: str, items: list[str]) -> None:
        if items:
            self._engine.raw_set(key, json.dumps(items).encode(), None)
        else:
            self._engine.raw_delete(key)

    def _add(self, key: str, variant_key: str) -> None:
        items = self._load_list(key)
        if variant_key in items:
            if items[-1] == variant_key:
                return
            items.remove(variant_key)
        items.append(variant_key)
        self._store_list(key, items)

    def _discard(self, key: str, variant_key: str) -> None:
        items = self._load_list(key)
        if variant_key in items:
            items.remove(variant_key)
            self._store_list(key, items)

    def variant_record(self, variant_key: str) -> Optional[VariantRecord]:
        """Return the reverse record of *variant_key*, or ``None``."""
        raw = self._engine.raw_get(VARIANT_PREFIX + variant_key)
        if not raw:
            return None
        try:
            return VariantRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable variant record for %s", variant_key)
            return None

    def _store_record(self, variant_key: str, record: VariantRecord) -> None:
        self._engine.raw_set(
            VARIANT_PREFIX + variant_key, record.model_dump_json().encode(), None
        )

    # ------------------------------------------------------------------ #
    # Public operations
    # ------------------------------------------------------------------ #

    def index_variant(
        self,
        real_key: str,
        variant_key: str,
        varied_headers: Optional[Mapping[str, str]] = None,
        variant_label: str = "",
    ) -> None:
        """Associate *variant_key* with *real_key*.

        The variant moves to the newest position of the real key's set. A
        variant previously indexed under another real key is moved.
        """
        with self._lock:
            record = self.variant_record(variant_key) or VariantRecord()
            previous = record.real_key
            record = record.model_copy(
                update={
                    "real_key": real_key,
                    "varied_headers": dict(varied_headers or {}),
                    "variant_label": variant_label,
                }
            )
            self._store_record(variant_key, record)
            if previous and previous != real_key:
                self._discard(INDEX_PREFIX + previous, variant_key)
            self._add(INDEX_PREFIX + real_key, variant_key)
        logger.debug("Indexed variant %s under %s", variant_key, real_key)

    def index_surrogates(self, variant_key: str, surrogate_keys: Iterable[str]) -> None:
        """Tag *variant_key* with every key in *surrogate_keys*."""
        tags = [tag for tag in dict.fromkeys(surrogate_keys) if tag]
        if not tags:
            return
        with self._lock:
            record = self.variant_record(variant_key) or VariantRecord()
            merged = list(dict.fromkeys([*record.surrogate_keys, *tags]))
            self._store_record(
                variant_key, record.model_copy(update={"surrogate_keys": merged})
            )
            for tag in tags:
                self._add(SURROGATE_PREFIX + tag, variant_key)
        logger.debug("Tagged %s with %s", variant_key, ", ".join(tags))

    def lookup_variants(self, real_key: str) -> list[str]:
        """Variant keys indexed under *real_key*, oldest first."""
        return self._load_list(INDEX_PREFIX + real_key)

    def lookup_by_surrogate(self, surrogate_key: str) -> list[str]:
        """Variant keys tagged with *surrogate_key*, oldest first."""
        return self._load_list(SURROGATE_PREFIX + surrogate_key)

    def remove_variant(self, variant_key: str) -> None:
        """Unlink *variant_key* from its real key and from every surrogate."""
        with self._lock:
            record = self.variant_record(variant_key)
            if record is None:
                return
            if record.real_key:
                self._discard(INDEX_PREFIX + record.real_key, variant_key)
            for tag in record.surrogate_keys:
                self._discard(SURROGATE_PREFIX + tag, variant_key)
            self._engine.raw_delete(VARIANT_PREFIX + variant_key)
        logger.debug("Unindexed variant %s", variant_key)

    def prune_variant(self, variant_key: str, entry_exists: Callable[[str], bool]) -> bool:
        """Unindex *variant_key* if its entry is gone, checked under the lock.

        Writers store the entry before indexing it, so re-checking under the
        lock cannot unlink a variant that a concurrent write is indexing.

        Returns:
            ``True`` if the variant was unindexed.
        """
        with self._lock:
            if entry_exists(variant_key):
                return False
            self.remove_variant(variant_key)
        logger.warning("Pruned dangling variant %s", variant_key)
        return True

    def purge_by_surrogate(self, tag: str, delete_entry: Callable[[str], None]) -> int:
        """Delete and unindex every variant tagged with *tag*.

        Each variant is handled on its own: under the index lock its entry is
        deleted through *delete_entry* and then removed from the index, so a
        concurrent write of the same variant lands before or after both. A
        failed deletion leaves that variant indexed and does not undo the
        others.

        Returns:
            Number of variants removed.

        Raises:
            PurgeError: If any deletion failed, after all others committed.
        """
        removed: list[str] = []
        failures: dict[str, str] = {}
        for variant_key in self.lookup_by_surrogate(tag):
            try:
                with self._lock:
                    delete_entry(variant_key)
                    self.remove_variant(variant_key)
            except StorageError as exc:
                logger.warning("Could not purge %s (tag %s): %s", variant_key, tag, exc)
                failures[variant_key] = str(exc)
                continue
            removed.append(variant_key)

        if failures:
            raise PurgeError(
                f"Purged {len(removed)} entries for '{tag}', {len(failures)} failed",
                removed=removed,
                failures=failures,
            )
        logger.debug("Purged %d entries for surrogate %s", len(removed), tag)
        return len(removed)

    def rebuild(self, entry_exists: Callable[[str], bool]) -> int:
        """Drop index references to entries that no longer exist.

        Scans every reverse record and then every forward set, so references
        left behind by expiry or by an interrupted write are cleaned up.

        Returns:
            Number of variant references dropped.
        """
        dropped = 0
        with self._lock:
            for key, _ in list(self._engine.raw_iterate(VARIANT_PREFIX)):
                variant_key = key[len(VARIANT_PREFIX) :]
                if not entry_exists(variant_key):
                    self.remove_variant(variant_key)
                    dropped += 1

            for prefix in (INDEX_PREFIX, SURROGATE_PREFIX):
                for key, _ in list(self._engine.raw_iterate(prefix)):
                    items = self._load_list(key)
                    kept = [
                        item
                        for item in items
                        if self.variant_record(item) is not None and entry_exists(item)
                    ]
                    if kept != items:
                        dropped += len(items) - len(kept)
                        self._store_list(key, kept)
        if dropped:
            logger.warning("Dropped %d dangling index references", dropped)
        return dropped

    def clear(self) -> None:
        """Remove every index record."""
        with self._lock:
            for prefix in (INDEX_PREFIX, SURROGATE_PREFIX, VARIANT_PREFIX):
                for key, _ in list(self._engine.raw_iterate(prefix)):
                    self._engine.raw_delete(key)
