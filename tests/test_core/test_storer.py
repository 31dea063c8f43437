"""Contract tests for CacheStorer, run against every engine.

Each test taking the ``storer`` fixture runs once per engine (diskcache,
sqlite, memory), so the behaviour below is what callers can rely on no
matter which backend is configured.
"""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from typing import Any, Callable, Optional

import lz4.frame
import pytest

from httpstorages.backends import MemoryEngine
from httpstorages.core import codec
from httpstorages.core.compression import decompress
from httpstorages.core.storer import CacheStorer
from httpstorages.exceptions import CodecError, InvalidUsageError
from httpstorages.models import SerializedResponse

BASE_KEY = "Base-Key"


def _large_value(size: int = 5 * 1024 * 1024) -> bytes:
    # Byte i holds i % 256.
    return (bytes(range(256)) * (size // 256 + 1))[:size]


class _HookedEngine:
    """MemoryEngine that runs ``after_delete`` once, right after *key* is deleted."""

    def __init__(self, key: str) -> None:
        self._inner = MemoryEngine()
        self._key = key
        self.after_delete: Optional[Callable[[], None]] = None

    def __getattr__(self, name: str) -> Any:
        return getattr(self._inner, name)

    def raw_delete(self, key: str) -> None:
        self._inner.raw_delete(key)
        if key == self._key and self.after_delete is not None:
            hook, self.after_delete = self.after_delete, None
            hook()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_init_is_idempotent(self, storer: CacheStorer) -> None:
        storer.set("k", b"v", 20)
        storer.init()
        storer.init()
        assert storer.get("k") == b"v"

    def test_name_matches_engine(self, storer: CacheStorer, engine_name: str) -> None:
        assert storer.name() == engine_name

    def test_uuid_is_stable(self, storer: CacheStorer) -> None:
        assert storer.uuid() == storer.uuid()

    def test_context_manager_closes(self, storer_factory) -> None:
        with storer_factory() as s:
            s.set("k", b"v", 20)
            assert s.get("k") == b"v"
        s.close()

    def test_operations_open_lazily(self, storer_factory) -> None:
        s = storer_factory()
        s.set("k", b"v", 20)
        assert s.get("k") == b"v"


# ---------------------------------------------------------------------------
# Get / Set / Delete
# ---------------------------------------------------------------------------


class TestGetSet:
    def test_set_then_get(self, storer: CacheStorer) -> None:
        storer.set(BASE_KEY, b"My first data", 20)
        assert storer.get(BASE_KEY) == b"My first data"

    def test_missing_key_is_empty(self, storer: CacheStorer) -> None:
        assert storer.get("not-stored") == b""

    def test_overwrite_replaces_value(self, storer: CacheStorer) -> None:
        storer.set(BASE_KEY, b"old", 20)
        storer.set(BASE_KEY, b"new", 20)
        assert storer.get(BASE_KEY) == b"new"

    def test_timedelta_ttl(self, storer: CacheStorer) -> None:
        storer.set(BASE_KEY, b"v", timedelta(minutes=1))
        assert storer.get(BASE_KEY) == b"v"

    def test_none_ttl_uses_default(self, storer: CacheStorer) -> None:
        storer.set(BASE_KEY, b"v")
        assert storer.get(BASE_KEY) == b"v"

    def test_large_value(self, storer: CacheStorer) -> None:
        value = _large_value()
        storer.set(BASE_KEY, value, 20)
        assert storer.get(BASE_KEY) == value

    def test_delete(self, storer: CacheStorer) -> None:
        storer.set(BASE_KEY, b"v", 20)
        storer.delete(BASE_KEY)
        assert storer.get(BASE_KEY) == b""

    def test_delete_missing_is_noop(self, storer: CacheStorer) -> None:
        storer.delete("never-stored")


class TestTTL:
    @pytest.mark.parametrize("ttl", [-1, 0, timedelta(seconds=-5)])
    def test_non_positive_ttl_evicts(self, storer: CacheStorer, ttl: object) -> None:
        storer.set(BASE_KEY, b"present", 20)
        storer.set(BASE_KEY, b"ignored", ttl)
        assert storer.get(BASE_KEY) == b""

    def test_non_positive_ttl_on_missing_key(self, storer: CacheStorer) -> None:
        storer.set(BASE_KEY, b"My first data", -1)
        assert storer.get(BASE_KEY) == b""

    def test_expired_entry_reads_as_absent(self, storer_factory) -> None:
        s = storer_factory(clock=lambda: time.time() - 3600)
        s.set(BASE_KEY, b"stale", 60)
        assert s.get(BASE_KEY) == b""
        assert BASE_KEY not in s.list_keys()

    def test_clock_sets_expiry_at_write(self) -> None:
        engine = MemoryEngine()
        s = CacheStorer(engine, clock=lambda: 1_000.0)
        s.set(BASE_KEY, b"v", 60)
        assert engine._rows[BASE_KEY].expires_at == 1_060.0
        s.close()

    def test_entry_expires_after_ttl(self, storer: CacheStorer) -> None:
        storer.set(BASE_KEY, b"short-lived", 0.3)
        assert storer.get(BASE_KEY) == b"short-lived"
        time.sleep(0.6)
        assert storer.get(BASE_KEY) == b""


# ---------------------------------------------------------------------------
# Multi-level storage
# ---------------------------------------------------------------------------


class TestMultiLevel:
    def test_large_value_is_stored_compressed(self, storer: CacheStorer) -> None:
        value = _large_value()
        storer.set_multi_level(BASE_KEY, BASE_KEY, value, {}, "", timedelta(minutes=1), [BASE_KEY])

        stored = storer.get(BASE_KEY)
        assert stored
        restored = lz4.frame.decompress(stored)
        assert len(restored) == len(value)
        assert restored == value

    def test_get_multi_level_returns_compressed_bytes(self, storer: CacheStorer) -> None:
        storer.set_multi_level("real", "", b"payload", {}, "", 20)
        assert decompress(storer.get_multi_level("real")) == b"payload"

    def test_variant_key_derived_when_empty(self, storer: CacheStorer) -> None:
        variant = storer.set_multi_level("real", "", b"gz", {"Accept-Encoding": "gzip"}, "", 20)
        assert variant != "real"
        assert storer.index.lookup_variants("real") == [variant]

    def test_selects_variant_by_headers(self, storer: CacheStorer) -> None:
        storer.set_multi_level("real", "", b"english", {"accept-language": "en"}, "", 20)
        storer.set_multi_level("real", "", b"french", {"accept-language": "fr"}, "", 20)

        assert decompress(storer.get_multi_level("real", {"Accept-Language": "en"})) == b"english"
        assert decompress(storer.get_multi_level("real", {"Accept-Language": "fr"})) == b"french"
        assert storer.get_multi_level("real", {"Accept-Language": "de"}) == b""

    def test_selects_variant_by_label(self, storer: CacheStorer) -> None:
        storer.set_multi_level("real", "", b"one", {}, "v1", 20)
        storer.set_multi_level("real", "", b"two", {}, "v2", 20)
        assert decompress(storer.get_multi_level("real", None, "v1")) == b"one"
        assert decompress(storer.get_multi_level("real", None, "v2")) == b"two"

    def test_newest_match_wins(self, storer: CacheStorer) -> None:
        storer.set_multi_level("real", "a", b"older", {}, "", 20)
        storer.set_multi_level("real", "b", b"newer", {}, "", 20)
        assert decompress(storer.get_multi_level("real")) == b"newer"

    def test_unknown_real_key(self, storer: CacheStorer) -> None:
        assert storer.get_multi_level("nothing") == b""

    def test_non_positive_ttl_evicts_variant(self, storer: CacheStorer) -> None:
        variant = storer.set_multi_level("real", "", b"v", {}, "", 20, ["tag"])
        storer.set_multi_level("real", variant, b"v", {}, "", -1, ["tag"])
        assert storer.get(variant) == b""
        assert storer.index.lookup_variants("real") == []
        assert storer.index.lookup_by_surrogate("tag") == []

    def test_expired_variant_is_pruned(self, storer: CacheStorer) -> None:
        variant = storer.set_multi_level("real", "", b"v", {}, "", 20)
        # Remove the entry behind the index's back, as expiry would.
        storer._engine.raw_delete(variant)
        assert storer.get_multi_level("real") == b""
        assert storer.index.lookup_variants("real") == []


class TestIndexConsistency:
    def test_every_indexed_variant_has_an_entry(self, storer: CacheStorer) -> None:
        for lang in ("en", "fr", "de"):
            storer.set_multi_level("real", "", lang.encode(), {"accept-language": lang}, "", 20, ["site"])
        for variant in storer.index.lookup_variants("real"):
            assert storer.get(variant)
        for variant in storer.index.lookup_by_surrogate("site"):
            assert storer.get(variant)

    def test_delete_unindexes(self, storer: CacheStorer) -> None:
        variant = storer.set_multi_level("real", "", b"v", {}, "", 20, ["tag"])
        storer.delete(variant)
        assert storer.index.lookup_variants("real") == []
        assert storer.index.lookup_by_surrogate("tag") == []

    def test_purge_by_surrogate(self, storer: CacheStorer) -> None:
        a = storer.set_multi_level("products", "", b"a", {"accept": "a"}, "", 20, ["products", "p-1"])
        b = storer.set_multi_level("products", "", b"b", {"accept": "b"}, "", 20, ["products"])
        other = storer.set_multi_level("users", "", b"u", {}, "", 20, ["users"])

        assert storer.purge_by_surrogate("products") == 2
        assert storer.get(a) == b""
        assert storer.get(b) == b""
        assert decompress(storer.get(other)) == b"u"
        assert storer.index.lookup_by_surrogate("p-1") == []
        assert storer.index.lookup_variants("products") == []
        assert storer.purge_by_surrogate("products") == 0

    def test_rebuild_index_after_expiry(self, storer: CacheStorer) -> None:
        variant = storer.set_multi_level("real", "", b"v", {}, "", 20, ["tag"])
        storer._engine.raw_delete(variant)
        assert storer.rebuild_index() == 1
        assert storer.index.lookup_by_surrogate("tag") == []

    def test_concurrent_writers_of_one_real_key(self, storer: CacheStorer) -> None:
        barrier = threading.Barrier(8)
        errors: list[BaseException] = []

        def writer(n: int) -> None:
            try:
                barrier.wait()
                storer.set_multi_level("real", "", str(n).encode(), {"x-n": str(n)}, "", 20, ["all"])
            except BaseException as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(storer.index.lookup_variants("real")) == 8
        for n in range(8):
            assert decompress(storer.get_multi_level("real", {"X-N": str(n)})) == str(n).encode()

    @pytest.mark.parametrize("removal", ["delete", "purge"])
    def test_write_between_delete_and_unindex(self, removal: str) -> None:
        engine = _HookedEngine("v")
        s = CacheStorer(engine, default_ttl=60)
        s.set_multi_level("real", "v", b"old", {}, "", 20, ["tag"])

        writer = threading.Thread(
            target=s.set_multi_level, args=("real", "v", b"new", {}, "", 20, ["tag"])
        )

        def start_writer() -> None:
            writer.start()
            # The writer must wait for the removal to finish unindexing.
            writer.join(timeout=0.2)

        engine.after_delete = start_writer
        if removal == "delete":
            s.delete("v")
        else:
            assert s.purge_by_surrogate("tag") == 1
        writer.join()

        assert decompress(s.get("v")) == b"new"
        assert s.index.lookup_variants("real") == ["v"]
        assert s.index.lookup_by_surrogate("tag") == ["v"]
        assert decompress(s.get_multi_level("real")) == b"new"
        assert s.purge_by_surrogate("tag") == 1
        assert s.get("v") == b""
        s.close()

    def test_readers_never_see_partial_values(self, storer: CacheStorer) -> None:
        first = _large_value(2 * 1024 * 1024)
        second = first[::-1]
        variant = storer.set_multi_level("real", "", first, {}, "", 20)
        done = threading.Event()
        errors: list[BaseException] = []
        reads: list[int] = []

        def writer() -> None:
            try:
                for n in range(10):
                    storer.set_multi_level("real", variant, second if n % 2 == 0 else first, {}, "", 20)
            except BaseException as exc:  # noqa: BLE001
                errors.append(exc)
            finally:
                done.set()

        def reader() -> None:
            try:
                while True:
                    finished = done.is_set()
                    value = decompress(storer.get(variant))
                    assert value == first or value == second
                    reads.append(1)
                    if finished:
                        break
            except BaseException as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=writer)]
        threads += [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert reads
        assert decompress(storer.get(variant)) == first


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


class TestResponses:
    def test_store_and_load(self, storer: CacheStorer, sample_response: SerializedResponse) -> None:
        variant = storer.store_response(
            "GET-https-example.com-/items",
            sample_response,
            {"Accept-Encoding": "gzip", "Accept-Language": "en"},
            ttl=20,
        )
        assert storer.load_response(variant) == sample_response
        loaded = storer.load_multi_level_response(
            "GET-https-example.com-/items", {"accept-encoding": "gzip", "accept-language": "en"}
        )
        assert loaded == sample_response

    def test_surrogate_keys_read_from_header(
        self, storer: CacheStorer, sample_response: SerializedResponse
    ) -> None:
        variant = storer.store_response("items", sample_response, ttl=20)
        assert storer.index.lookup_by_surrogate("products") == [variant]
        assert storer.index.lookup_by_surrogate("product-42") == [variant]

    def test_explicit_surrogate_keys_win(
        self, storer: CacheStorer, sample_response: SerializedResponse
    ) -> None:
        variant = storer.store_response("items", sample_response, ttl=20, surrogate_keys=["mine"])
        assert storer.index.lookup_by_surrogate("mine") == [variant]
        assert storer.index.lookup_by_surrogate("products") == []

    def test_vary_star_never_matches(
        self, storer: CacheStorer, sample_response: SerializedResponse
    ) -> None:
        response = sample_response.model_copy(
            update={"headers": [("Content-Type", "text/plain"), ("Vary", "*")]}
        )
        variant = storer.store_response("items", response, {"Accept": "text/plain"}, ttl=20)
        assert storer.load_response(variant) == response
        assert storer.load_multi_level_response("items", {"Accept": "text/plain"}) is None
        assert storer.load_multi_level_response("items") is None

    def test_load_missing_is_none(self, storer: CacheStorer) -> None:
        assert storer.load_response("absent") is None
        assert storer.load_multi_level_response("absent") is None

    def test_load_corrupt_raises(self, storer: CacheStorer) -> None:
        storer.set("corrupt", b"\x04\x22\x4d\x18 broken frame", 20)
        assert storer.get("corrupt")
        with pytest.raises(CodecError):
            storer.load_response("corrupt")

    def test_stored_bytes_decode_with_codec(
        self, storer: CacheStorer, sample_response: SerializedResponse
    ) -> None:
        variant = storer.store_response("items", sample_response, ttl=20)
        assert codec.decode_compressed(storer.get(variant)) == sample_response


# ---------------------------------------------------------------------------
# Key listing and maintenance
# ---------------------------------------------------------------------------


class TestKeyListing:
    def test_list_keys_hides_index_records(self, storer: CacheStorer) -> None:
        storer.set("plain", b"1", 20)
        variant = storer.set_multi_level("real", "", b"2", {"accept": "a"}, "", 20, ["tag"])
        assert sorted(storer.list_keys()) == sorted(["plain", variant])

    def test_map_keys_strips_prefix(self, storer: CacheStorer) -> None:
        storer.set("user:1", b"alice", 20)
        storer.set("user:2", b"bob", 20)
        storer.set("item:1", b"widget", 20)
        assert storer.map_keys("user:") == {"1": b"alice", "2": b"bob"}

    def test_delete_many(self, storer: CacheStorer) -> None:
        storer.set("user:1", b"a", 20)
        storer.set("user:2", b"b", 20)
        storer.set("item:1", b"c", 20)
        assert storer.delete_many(r"^user:") == 2
        assert storer.list_keys() == ["item:1"]

    def test_delete_many_invalid_pattern(self, storer: CacheStorer) -> None:
        with pytest.raises(InvalidUsageError):
            storer.delete_many("(unclosed")

    def test_reset(self, storer: CacheStorer) -> None:
        storer.set("a", b"1", 20)
        storer.set_multi_level("real", "", b"2", {}, "", 20, ["tag"])
        storer.reset()
        assert storer.list_keys() == []
        assert storer.index.lookup_variants("real") == []
        assert storer.index.lookup_by_surrogate("tag") == []

    def test_stats(self, storer: CacheStorer, engine_name: str) -> None:
        storer.set("a", b"1", 20)
        storer.set_multi_level("real", "", b"2", {}, "", 20, ["tag"])
        stats = storer.stats()
        assert stats["backend"] == engine_name
        assert stats["entries"] == 2
        assert stats["default_ttl_seconds"] == 60.0
