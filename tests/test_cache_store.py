"""
Tests for the two-tier cache store.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import orjson
import pytest

from fitcache.cache.keys import build_cache_key
from fitcache.cache.storage import MemoryStorage
from fitcache.cache.store import CacheStore
from fitcache.exceptions import CacheStorageError
from fitcache.types import TTL

from conftest import FakeClock


class CountingStorage(MemoryStorage):
    """MemoryStorage that counts reads."""

    def __init__(self) -> None:
        super().__init__()
        self.reads = 0

    def get_item(self, key: str) -> str | None:
        self.reads += 1
        return super().get_item(key)


class BrokenStorage(MemoryStorage):
    """MemoryStorage whose reads and writes of cache records fail."""

    def get_item(self, key: str) -> str | None:
        if key.startswith("cache_"):
            raise CacheStorageError("disk on fire", context={"key": key})
        return super().get_item(key)

    def set_item(self, key: str, value: str) -> None:
        if key.startswith("cache_"):
            raise CacheStorageError("disk on fire", context={"key": key})
        super().set_item(key, value)


class TestRoundTrip:
    """Values come back as they were stored."""

    def test_set_then_get_returns_value(self, cache_store: CacheStore) -> None:
        data = {"id": 1, "full_name": "Mari Maasikas", "tags": ["strength", "mobility"]}
        cache_store.set("user_profile", data, TTL.LONG, {"userId": "u1"})

        assert cache_store.get("user_profile", {"userId": "u1"}) == data

    def test_value_survives_restart_via_persistent_tier(
        self, storage: MemoryStorage, make_store: Callable[..., CacheStore]
    ) -> None:
        first = make_store()
        first.set("pt_templates", [{"id": "t1", "title": "Beginner"}], TTL.LONG)

        second = make_store()
        assert second.get_stats().memory_size == 0
        assert second.get("pt_templates") == [{"id": "t1", "title": "Beginner"}]

    def test_missing_key_returns_none(self, cache_store: CacheStore) -> None:
        assert cache_store.get("never_cached") is None

    def test_falsy_values_are_hits(self, cache_store: CacheStore) -> None:
        cache_store.set("pt_programs", [], TTL.MEDIUM)
        cache_store.set("pt_stats", 0, TTL.SHORT)

        assert cache_store.get("pt_programs") == []
        assert cache_store.get("pt_stats") == 0

    def test_persisted_record_shape(
        self, cache_store: CacheStore, storage: MemoryStorage, clock: FakeClock
    ) -> None:
        cache_store.set("user_profile", {"id": 1}, TTL.LONG, {"userId": "u1"})

        raw = storage.get_item("cache_user_profile:userId:u1")
        assert raw is not None
        assert orjson.loads(raw) == {
            "data": {"id": 1},
            "timestamp": clock.now,
            "ttl": TTL.LONG,
            "key": "user_profile:userId:u1",
            "version": 1,
        }


class TestExpiry:
    """Entries stop being served once their TTL has elapsed."""

    def test_entry_valid_until_ttl_elapses(
        self, cache_store: CacheStore, clock: FakeClock
    ) -> None:
        cache_store.set("pt_stats", {"total": 3}, 1000)

        clock.advance(999)
        assert cache_store.get("pt_stats") == {"total": 3}

        clock.advance(1)
        assert cache_store.get("pt_stats") is None

    def test_expired_persistent_record_is_deleted_on_read(
        self,
        cache_store: CacheStore,
        storage: MemoryStorage,
        clock: FakeClock,
    ) -> None:
        cache_store.set("pt_stats", {"total": 3}, TTL.SHORT)
        cache_store.drop_memory_tier()

        clock.advance(TTL.SHORT)
        assert cache_store.get("pt_stats") is None
        assert storage.get_item("cache_pt_stats") is None

    def test_expired_memory_entry_is_dropped(
        self, cache_store: CacheStore, clock: FakeClock
    ) -> None:
        cache_store.set("pt_stats", 1, TTL.SHORT)
        clock.advance(TTL.SHORT + 1)

        assert cache_store.get("pt_stats") is None
        assert cache_store.get_stats().memory_size == 0


class TestVersionInvalidation:
    """clear() bumps the version and invalidates everything written before it."""

    def test_clear_invalidates_existing_entries(self, cache_store: CacheStore) -> None:
        cache_store.set("user_profile", {"id": 1}, TTL.VERY_LONG, {"userId": "u1"})
        cache_store.set("pt_programs", [1, 2], TTL.VERY_LONG)

        cache_store.clear()

        assert cache_store.get("user_profile", {"userId": "u1"}) is None
        assert cache_store.get("pt_programs") is None
        assert cache_store.version == 2

    def test_version_is_persisted(
        self, storage: MemoryStorage, make_store: Callable[..., CacheStore]
    ) -> None:
        store = make_store()
        store.clear()
        store.clear()

        assert storage.get_item("fitcache_version") == "3"
        assert make_store().version == 3

    def test_version_defaults_to_one(self, cache_store: CacheStore) -> None:
        assert cache_store.version == 1

    def test_unparsable_version_falls_back_to_one(
        self, storage: MemoryStorage, make_store: Callable[..., CacheStore]
    ) -> None:
        storage.set_item("fitcache_version", "banana")
        assert make_store().version == 1

    def test_stale_version_record_is_a_miss_and_deleted(
        self, cache_store: CacheStore, storage: MemoryStorage, clock: FakeClock
    ) -> None:
        record = {
            "data": {"id": 1},
            "timestamp": clock.now,
            "ttl": TTL.LONG,
            "key": "pt_templates",
            "version": 0,
        }
        storage.set_item("cache_pt_templates", orjson.dumps(record).decode())

        assert cache_store.get("pt_templates") is None
        assert storage.get_item("cache_pt_templates") is None

    def test_clear_keeps_unrelated_storage_keys(
        self, cache_store: CacheStore, storage: MemoryStorage
    ) -> None:
        storage.set_item("theme", "dark")
        cache_store.set("pt_stats", 1, TTL.SHORT)

        cache_store.clear()

        assert storage.get_item("theme") == "dark"
        assert cache_store.get_stats().storage_size == 0


class TestKeys:
    """Full keys are derived deterministically from base key and params."""

    def test_parameter_order_does_not_matter(self, cache_store: CacheStore) -> None:
        cache_store.set("workout_session", ["squat"], TTL.SHORT, {"a": 1, "b": 2})

        assert cache_store.get("workout_session", {"b": 2, "a": 1}) == ["squat"]

    def test_build_cache_key_format(self) -> None:
        assert build_cache_key("user_profile") == "user_profile"
        assert build_cache_key("user_profile", {}) == "user_profile"
        assert (
            build_cache_key("workout_session", {"programId": "p1", "dayId": "d1"})
            == "workout_session:dayId:d1|programId:p1"
        )

    def test_scalar_rendering(self) -> None:
        key = build_cache_key("k", {"flag": True, "none": None, "n": 3})
        assert key == "k:flag:true|n:3|none:null"

    def test_different_params_are_different_entries(
        self, cache_store: CacheStore
    ) -> None:
        cache_store.set("user_profile", "a", TTL.LONG, {"userId": "u1"})
        cache_store.set("user_profile", "b", TTL.LONG, {"userId": "u2"})

        assert cache_store.get("user_profile", {"userId": "u1"}) == "a"
        assert cache_store.get("user_profile", {"userId": "u2"}) == "b"
        assert cache_store.get("user_profile") is None


class TestTierPromotion:
    """Persistent hits are promoted into the memory tier."""

    def test_second_read_served_from_memory(
        self, make_store: Callable[..., CacheStore]
    ) -> None:
        storage = CountingStorage()
        store = make_store(storage=storage)
        store.set("user_entitlements", [{"product": "static"}], TTL.LONG, {"userId": "u1"})
        store.drop_memory_tier()

        reads_before = storage.reads
        assert store.get("user_entitlements", {"userId": "u1"}) == [{"product": "static"}]
        assert storage.reads == reads_before + 1

        assert store.get("user_entitlements", {"userId": "u1"}) == [{"product": "static"}]
        assert storage.reads == reads_before + 1

    def test_promotion_does_not_rewrite_persistent_record(
        self,
        cache_store: CacheStore,
        storage: MemoryStorage,
        clock: FakeClock,
    ) -> None:
        cache_store.set("pt_templates", [1], TTL.LONG)
        written = storage.get_item("cache_pt_templates")
        cache_store.drop_memory_tier()

        clock.advance(1000)
        cache_store.get("pt_templates")

        assert storage.get_item("cache_pt_templates") == written


class TestEviction:
    """Tiers over their cap lose their oldest entries first."""

    def test_memory_and_storage_keep_newest(
        self, make_store: Callable[..., CacheStore], clock: FakeClock
    ) -> None:
        store = make_store(memory_max_items=3, storage_max_items=3)
        for i in range(5):
            clock.advance(1)
            store.set(f"item_{i}", i, TTL.LONG)

        assert store.memory_keys() == ["item_2", "item_3", "item_4"]
        assert store.get_stats().storage_size == 3
        assert store.get("item_0") is None
        assert store.get("item_1") is None
        assert [store.get(f"item_{i}") for i in (2, 3, 4)] == [2, 3, 4]

    def test_ties_evicted_in_write_order(
        self, make_store: Callable[..., CacheStore]
    ) -> None:
        store = make_store(memory_max_items=2, storage_max_items=2)
        for i in range(4):
            store.set(f"item_{i}", i, TTL.LONG)

        assert store.memory_keys() == ["item_2", "item_3"]

    def test_memory_eviction_falls_back_to_persistent_tier(
        self, make_store: Callable[..., CacheStore], clock: FakeClock
    ) -> None:
        store = make_store(memory_max_items=2, storage_max_items=10)
        for i in range(3):
            clock.advance(1)
            store.set(f"item_{i}", i, TTL.LONG)

        assert "item_0" not in store.memory_keys()
        assert store.get("item_0") == 0

    def test_reads_do_not_protect_old_entries(
        self, make_store: Callable[..., CacheStore], clock: FakeClock
    ) -> None:
        store = make_store(memory_max_items=2, storage_max_items=2)
        store.set("old", "o", TTL.LONG)
        clock.advance(1)
        store.set("recent", "r", TTL.LONG)
        clock.advance(1)
        store.get("old")
        store.set("newest", "n", TTL.LONG)

        assert store.get("old") is None
        assert store.get("recent") == "r"

    def test_unparsable_records_are_evicted_first(
        self,
        make_store: Callable[..., CacheStore],
        storage: MemoryStorage,
        clock: FakeClock,
    ) -> None:
        storage.set_item("cache_junk", "not json at all")
        store = make_store(storage_max_items=2)

        store.set("a", 1, TTL.LONG)
        clock.advance(1)
        store.set("b", 2, TTL.LONG)

        assert storage.get_item("cache_junk") is None
        assert storage.get_item("cache_a") is not None
        assert storage.get_item("cache_b") is not None

    def test_version_key_never_evicted(
        self,
        make_store: Callable[..., CacheStore],
        storage: MemoryStorage,
        clock: FakeClock,
    ) -> None:
        store = make_store(storage_max_items=1)
        store.clear()
        for i in range(3):
            clock.advance(1)
            store.set(f"item_{i}", i, TTL.LONG)

        assert storage.get_item("fitcache_version") == "2"


class TestPatternInvalidation:
    """clear_pattern removes every key containing the substring."""

    def test_clear_pattern_removes_matching_families(
        self, cache_store: CacheStore
    ) -> None:
        cache_store.set("pt_programs", [1], TTL.MEDIUM)
        cache_store.set("pt_templates", [2], TTL.LONG)
        cache_store.set("user_profile", {"id": 1}, TTL.LONG)

        removed = cache_store.clear_pattern("pt_")

        assert removed == 4
        assert cache_store.get("pt_programs") is None
        assert cache_store.get("pt_templates") is None
        assert cache_store.get("user_profile") == {"id": 1}

    def test_pattern_matches_persisted_only_entries(
        self, cache_store: CacheStore
    ) -> None:
        cache_store.set("pt_programs", [1], TTL.MEDIUM)
        cache_store.drop_memory_tier()

        cache_store.clear_pattern("programs")

        assert cache_store.get("pt_programs") is None

    def test_pattern_is_not_matched_against_prefix(
        self, cache_store: CacheStore
    ) -> None:
        cache_store.set("user_profile", {"id": 1}, TTL.LONG)

        assert cache_store.clear_pattern("cache_") == 0
        assert cache_store.get("user_profile") == {"id": 1}

    def test_remove_is_idempotent(self, cache_store: CacheStore) -> None:
        cache_store.set("user_profile", {"id": 1}, TTL.LONG, {"userId": "u1"})

        cache_store.remove("user_profile", {"userId": "u1"})
        cache_store.remove("user_profile", {"userId": "u1"})

        assert cache_store.get("user_profile", {"userId": "u1"}) is None


class TestCacheLayerFailures:
    """Cache-layer I/O problems degrade to misses or no-ops."""

    def test_quota_exceeded_keeps_memory_entry(
        self,
        make_store: Callable[..., CacheStore],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        storage = MemoryStorage(quota_bytes=16)
        store = make_store(storage=storage)

        with caplog.at_level(logging.WARNING, logger="fitcache"):
            store.set("pt_programs", [{"id": i} for i in range(20)], TTL.MEDIUM)

        assert store.get("pt_programs") == [{"id": i} for i in range(20)]
        assert storage.get_item("cache_pt_programs") is None
        assert any("Cache write failed" in r.getMessage() for r in caplog.records)

    def test_unserializable_value_stays_in_memory(
        self, cache_store: CacheStore, storage: MemoryStorage
    ) -> None:
        value = {"tags": {"a", "b"}}
        cache_store.set("exercise_data", value, TTL.SHORT)

        assert cache_store.get("exercise_data") == value
        assert storage.get_item("cache_exercise_data") is None

    def test_storage_errors_never_raise(
        self, make_store: Callable[..., CacheStore]
    ) -> None:
        store = make_store(storage=BrokenStorage())

        store.set("pt_stats", 1, TTL.SHORT)
        assert store.get("pt_stats") == 1

        store.drop_memory_tier()
        assert store.get("pt_stats") is None
        store.remove("pt_stats")

    @pytest.mark.parametrize(
        "raw",
        [
            "{not json",
            '{"data": 1}',
            '{"data": 1, "timestamp": "yesterday", "ttl": 1, "key": "k", "version": 1}',
            "[1, 2, 3]",
        ],
    )
    def test_malformed_record_is_a_miss_and_deleted(
        self, cache_store: CacheStore, storage: MemoryStorage, raw: str
    ) -> None:
        storage.set_item("cache_user_profile", raw)

        assert cache_store.get("user_profile") is None
        assert storage.get_item("cache_user_profile") is None


class TestStats:
    """get_stats reports both tiers and the version."""

    def test_stats_count_only_cache_records(
        self, cache_store: CacheStore, storage: MemoryStorage
    ) -> None:
        storage.set_item("theme", "dark")
        cache_store.set("a", 1, TTL.LONG)
        cache_store.set("b", 2, TTL.LONG)
        cache_store.clear_pattern("zzz")

        stats = cache_store.get_stats()
        assert stats.memory_size == 2
        assert stats.storage_size == 2
        assert stats.version == 1
        assert stats.to_dict() == {"memorySize": 2, "storageSize": 2, "version": 1}


class TestConstruction:
    """Constructor rejects inconsistent namespaces and caps."""

    def test_version_key_inside_prefix_rejected(self, storage: MemoryStorage) -> None:
        with pytest.raises(ValueError):
            CacheStore(storage, version_key="cache_version")

    def test_zero_cap_rejected(self, storage: MemoryStorage) -> None:
        with pytest.raises(ValueError):
            CacheStore(storage, memory_max_items=0)
