"""
Two-tier expiring cache store.

Entries live in an in-memory dict (fast path, lost on restart) and in a
persistent KeyValueStorage (survives restarts, read-through populates memory).
An entry is served only while it is unexpired AND carries the current global
version; clear() bumps the version so stale in-memory references stop
validating even before they are evicted.

Cache-layer failures (serialization, quota, malformed records, storage I/O)
are logged and degrade to a miss or a no-op. They never reach the caller.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

import orjson

from fitcache.cache.keys import build_cache_key
from fitcache.cache.storage import KeyValueStorage, SQLiteStorage
from fitcache.exceptions import CacheStorageError
from fitcache.logging import get_logger
from fitcache.types import TTL, CacheEntry, CacheStats, Scalar, now_ms

if TYPE_CHECKING:
    from fitcache.config import Settings

logger = get_logger(__name__)

DEFAULT_PREFIX = "cache_"
DEFAULT_VERSION_KEY = "fitcache_version"
DEFAULT_MEMORY_MAX_ITEMS = 50
DEFAULT_STORAGE_MAX_ITEMS = 100


class CacheStore:
    """Process-local cache over a memory tier and a persistent tier.

    One instance is meant to be shared per process and passed to whatever
    needs it; tests build their own over a MemoryStorage.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        prefix: str = DEFAULT_PREFIX,
        version_key: str = DEFAULT_VERSION_KEY,
        memory_max_items: int = DEFAULT_MEMORY_MAX_ITEMS,
        storage_max_items: int = DEFAULT_STORAGE_MAX_ITEMS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the store and load the persisted version counter.

        Args:
            storage: Persistent tier.
            prefix: Prefix marking persistent keys owned by this cache.
            version_key: Storage key of the global version counter.
            memory_max_items: Entry cap for the memory tier.
            storage_max_items: Record cap for the persistent tier.
            clock: Millisecond clock, injectable for tests.
        """
        if not prefix:
            raise ValueError("prefix must be non-empty")
        if version_key.startswith(prefix):
            raise ValueError("version_key must not start with the entry prefix")
        if memory_max_items < 1 or storage_max_items < 1:
            raise ValueError("size caps must be at least 1")

        self.storage = storage
        self.prefix = prefix
        self.version_key = version_key
        self.memory_max_items = memory_max_items
        self.storage_max_items = storage_max_items
        self._clock = clock
        self._memory: dict[str, CacheEntry[Any]] = {}
        self._version = self._load_version()

    @property
    def version(self) -> int:
        """Current global version stamp."""
        return self._version

    def _load_version(self) -> int:
        try:
            raw = self.storage.get_item(self.version_key)
        except CacheStorageError as e:
            logger.warning("Cache version read failed, using 1", error=str(e))
            return 1
        if raw is None:
            return 1
        try:
            return int(raw)
        except ValueError:
            logger.warning("Ignoring unparsable cache version", value=raw)
            return 1

    def _save_version(self, version: int) -> None:
        self._version = version
        try:
            self.storage.set_item(self.version_key, str(version))
        except CacheStorageError as e:
            logger.warning("Cache version write failed", version=version, error=str(e))

    def _storage_key(self, full_key: str) -> str:
        return f"{self.prefix}{full_key}"

    def _cache_storage_keys(self) -> list[str]:
        try:
            return [k for k in self.storage.keys() if k.startswith(self.prefix)]
        except CacheStorageError as e:
            logger.warning("Cache storage scan failed", error=str(e))
            return []

    def _remove_stored(self, storage_key: str) -> None:
        try:
            self.storage.remove_item(storage_key)
        except CacheStorageError as e:
            logger.warning("Cache delete failed", key=storage_key, error=str(e))

    def _is_valid(self, entry: CacheEntry[Any]) -> bool:
        return entry.is_valid(self._clock(), self._version)

    def get(self, base_key: str, params: Mapping[str, Scalar] | None = None) -> Any | None:
        """Look up a value, memory tier first, then the persistent tier.

        Args:
            base_key: Base key of the cached data.
            params: Identifying parameters.

        Returns:
            The cached data, or None on a miss (absent, expired or stale).
        """
        full_key = build_cache_key(base_key, params)

        entry = self._memory.get(full_key)
        if entry is not None:
            if self._is_valid(entry):
                return entry.data
            del self._memory[full_key]

        storage_key = self._storage_key(full_key)
        try:
            raw = self.storage.get_item(storage_key)
        except CacheStorageError as e:
            logger.warning("Cache read failed", key=full_key, error=str(e))
            return None
        if raw is None:
            return None

        try:
            stored = CacheEntry.from_dict(orjson.loads(raw))
        except (orjson.JSONDecodeError, CacheStorageError) as e:
            logger.warning("Dropping malformed cache record", key=full_key, error=str(e))
            self._remove_stored(storage_key)
            return None

        if not self._is_valid(stored):
            self._remove_stored(storage_key)
            return None

        # Promote to memory only; the persistent copy is already current.
        self._memory[full_key] = stored
        return stored.data

    def set(
        self,
        base_key: str,
        data: Any,
        ttl: int = TTL.MEDIUM,
        params: Mapping[str, Scalar] | None = None,
    ) -> None:
        """Store a value in both tiers.

        The memory write always succeeds. A failed persistent write is logged
        and otherwise ignored.

        Args:
            base_key: Base key of the cached data.
            data: Value to cache; must be JSON-serializable to persist.
            ttl: Time-to-live in milliseconds.
            params: Identifying parameters.
        """
        full_key = build_cache_key(base_key, params)
        entry = CacheEntry(
            data=data,
            timestamp=self._clock(),
            ttl=ttl,
            key=full_key,
            version=self._version,
        )

        self._memory.pop(full_key, None)
        self._memory[full_key] = entry

        try:
            payload = orjson.dumps(entry.to_dict()).decode("utf-8")
            self.storage.set_item(self._storage_key(full_key), payload)
        except (TypeError, orjson.JSONEncodeError, CacheStorageError) as e:
            logger.warning("Cache write failed", key=full_key, error=str(e))

        self.cleanup()

    def remove(self, base_key: str, params: Mapping[str, Scalar] | None = None) -> None:
        """Delete one entry from both tiers. No-op if absent."""
        full_key = build_cache_key(base_key, params)
        self._memory.pop(full_key, None)
        self._remove_stored(self._storage_key(full_key))

    def clear(self) -> None:
        """Drop every entry and bump the global version."""
        self._memory.clear()
        for storage_key in self._cache_storage_keys():
            self._remove_stored(storage_key)
        self._save_version(self._version + 1)
        logger.info("Cache cleared", version=self._version)

    def clear_pattern(self, pattern: str) -> int:
        """Delete every entry whose full key contains ``pattern``.

        Returns:
            Number of keys removed across both tiers.
        """
        removed = 0

        for full_key in [k for k in self._memory if pattern in k]:
            del self._memory[full_key]
            removed += 1

        for storage_key in self._cache_storage_keys():
            if pattern in storage_key[len(self.prefix):]:
                self._remove_stored(storage_key)
                removed += 1

        logger.debug("Cleared cache pattern", pattern=pattern, removed=removed)
        return removed

    def cleanup(self) -> None:
        """Evict the oldest entries from any tier over its cap.

        Age is the write timestamp; reads do not refresh it.
        """
        if len(self._memory) > self.memory_max_items:
            by_age = sorted(self._memory.items(), key=lambda item: item[1].timestamp)
            excess = len(by_age) - self.memory_max_items
            for full_key, _ in by_age[:excess]:
                del self._memory[full_key]
            logger.debug("Evicted memory entries", count=excess)

        storage_keys = self._cache_storage_keys()
        if len(storage_keys) > self.storage_max_items:
            by_age = sorted(
                ((self._stored_timestamp(k), k) for k in storage_keys),
                key=lambda item: item[0],
            )
            excess = len(by_age) - self.storage_max_items
            for _, storage_key in by_age[:excess]:
                self._remove_stored(storage_key)
            logger.debug("Evicted stored entries", count=excess)

    def _stored_timestamp(self, storage_key: str) -> int:
        """Timestamp of a stored record; 0 when unreadable so it is evicted first."""
        try:
            raw = self.storage.get_item(storage_key)
            if raw is None:
                return 0
            parsed = orjson.loads(raw)
        except (CacheStorageError, orjson.JSONDecodeError):
            return 0
        timestamp = parsed.get("timestamp") if isinstance(parsed, dict) else None
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            return 0
        return int(timestamp)

    def get_stats(self) -> CacheStats:
        """Current tier sizes and version."""
        return CacheStats(
            memory_size=len(self._memory),
            storage_size=len(self._cache_storage_keys()),
            version=self._version,
        )

    def memory_keys(self) -> list[str]:
        """Full keys currently held in the memory tier."""
        return list(self._memory)

    def drop_memory_tier(self) -> None:
        """Empty the memory tier only, as a process restart would."""
        self._memory.clear()

    def inspect(self, full_key: str) -> tuple[CacheEntry[Any], bool] | None:
        """Read a persisted entry by full key without promoting or deleting it.

        Returns:
            (entry, is_valid) or None if absent or unreadable.
        """
        try:
            raw = self.storage.get_item(self._storage_key(full_key))
            if raw is None:
                return None
            entry = CacheEntry.from_dict(orjson.loads(raw))
        except (CacheStorageError, orjson.JSONDecodeError) as e:
            logger.warning("Cannot inspect cache record", key=full_key, error=str(e))
            return None
        return entry, self._is_valid(entry)


def create_cache_store(settings: Settings) -> CacheStore:
    """Build a CacheStore over the SQLite persistent tier described by settings."""
    settings.ensure_directories()
    storage = SQLiteStorage(settings.cache_db_path)
    storage.init()
    return CacheStore(
        storage,
        prefix=settings.CACHE_KEY_PREFIX,
        version_key=settings.CACHE_VERSION_KEY,
        memory_max_items=settings.CACHE_MEMORY_MAX_ITEMS,
        storage_max_items=settings.CACHE_STORAGE_MAX_ITEMS,
    )
