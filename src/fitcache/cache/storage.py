"""
Persistent key/value storage tiers.

The cache store talks to its persistent tier through KeyValueStorage, a
synchronous string-to-string interface in the spirit of a browser key/value
store. Two implementations are provided:
- MemoryStorage: dict-backed, with an optional byte quota (tests, ephemeral use)
- SQLiteStorage: single-table SQLite file that survives restarts
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Protocol, runtime_checkable

from fitcache.exceptions import CacheStorageError, StorageQuotaExceededError


@runtime_checkable
class KeyValueStorage(Protocol):
    """Synchronous string key/value store used as the persistent cache tier."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryStorage:
    """Dict-backed storage with an optional total size quota.

    The quota counts UTF-8 bytes of keys and values, like the per-origin
    budget of a browser store. A write that would exceed it raises
    StorageQuotaExceededError and leaves the previous value in place.
    """

    def __init__(self, quota_bytes: int | None = None) -> None:
        self.quota_bytes = quota_bytes
        self._items: dict[str, str] = {}

    @staticmethod
    def _size(key: str, value: str) -> int:
        return len(key.encode("utf-8")) + len(value.encode("utf-8"))

    def used_bytes(self) -> int:
        """Total bytes currently stored."""
        return sum(self._size(k, v) for k, v in self._items.items())

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            current = self._items.get(key)
            used = self.used_bytes()
            if current is not None:
                used -= self._size(key, current)
            required = used + self._size(key, value)
            if required > self.quota_bytes:
                raise StorageQuotaExceededError(
                    "Storage quota exceeded",
                    context={
                        "key": key,
                        "quota_bytes": self.quota_bytes,
                        "required_bytes": required,
                    },
                )
        # Re-insert so iteration order follows write order.
        self._items.pop(key, None)
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)

    def clear(self) -> None:
        """Remove every item, cache-owned or not."""
        self._items.clear()


class SQLiteStorage:
    """SQLite-backed key/value storage.

    One table, one row per key. Writes use INSERT OR REPLACE, which assigns a
    fresh rowid, so keys() returns keys in write order.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize SQLiteStorage.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._initialized = False

    def init(self) -> None:
        """Create the database file and schema. Safe to call multiple times."""
        if self._initialized:
            return

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._get_conn()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise CacheStorageError(
                "Failed to initialize cache database",
                context={"db_path": str(self.db_path), "error": str(e)},
            ) from e

        self._initialized = True

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                isolation_level="DEFERRED",
            )
        return self._conn

    def _ensure_init(self) -> sqlite3.Connection:
        if not self._initialized:
            self.init()
        return self._get_conn()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._initialized = False

    def get_item(self, key: str) -> str | None:
        conn = self._ensure_init()
        try:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise CacheStorageError(
                "Cache database read failed",
                context={"key": key, "operation": "get", "error": str(e)},
            ) from e
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        conn = self._ensure_init()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
                (key, value),
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            if isinstance(e, sqlite3.OperationalError) and "full" in str(e).lower():
                raise StorageQuotaExceededError(
                    "Cache database is full",
                    context={"key": key, "error": str(e)},
                ) from e
            raise CacheStorageError(
                "Cache database write failed",
                context={"key": key, "operation": "set", "error": str(e)},
            ) from e

    def remove_item(self, key: str) -> None:
        conn = self._ensure_init()
        try:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise CacheStorageError(
                "Cache database delete failed",
                context={"key": key, "operation": "remove", "error": str(e)},
            ) from e

    def keys(self) -> list[str]:
        conn = self._ensure_init()
        try:
            rows = conn.execute("SELECT key FROM kv_store ORDER BY rowid").fetchall()
        except sqlite3.Error as e:
            raise CacheStorageError(
                "Cache database scan failed",
                context={"operation": "keys", "error": str(e)},
            ) from e
        return [row[0] for row in rows]
