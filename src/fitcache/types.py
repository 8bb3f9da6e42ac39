"""
Core types for fitcache.

This module defines the data structures shared by the cache layers:
- CacheEntry: one cached value with its TTL and version stamp
- CacheStats: diagnostic counts for both tiers
- TTL: named time-to-live classes in milliseconds
- Helpers for millisecond timestamps
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from fitcache.exceptions import CacheStorageError

T = TypeVar("T")

Scalar = str | int | float | bool | None


def now_ms() -> int:
    """Get current wall-clock time in integer milliseconds since epoch."""
    return time.time_ns() // 1_000_000


class TTL:
    """Time-to-live classes, in milliseconds."""

    SHORT = 5 * 60 * 1000
    MEDIUM = 15 * 60 * 1000
    LONG = 60 * 60 * 1000
    VERY_LONG = 24 * 60 * 60 * 1000


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    """A cached value with creation time, TTL and global version stamp."""

    data: T
    timestamp: int
    ttl: int
    key: str
    version: int

    def is_valid(self, now: int, current_version: int) -> bool:
        """Check that the entry is unexpired and written under the current version."""
        return (now - self.timestamp) < self.ttl and self.version == current_version

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dict."""
        return {
            "data": self.data,
            "timestamp": self.timestamp,
            "ttl": self.ttl,
            "key": self.key,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> CacheEntry[Any]:
        """Rebuild an entry from its stored dict form.

        Raises:
            CacheStorageError: If the record is not a dict or a field is
                missing or has the wrong type.
        """
        if not isinstance(raw, dict):
            raise CacheStorageError(
                "Stored cache record is not an object",
                context={"type": type(raw).__name__},
            )

        missing = [f for f in ("data", "timestamp", "ttl", "key", "version") if f not in raw]
        if missing:
            raise CacheStorageError(
                "Stored cache record is missing fields",
                context={"missing": missing},
            )

        for field_name in ("timestamp", "ttl", "version"):
            value = raw[field_name]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise CacheStorageError(
                    f"Stored cache record has non-numeric {field_name}",
                    context={"field": field_name, "value": value},
                )

        return cls(
            data=raw["data"],
            timestamp=int(raw["timestamp"]),
            ttl=int(raw["ttl"]),
            key=str(raw["key"]),
            version=int(raw["version"]),
        )


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Point-in-time counts for both cache tiers."""

    memory_size: int
    storage_size: int
    version: int

    def to_dict(self) -> dict[str, int]:
        """Convert to a dict using the diagnostic field names."""
        return {
            "memorySize": self.memory_size,
            "storageSize": self.storage_size,
            "version": self.version,
        }
