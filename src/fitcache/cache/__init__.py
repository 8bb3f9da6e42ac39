"""
Cache package.

- keys.py: deterministic full-key derivation
- storage.py: persistent tier implementations (memory dict, SQLite)
- store.py: the two-tier CacheStore
- memoize.py: cached_read helper and request coalescing for accessors
"""

from fitcache.cache.keys import build_cache_key
from fitcache.cache.memoize import RequestCoalescer, cached_read
from fitcache.cache.storage import KeyValueStorage, MemoryStorage, SQLiteStorage
from fitcache.cache.store import CacheStore, create_cache_store

__all__ = [
    "CacheStore",
    "KeyValueStorage",
    "MemoryStorage",
    "RequestCoalescer",
    "SQLiteStorage",
    "build_cache_key",
    "cached_read",
    "create_cache_store",
]
