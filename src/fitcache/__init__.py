"""
fitcache - read-side caching for the coaching platform backend.

Provides a two-tier expiring cache (memory + persistent key/value store),
cached accessors over the hosted database, and the invalidation and
preload helpers used by write paths.
"""

__version__ = "0.1.0"
