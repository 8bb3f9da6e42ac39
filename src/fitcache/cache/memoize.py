"""
Higher-order helper that turns an async backend read into a cached accessor.

Every accessor follows the same steps: derive the key, try the cache, on a
miss await the backend read, store the result under a TTL class, return it.
Backend errors propagate unchanged and leave nothing cached.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Generic, TypeVar

from fitcache.cache.keys import build_cache_key
from fitcache.cache.store import CacheStore
from fitcache.logging import get_logger, log_context
from fitcache.types import Scalar

logger = get_logger(__name__)

T = TypeVar("T")

KeyParams = Callable[..., Mapping[str, Scalar] | None]


class RequestCoalescer(Generic[T]):
    """Share one in-flight read between concurrent callers of the same key."""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    @property
    def in_flight(self) -> int:
        """Number of reads currently running."""
        return len(self._tasks)

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        existing = self._tasks.get(key)
        if existing is not None:
            return await asyncio.shield(existing)

        task: asyncio.Task[T] = asyncio.ensure_future(factory())
        self._tasks[key] = task
        task.add_done_callback(lambda _: self._tasks.pop(key, None))
        return await asyncio.shield(task)


def cached_read(
    cache: CacheStore,
    *,
    base_key: str,
    ttl: int,
    fetch: Callable[..., Awaitable[T]],
    key_params: KeyParams | None = None,
    coalescer: RequestCoalescer[Any] | None = None,
    name: str | None = None,
) -> Callable[..., Awaitable[T]]:
    """Wrap ``fetch`` so results are cached under ``base_key`` for ``ttl`` ms.

    Args:
        cache: Store to read from and write to.
        base_key: Base key shared by every call of this accessor.
        ttl: Time-to-live class for stored results, in milliseconds.
        fetch: The backend read. Called with the accessor's arguments.
        key_params: Maps the accessor's arguments to identifying cache
            parameters. Defaults to no parameters (one key per accessor).
        coalescer: Optional in-flight de-duplication for concurrent misses.
        name: Accessor name used in log context. Defaults to fetch.__name__.

    Returns:
        An async callable with the same arguments as ``fetch``.
    """
    accessor_name = name or getattr(fetch, "__name__", base_key)

    @functools.wraps(fetch)
    async def accessor(*args: Any, **kwargs: Any) -> T:
        params = key_params(*args, **kwargs) if key_params else None

        cached = cache.get(base_key, params)
        if cached is not None:
            return cached

        async def load() -> T:
            with log_context(accessor=accessor_name):
                logger.debug("Cache miss, reading backend", base_key=base_key)
                result = await fetch(*args, **kwargs)
            cache.set(base_key, result, ttl, params)
            return result

        if coalescer is None:
            return await load()
        return await coalescer.run(build_cache_key(base_key, params), load)

    accessor.base_key = base_key  # type: ignore[attr-defined]
    accessor.ttl = ttl  # type: ignore[attr-defined]
    return accessor
