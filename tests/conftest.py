"""
Pytest configuration and fixtures for fitcache tests.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generator
from unittest.mock import patch

import pytest

from fitcache.backend.base import Query
from fitcache.cache.storage import MemoryStorage
from fitcache.cache.store import CacheStore
from fitcache.config import Settings, clear_settings_cache
from fitcache.exceptions import BackendError


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeBackend:
    """In-process Backend double.

    Responses are registered per table or function name, either as a value or
    as a callable receiving the Query (or rpc params). Exceptions registered
    as responses are raised. Every call is recorded.
    """

    def __init__(self) -> None:
        self.tables: dict[str, Any] = {}
        self.functions: dict[str, Any] = {}
        self.calls: list[tuple[str, Any]] = []
        self.closed = False

    def _resolve(self, response: Any, arg: Any) -> Any:
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(arg)
        return response

    async def select(self, query: Query) -> Any:
        self.calls.append((query.table, query))
        if query.table not in self.tables:
            raise BackendError(
                f"No fake response for {query.table}",
                context={"resource": query.table},
                status_code=404,
            )
        return self._resolve(self.tables[query.table], query)

    async def rpc(self, function: str, params: dict[str, Any] | None = None) -> Any:
        self.calls.append((function, params))
        if function not in self.functions:
            raise BackendError(
                f"No fake response for {function}",
                context={"resource": function},
                status_code=404,
            )
        return self._resolve(self.functions[function], params)

    async def close(self) -> None:
        self.closed = True

    def call_count(self, name: str) -> int:
        return sum(1 for called, _ in self.calls if called == name)


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "BACKEND_URL": "https://db.example.test",
        "BACKEND_API_KEY": "test-anon-key-1234567890",
        "BACKEND_TIMEOUT_S": "5",
        "CACHE_DIR": str(temp_dir / "cache"),
        "CACHE_MEMORY_MAX_ITEMS": "10",
        "CACHE_STORAGE_MAX_ITEMS": "20",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration."""
    from fitcache.config import get_settings

    settings = get_settings()
    settings.ensure_directories()
    yield settings
    clear_settings_cache()


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable millisecond clock."""
    return FakeClock()


@pytest.fixture
def storage() -> MemoryStorage:
    """Provide an empty in-memory persistent tier."""
    return MemoryStorage()


@pytest.fixture
def make_store(
    storage: MemoryStorage, clock: FakeClock
) -> Callable[..., CacheStore]:
    """Factory for stores sharing the test's storage and clock."""

    def factory(**kwargs: Any) -> CacheStore:
        kwargs.setdefault("clock", clock)
        return CacheStore(kwargs.pop("storage", storage), **kwargs)

    return factory


@pytest.fixture
def cache_store(make_store: Callable[..., CacheStore]) -> CacheStore:
    """Provide a store with default caps over in-memory storage."""
    return make_store()


@pytest.fixture
def backend() -> FakeBackend:
    """Provide a fake backend with no registered responses."""
    return FakeBackend()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
