"""
Custom exception hierarchy for fitcache.

All exceptions inherit from FitCacheError, which provides optional context
for structured error handling and logging.
"""

from __future__ import annotations

from typing import Any


class FitCacheError(Exception):
    """Base exception for all fitcache errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(FitCacheError):
    """Raised when configuration is invalid or missing.

    Examples:
        - BACKEND_URL or BACKEND_API_KEY not set when a backend is needed
        - Version key that collides with the entry prefix
    """

    pass


class CacheStorageError(FitCacheError):
    """Raised by a persistent storage tier when a read or write fails.

    CacheStore catches these and degrades to a miss or a no-op; they are
    never surfaced to accessor callers.

    Context should include:
        - key: The storage key involved
        - operation: get, set, remove or keys
    """

    pass


class StorageQuotaExceededError(CacheStorageError):
    """Raised when a write would exceed the storage tier's quota.

    Context should include:
        - key: The storage key being written
        - quota_bytes: The configured quota
        - required_bytes: Total size the write would have produced
    """

    pass


class BackendError(FitCacheError):
    """Raised when a read or call against the hosted database fails.

    Propagates unchanged through cached accessors; nothing is cached.

    Context should include:
        - resource: Table, view or function name
        - status_code: HTTP status code if applicable
        - details: Error payload returned by the service
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, context)
        self.status_code = status_code
