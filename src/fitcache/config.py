"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates cache limits and key namespaces and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Backend (required only when cached accessors hit the database):
        BACKEND_URL: Base URL of the hosted database service
        BACKEND_API_KEY: API key sent as apikey/Bearer headers
        BACKEND_TIMEOUT_S: Per-request timeout in seconds

    Cache:
        CACHE_DIR: Directory holding the persistent tier database
        CACHE_DB_NAME: File name of the persistent tier database
        CACHE_KEY_PREFIX: Prefix marking persistent records owned by the cache
        CACHE_VERSION_KEY: Storage key of the global version counter
        CACHE_MEMORY_MAX_ITEMS: Entry cap for the in-memory tier
        CACHE_STORAGE_MAX_ITEMS: Record cap for the persistent tier
        CACHE_COALESCE_REQUESTS: Share one backend read between concurrent misses

    LOG_LEVEL: Logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    BACKEND_URL: str | None = Field(
        default=None, description="Base URL of the hosted database service"
    )
    BACKEND_API_KEY: str | None = Field(default=None, description="Backend API key")
    BACKEND_TIMEOUT_S: float = Field(
        default=30.0, gt=0.0, description="Backend request timeout in seconds"
    )

    CACHE_DIR: Path = Field(default=Path(".cache"), description="Cache directory")
    CACHE_DB_NAME: str = Field(
        default="cache.db", description="Persistent tier database file name"
    )
    CACHE_KEY_PREFIX: str = Field(
        default="cache_", min_length=1, description="Persistent record key prefix"
    )
    CACHE_VERSION_KEY: str = Field(
        default="fitcache_version", min_length=1, description="Version counter key"
    )
    CACHE_MEMORY_MAX_ITEMS: int = Field(
        default=50, ge=1, le=10_000, description="In-memory tier entry cap"
    )
    CACHE_STORAGE_MAX_ITEMS: int = Field(
        default=100, ge=1, le=100_000, description="Persistent tier record cap"
    )
    CACHE_COALESCE_REQUESTS: bool = Field(
        default=False, description="De-duplicate concurrent misses for one key"
    )

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    @field_validator("BACKEND_URL")
    @classmethod
    def validate_backend_url(cls, v: str | None) -> str | None:
        """Require an http(s) URL and strip trailing slashes."""
        if v is None or not v.strip():
            return None
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("BACKEND_URL must start with http:// or https://")
        return v

    @model_validator(mode="after")
    def validate_version_key_outside_prefix(self) -> Settings:
        """Keep the version counter out of the prefixed entry namespace."""
        if self.CACHE_VERSION_KEY.startswith(self.CACHE_KEY_PREFIX):
            raise ValueError(
                "CACHE_VERSION_KEY must not start with CACHE_KEY_PREFIX "
                "(prefix scans would evict or clear the version counter)"
            )
        return self

    @property
    def cache_db_path(self) -> Path:
        """Full path of the persistent tier database."""
        return self.CACHE_DIR / self.CACHE_DB_NAME

    @property
    def backend_configured(self) -> bool:
        """Whether both backend URL and key are set."""
        return bool(self.BACKEND_URL and self.BACKEND_API_KEY)

    def ensure_directories(self) -> None:
        """Create the cache directory if it doesn't exist."""
        self.CACHE_DIR.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | int | float | bool | None]:
        """Return settings with API keys redacted for display."""
        def redact(value: str | None) -> str | None:
            if value is None:
                return None
            return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"

        return {
            "BACKEND_URL": self.BACKEND_URL,
            "BACKEND_API_KEY": redact(self.BACKEND_API_KEY),
            "BACKEND_TIMEOUT_S": self.BACKEND_TIMEOUT_S,
            "CACHE_DIR": str(self.CACHE_DIR),
            "CACHE_DB_NAME": self.CACHE_DB_NAME,
            "CACHE_KEY_PREFIX": self.CACHE_KEY_PREFIX,
            "CACHE_VERSION_KEY": self.CACHE_VERSION_KEY,
            "CACHE_MEMORY_MAX_ITEMS": self.CACHE_MEMORY_MAX_ITEMS,
            "CACHE_STORAGE_MAX_ITEMS": self.CACHE_STORAGE_MAX_ITEMS,
            "CACHE_COALESCE_REQUESTS": self.CACHE_COALESCE_REQUESTS,
            "LOG_LEVEL": self.LOG_LEVEL,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
