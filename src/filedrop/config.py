"""Process-wide configuration loaded from the environment.

Settings are read once at startup with ``load_settings()`` and treated as
read-only afterwards.  ``reload_settings()`` re-reads the environment
(and ``.env``) for admin-triggered refreshes; ``get_settings()`` is the
read-through accessor that loads on first use.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from filedrop.fs.utils import DEFAULT_SLUG_ALPHABET, DEFAULT_SLUG_LENGTH

logger = logging.getLogger(__name__)

GiB = 1024**3
MiB = 1024**2


class Settings(BaseSettings):
    """Storage, quota, trash and share settings (``FILEDROP_*`` variables)."""

    model_config = SettingsConfigDict(
        env_prefix="FILEDROP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./filedrop.db"

    # Storage backend
    storage_backend: Literal["local", "s3"] = "local"
    storage_path: str = "/data/uploads"
    s3_endpoint: str | None = None
    s3_port: int | None = 9000
    s3_use_ssl: bool = False
    s3_access_key: str | None = None
    s3_secret_key: SecretStr | None = None
    s3_bucket: str = "filedrop"
    s3_region: str | None = None
    stream_chunk_size: int = Field(64 * 1024, gt=0)

    # Limits
    default_quota_bytes: int = Field(5 * GiB, ge=0)
    max_file_size: int = Field(100 * MiB, gt=0)

    # Trash
    trash_retention_days: int = Field(30, gt=0)

    # Shares
    share_slug_length: int = Field(DEFAULT_SLUG_LENGTH, ge=6, le=64)
    share_slug_alphabet: str = DEFAULT_SLUG_ALPHABET
    share_password_rounds: int = Field(12, ge=4, le=31)
    max_share_expiry_days: int = Field(365, gt=0)

    @field_validator("share_slug_alphabet")
    @classmethod
    def validate_alphabet(cls, v: str) -> str:
        """Require enough distinct characters for unguessable slugs."""
        if len(set(v)) < 16:
            raise ValueError("share_slug_alphabet needs at least 16 distinct characters")
        return v


_lock = threading.Lock()
_settings: Settings | None = None
_overrides: dict[str, Any] = {}


def load_settings(**overrides: Any) -> Settings:
    """Read settings from the environment, applying *overrides*, and cache them."""
    global _settings
    with _lock:
        _overrides.clear()
        _overrides.update(overrides)
        _settings = Settings(**overrides)
        logger.info("Loaded settings (storage backend: %s)", _settings.storage_backend)
        return _settings


def reload_settings() -> Settings:
    """Re-read the environment, keeping the overrides of the last ``load_settings``."""
    global _settings
    with _lock:
        _settings = Settings(**_overrides)
        logger.info("Reloaded settings (storage backend: %s)", _settings.storage_backend)
        return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading them on first access."""
    if _settings is None:
        return load_settings()
    return _settings
