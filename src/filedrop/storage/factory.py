"""Pick the process-wide storage backend from settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from filedrop.fs.exceptions import ConfigurationError

from .local import LocalStorageProvider
from .s3 import S3StorageProvider

if TYPE_CHECKING:
    from filedrop.config import Settings

    from .protocol import StorageProvider

logger = logging.getLogger(__name__)


def create_storage_provider(settings: Settings) -> StorageProvider:
    """Build the backend named by ``settings.storage_backend``."""
    backend = settings.storage_backend
    if backend == "local":
        logger.info("Using local storage backend")
        return LocalStorageProvider(
            settings.storage_path,
            chunk_size=settings.stream_chunk_size,
        )
    if backend == "s3":
        logger.info("Using S3 storage backend (bucket %s)", settings.s3_bucket)
        return S3StorageProvider(
            settings.s3_bucket,
            endpoint=settings.s3_endpoint,
            port=settings.s3_port,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key.get_secret_value()
            if settings.s3_secret_key
            else None,
            secure=settings.s3_use_ssl,
            region=settings.s3_region,
            chunk_size=settings.stream_chunk_size,
        )
    raise ConfigurationError(f"Unknown storage backend: {backend!r}")
