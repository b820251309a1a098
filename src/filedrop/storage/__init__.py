"""Storage providers — local disk and S3-compatible blob backends."""

from filedrop.storage.factory import create_storage_provider
from filedrop.storage.local import LocalStorageProvider
from filedrop.storage.protocol import StorageProvider
from filedrop.storage.s3 import S3StorageProvider
from filedrop.storage.stream import DEFAULT_CHUNK_SIZE, ObjectMetadata, ObjectStream

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "LocalStorageProvider",
    "ObjectMetadata",
    "ObjectStream",
    "S3StorageProvider",
    "StorageProvider",
    "create_storage_provider",
]
