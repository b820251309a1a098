"""S3StorageProvider — S3-compatible object storage through the MinIO client."""

from __future__ import annotations

import asyncio
import io
import logging
from typing import TYPE_CHECKING, Any

from minio import Minio
from minio.error import MinioException
from urllib3.exceptions import HTTPError

from filedrop.fs.exceptions import (
    ConfigurationError,
    FileDropError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from filedrop.fs.utils import validate_key

from .stream import DEFAULT_CHUNK_SIZE, ObjectMetadata, ObjectStream

if TYPE_CHECKING:
    from .stream import Readable

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchObject", "NotFound", "ResourceNotFound", "NoSuchBucket"}
_AUTH_CODES = {"AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"}
_CLIENT_ERRORS = (MinioException, HTTPError, OSError)


class _ResponseReader:
    """Adapts a urllib3 response to ``Readable`` and returns the connection on close."""

    def __init__(self, response: Any) -> None:
        self._response = response
        self._closed = False

    def read(self, size: int = -1) -> bytes:
        try:
            return self._response.read(None if size < 0 else size)
        except _CLIENT_ERRORS as e:
            raise StorageError("Failed to read object from storage") from e

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._response.close()
        finally:
            self._response.release_conn()


class S3StorageProvider:
    """S3-compatible backend (MinIO, AWS S3, R2, ...).

    The MinIO client is blocking; every call runs in a worker thread.
    The bucket is created on ``open()`` (or lazily on first write) if it
    does not exist yet.
    """

    name = "s3"

    def __init__(
        self,
        bucket: str,
        *,
        endpoint: str | None = None,
        port: int | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        secure: bool = False,
        region: str | None = None,
        client: Any | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if not bucket:
            raise ConfigurationError("S3 bucket name is required")
        self.bucket = bucket
        self.region = region
        self.chunk_size = chunk_size
        self._bucket_ready = False

        if client is not None:
            self.client = client
            return

        if not endpoint:
            raise ConfigurationError("S3 endpoint is required")
        if not access_key or not secret_key:
            raise ConfigurationError("S3 access key and secret key are required")
        host = f"{endpoint}:{port}" if port else endpoint
        try:
            self.client = Minio(
                host,
                access_key=access_key,
                secret_key=secret_key,
                secure=secure,
                region=region,
            )
        except ValueError as e:
            raise ConfigurationError("Invalid S3 endpoint") from e

    # =========================================================================
    # Error translation
    # =========================================================================

    @staticmethod
    def _translate(error: Exception, action: str) -> FileDropError:
        code = getattr(error, "code", None)
        if code in _NOT_FOUND_CODES:
            return NotFoundError("Object not found")
        if code in _AUTH_CODES:
            logger.error("S3 %s rejected credentials: %s", action, code)
            return ConfigurationError("Storage backend rejected the configured credentials")
        logger.error("S3 %s failed: %s", action, error, exc_info=True)
        return StorageError(f"Storage backend {action} failed")

    @staticmethod
    def _check_key(key: str) -> None:
        valid, error = validate_key(key)
        if not valid:
            raise ValidationError(error)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def open(self) -> None:
        await self._ensure_bucket()

    async def close(self) -> None:
        """No-op: the MinIO client pools connections internally."""

    async def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        try:
            exists = await asyncio.to_thread(self.client.bucket_exists, bucket_name=self.bucket)
            if not exists:
                logger.info("Creating bucket %s", self.bucket)
                kwargs: dict[str, Any] = {"bucket_name": self.bucket}
                if self.region:
                    kwargs["location"] = self.region
                await asyncio.to_thread(self.client.make_bucket, **kwargs)
        except _CLIENT_ERRORS as e:
            raise self._translate(e, "bucket setup") from e
        self._bucket_ready = True

    # =========================================================================
    # Blob operations
    # =========================================================================

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        self._check_key(key)
        await self._ensure_bucket()
        try:
            await asyncio.to_thread(
                self.client.put_object,
                bucket_name=self.bucket,
                object_name=key,
                data=io.BytesIO(data),
                length=len(data),
                content_type=content_type or "application/octet-stream",
            )
        except _CLIENT_ERRORS as e:
            raise self._translate(e, "write") from e

    async def get(self, key: str) -> ObjectStream:
        meta = await self.metadata(key)
        if meta is None:
            raise NotFoundError("Object not found")

        def _open() -> Readable:
            try:
                response = self.client.get_object(bucket_name=self.bucket, object_name=key)
            except _CLIENT_ERRORS as e:
                raise self._translate(e, "read") from e
            return _ResponseReader(response)

        return ObjectStream(
            _open,
            size=meta.size,
            content_type=meta.content_type,
            chunk_size=self.chunk_size,
        )

    async def delete(self, key: str) -> None:
        self._check_key(key)
        try:
            await asyncio.to_thread(
                self.client.remove_object, bucket_name=self.bucket, object_name=key
            )
        except _CLIENT_ERRORS as e:
            err = self._translate(e, "delete")
            if isinstance(err, NotFoundError):
                return
            raise err from e

    async def exists(self, key: str) -> bool:
        return await self.metadata(key) is not None

    async def total_usage(self) -> int:
        def _walk() -> int:
            objects = self.client.list_objects(bucket_name=self.bucket, recursive=True)
            return sum(obj.size or 0 for obj in objects)

        try:
            return await asyncio.to_thread(_walk)
        except _CLIENT_ERRORS as e:
            err = self._translate(e, "usage scan")
            if isinstance(err, NotFoundError):
                return 0
            raise err from e

    async def metadata(self, key: str) -> ObjectMetadata | None:
        self._check_key(key)
        try:
            stat = await asyncio.to_thread(
                self.client.stat_object, bucket_name=self.bucket, object_name=key
            )
        except _CLIENT_ERRORS as e:
            err = self._translate(e, "stat")
            if isinstance(err, NotFoundError):
                return None
            raise err from e
        return ObjectMetadata(
            size=stat.size or 0,
            content_type=stat.content_type or "application/octet-stream",
        )
