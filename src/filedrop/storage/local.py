"""LocalStorageProvider — blobs as files under a base directory."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

from filedrop.fs.exceptions import (
    ConfigurationError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from filedrop.fs.utils import validate_key

from .stream import DEFAULT_CHUNK_SIZE, ObjectMetadata, ObjectStream, Readable

logger = logging.getLogger(__name__)

_TMP_PREFIX = ".tmp_"
_DEFAULT_CONTENT_TYPE = "application/octet-stream"


class LocalStorageProvider:
    """Local filesystem storage backend.

    Keys map to ``{base_path}/{key}``.  Writes go to a temp file in the
    destination directory and are renamed into place, so a reader sees
    either the old object or the complete new one.

    Security: ``_resolve_key()`` keeps every key inside ``base_path`` and
    refuses symlinks along the way.
    """

    name = "local"

    def __init__(
        self,
        base_path: Path | str,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        create: bool = True,
    ) -> None:
        self.base_path = Path(base_path)
        self.chunk_size = chunk_size

        if self.base_path.exists() and not self.base_path.is_dir():
            raise ConfigurationError("Storage path is not a directory")
        if not self.base_path.exists():
            if not create:
                raise ConfigurationError("Storage path does not exist")
            try:
                self.base_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ConfigurationError("Storage path cannot be created") from e
        self.base_path = self.base_path.resolve()

    # =========================================================================
    # Key Resolution & Security
    # =========================================================================

    def _resolve_key(self, key: str) -> Path:
        """Resolve a storage key to a physical path inside ``base_path``."""
        valid, error = validate_key(key)
        if not valid:
            raise ValidationError(error)

        current = self.base_path
        for part in Path(key).parts:
            current = current / part
            if current.is_symlink():
                raise ValidationError("Symlinks are not allowed in storage keys")

        resolved = (self.base_path / key).resolve()
        try:
            resolved.relative_to(self.base_path)
        except ValueError:
            raise ValidationError("Storage key resolves outside the storage root") from None
        return resolved

    # =========================================================================
    # Lifecycle (no-op for local disk)
    # =========================================================================

    async def open(self) -> None:
        """No-op: the base directory is created at construction."""

    async def close(self) -> None:
        """No-op: streams own their file handles."""

    # =========================================================================
    # Blob operations
    # =========================================================================

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        target = self._resolve_key(key)

        def _do_write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=_TMP_PREFIX)
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                Path(tmp_path).replace(target)
            except Exception:
                tmp = Path(tmp_path)
                if tmp.exists():
                    tmp.unlink()
                raise

        try:
            await asyncio.to_thread(_do_write)
        except OSError as e:
            logger.error("Local write failed (%d bytes): %s", len(data), e, exc_info=True)
            raise StorageError("Failed to write object to storage") from e

    async def get(self, key: str) -> ObjectStream:
        target = self._resolve_key(key)
        meta = await self.metadata(key)
        if meta is None:
            raise NotFoundError("Object not found")

        def _open() -> Readable:
            try:
                return target.open("rb")
            except FileNotFoundError as e:
                raise NotFoundError("Object not found") from e
            except OSError as e:
                raise StorageError("Failed to read object from storage") from e

        return ObjectStream(
            _open,
            size=meta.size,
            content_type=meta.content_type,
            chunk_size=self.chunk_size,
        )

    async def delete(self, key: str) -> None:
        target = self._resolve_key(key)
        try:
            await asyncio.to_thread(target.unlink, missing_ok=True)
        except IsADirectoryError as e:
            raise StorageError("Storage key refers to a directory") from e
        except OSError as e:
            logger.error("Local delete failed: %s", e, exc_info=True)
            raise StorageError("Failed to delete object from storage") from e

    async def exists(self, key: str) -> bool:
        target = self._resolve_key(key)
        return await asyncio.to_thread(target.is_file)

    async def total_usage(self) -> int:
        def _walk() -> int:
            total = 0
            for root, _dirs, files in os.walk(self.base_path):
                for name in files:
                    if name.startswith(_TMP_PREFIX):
                        continue
                    try:
                        total += (Path(root) / name).stat().st_size
                    except FileNotFoundError:
                        continue
            return total

        try:
            return await asyncio.to_thread(_walk)
        except OSError as e:
            raise StorageError("Failed to compute storage usage") from e

    async def metadata(self, key: str) -> ObjectMetadata | None:
        target = self._resolve_key(key)

        def _stat() -> ObjectMetadata | None:
            try:
                st = target.stat()
            except (FileNotFoundError, NotADirectoryError):
                return None
            if not target.is_file():
                return None
            return ObjectMetadata(size=st.st_size, content_type=_DEFAULT_CONTENT_TYPE)

        try:
            return await asyncio.to_thread(_stat)
        except OSError as e:
            raise StorageError("Failed to read object metadata") from e
