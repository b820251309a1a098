"""FileService — upload, rename, move, download, soft delete and restore.

File states: ``none -> live -> deleted (tombstone) -> purged``.  Purging
lives in ``TrashService``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlmodel import select

from .exceptions import ForbiddenError, NotFoundError, ValidationError
from .utils import (
    compute_checksum,
    guess_mime_type,
    in_retention_window,
    storage_key_for,
    validate_name,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from filedrop.models.files import FileBase
    from filedrop.storage.protocol import StorageProvider
    from filedrop.storage.stream import ObjectStream

    from .folders import FolderService
    from .quota import QuotaLedger

logger = logging.getLogger(__name__)


class FileService:
    """File lifecycle on top of a storage provider and the quota ledger.

    Upload order: quota reservation, checksum, storage write, record
    insert.  A failed storage write leaves no record and gives the
    reserved bytes back.
    """

    def __init__(
        self,
        file_model: type[FileBase],
        storage: StorageProvider,
        quota: QuotaLedger,
        folders: FolderService,
        *,
        max_file_size: int,
        retention: timedelta,
    ) -> None:
        self._file_model = file_model
        self._storage = storage
        self._quota = quota
        self._folders = folders
        self.max_file_size = max_file_size
        self.retention = retention

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get(
        self,
        session: AsyncSession,
        file_id: str,
        owner_id: str,
        *,
        include_deleted: bool = False,
    ) -> FileBase:
        """Return an owned file.  ``NotFoundError`` / ``ForbiddenError`` otherwise."""
        file = await session.get(self._file_model, file_id)
        if file is None or (file.is_deleted and not include_deleted):
            raise NotFoundError("File not found")
        if file.owner_id != owner_id:
            raise ForbiddenError("Access denied")
        return file

    async def get_live(self, session: AsyncSession, file_id: str) -> FileBase | None:
        """Unscoped lookup of a live file, for delegated (share) access."""
        file = await session.get(self._file_model, file_id)
        if file is None or file.is_deleted:
            return None
        return file

    async def list_files(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str | None = None,
    ) -> list[FileBase]:
        """Live files of *owner_id* in *folder_id* (root when None), newest first."""
        model = self._file_model
        result = await session.execute(
            select(model)
            .where(
                model.owner_id == owner_id,
                model.folder_id == folder_id,
                model.deleted_at.is_(None),  # type: ignore[union-attr]
            )
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        session: AsyncSession,
        owner_id: str,
        data: bytes,
        original_name: str,
        mime_type: str | None = None,
        folder_id: str | None = None,
    ) -> FileBase:
        """Ingest one file: ``none -> live``."""
        valid, error = validate_name(original_name)
        if not valid:
            raise ValidationError(error)
        if len(data) > self.max_file_size:
            raise ValidationError(
                f"File too large ({len(data):,} bytes, limit {self.max_file_size:,})",
                code="FILE_TOO_LARGE",
            )
        if folder_id is not None:
            await self._folders.get(session, folder_id, owner_id)

        # Fails fast with QuotaExceededError before anything is written.
        await self._quota.reserve(session, owner_id, len(data))

        checksum, size = compute_checksum(data)
        file_id = str(uuid.uuid4())
        storage_key = storage_key_for(owner_id, file_id)
        mime = mime_type or guess_mime_type(original_name)

        try:
            await self._storage.put(storage_key, data, mime)
        except Exception:
            await self._quota.adjust(session, owner_id, -size)
            logger.warning("Upload of %s for %s aborted; storage write failed", file_id, owner_id)
            raise

        file = self._file_model(
            id=file_id,
            owner_id=owner_id,
            folder_id=folder_id,
            name=original_name,
            original_name=original_name,
            mime_type=mime,
            size_bytes=size,
            storage_key=storage_key,
            checksum=checksum,
        )
        session.add(file)
        try:
            await session.flush()
        except Exception:
            # The enclosing transaction rolls back, which also undoes the
            # reservation; only the blob needs explicit cleanup.
            try:
                await self._storage.delete(storage_key)
            except Exception:
                logger.warning("Failed to clean up orphaned blob for %s", file_id)
            raise

        logger.info("Uploaded %s for %s (%d bytes)", file_id, owner_id, size)
        return file

    # ------------------------------------------------------------------
    # Live -> live
    # ------------------------------------------------------------------

    async def rename(
        self, session: AsyncSession, file_id: str, owner_id: str, new_name: str
    ) -> FileBase:
        valid, error = validate_name(new_name)
        if not valid:
            raise ValidationError(error)
        file = await self.get(session, file_id, owner_id)
        file.name = new_name
        file.updated_at = datetime.now(UTC)
        await session.flush()
        return file

    async def move(
        self,
        session: AsyncSession,
        file_id: str,
        owner_id: str,
        folder_id: str | None,
    ) -> FileBase:
        file = await self.get(session, file_id, owner_id)
        if folder_id is not None:
            await self._folders.get(session, folder_id, owner_id)
        file.folder_id = folder_id
        file.updated_at = datetime.now(UTC)
        await session.flush()
        return file

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def download(
        self,
        session: AsyncSession,
        file_id: str,
        requester_id: str | None = None,
        *,
        delegated: bool = False,
    ) -> tuple[ObjectStream, FileBase]:
        """Open a live file's bytes.

        *requester_id* must own the file.  Without a requester the call is
        only honoured when *delegated* (access already granted by a share);
        an anonymous probe gets ``NotFoundError``, never ``ForbiddenError``.
        """
        file = await self.get_live(session, file_id)
        if file is None or (requester_id is None and not delegated):
            raise NotFoundError("File not found")
        if requester_id is not None and file.owner_id != requester_id:
            raise ForbiddenError("Access denied")

        try:
            stream = await self._storage.get(file.storage_key)
        except NotFoundError:
            logger.warning("File %s has a record but no stored content", file_id)
            raise NotFoundError("File content not found") from None
        return stream, file

    # ------------------------------------------------------------------
    # Soft delete / restore
    # ------------------------------------------------------------------

    async def soft_delete(self, session: AsyncSession, file_id: str, owner_id: str) -> FileBase:
        """``live -> deleted``.  Blob and quota are left untouched."""
        file = await self.get(session, file_id, owner_id)
        file.deleted_at = datetime.now(UTC)
        await session.flush()
        logger.info("Moved file %s to trash", file_id)
        return file

    async def restore(
        self,
        session: AsyncSession,
        file_id: str,
        owner_id: str,
        *,
        now: datetime | None = None,
    ) -> FileBase:
        """``deleted -> live`` while inside the retention window."""
        file = await session.get(self._file_model, file_id)
        now = now or datetime.now(UTC)
        if (
            file is None
            or file.owner_id != owner_id
            or not file.is_deleted
            or not in_retention_window(file.deleted_at, self.retention, now)
        ):
            raise NotFoundError("File not found in trash")

        if not await self._folders.is_live(session, file.folder_id):
            file.folder_id = None
        file.deleted_at = None
        await session.flush()
        logger.info("Restored file %s from trash", file_id)
        return file
