"""TrashService — windowed trash listing, restore, permanent delete and empty."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlmodel import select

from .exceptions import NotFoundError, StorageError
from .types import PurgeFailure, PurgeResult, TrashEntry
from .utils import ensure_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from filedrop.models.files import FileBase, FolderBase
    from filedrop.storage.protocol import StorageProvider

    from .files import FileService
    from .folders import FolderService
    from .quota import QuotaLedger
    from .sharing import SharingService

logger = logging.getLogger(__name__)


class TrashService:
    """Trash management on top of the file, folder, quota and share services.

    Purging a file: storage delete, quota decrement, share removal, row
    delete.  A storage failure leaves the file (and every folder above it)
    in the trash so a retry can finish the job.
    """

    def __init__(
        self,
        file_model: type[FileBase],
        folder_model: type[FolderBase],
        storage: StorageProvider,
        quota: QuotaLedger,
        files: FileService,
        folders: FolderService,
        sharing: SharingService,
        retention: timedelta,
    ) -> None:
        self._file_model = file_model
        self._folder_model = folder_model
        self._storage = storage
        self._quota = quota
        self._files = files
        self._folders = folders
        self._sharing = sharing
        self.retention = retention

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_trash(
        self,
        session: AsyncSession,
        owner_id: str,
        *,
        now: datetime | None = None,
    ) -> list[TrashEntry]:
        """Tombstoned files and folders still inside the window, newest first."""
        now = now or datetime.now(UTC)
        cutoff = now - self.retention
        fm, fo = self._file_model, self._folder_model

        files = await session.execute(
            select(fm).where(
                fm.owner_id == owner_id,
                fm.deleted_at.is_not(None),  # type: ignore[union-attr]
                fm.deleted_at >= cutoff,  # type: ignore[operator]
            )
        )
        folders = await session.execute(
            select(fo).where(
                fo.owner_id == owner_id,
                fo.deleted_at.is_not(None),  # type: ignore[union-attr]
                fo.deleted_at >= cutoff,  # type: ignore[operator]
            )
        )

        entries: list[TrashEntry] = []
        for f in files.scalars().all():
            deleted_at = ensure_utc(f.deleted_at)
            entries.append(
                TrashEntry(
                    id=f.id,
                    name=f.name,
                    kind="file",
                    deleted_at=deleted_at,
                    expires_at=deleted_at + self.retention,
                    size_bytes=f.size_bytes,
                    mime_type=f.mime_type,
                )
            )
        for d in folders.scalars().all():
            deleted_at = ensure_utc(d.deleted_at)
            entries.append(
                TrashEntry(
                    id=d.id,
                    name=d.name,
                    kind="folder",
                    deleted_at=deleted_at,
                    expires_at=deleted_at + self.retention,
                )
            )
        entries.sort(key=lambda e: e.deleted_at, reverse=True)
        return entries

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore(
        self,
        session: AsyncSession,
        item_id: str,
        owner_id: str,
        *,
        now: datetime | None = None,
    ) -> FileBase | FolderBase:
        """Restore a file or a folder by id."""
        if await session.get(self._file_model, item_id) is not None:
            return await self._files.restore(session, item_id, owner_id, now=now)
        if await session.get(self._folder_model, item_id) is not None:
            return await self._folders.restore(session, item_id, owner_id, now=now)
        raise NotFoundError("Item not found in trash")

    # ------------------------------------------------------------------
    # Purge
    # ------------------------------------------------------------------

    async def permanently_delete(
        self, session: AsyncSession, item_id: str, owner_id: str
    ) -> PurgeResult:
        """Purge one tombstoned file or folder (with its tombstoned subtree)."""
        result = PurgeResult(success=True, message="")

        file = await session.get(self._file_model, item_id)
        if file is not None and file.owner_id == owner_id and file.is_deleted:
            await self._purge_file(session, file, result)
            return self._finish(result)

        folder = await session.get(self._folder_model, item_id)
        if folder is not None and folder.owner_id == owner_id and folder.is_deleted:
            await self._purge_folder(session, folder, result)
            return self._finish(result)

        raise NotFoundError("Item not found in trash")

    async def empty(self, session: AsyncSession, owner_id: str) -> PurgeResult:
        """Purge every tombstoned item of *owner_id*, including expired ones."""
        result = PurgeResult(success=True, message="")
        fm, fo = self._file_model, self._folder_model

        deleted_folders = await session.execute(
            select(fo).where(
                fo.owner_id == owner_id,
                fo.deleted_at.is_not(None),  # type: ignore[union-attr]
            )
        )
        trashed = {d.id: d for d in deleted_folders.scalars().all()}

        deleted_files = await session.execute(
            select(fm).where(
                fm.owner_id == owner_id,
                fm.deleted_at.is_not(None),  # type: ignore[union-attr]
            )
        )
        # Files inside a trashed folder are handled by that folder's purge.
        for f in list(deleted_files.scalars().all()):
            if f.folder_id not in trashed:
                await self._purge_file(session, f, result)

        for d in trashed.values():
            if d.parent_id not in trashed:
                await self._purge_folder(session, d, result)

        return self._finish(result)

    async def _purge_file(
        self, session: AsyncSession, file: FileBase, result: PurgeResult
    ) -> bool:
        try:
            await self._storage.delete(file.storage_key)
        except StorageError as e:
            logger.error("Failed to purge file %s: %s", file.id, e.message, exc_info=True)
            result.failures.append(PurgeFailure(item_id=file.id, kind="file", reason=e.message))
            return False

        await self._quota.adjust(session, file.owner_id, -file.size_bytes)
        await self._sharing.delete_for_target(session, file_id=file.id)
        await session.delete(file)
        await session.flush()
        result.files_purged += 1
        result.bytes_freed += file.size_bytes
        logger.info("Purged file %s (%d bytes)", file.id, file.size_bytes)
        return True

    async def _purge_folder(
        self, session: AsyncSession, root: FolderBase, result: PurgeResult
    ) -> None:
        # Pre-order walk over the tombstoned subtree; live subfolders are
        # detached to the root instead of being descended into.
        order: list[FolderBase] = []
        stack: list[FolderBase] = [root]
        while stack:
            current = stack.pop()
            order.append(current)
            for child in await self._folders.child_folders(session, current.id):
                if not child.is_deleted:
                    child.parent_id = None
                    logger.info("Detached live folder %s to the root", child.id)
                else:
                    stack.append(child)

        # Children come after their parent in ``order``; walking it backwards
        # purges every subtree before the folder that holds it.
        blocked: set[str] = set()
        kept = 0
        for folder in reversed(order):
            for f in await self._folders.child_files(session, folder.id):
                if not f.is_deleted:
                    f.folder_id = None
                    logger.info("Detached live file %s to the root", f.id)
                elif not await self._purge_file(session, f, result):
                    blocked.add(folder.id)

            if folder.id in blocked:
                if folder.parent_id is not None:
                    blocked.add(folder.parent_id)
                result.failures.append(
                    PurgeFailure(
                        item_id=folder.id,
                        kind="folder",
                        reason="Folder still holds items that could not be purged",
                    )
                )
                kept += 1
                continue

            await self._sharing.delete_for_target(session, folder_id=folder.id)
            await session.delete(folder)
            await session.flush()
            result.folders_purged += 1

        logger.info(
            "Purged folder %s (%d folders kept)",
            root.id,
            kept,
        )

    @staticmethod
    def _finish(result: PurgeResult) -> PurgeResult:
        result.success = not result.failures
        result.message = (
            f"Purged {result.files_purged} files and {result.folders_purged} folders "
            f"({result.bytes_freed} bytes)"
        )
        if result.failures:
            result.message += f"; {len(result.failures)} items could not be purged"
        return result
