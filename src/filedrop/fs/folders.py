"""FolderService — folder tree: create, list, rename, move, soft delete, restore."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlmodel import select

from .exceptions import ForbiddenError, NotFoundError, ValidationError
from .types import FolderListing
from .utils import ensure_utc, in_retention_window, validate_name

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from filedrop.models.files import FileBase, FolderBase

logger = logging.getLogger(__name__)


class FolderService:
    """Owner-scoped folder tree operations.

    Deleting a folder tombstones every live descendant with the same
    ``deleted_at`` stamp; restoring it brings back exactly the items that
    carry that stamp.  Tree walks use an explicit stack, never recursion.
    """

    def __init__(
        self,
        folder_model: type[FolderBase],
        file_model: type[FileBase],
        retention: timedelta,
    ) -> None:
        self._folder_model = folder_model
        self._file_model = file_model
        self.retention = retention

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get(
        self,
        session: AsyncSession,
        folder_id: str,
        owner_id: str,
        *,
        include_deleted: bool = False,
    ) -> FolderBase:
        """Return an owned folder.  ``NotFoundError`` / ``ForbiddenError`` otherwise."""
        folder = await session.get(self._folder_model, folder_id)
        if folder is None or (folder.is_deleted and not include_deleted):
            raise NotFoundError("Folder not found")
        if folder.owner_id != owner_id:
            raise ForbiddenError("Access denied")
        return folder

    async def is_live(self, session: AsyncSession, folder_id: str | None) -> bool:
        if folder_id is None:
            return True
        folder = await session.get(self._folder_model, folder_id)
        return folder is not None and not folder.is_deleted

    async def child_folders(
        self, session: AsyncSession, parent_id: str, *, live_only: bool = False
    ) -> list[FolderBase]:
        model = self._folder_model
        query = select(model).where(model.parent_id == parent_id)
        if live_only:
            query = query.where(model.deleted_at.is_(None))  # type: ignore[union-attr]
        result = await session.execute(query)
        return list(result.scalars().all())

    async def child_files(
        self, session: AsyncSession, folder_id: str, *, live_only: bool = False
    ) -> list[FileBase]:
        model = self._file_model
        query = select(model).where(model.folder_id == folder_id)
        if live_only:
            query = query.where(model.deleted_at.is_(None))  # type: ignore[union-attr]
        result = await session.execute(query)
        return list(result.scalars().all())

    async def list_children(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str | None = None,
    ) -> FolderListing:
        """List live subfolders (by name) and files (newest first) of a folder or the root."""
        if folder_id is not None:
            await self.get(session, folder_id, owner_id)

        fm, fim = self._folder_model, self._file_model
        folders = await session.execute(
            select(fm)
            .where(
                fm.owner_id == owner_id,
                fm.parent_id == folder_id,
                fm.deleted_at.is_(None),  # type: ignore[union-attr]
            )
            .order_by(fm.name)
        )
        files = await session.execute(
            select(fim)
            .where(
                fim.owner_id == owner_id,
                fim.folder_id == folder_id,
                fim.deleted_at.is_(None),  # type: ignore[union-attr]
            )
            .order_by(fim.created_at.desc())  # type: ignore[union-attr]
        )
        return FolderListing(
            folder_id=folder_id,
            folders=list(folders.scalars().all()),
            files=list(files.scalars().all()),
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(
        self,
        session: AsyncSession,
        owner_id: str,
        name: str,
        parent_id: str | None = None,
    ) -> FolderBase:
        valid, error = validate_name(name)
        if not valid:
            raise ValidationError(error)
        if parent_id is not None:
            await self.get(session, parent_id, owner_id)

        folder = self._folder_model(owner_id=owner_id, name=name, parent_id=parent_id)
        session.add(folder)
        await session.flush()
        return folder

    async def rename(
        self, session: AsyncSession, folder_id: str, owner_id: str, new_name: str
    ) -> FolderBase:
        valid, error = validate_name(new_name)
        if not valid:
            raise ValidationError(error)
        folder = await self.get(session, folder_id, owner_id)
        folder.name = new_name
        folder.updated_at = datetime.now(UTC)
        await session.flush()
        return folder

    async def move(
        self,
        session: AsyncSession,
        folder_id: str,
        owner_id: str,
        parent_id: str | None,
    ) -> FolderBase:
        """Re-parent a folder.  Moving it under itself or a descendant is rejected."""
        folder = await self.get(session, folder_id, owner_id)
        if parent_id is not None:
            await self.get(session, parent_id, owner_id)
            # Walk up from the destination; meeting folder_id means a cycle.
            current: str | None = parent_id
            while current is not None:
                if current == folder_id:
                    raise ValidationError("Cannot move a folder into itself or a descendant")
                ancestor = await session.get(self._folder_model, current)
                current = ancestor.parent_id if ancestor is not None else None

        folder.parent_id = parent_id
        folder.updated_at = datetime.now(UTC)
        await session.flush()
        return folder

    async def soft_delete(
        self, session: AsyncSession, folder_id: str, owner_id: str
    ) -> FolderBase:
        """Tombstone the folder and every live descendant with one shared stamp."""
        folder = await self.get(session, folder_id, owner_id)
        now = datetime.now(UTC)

        folder_count = file_count = 0
        stack: list[FolderBase] = [folder]
        while stack:
            current = stack.pop()
            current.deleted_at = now
            folder_count += 1
            for f in await self.child_files(session, current.id, live_only=True):
                f.deleted_at = now
                file_count += 1
            stack.extend(await self.child_folders(session, current.id, live_only=True))

        await session.flush()
        logger.info(
            "Moved folder %s to trash (%d folders, %d files)",
            folder_id,
            folder_count,
            file_count,
        )
        return folder

    async def restore(
        self,
        session: AsyncSession,
        folder_id: str,
        owner_id: str,
        *,
        now: datetime | None = None,
    ) -> FolderBase:
        """Bring a tombstoned folder back together with what was deleted alongside it."""
        folder = await session.get(self._folder_model, folder_id)
        now = now or datetime.now(UTC)
        if (
            folder is None
            or folder.owner_id != owner_id
            or not folder.is_deleted
            or not in_retention_window(folder.deleted_at, self.retention, now)
        ):
            raise NotFoundError("Folder not found in trash")

        stamp = ensure_utc(folder.deleted_at)
        if not await self.is_live(session, folder.parent_id):
            folder.parent_id = None

        stack: list[FolderBase] = [folder]
        while stack:
            current = stack.pop()
            current.deleted_at = None
            current.updated_at = now
            for f in await self.child_files(session, current.id):
                if f.deleted_at is not None and ensure_utc(f.deleted_at) == stamp:
                    f.deleted_at = None
            for child in await self.child_folders(session, current.id):
                if child.deleted_at is not None and ensure_utc(child.deleted_at) == stamp:
                    stack.append(child)

        await session.flush()
        logger.info("Restored folder %s from trash", folder_id)
        return folder
