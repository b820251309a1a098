"""FileDropAsync — async facade over storage, quotas, trash and shares."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from filedrop.config import get_settings
from filedrop.fs.exceptions import FileDropError
from filedrop.fs.files import FileService
from filedrop.fs.folders import FolderService
from filedrop.fs.quota import QuotaLedger
from filedrop.fs.sharing import UNSET, SharingService
from filedrop.fs.trash import TrashService
from filedrop.fs.types import BatchUploadResult, StorageInfo, UploadFailure
from filedrop.models import Account, File, Folder, Quota, Share, ShareVisibility
from filedrop.storage.factory import create_storage_provider

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from filedrop.config import Settings
    from filedrop.fs.types import (
        FolderListing,
        PurgeResult,
        QuotaInfo,
        ShareSummary,
        TrashEntry,
        UploadItem,
    )
    from filedrop.models import (
        AccountBase,
        FileBase,
        FolderBase,
        QuotaBase,
        ShareBase,
    )
    from filedrop.storage.protocol import StorageProvider
    from filedrop.storage.stream import ObjectStream

logger = logging.getLogger(__name__)


class FileDropAsync:
    """Async facade wiring the storage provider and the services.

    Every call runs in its own session: committed on success, rolled back
    on error.  Services only flush.

    Built from settings::

        async with FileDropAsync() as fd:
            file = await fd.upload_file("alice", b"hello", "hello.txt")

    Or with explicit collaborators::

        engine = create_async_engine("sqlite+aiosqlite://")
        fd = FileDropAsync(engine=engine, storage=LocalStorageProvider(tmp))
        await fd.open()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        engine: AsyncEngine | None = None,
        storage: StorageProvider | None = None,
        file_model: type[FileBase] = File,
        folder_model: type[FolderBase] = Folder,
        share_model: type[ShareBase] = Share,
        quota_model: type[QuotaBase] = Quota,
        account_model: type[AccountBase] = Account,
    ) -> None:
        self.settings = settings or get_settings()
        self._owns_engine = engine is None
        self._engine = engine or create_async_engine(self.settings.database_url)
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        self._storage = storage or create_storage_provider(self.settings)
        self._models: list[type[Any]] = [
            file_model,
            folder_model,
            share_model,
            quota_model,
            account_model,
        ]
        self._opened = False
        self._closed = False

        retention = timedelta(days=self.settings.trash_retention_days)
        self.quota = QuotaLedger(quota_model, file_model, self.settings.default_quota_bytes)
        self.folders = FolderService(folder_model, file_model, retention)
        self.files = FileService(
            file_model,
            self._storage,
            self.quota,
            self.folders,
            max_file_size=self.settings.max_file_size,
            retention=retention,
        )
        self.sharing = SharingService(
            share_model,
            account_model,
            self.files,
            self.folders,
            slug_length=self.settings.share_slug_length,
            slug_alphabet=self.settings.share_slug_alphabet,
            password_rounds=self.settings.share_password_rounds,
            max_expiry=timedelta(days=self.settings.max_share_expiry_days),
        )
        self.trash = TrashService(
            file_model,
            folder_model,
            self._storage,
            self.quota,
            self.files,
            self.folders,
            self.sharing,
            retention,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create missing tables and open the storage backend."""
        if self._opened:
            return
        async with self._engine.begin() as conn:
            for model in self._models:
                await conn.run_sync(
                    lambda c, m=model: m.__table__.create(c, checkfirst=True)
                )
        await self._storage.open()
        self._opened = True
        logger.info("FileDrop opened (storage backend: %s)", self._storage.name)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._storage.close()
        except Exception:
            logger.warning("Storage close failed", exc_info=True)
        if self._owns_engine:
            await self._engine.dispose()

    async def __aenter__(self) -> FileDropAsync:
        await self.open()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    @property
    def storage(self) -> StorageProvider:
        return self._storage

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def upload_file(
        self,
        owner_id: str,
        data: bytes,
        original_name: str,
        mime_type: str | None = None,
        folder_id: str | None = None,
    ) -> FileBase:
        async with self._session() as session:
            return await self.files.upload(
                session, owner_id, data, original_name, mime_type, folder_id
            )

    async def upload_many(
        self,
        owner_id: str,
        items: Iterable[UploadItem],
        folder_id: str | None = None,
    ) -> BatchUploadResult:
        """Upload several files, each in its own transaction.

        A rejected file does not affect the others.
        """
        result = BatchUploadResult(success=True, message="")
        for item in items:
            try:
                file = await self.upload_file(
                    owner_id, item.data, item.original_name, item.mime_type, folder_id
                )
            except FileDropError as e:
                result.failures.append(
                    UploadFailure(original_name=item.original_name, code=e.code, message=e.message)
                )
                continue
            result.uploaded.append(file)

        result.success = not result.failures
        result.message = f"Uploaded {len(result.uploaded)} files"
        if result.failures:
            result.message += f", {len(result.failures)} failed"
        return result

    async def download_file(
        self, file_id: str, requester_id: str | None = None
    ) -> tuple[ObjectStream, FileBase]:
        async with self._session() as session:
            return await self.files.download(session, file_id, requester_id)

    async def get_file(self, file_id: str, owner_id: str) -> FileBase:
        async with self._session() as session:
            return await self.files.get(session, file_id, owner_id)

    async def list_files(self, owner_id: str, folder_id: str | None = None) -> list[FileBase]:
        async with self._session() as session:
            return await self.files.list_files(session, owner_id, folder_id)

    async def rename_file(self, file_id: str, owner_id: str, new_name: str) -> FileBase:
        async with self._session() as session:
            return await self.files.rename(session, file_id, owner_id, new_name)

    async def move_file(self, file_id: str, owner_id: str, folder_id: str | None) -> FileBase:
        async with self._session() as session:
            return await self.files.move(session, file_id, owner_id, folder_id)

    async def delete_file(self, file_id: str, owner_id: str) -> FileBase:
        """Move a file to the trash."""
        async with self._session() as session:
            return await self.files.soft_delete(session, file_id, owner_id)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def create_folder(
        self, owner_id: str, name: str, parent_id: str | None = None
    ) -> FolderBase:
        async with self._session() as session:
            return await self.folders.create(session, owner_id, name, parent_id)

    async def get_folder(self, folder_id: str, owner_id: str) -> FolderBase:
        async with self._session() as session:
            return await self.folders.get(session, folder_id, owner_id)

    async def list_folder(self, owner_id: str, folder_id: str | None = None) -> FolderListing:
        async with self._session() as session:
            return await self.folders.list_children(session, owner_id, folder_id)

    async def rename_folder(self, folder_id: str, owner_id: str, new_name: str) -> FolderBase:
        async with self._session() as session:
            return await self.folders.rename(session, folder_id, owner_id, new_name)

    async def move_folder(
        self, folder_id: str, owner_id: str, parent_id: str | None
    ) -> FolderBase:
        async with self._session() as session:
            return await self.folders.move(session, folder_id, owner_id, parent_id)

    async def delete_folder(self, folder_id: str, owner_id: str) -> FolderBase:
        """Move a folder and everything live inside it to the trash."""
        async with self._session() as session:
            return await self.folders.soft_delete(session, folder_id, owner_id)

    # ------------------------------------------------------------------
    # Trash
    # ------------------------------------------------------------------

    async def list_trash(self, owner_id: str) -> list[TrashEntry]:
        async with self._session() as session:
            return await self.trash.list_trash(session, owner_id)

    async def restore(self, item_id: str, owner_id: str) -> FileBase | FolderBase:
        async with self._session() as session:
            return await self.trash.restore(session, item_id, owner_id)

    async def permanently_delete(self, item_id: str, owner_id: str) -> PurgeResult:
        async with self._session() as session:
            return await self.trash.permanently_delete(session, item_id, owner_id)

    async def empty_trash(self, owner_id: str) -> PurgeResult:
        async with self._session() as session:
            return await self.trash.empty(session, owner_id)

    # ------------------------------------------------------------------
    # Shares
    # ------------------------------------------------------------------

    async def create_share(
        self,
        owner_id: str,
        *,
        file_id: str | None = None,
        folder_id: str | None = None,
        visibility: str = ShareVisibility.PUBLIC.value,
        password: str | None = None,
        expires_at: datetime | None = None,
        max_downloads: int | None = None,
        slug: str | None = None,
    ) -> ShareBase:
        async with self._session() as session:
            return await self.sharing.create_share(
                session,
                owner_id,
                file_id=file_id,
                folder_id=folder_id,
                visibility=visibility,
                password=password,
                expires_at=expires_at,
                max_downloads=max_downloads,
                slug=slug,
            )

    async def update_share(
        self,
        share_id: str,
        owner_id: str,
        *,
        visibility: str = UNSET,
        password: str | None = UNSET,
        expires_at: datetime | None = UNSET,
        max_downloads: int | None = UNSET,
        enabled: bool = UNSET,
    ) -> ShareBase:
        async with self._session() as session:
            return await self.sharing.update_share(
                session,
                share_id,
                owner_id,
                visibility=visibility,
                password=password,
                expires_at=expires_at,
                max_downloads=max_downloads,
                enabled=enabled,
            )

    async def delete_share(self, share_id: str, owner_id: str) -> None:
        async with self._session() as session:
            await self.sharing.delete_share(session, share_id, owner_id)

    async def get_share(self, share_id: str, owner_id: str) -> ShareBase:
        async with self._session() as session:
            return await self.sharing.get_share(session, share_id, owner_id)

    async def list_shares(self, owner_id: str) -> list[ShareBase]:
        async with self._session() as session:
            return await self.sharing.list_shares(session, owner_id)

    async def access_share(self, slug: str, password: str | None = None) -> ShareSummary:
        async with self._session() as session:
            return await self.sharing.access_share(session, slug, password)

    async def verify_share_password(self, slug: str, password: str) -> bool:
        async with self._session() as session:
            return await self.sharing.verify_password(session, slug, password)

    async def download_share(
        self, slug: str, password: str | None = None
    ) -> tuple[ObjectStream, FileBase]:
        async with self._session() as session:
            return await self.sharing.download_share(session, slug, password)

    # ------------------------------------------------------------------
    # Quota and accounts
    # ------------------------------------------------------------------

    async def get_quota(self, owner_id: str) -> QuotaInfo:
        async with self._session() as session:
            return await self.quota.usage(session, owner_id)

    async def set_quota_limit(self, owner_id: str, max_bytes: int) -> QuotaInfo:
        async with self._session() as session:
            await self.quota.set_limit(session, owner_id, max_bytes)
            return await self.quota.usage(session, owner_id)

    async def recompute_quota(self, owner_id: str) -> QuotaInfo:
        async with self._session() as session:
            await self.quota.recompute(session, owner_id)
            return await self.quota.usage(session, owner_id)

    async def set_account_enabled(self, owner_id: str, enabled: bool) -> AccountBase:
        async with self._session() as session:
            return await self.sharing.set_account_enabled(session, owner_id, enabled)

    async def storage_info(self) -> StorageInfo:
        """Total bytes held by the backend.  Walks the whole namespace."""
        return StorageInfo(
            backend=self._storage.name,
            total_bytes=await self._storage.total_usage(),
        )
