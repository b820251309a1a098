"""Shared fixtures for filedrop tests."""

from __future__ import annotations

import io
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from filedrop._filedrop_async import FileDropAsync
from filedrop.config import Settings
from filedrop.fs.exceptions import NotFoundError, StorageError
from filedrop.fs.files import FileService
from filedrop.fs.folders import FolderService
from filedrop.fs.quota import QuotaLedger
from filedrop.fs.sharing import SharingService
from filedrop.fs.trash import TrashService
from filedrop.models import Account, File, Folder, Quota, Share
from filedrop.storage.stream import ObjectMetadata, ObjectStream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

RETENTION = timedelta(days=30)
DEFAULT_QUOTA = 10_000
MAX_FILE_SIZE = 5_000


class MemoryStorage:
    """In-memory ``StorageProvider`` with switchable failures."""

    name = "memory"

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.fail_puts = False
        self.failing_deletes: set[str] = set()
        self.opened = False
        self.closed = False

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.closed = True

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        if self.fail_puts:
            raise StorageError("Failed to write object to storage")
        self.objects[key] = (bytes(data), content_type)

    async def get(self, key: str) -> ObjectStream:
        if key not in self.objects:
            raise NotFoundError("Object not found")
        data, content_type = self.objects[key]
        return ObjectStream(lambda: io.BytesIO(data), size=len(data), content_type=content_type)

    async def delete(self, key: str) -> None:
        if key in self.failing_deletes:
            raise StorageError("Failed to delete object from storage")
        self.objects.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self.objects

    async def total_usage(self) -> int:
        return sum(len(data) for data, _ in self.objects.values())

    async def metadata(self, key: str) -> ObjectMetadata | None:
        if key not in self.objects:
            return None
        data, content_type = self.objects[key]
        return ObjectMetadata(size=len(data), content_type=content_type)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session for service-level tests."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def quota() -> QuotaLedger:
    return QuotaLedger(Quota, File, DEFAULT_QUOTA)


@pytest.fixture
def folders() -> FolderService:
    return FolderService(Folder, File, RETENTION)


@pytest.fixture
def files(storage: MemoryStorage, quota: QuotaLedger, folders: FolderService) -> FileService:
    return FileService(
        File,
        storage,
        quota,
        folders,
        max_file_size=MAX_FILE_SIZE,
        retention=RETENTION,
    )


@pytest.fixture
def sharing(files: FileService, folders: FolderService) -> SharingService:
    return SharingService(Share, Account, files, folders, password_rounds=4)


@pytest.fixture
def trash(
    storage: MemoryStorage,
    quota: QuotaLedger,
    files: FileService,
    folders: FolderService,
    sharing: SharingService,
) -> TrashService:
    return TrashService(File, Folder, storage, quota, files, folders, sharing, RETENTION)


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'filedrop.db'}",
        storage_path=str(tmp_path / "blobs"),
        share_password_rounds=4,
    )


@pytest.fixture
async def fd(settings: Settings) -> AsyncIterator[FileDropAsync]:
    """Facade on a SQLite file and a local storage directory."""
    async with FileDropAsync(settings) as drop:
        yield drop


@pytest.fixture
async def memory_fd(
    settings: Settings, storage: MemoryStorage
) -> AsyncIterator[FileDropAsync]:
    """Facade on the in-memory storage, for failure injection."""
    async with FileDropAsync(settings, storage=storage) as drop:
        yield drop
