"""Tests for TrashService — listing, restore, permanent delete and empty."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from filedrop.fs.exceptions import NotFoundError
from filedrop.models import File, Folder, Share

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from filedrop.fs.files import FileService
    from filedrop.fs.folders import FolderService
    from filedrop.fs.quota import QuotaLedger
    from filedrop.fs.sharing import SharingService
    from filedrop.fs.trash import TrashService

    from .conftest import MemoryStorage


async def _used(quota: QuotaLedger, session: AsyncSession, owner: str) -> int:
    return (await quota.get(session, owner)).used_bytes


# ---------------------------------------------------------------------------
# list_trash
# ---------------------------------------------------------------------------


class TestListTrash:
    async def test_lists_files_and_folders_newest_first(
        self,
        trash: TrashService,
        files: FileService,
        folders: FolderService,
        async_session: AsyncSession,
    ):
        f = await files.upload(async_session, "alice", b"abc", "a.txt")
        folder = await folders.create(async_session, "alice", "Docs")
        await files.soft_delete(async_session, f.id, "alice")
        f.deleted_at = datetime.now(UTC) - timedelta(days=2)
        await folders.soft_delete(async_session, folder.id, "alice")

        entries = await trash.list_trash(async_session, "alice")
        assert [(e.id, e.kind) for e in entries] == [(folder.id, "folder"), (f.id, "file")]
        file_entry = entries[1]
        assert file_entry.size_bytes == 3
        assert file_entry.mime_type == "text/plain"
        assert file_entry.expires_at == file_entry.deleted_at + trash.retention
        assert entries[0].size_bytes is None

    async def test_excludes_live_and_expired(
        self, trash: TrashService, files: FileService, async_session: AsyncSession
    ):
        await files.upload(async_session, "alice", b"x", "live.txt")
        old = await files.upload(async_session, "alice", b"x", "old.txt")
        await files.soft_delete(async_session, old.id, "alice")

        later = datetime.now(UTC) + trash.retention + timedelta(days=1)
        assert await trash.list_trash(async_session, "alice", now=later) == []
        assert len(await trash.list_trash(async_session, "alice")) == 1

    async def test_scoped_to_owner(
        self, trash: TrashService, files: FileService, async_session: AsyncSession
    ):
        f = await files.upload(async_session, "bob", b"x", "b.txt")
        await files.soft_delete(async_session, f.id, "bob")
        assert await trash.list_trash(async_session, "alice") == []


# ---------------------------------------------------------------------------
# restore
# ---------------------------------------------------------------------------


class TestRestore:
    async def test_file(self, trash: TrashService, files: FileService, async_session: AsyncSession):
        f = await files.upload(async_session, "alice", b"x", "a.txt")
        await files.soft_delete(async_session, f.id, "alice")
        restored = await trash.restore(async_session, f.id, "alice")
        assert isinstance(restored, File)
        assert restored.deleted_at is None

    async def test_folder(
        self, trash: TrashService, folders: FolderService, async_session: AsyncSession
    ):
        folder = await folders.create(async_session, "alice", "Docs")
        await folders.soft_delete(async_session, folder.id, "alice")
        restored = await trash.restore(async_session, folder.id, "alice")
        assert isinstance(restored, Folder)
        assert restored.deleted_at is None

    async def test_unknown(self, trash: TrashService, async_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await trash.restore(async_session, "nope", "alice")


# ---------------------------------------------------------------------------
# permanently_delete
# ---------------------------------------------------------------------------


class TestPermanentlyDelete:
    async def test_purges_file(
        self,
        trash: TrashService,
        files: FileService,
        quota: QuotaLedger,
        storage: MemoryStorage,
        async_session: AsyncSession,
    ):
        keep = await files.upload(async_session, "alice", b"keep", "keep.txt")
        f = await files.upload(async_session, "alice", b"12345", "a.txt")
        await files.soft_delete(async_session, f.id, "alice")

        result = await trash.permanently_delete(async_session, f.id, "alice")
        assert result.success
        assert result.files_purged == 1
        assert result.bytes_freed == 5
        assert f.storage_key not in storage.objects
        assert keep.storage_key in storage.objects
        assert await _used(quota, async_session, "alice") == 4
        assert await async_session.get(File, f.id) is None

    async def test_purge_is_irreversible(
        self, trash: TrashService, files: FileService, async_session: AsyncSession
    ):
        f = await files.upload(async_session, "alice", b"x", "a.txt")
        await files.soft_delete(async_session, f.id, "alice")
        await trash.permanently_delete(async_session, f.id, "alice")

        with pytest.raises(NotFoundError):
            await trash.restore(async_session, f.id, "alice")
        with pytest.raises(NotFoundError):
            await files.download(async_session, f.id, "alice")
        with pytest.raises(NotFoundError):
            await trash.permanently_delete(async_session, f.id, "alice")

    async def test_live_file_rejected(
        self, trash: TrashService, files: FileService, async_session: AsyncSession
    ):
        f = await files.upload(async_session, "alice", b"x", "a.txt")
        with pytest.raises(NotFoundError):
            await trash.permanently_delete(async_session, f.id, "alice")

    async def test_other_owner_rejected(
        self, trash: TrashService, files: FileService, async_session: AsyncSession
    ):
        f = await files.upload(async_session, "alice", b"x", "a.txt")
        await files.soft_delete(async_session, f.id, "alice")
        with pytest.raises(NotFoundError):
            await trash.permanently_delete(async_session, f.id, "bob")

    async def test_removes_shares(
        self,
        trash: TrashService,
        files: FileService,
        sharing: SharingService,
        async_session: AsyncSession,
    ):
        f = await files.upload(async_session, "alice", b"x", "a.txt")
        share = await sharing.create_share(async_session, "alice", file_id=f.id)
        await files.soft_delete(async_session, f.id, "alice")
        await trash.permanently_delete(async_session, f.id, "alice")
        async_session.expunge_all()
        assert await async_session.get(Share, share.id) is None

    async def test_purges_folder_tree(
        self,
        trash: TrashService,
        files: FileService,
        folders: FolderService,
        quota: QuotaLedger,
        storage: MemoryStorage,
        async_session: AsyncSession,
    ):
        root = await folders.create(async_session, "alice", "Root")
        sub = await folders.create(async_session, "alice", "Sub", root.id)
        await files.upload(async_session, "alice", b"111", "1.txt", folder_id=root.id)
        await files.upload(async_session, "alice", b"22", "2.txt", folder_id=sub.id)
        await folders.soft_delete(async_session, root.id, "alice")

        result = await trash.permanently_delete(async_session, root.id, "alice")
        assert result.success
        assert (result.files_purged, result.folders_purged, result.bytes_freed) == (2, 2, 5)
        assert storage.objects == {}
        assert await _used(quota, async_session, "alice") == 0
        assert await async_session.get(Folder, root.id) is None
        assert await async_session.get(Folder, sub.id) is None

    async def test_live_descendants_are_detached(
        self,
        trash: TrashService,
        files: FileService,
        folders: FolderService,
        storage: MemoryStorage,
        async_session: AsyncSession,
    ):
        root = await folders.create(async_session, "alice", "Root")
        await folders.soft_delete(async_session, root.id, "alice")
        live_file = await files.upload(async_session, "alice", b"live", "live.txt")
        live_folder = await folders.create(async_session, "alice", "Live")
        live_file.folder_id = root.id
        live_folder.parent_id = root.id
        await async_session.flush()

        result = await trash.permanently_delete(async_session, root.id, "alice")
        assert result.success
        assert live_file.folder_id is None
        assert live_folder.parent_id is None
        assert live_file.storage_key in storage.objects
        assert await async_session.get(Folder, live_folder.id) is not None

    async def test_failure_keeps_item_and_ancestors(
        self,
        trash: TrashService,
        files: FileService,
        folders: FolderService,
        quota: QuotaLedger,
        storage: MemoryStorage,
        async_session: AsyncSession,
    ):
        root = await folders.create(async_session, "alice", "Root")
        sub = await folders.create(async_session, "alice", "Sub", root.id)
        ok = await files.upload(async_session, "alice", b"ok", "ok.txt", folder_id=root.id)
        stuck = await files.upload(async_session, "alice", b"stuck", "s.txt", folder_id=sub.id)
        await folders.soft_delete(async_session, root.id, "alice")
        storage.failing_deletes.add(stuck.storage_key)

        result = await trash.permanently_delete(async_session, root.id, "alice")
        assert not result.success
        assert result.files_purged == 1
        failed = {(f.item_id, f.kind) for f in result.failures}
        assert failed == {(stuck.id, "file"), (sub.id, "folder"), (root.id, "folder")}
        assert ok.storage_key not in storage.objects
        assert await async_session.get(Folder, root.id) is not None
        assert await async_session.get(Folder, sub.id) is not None
        assert await async_session.get(File, stuck.id) is not None
        assert await _used(quota, async_session, "alice") == 5

        # Retrying once storage recovers finishes the job.
        storage.failing_deletes.clear()
        retry = await trash.permanently_delete(async_session, root.id, "alice")
        assert retry.success
        assert retry.files_purged == 1
        assert retry.folders_purged == 2
        assert await _used(quota, async_session, "alice") == 0

    async def test_kept_count_stays_inside_subtree(
        self,
        trash: TrashService,
        files: FileService,
        folders: FolderService,
        storage: MemoryStorage,
        async_session: AsyncSession,
        caplog: pytest.LogCaptureFixture,
    ):
        top = await folders.create(async_session, "alice", "Top")
        root = await folders.create(async_session, "alice", "Root", top.id)
        stuck = await files.upload(async_session, "alice", b"stuck", "s.txt", folder_id=root.id)
        await folders.soft_delete(async_session, root.id, "alice")
        storage.failing_deletes.add(stuck.storage_key)

        with caplog.at_level("INFO", logger="filedrop.fs.trash"):
            result = await trash.permanently_delete(async_session, root.id, "alice")
        failed = {(f.item_id, f.kind) for f in result.failures}
        assert failed == {(stuck.id, "file"), (root.id, "folder")}
        assert f"Purged folder {root.id} (1 folders kept)" in caplog.text
        assert await async_session.get(Folder, top.id) is not None


# ---------------------------------------------------------------------------
# empty
# ---------------------------------------------------------------------------


class TestEmpty:
    async def test_folder_with_two_files(
        self,
        trash: TrashService,
        files: FileService,
        folders: FolderService,
        quota: QuotaLedger,
        storage: MemoryStorage,
        async_session: AsyncSession,
    ):
        folder = await folders.create(async_session, "alice", "Photos")
        a = await files.upload(async_session, "alice", b"aaaa", "a.jpg", folder_id=folder.id)
        b = await files.upload(async_session, "alice", b"bbbbbb", "b.jpg", folder_id=folder.id)
        await folders.soft_delete(async_session, folder.id, "alice")
        assert await _used(quota, async_session, "alice") == 10

        result = await trash.empty(async_session, "alice")
        assert result.success
        assert result.files_purged == 2
        assert result.folders_purged == 1
        assert a.storage_key not in storage.objects
        assert b.storage_key not in storage.objects
        assert await _used(quota, async_session, "alice") == 0
        assert await async_session.get(Folder, folder.id) is None
        assert await trash.list_trash(async_session, "alice") == []

    async def test_includes_expired_and_skips_live(
        self,
        trash: TrashService,
        files: FileService,
        storage: MemoryStorage,
        async_session: AsyncSession,
    ):
        live = await files.upload(async_session, "alice", b"live", "live.txt")
        old = await files.upload(async_session, "alice", b"old", "old.txt")
        await files.soft_delete(async_session, old.id, "alice")
        old.deleted_at = datetime.now(UTC) - trash.retention - timedelta(days=5)
        await async_session.flush()

        result = await trash.empty(async_session, "alice")
        assert result.files_purged == 1
        assert old.storage_key not in storage.objects
        assert live.storage_key in storage.objects

    async def test_nothing_to_do(self, trash: TrashService, async_session: AsyncSession):
        result = await trash.empty(async_session, "alice")
        assert result.success
        assert result.files_purged == result.folders_purged == 0

    async def test_leaves_other_owners(
        self,
        trash: TrashService,
        files: FileService,
        storage: MemoryStorage,
        async_session: AsyncSession,
    ):
        f = await files.upload(async_session, "bob", b"x", "b.txt")
        await files.soft_delete(async_session, f.id, "bob")
        await trash.empty(async_session, "alice")
        assert f.storage_key in storage.objects
