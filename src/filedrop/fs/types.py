"""Result types: QuotaInfo, TrashEntry, PurgeResult, ShareSummary, etc."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from filedrop.models.files import FileBase, FolderBase


@dataclass
class QuotaInfo:
    """Snapshot of an owner's storage ledger."""

    owner_id: str
    max_bytes: int
    used_bytes: int

    @property
    def available_bytes(self) -> int:
        return max(0, self.max_bytes - self.used_bytes)

    @property
    def usage_percentage(self) -> float:
        if self.max_bytes == 0:
            return 0.0
        return (self.used_bytes / self.max_bytes) * 100


@dataclass
class FolderListing:
    """Live contents of a folder (or of the root when ``folder_id`` is None)."""

    folder_id: str | None
    folders: list[FolderBase] = field(default_factory=list)
    files: list[FileBase] = field(default_factory=list)


@dataclass
class TrashEntry:
    """A tombstoned file or folder still inside the retention window."""

    id: str
    name: str
    kind: str
    deleted_at: datetime
    expires_at: datetime
    size_bytes: int | None = None
    mime_type: str | None = None


@dataclass
class PurgeFailure:
    """One item a purge could not remove."""

    item_id: str
    kind: str
    reason: str


@dataclass
class PurgeResult:
    """Outcome of a permanent delete or empty-trash call.

    ``success`` is False when any item failed; purged items stay purged.
    """

    success: bool
    message: str
    files_purged: int = 0
    folders_purged: int = 0
    bytes_freed: int = 0
    failures: list[PurgeFailure] = field(default_factory=list)


@dataclass
class UploadFailure:
    """One file of a batch upload that was rejected."""

    original_name: str
    code: str
    message: str


@dataclass
class BatchUploadResult:
    """Outcome of a multi-file upload.  Each file is independent."""

    success: bool
    message: str
    uploaded: list[FileBase] = field(default_factory=list)
    failures: list[UploadFailure] = field(default_factory=list)


@dataclass
class ShareTarget:
    """Non-sensitive description of what a share points at."""

    kind: str
    id: str
    name: str
    size_bytes: int | None = None
    mime_type: str | None = None
    children: list[ShareTarget] = field(default_factory=list)


@dataclass
class ShareSummary:
    """Public view of a share.  Never carries the password hash."""

    slug: str
    visibility: str
    has_password: bool
    expires_at: datetime | None
    max_downloads: int | None
    download_count: int
    view_count: int
    created_at: datetime
    target: ShareTarget | None = None


@dataclass
class StorageInfo:
    """System-wide storage usage as reported by the backend."""

    backend: str
    total_bytes: int


@dataclass
class UploadItem:
    """One file of a batch upload."""

    original_name: str
    data: bytes
    mime_type: str | None = None
