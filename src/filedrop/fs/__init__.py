"""Service layer — files, folders, trash, quotas and shares."""

from filedrop.fs.exceptions import (
    ConfigurationError,
    FileDropError,
    ForbiddenError,
    NotFoundError,
    QuotaExceededError,
    StorageError,
    UnauthorizedError,
    ValidationError,
)
from filedrop.fs.files import FileService
from filedrop.fs.folders import FolderService
from filedrop.fs.quota import QuotaLedger
from filedrop.fs.sharing import UNSET, SharingService
from filedrop.fs.trash import TrashService
from filedrop.fs.types import (
    BatchUploadResult,
    FolderListing,
    PurgeFailure,
    PurgeResult,
    QuotaInfo,
    ShareSummary,
    ShareTarget,
    StorageInfo,
    TrashEntry,
    UploadFailure,
    UploadItem,
)

__all__ = [
    "UNSET",
    "BatchUploadResult",
    "ConfigurationError",
    "FileDropError",
    "FileService",
    "FolderListing",
    "FolderService",
    "ForbiddenError",
    "NotFoundError",
    "PurgeFailure",
    "PurgeResult",
    "QuotaExceededError",
    "QuotaInfo",
    "QuotaLedger",
    "ShareSummary",
    "ShareTarget",
    "SharingService",
    "StorageError",
    "StorageInfo",
    "TrashEntry",
    "TrashService",
    "UnauthorizedError",
    "UploadFailure",
    "UploadItem",
    "ValidationError",
]
