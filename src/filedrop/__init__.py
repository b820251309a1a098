"""filedrop: file storage and public share links.

Owner-scoped files and folders on a local or S3 blob store, with quotas,
a recoverable trash and password-protected, expiring share links.
"""

__version__ = "0.1.0"

from filedrop._filedrop_async import FileDropAsync
from filedrop.config import Settings, get_settings, load_settings, reload_settings
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
from filedrop.fs.types import (
    BatchUploadResult,
    FolderListing,
    PurgeResult,
    QuotaInfo,
    ShareSummary,
    ShareTarget,
    StorageInfo,
    TrashEntry,
    UploadItem,
)
from filedrop.storage import LocalStorageProvider, ObjectStream, S3StorageProvider

__all__ = [
    "BatchUploadResult",
    "ConfigurationError",
    "FileDropAsync",
    "FileDropError",
    "FolderListing",
    "ForbiddenError",
    "LocalStorageProvider",
    "NotFoundError",
    "ObjectStream",
    "PurgeResult",
    "QuotaExceededError",
    "QuotaInfo",
    "S3StorageProvider",
    "Settings",
    "ShareSummary",
    "ShareTarget",
    "StorageError",
    "StorageInfo",
    "TrashEntry",
    "UnauthorizedError",
    "UploadItem",
    "ValidationError",
    "__version__",
    "get_settings",
    "load_settings",
    "reload_settings",
]
