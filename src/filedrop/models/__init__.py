"""SQLModel tables for files, folders, shares, quotas and accounts."""

from filedrop.models.files import File, FileBase, Folder, FolderBase
from filedrop.models.quotas import Account, AccountBase, Quota, QuotaBase
from filedrop.models.shares import Share, ShareBase, ShareVisibility

__all__ = [
    "Account",
    "AccountBase",
    "File",
    "FileBase",
    "Folder",
    "FolderBase",
    "Quota",
    "QuotaBase",
    "Share",
    "ShareBase",
    "ShareVisibility",
]
