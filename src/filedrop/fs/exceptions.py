"""Custom exception hierarchy for the filedrop storage and sharing layer.

Every error carries a stable machine-readable ``code`` alongside a
human-readable message.  Messages never include storage keys or
filesystem paths.
"""

from __future__ import annotations


class FileDropError(Exception):
    """Base exception for all filedrop errors."""

    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str = "", code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict[str, str]:
        """Serializable ``{"code", "message"}`` pair for the HTTP layer."""
        return {"code": self.code, "message": self.message}


class NotFoundError(FileDropError):
    """Raised when a resource is missing, tombstoned, or hidden from the caller."""

    default_code = "NOT_FOUND"


class ForbiddenError(FileDropError):
    """Raised when an authenticated caller is denied by policy."""

    default_code = "FORBIDDEN"


class UnauthorizedError(FileDropError):
    """Raised when a share password is missing or wrong."""

    default_code = "UNAUTHORIZED"


class QuotaExceededError(FileDropError):
    """Raised when an upload would push an owner past ``max_bytes``."""

    default_code = "QUOTA_EXCEEDED"


class StorageError(FileDropError):
    """Raised on transient storage backend failures (disk I/O, network, S3)."""

    default_code = "STORAGE_ERROR"


class ConfigurationError(FileDropError):
    """Raised when the storage backend is misconfigured.  Not retryable."""

    default_code = "CONFIGURATION_ERROR"


class ValidationError(FileDropError):
    """Raised on malformed input such as an invalid custom slug."""

    default_code = "VALIDATION_ERROR"
