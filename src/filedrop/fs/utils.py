"""Checksums, storage keys, name and slug validation, time helpers."""

from __future__ import annotations

import hashlib
import mimetypes
import re
import secrets
from datetime import UTC, datetime, timedelta

# =============================================================================
# Constants
# =============================================================================

MAX_NAME_LENGTH = 255
MAX_KEY_LENGTH = 1024

CUSTOM_SLUG_MIN_LENGTH = 4
CUSTOM_SLUG_MAX_LENGTH = 64
CUSTOM_SLUG_RE = re.compile(r"^[A-Za-z0-9_-]+$")

# URL-safe alphabet, same character set as nanoid
DEFAULT_SLUG_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_-"
DEFAULT_SLUG_LENGTH = 8


# =============================================================================
# Content
# =============================================================================


def compute_checksum(data: bytes) -> tuple[str, int]:
    """Return ``(sha256_hex, size_bytes)`` for *data*."""
    return hashlib.sha256(data).hexdigest(), len(data)


def storage_key_for(owner_id: str, file_id: str) -> str:
    """Deterministic storage key for a file blob."""
    return f"users/{owner_id}/{file_id}"


# =============================================================================
# Validation
# =============================================================================


def validate_name(name: str) -> tuple[bool, str]:
    """Validate a file or folder display name.

    Returns:
        (is_valid, error_message) - error_message is empty if valid
    """
    if not name or not name.strip():
        return False, "Name must not be empty"

    if "\x00" in name:
        return False, "Name contains null bytes"

    for ch in name:
        code = ord(ch)
        if 0x01 <= code <= 0x1F:
            return False, f"Name contains control character: 0x{code:02x}"

    if "/" in name or "\\" in name:
        return False, "Name must not contain path separators"

    if name in (".", ".."):
        return False, f"Reserved name: {name}"

    if len(name) > MAX_NAME_LENGTH:
        return False, f"Name too long (max {MAX_NAME_LENGTH} characters)"

    return True, ""


def validate_key(key: str) -> tuple[bool, str]:
    """Validate a storage key.

    Keys are relative, ``/``-separated, with no empty, ``.`` or ``..``
    segments.
    """
    if not key:
        return False, "Storage key must not be empty"
    if "\x00" in key:
        return False, "Storage key contains null bytes"
    if len(key) > MAX_KEY_LENGTH:
        return False, f"Storage key too long (max {MAX_KEY_LENGTH} characters)"
    if key.startswith("/") or "\\" in key:
        return False, "Storage key must be relative"
    for part in key.split("/"):
        if part in ("", ".", ".."):
            return False, "Storage key contains an invalid segment"
    return True, ""


def validate_custom_slug(slug: str) -> tuple[bool, str]:
    """Validate an owner-chosen share slug."""
    if len(slug) < CUSTOM_SLUG_MIN_LENGTH:
        return False, f"Slug too short (min {CUSTOM_SLUG_MIN_LENGTH} characters)"
    if len(slug) > CUSTOM_SLUG_MAX_LENGTH:
        return False, f"Slug too long (max {CUSTOM_SLUG_MAX_LENGTH} characters)"
    if not CUSTOM_SLUG_RE.match(slug):
        return False, "Slug may only contain letters, digits, '-' and '_'"
    return True, ""


def generate_slug(
    length: int = DEFAULT_SLUG_LENGTH,
    alphabet: str = DEFAULT_SLUG_ALPHABET,
) -> str:
    """Generate an unguessable slug from a cryptographically random source."""
    return "".join(secrets.choice(alphabet) for _ in range(length))


# =============================================================================
# Time
# =============================================================================


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def in_retention_window(deleted_at: datetime, retention: timedelta, now: datetime) -> bool:
    """True while a tombstone created at *deleted_at* can still be restored."""
    return ensure_utc(deleted_at) + retention >= ensure_utc(now)


def guess_mime_type(filename: str) -> str:
    """Guess MIME type from a filename, defaulting to octet-stream."""
    mime, _ = mimetypes.guess_type(filename)
    return mime or "application/octet-stream"
