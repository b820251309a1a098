"""Share model — public links to a file or folder with an access policy.

Provides ``ShareBase`` (non-table) and ``Share`` (concrete table).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class ShareVisibility(StrEnum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"


class ShareBase(SQLModel):
    """Base fields for a share record. Subclass with ``table=True`` for a concrete table.

    Exactly one of ``file_id`` / ``folder_id`` is set.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    slug: str = Field(index=True, unique=True)
    owner_id: str = Field(index=True)
    file_id: str | None = Field(default=None, index=True)
    folder_id: str | None = Field(default=None, index=True)
    visibility: str = Field(default=ShareVisibility.PUBLIC.value)
    password_hash: str | None = Field(default=None)
    expires_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    max_downloads: int | None = Field(default=None)
    download_count: int = Field(default=0)
    view_count: int = Field(default=0)
    enabled: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class Share(ShareBase, table=True):
    """Default share table, ``filedrop_shares``."""

    __tablename__ = "filedrop_shares"
