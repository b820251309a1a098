"""Quota and Account models — per-owner storage counters and standing."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime
from sqlmodel import Field, SQLModel


class QuotaBase(SQLModel):
    """Per-owner storage ledger. One row per owner."""

    owner_id: str = Field(primary_key=True)
    max_bytes: int = Field(default=0, sa_type=BigInteger)
    used_bytes: int = Field(default=0, sa_type=BigInteger)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class Quota(QuotaBase, table=True):
    """Default quota table, ``filedrop_quotas``."""

    __tablename__ = "filedrop_quotas"


class AccountBase(SQLModel):
    """Owner standing as seen by the sharing layer.

    Rows are maintained by the authentication layer; a missing row means
    the owner is in good standing.
    """

    id: str = Field(primary_key=True)
    enabled: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


class Account(AccountBase, table=True):
    """Default account table, ``filedrop_accounts``."""

    __tablename__ = "filedrop_accounts"
