"""QuotaLedger — per-owner storage counters.

``used_bytes`` should equal the sum of live file sizes.  Write paths keep
it close with ``reserve`` / ``adjust``; ``recompute`` repairs drift.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from .exceptions import QuotaExceededError, ValidationError
from .types import QuotaInfo

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from filedrop.models.files import FileBase
    from filedrop.models.quotas import QuotaBase

logger = logging.getLogger(__name__)


class QuotaLedger:
    """Quota bookkeeping on the quota table.

    Stateless: receives the quota and file models at construction and a
    session per call.  Flushes but never commits.
    """

    def __init__(
        self,
        quota_model: type[QuotaBase],
        file_model: type[FileBase],
        default_max_bytes: int,
    ) -> None:
        self._quota_model = quota_model
        self._file_model = file_model
        self.default_max_bytes = default_max_bytes

    async def _load(self, session: AsyncSession, owner_id: str) -> QuotaBase | None:
        model = self._quota_model
        result = await session.execute(
            select(model)
            .where(model.owner_id == owner_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, session: AsyncSession, owner_id: str) -> QuotaBase:
        """Return the owner's quota row, creating it with the default limit.

        Creation is insert-if-absent: concurrent first writes for a new
        owner all land on the same row instead of tripping the primary key.
        """
        quota = await self._load(session, owner_id)
        if quota is None:
            if await self._insert_default(session, owner_id):
                logger.info("Created quota for %s (%d bytes)", owner_id, self.default_max_bytes)
            quota = await self._load(session, owner_id)
            assert quota is not None
        return quota

    async def _insert_default(self, session: AsyncSession, owner_id: str) -> bool:
        """Insert the default row unless one exists.  Returns True if inserted."""
        model = self._quota_model
        values = {
            "owner_id": owner_id,
            "max_bytes": self.default_max_bytes,
            "used_bytes": 0,
            "updated_at": datetime.now(UTC),
        }
        dialect = session.get_bind().dialect.name
        if dialect in ("sqlite", "postgresql"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert

            stmt = insert(model).values(**values).on_conflict_do_nothing(
                index_elements=["owner_id"]
            )
            result = await session.execute(stmt)
            return bool(result.rowcount)

        # Other backends: let the primary key decide inside a savepoint.
        try:
            async with session.begin_nested():
                session.add(model(**values))
        except IntegrityError:
            return False
        return True

    async def usage(self, session: AsyncSession, owner_id: str) -> QuotaInfo:
        quota = await self.get(session, owner_id)
        return QuotaInfo(
            owner_id=owner_id,
            max_bytes=quota.max_bytes,
            used_bytes=quota.used_bytes,
        )

    async def check_capacity(
        self, session: AsyncSession, owner_id: str, additional_bytes: int
    ) -> QuotaBase:
        """Raise ``QuotaExceededError`` if *additional_bytes* would not fit."""
        quota = await self.get(session, owner_id)
        if quota.used_bytes + additional_bytes > quota.max_bytes:
            raise QuotaExceededError(
                f"Storage quota exceeded: {quota.used_bytes} of {quota.max_bytes} bytes "
                f"used, {additional_bytes} requested"
            )
        return quota

    async def reserve(self, session: AsyncSession, owner_id: str, nbytes: int) -> QuotaBase:
        """Check capacity and consume *nbytes* in one conditional UPDATE.

        Two concurrent uploads cannot both pass the check: the second
        UPDATE matches zero rows once the first one has committed.
        """
        await self.get(session, owner_id)
        model = self._quota_model
        result = await session.execute(
            update(model)
            .where(
                model.owner_id == owner_id,  # type: ignore[arg-type]
                model.used_bytes + nbytes <= model.max_bytes,  # type: ignore[operator]
            )
            .values(used_bytes=model.used_bytes + nbytes, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        quota = await self._load(session, owner_id)
        assert quota is not None
        if result.rowcount == 0:
            raise QuotaExceededError(
                f"Storage quota exceeded: {quota.used_bytes} of {quota.max_bytes} bytes "
                f"used, {nbytes} requested"
            )
        return quota

    async def adjust(self, session: AsyncSession, owner_id: str, delta: int) -> None:
        """Atomically add *delta* (may be negative) to ``used_bytes``, floored at 0."""
        await self.get(session, owner_id)
        model = self._quota_model
        new_value = model.used_bytes + delta  # type: ignore[operator]
        await session.execute(
            update(model)
            .where(model.owner_id == owner_id)  # type: ignore[arg-type]
            .values(
                used_bytes=case((new_value < 0, 0), else_=new_value),
                updated_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session=False)
        )

    async def recompute(self, session: AsyncSession, owner_id: str) -> int:
        """Overwrite ``used_bytes`` with the sum of the owner's live file sizes."""
        await self.get(session, owner_id)
        fm = self._file_model
        result = await session.execute(
            select(func.coalesce(func.sum(fm.size_bytes), 0)).where(
                fm.owner_id == owner_id,
                fm.deleted_at.is_(None),  # type: ignore[union-attr]
            )
        )
        used = int(result.scalar_one())

        model = self._quota_model
        await session.execute(
            update(model)
            .where(model.owner_id == owner_id)  # type: ignore[arg-type]
            .values(used_bytes=used, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        logger.info("Recomputed quota for %s: %d bytes", owner_id, used)
        return used

    async def set_limit(self, session: AsyncSession, owner_id: str, max_bytes: int) -> QuotaBase:
        """Change the owner's limit.  ``used_bytes`` is left alone."""
        if max_bytes < 0:
            raise ValidationError("Quota limit must not be negative")
        quota = await self.get(session, owner_id)
        quota.max_bytes = max_bytes
        quota.updated_at = datetime.now(UTC)
        session.add(quota)
        await session.flush()
        logger.info("Set quota limit for %s to %d bytes", owner_id, max_bytes)
        return quota
