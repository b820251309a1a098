"""SharingService — share CRUD and the public access state machine.

Stateless service that receives the share and account models at
construction and a session at call time, following the FileService
pattern.  Access is re-evaluated on every request; nothing is cached.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import bcrypt
from sqlalchemy import delete as sa_delete
from sqlalchemy import or_, update
from sqlmodel import select

from filedrop.models.shares import ShareVisibility

from .exceptions import (
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from .types import ShareSummary, ShareTarget
from .utils import (
    DEFAULT_SLUG_ALPHABET,
    DEFAULT_SLUG_LENGTH,
    ensure_utc,
    generate_slug,
    validate_custom_slug,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from filedrop.models.files import FileBase
    from filedrop.models.quotas import AccountBase
    from filedrop.models.shares import ShareBase
    from filedrop.storage.stream import ObjectStream

    from .files import FileService
    from .folders import FolderService

logger = logging.getLogger(__name__)

UNSET: Any = object()
"""Marker for ``update_share`` fields the caller did not pass."""

_MAX_SLUG_ATTEMPTS = 5
_BCRYPT_MAX_BYTES = 72


class SharingService:
    """Manages public share links and gates access to them.

    Access checks, in order: share exists, share enabled, owner in good
    standing, not expired, download limit not reached, password.
    """

    def __init__(
        self,
        share_model: type[ShareBase],
        account_model: type[AccountBase],
        files: FileService,
        folders: FolderService,
        *,
        slug_length: int = DEFAULT_SLUG_LENGTH,
        slug_alphabet: str = DEFAULT_SLUG_ALPHABET,
        password_rounds: int = 12,
        max_expiry: timedelta = timedelta(days=365),
    ) -> None:
        self._share_model = share_model
        self._account_model = account_model
        self._files = files
        self._folders = folders
        self.slug_length = slug_length
        self.slug_alphabet = slug_alphabet
        self.password_rounds = password_rounds
        self.max_expiry = max_expiry

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    async def _hash_password(self, password: str) -> str:
        encoded = password.encode()
        if len(encoded) > _BCRYPT_MAX_BYTES:
            raise ValidationError(f"Password too long (max {_BCRYPT_MAX_BYTES} bytes)")
        salt = bcrypt.gensalt(rounds=self.password_rounds)
        hashed = await asyncio.to_thread(bcrypt.hashpw, encoded, salt)
        return hashed.decode()

    @staticmethod
    async def _check_password(password: str, password_hash: str) -> bool:
        """Constant-time comparison via ``bcrypt.checkpw``."""
        encoded = password.encode()
        if len(encoded) > _BCRYPT_MAX_BYTES:
            return False
        try:
            return await asyncio.to_thread(bcrypt.checkpw, encoded, password_hash.encode())
        except ValueError:
            logger.warning("Stored share password hash is malformed")
            return False

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _validate_policy(
        self,
        visibility: str,
        expires_at: datetime | None,
        max_downloads: int | None,
    ) -> None:
        if visibility not in {v.value for v in ShareVisibility}:
            raise ValidationError(f"Invalid visibility: {visibility!r}")
        if max_downloads is not None and max_downloads < 1:
            raise ValidationError("max_downloads must be at least 1")
        if expires_at is not None:
            latest = datetime.now(UTC) + self.max_expiry
            if ensure_utc(expires_at) > latest:
                raise ValidationError(
                    f"Share expiry is limited to {self.max_expiry.days} days"
                )

    async def _slug_taken(self, session: AsyncSession, slug: str) -> bool:
        return await self.get_by_slug(session, slug) is not None

    async def _allocate_slug(self, session: AsyncSession, custom: str | None) -> str:
        if custom is not None:
            valid, error = validate_custom_slug(custom)
            if not valid:
                raise ValidationError(error)
            if await self._slug_taken(session, custom):
                raise ValidationError("Slug is already in use", code="SLUG_TAKEN")
            return custom

        for _ in range(_MAX_SLUG_ATTEMPTS):
            slug = generate_slug(self.slug_length, self.slug_alphabet)
            if not await self._slug_taken(session, slug):
                return slug
        raise ValidationError("Could not allocate a unique slug", code="SLUG_TAKEN")

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    async def create_share(
        self,
        session: AsyncSession,
        owner_id: str,
        *,
        file_id: str | None = None,
        folder_id: str | None = None,
        visibility: str = ShareVisibility.PUBLIC.value,
        password: str | None = None,
        expires_at: datetime | None = None,
        max_downloads: int | None = None,
        slug: str | None = None,
    ) -> ShareBase:
        """Create a share on a live file or folder of *owner_id*. Flushes but does not commit."""
        if (file_id is None) == (folder_id is None):
            raise ValidationError("A share targets exactly one file or one folder")
        self._validate_policy(visibility, expires_at, max_downloads)

        if file_id is not None:
            await self._files.get(session, file_id, owner_id)
        else:
            assert folder_id is not None
            await self._folders.get(session, folder_id, owner_id)

        share = self._share_model(
            slug=await self._allocate_slug(session, slug),
            owner_id=owner_id,
            file_id=file_id,
            folder_id=folder_id,
            visibility=visibility,
            password_hash=await self._hash_password(password) if password else None,
            expires_at=ensure_utc(expires_at) if expires_at is not None else None,
            max_downloads=max_downloads,
        )
        session.add(share)
        await session.flush()
        logger.info("Created share %s for %s", share.id, owner_id)
        return share

    async def get_share(self, session: AsyncSession, share_id: str, owner_id: str) -> ShareBase:
        share = await session.get(self._share_model, share_id)
        if share is None:
            raise NotFoundError("Share not found")
        if share.owner_id != owner_id:
            raise ForbiddenError("Access denied")
        return share

    async def get_by_slug(self, session: AsyncSession, slug: str) -> ShareBase | None:
        model = self._share_model
        result = await session.execute(
            select(model)
            .where(model.slug == slug)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_shares(self, session: AsyncSession, owner_id: str) -> list[ShareBase]:
        """All shares of *owner_id*, newest first."""
        model = self._share_model
        result = await session.execute(
            select(model)
            .where(model.owner_id == owner_id)
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def update_share(
        self,
        session: AsyncSession,
        share_id: str,
        owner_id: str,
        *,
        visibility: str = UNSET,
        password: str | None = UNSET,
        expires_at: datetime | None = UNSET,
        max_downloads: int | None = UNSET,
        enabled: bool = UNSET,
    ) -> ShareBase:
        """Change policy fields.  ``password=None`` (or ``""``) removes the password."""
        share = await self.get_share(session, share_id, owner_id)
        self._validate_policy(
            share.visibility if visibility is UNSET else visibility,
            None if expires_at is UNSET else expires_at,
            None if max_downloads is UNSET else max_downloads,
        )

        if visibility is not UNSET:
            share.visibility = visibility
        if password is not UNSET:
            share.password_hash = await self._hash_password(password) if password else None
        if expires_at is not UNSET:
            share.expires_at = ensure_utc(expires_at) if expires_at is not None else None
        if max_downloads is not UNSET:
            share.max_downloads = max_downloads
        if enabled is not UNSET:
            share.enabled = enabled
        share.updated_at = datetime.now(UTC)
        await session.flush()
        return share

    async def delete_share(self, session: AsyncSession, share_id: str, owner_id: str) -> None:
        share = await self.get_share(session, share_id, owner_id)
        await session.delete(share)
        await session.flush()

    async def delete_for_target(
        self,
        session: AsyncSession,
        *,
        file_id: str | None = None,
        folder_id: str | None = None,
    ) -> int:
        """Remove every share on a purged file or folder.  Returns the count."""
        model = self._share_model
        if file_id is not None:
            condition = model.file_id == file_id
        elif folder_id is not None:
            condition = model.folder_id == folder_id
        else:
            return 0
        result = await session.execute(
            sa_delete(model).where(condition).execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def set_account_enabled(
        self, session: AsyncSession, owner_id: str, enabled: bool
    ) -> AccountBase:
        """Admin switch for an owner's standing; creates the account row if needed."""
        account = await session.get(self._account_model, owner_id)
        if account is None:
            account = self._account_model(id=owner_id, enabled=enabled)
            session.add(account)
        else:
            account.enabled = enabled
        await session.flush()
        logger.info("Account %s %s", owner_id, "enabled" if enabled else "disabled")
        return account

    # ------------------------------------------------------------------
    # Public access
    # ------------------------------------------------------------------

    async def validate_access(
        self,
        session: AsyncSession,
        slug: str,
        password: str | None = None,
        *,
        now: datetime | None = None,
    ) -> ShareBase:
        """Run the access checks.  Has no side effects."""
        share = await self.get_by_slug(session, slug)
        if share is None:
            raise NotFoundError("Share not found")

        if not share.enabled:
            raise ForbiddenError("Share is disabled", code="SHARE_DISABLED")

        account = await session.get(self._account_model, share.owner_id)
        if account is not None and not account.enabled:
            raise ForbiddenError("Share owner account is disabled", code="OWNER_DISABLED")

        now = now or datetime.now(UTC)
        if share.expires_at is not None and ensure_utc(share.expires_at) < now:
            raise ForbiddenError("Share has expired", code="SHARE_EXPIRED")

        if share.max_downloads is not None and share.download_count >= share.max_downloads:
            raise ForbiddenError("Download limit reached", code="SHARE_DOWNLOAD_LIMIT")

        if share.password_hash:
            if not password:
                raise UnauthorizedError("Password required", code="SHARE_PASSWORD_REQUIRED")
            if not await self._check_password(password, share.password_hash):
                raise UnauthorizedError("Invalid password", code="SHARE_PASSWORD_INVALID")

        return share

    async def verify_password(self, session: AsyncSession, slug: str, password: str) -> bool:
        """Check a share password without touching any counter.

        Unknown slugs and shares without a password both answer False.
        """
        share = await self.get_by_slug(session, slug)
        if share is None or not share.password_hash:
            return False
        return await self._check_password(password, share.password_hash)

    async def access_share(
        self,
        session: AsyncSession,
        slug: str,
        password: str | None = None,
    ) -> ShareSummary:
        """View a share: validate, bump ``view_count``, describe the target."""
        share = await self.validate_access(session, slug, password)
        target = await self._describe_target(session, share)

        model = self._share_model
        await session.execute(
            update(model)
            .where(model.id == share.id)  # type: ignore[arg-type]
            .values(view_count=model.view_count + 1)  # type: ignore[operator]
            .execution_options(synchronize_session=False)
        )
        return ShareSummary(
            slug=share.slug,
            visibility=share.visibility,
            has_password=share.password_hash is not None,
            expires_at=share.expires_at,
            max_downloads=share.max_downloads,
            download_count=share.download_count,
            view_count=share.view_count + 1,
            created_at=share.created_at,
            target=target,
        )

    async def download_share(
        self,
        session: AsyncSession,
        slug: str,
        password: str | None = None,
    ) -> tuple[ObjectStream, FileBase]:
        """Download a file share: validate, bump ``download_count``, open the bytes."""
        share = await self.validate_access(session, slug, password)
        if share.file_id is None:
            raise ForbiddenError(
                "Cannot download folder shares directly",
                code="FOLDER_DOWNLOAD_UNSUPPORTED",
            )
        if await self._files.get_live(session, share.file_id) is None:
            raise NotFoundError("Share not found")

        # The limit is re-checked inside the UPDATE so concurrent downloads
        # cannot overshoot max_downloads.
        model = self._share_model
        result = await session.execute(
            update(model)
            .where(
                model.id == share.id,  # type: ignore[arg-type]
                or_(
                    model.max_downloads.is_(None),  # type: ignore[union-attr]
                    model.download_count < model.max_downloads,  # type: ignore[operator]
                ),
            )
            .values(download_count=model.download_count + 1)  # type: ignore[operator]
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ForbiddenError("Download limit reached", code="SHARE_DOWNLOAD_LIMIT")

        logger.info("Share %s downloaded", share.id)
        return await self._files.download(session, share.file_id, delegated=True)

    async def _describe_target(self, session: AsyncSession, share: ShareBase) -> ShareTarget:
        if share.file_id is not None:
            file = await self._files.get_live(session, share.file_id)
            if file is None:
                raise NotFoundError("Share not found")
            return ShareTarget(
                kind="file",
                id=file.id,
                name=file.name,
                size_bytes=file.size_bytes,
                mime_type=file.mime_type,
            )

        assert share.folder_id is not None
        if not await self._folders.is_live(session, share.folder_id):
            raise NotFoundError("Share not found")
        folder = await self._folders.get(session, share.folder_id, share.owner_id)
        listing = await self._folders.list_children(session, share.owner_id, folder.id)
        children = [
            ShareTarget(kind="folder", id=sub.id, name=sub.name) for sub in listing.folders
        ] + [
            ShareTarget(
                kind="file",
                id=f.id,
                name=f.name,
                size_bytes=f.size_bytes,
                mime_type=f.mime_type,
            )
            for f in listing.files
        ]
        return ShareTarget(kind="folder", id=folder.id, name=folder.name, children=children)
