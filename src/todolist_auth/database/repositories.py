"""Storage collaborators for users and refresh tokens.

Thin wrappers over an `AsyncSession`. They flush but do not commit: the
caller owns the transaction boundary.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from todolist_auth.database.models import RefreshToken, User
from todolist_auth.errors import DuplicateKeyError


def hash_token(token: str) -> str:
    """Digest under which a refresh token is stored and looked up."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class UserRepository:
    """Persistence for `User` rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_provider_identity(
        self, provider: str, provider_user_id: str
    ) -> User | None:
        result = await self.session.execute(
            select(User).where(
                User.provider == provider,
                User.provider_user_id == provider_user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get(self, user_id: str) -> User | None:
        return await self.session.get(User, user_id)

    async def insert(self, user: User) -> User:
        """Insert a new user.

        Raises:
            DuplicateKeyError: If (provider, provider_user_id) already exists
        """
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateKeyError(
                f"User {user.provider}/{user.provider_user_id} already exists"
            ) from e
        return user

    async def touch_last_login(
        self,
        user: User,
        *,
        email: str | None = None,
        name: str | None = None,
        picture: str | None = None,
    ) -> User:
        """Record a login, optionally refreshing profile fields."""
        user.last_login_at = datetime.now(timezone.utc)
        if email:
            user.email = email
        if name:
            user.name = name
        if picture:
            user.picture = picture
        await self.session.flush()
        return user


class RefreshTokenRepository:
    """Persistence for `RefreshToken` rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def insert(self, record: RefreshToken) -> RefreshToken:
        """Insert a refresh token row.

        Raises:
            DuplicateKeyError: If the token digest already exists
        """
        self.session.add(record)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateKeyError("Refresh token already exists") from e
        return record

    async def find_by_token(self, token: str) -> RefreshToken | None:
        result = await self.session.execute(
            select(RefreshToken)
            .where(RefreshToken.token_hash == hash_token(token))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def mark_revoked(self, token_id: str) -> bool:
        """Revoke a token if it is not revoked yet.

        The check and the write are a single conditional UPDATE, so of two
        concurrent callers exactly one sees True.
        """
        now = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token_id, RefreshToken.is_revoked == False)
            .values(is_revoked=True, revoked_at=now)
        )
        return result.rowcount == 1

    async def revoke_all_for_user(self, user_id: str) -> int:
        """Revoke every not-yet-revoked token of a user. Returns the count."""
        now = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked == False)
            .values(is_revoked=True, revoked_at=now)
        )
        return result.rowcount

    async def delete_expired(self, before: datetime) -> int:
        """Delete tokens that expired before the cutoff. Returns the count."""
        result = await self.session.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at < before)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
