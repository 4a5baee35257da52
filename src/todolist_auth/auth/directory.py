"""User directory: maps verified identities to local users."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from todolist_auth.database.models import User
from todolist_auth.database.repositories import UserRepository
from todolist_auth.errors import AuthError, AuthErrorKind, DuplicateKeyError
from todolist_auth.models.session import IdentityClaim

logger = logging.getLogger(__name__)


class UserDirectory:
    """Idempotent upsert of users keyed on (provider, provider_user_id).

    Commits its own work. Uniqueness is enforced by the database: when two
    first logins of the same identity race, the loser's insert fails with
    `DuplicateKeyError` and it continues with the winner's row.
    """

    def __init__(self, session: AsyncSession, users: UserRepository | None = None):
        self.session = session
        self.users = users or UserRepository(session)

    async def upsert(self, claim: IdentityClaim) -> User:
        """Create the user on first sight, record a login otherwise."""
        user = await self.users.find_by_provider_identity(
            claim.provider, claim.provider_user_id
        )

        if user is None:
            now = datetime.now(timezone.utc)
            try:
                user = await self.users.insert(
                    User(
                        email=claim.email,
                        name=claim.display_name,
                        picture=claim.avatar_url,
                        provider=claim.provider,
                        provider_user_id=claim.provider_user_id,
                        created_at=now,
                        last_login_at=now,
                    )
                )
                await self.session.commit()
                logger.info(f"New user created: {user.email} via {claim.provider}")
                return user
            except DuplicateKeyError:
                await self.session.rollback()
                logger.info(
                    f"Concurrent first login for {claim.provider} identity, "
                    "using existing user"
                )
                user = await self.users.find_by_provider_identity(
                    claim.provider, claim.provider_user_id
                )
                if user is None:
                    raise AuthError(
                        AuthErrorKind.INTERNAL_ERROR,
                        "User vanished after duplicate-key insert",
                        provider=claim.provider,
                    )

        await self.users.touch_last_login(
            user,
            email=claim.email,
            name=claim.display_name,
            picture=claim.avatar_url,
        )
        await self.session.commit()
        logger.info(f"User logged in: {user.email} via {claim.provider}")
        return user
