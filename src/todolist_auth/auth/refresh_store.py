"""Refresh token lifecycle.

## States

```
active ──(rotate / revoke)──> revoked   (terminal)
active ──(expires_at passes)──> expired (terminal, derived)
```

## Validity precedence

1. Unknown token          -> TOKEN_INVALID
2. Revoked                -> TOKEN_REVOKED
3. expires_at < now       -> TOKEN_EXPIRED

## Rotation

Revoking the consumed token and inserting its successor are committed in one
transaction. The revoke is a conditional UPDATE, so two concurrent refreshes
with the same token produce exactly one successor; the loser gets
TOKEN_REVOKED.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from todolist_auth.database.models import RefreshToken
from todolist_auth.database.repositories import RefreshTokenRepository, hash_token
from todolist_auth.errors import AuthError, AuthErrorKind, DuplicateKeyError, mask_token

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=30)


class RefreshTokenStore:
    """Persisted state machine for refresh tokens.

    Every mutating operation commits (or rolls back) before returning.
    """

    def __init__(
        self,
        session: AsyncSession,
        ttl: timedelta = DEFAULT_TTL,
        tokens: RefreshTokenRepository | None = None,
    ):
        self.session = session
        self.ttl = ttl
        self.tokens = tokens or RefreshTokenRepository(session)

    def _new_record(self, user_id: str, token: str, ttl: timedelta | None) -> RefreshToken:
        now = datetime.now(timezone.utc)
        return RefreshToken(
            token_hash=hash_token(token),
            user_id=user_id,
            created_at=now,
            expires_at=now + (ttl or self.ttl),
            is_revoked=False,
        )

    async def store(
        self, user_id: str, token: str, ttl: timedelta | None = None
    ) -> RefreshToken:
        """Persist a new active token.

        Raises:
            AuthError: INTERNAL_ERROR if the token collides with an existing
                one or the write fails. Collisions are not retried.
        """
        try:
            record = await self.tokens.insert(self._new_record(user_id, token, ttl))
            await self.session.commit()
        except (DuplicateKeyError, SQLAlchemyError) as e:
            await self.session.rollback()
            logger.error(f"Failed to store refresh token for user {user_id}: {e}")
            raise AuthError(
                AuthErrorKind.INTERNAL_ERROR,
                "Failed to store refresh token",
                user_id=user_id,
            ) from e
        return record

    async def lookup(self, token: str) -> RefreshToken | None:
        if not token:
            return None
        return await self.tokens.find_by_token(token)

    def validate(self, record: RefreshToken | None, token: str = "") -> RefreshToken:
        """Check a looked-up record against the validity precedence.

        Raises:
            AuthError: TOKEN_INVALID, TOKEN_REVOKED or TOKEN_EXPIRED
        """
        if record is None:
            logger.warning(f"Unknown refresh token {mask_token(token)}")
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "Invalid refresh token")

        if record.is_revoked:
            logger.warning(
                f"Revoked refresh token {mask_token(token)} presented for user {record.user_id}"
            )
            raise AuthError(
                AuthErrorKind.TOKEN_REVOKED,
                "Refresh token has been revoked",
                user_id=record.user_id,
            )

        if record.is_expired():
            logger.info(
                f"Expired refresh token {mask_token(token)} presented for user {record.user_id}"
            )
            raise AuthError(
                AuthErrorKind.TOKEN_EXPIRED,
                "Refresh token expired",
                user_id=record.user_id,
            )

        return record

    async def rotate(
        self, record: RefreshToken, new_token: str, ttl: timedelta | None = None
    ) -> RefreshToken:
        """Revoke `record` and store `new_token` for the same user, atomically.

        Raises:
            AuthError: TOKEN_REVOKED if another caller consumed the token
                first, INTERNAL_ERROR if the transaction cannot be committed
        """
        # Read before any rollback expires the instance
        record_id = record.id
        user_id = record.user_id

        try:
            return await self._rotate_once(record_id, user_id, new_token, ttl)
        except OperationalError as e:
            logger.error(f"Refresh token rotation failed for user {user_id}: {e}")
            raise AuthError(
                AuthErrorKind.INTERNAL_ERROR,
                "Refresh token rotation failed",
                user_id=user_id,
            ) from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        retry=retry_if_exception_type(OperationalError),
        reraise=True,
    )
    async def _rotate_once(
        self,
        record_id: str,
        user_id: str,
        new_token: str,
        ttl: timedelta | None,
    ) -> RefreshToken:
        """One attempt at the rotation transaction.

        OperationalError (lock timeouts, dropped connections) is rolled back
        and re-raised so the retry policy can try again.
        """
        try:
            if not await self.tokens.mark_revoked(record_id):
                await self.session.rollback()
                logger.warning(f"Refresh token for user {user_id} was already consumed")
                raise AuthError(
                    AuthErrorKind.TOKEN_REVOKED,
                    "Refresh token has been revoked",
                    user_id=user_id,
                )

            successor = await self.tokens.insert(self._new_record(user_id, new_token, ttl))
            await self.session.commit()
        except OperationalError:
            await self.session.rollback()
            raise
        except (DuplicateKeyError, SQLAlchemyError) as e:
            await self.session.rollback()
            logger.error(f"Refresh token rotation failed for user {user_id}: {e}")
            raise AuthError(
                AuthErrorKind.INTERNAL_ERROR,
                "Refresh token rotation failed",
                user_id=user_id,
            ) from e

        return successor

    async def revoke(self, token: str) -> bool:
        """Revoke a single token (logout). Returns False if it was unknown
        or already revoked."""
        record = await self.lookup(token)
        if record is None:
            return False

        revoked = await self.tokens.mark_revoked(record.id)
        await self.session.commit()
        return revoked

    async def revoke_all_for_user(self, user_id: str) -> int:
        """Revoke every live token of a user. Returns how many were revoked."""
        count = await self.tokens.revoke_all_for_user(user_id)
        await self.session.commit()
        logger.info(f"Revoked {count} refresh token(s) for user {user_id}")
        return count

    async def purge_expired(self, before: datetime | None = None) -> int:
        """Delete tokens that expired before `before` (default: now)."""
        cutoff = before or datetime.now(timezone.utc)
        count = await self.tokens.delete_expired(cutoff)
        await self.session.commit()
        logger.info(f"Purged {count} expired refresh token(s)")
        return count
