"""Session orchestration.

The façade the API layer calls. Each operation is a short request-scoped
unit of work over one database session:

```
login_with_google(id_token)   ─┐
login_with_microsoft(code)    ─┴─> verify -> upsert user -> access token
                                   -> refresh token (stored) -> Session

refresh(token) -> lookup -> validate -> owner -> access token
               -> rotate (old revoked, new stored) -> Session
```

## Failure mapping

- Verification failures keep their kind (INVALID_CREDENTIAL,
  PROFILE_INCOMPLETE, UPSTREAM_UNAVAILABLE)
- Anything unexpected after verification becomes INTERNAL_ERROR
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from todolist_auth.auth.directory import UserDirectory
from todolist_auth.auth.refresh_store import RefreshTokenStore
from todolist_auth.auth.tokens import TokenIssuer
from todolist_auth.auth.verifier import CredentialVerifier
from todolist_auth.config import Settings
from todolist_auth.database.models import User
from todolist_auth.database.repositories import UserRepository
from todolist_auth.errors import AuthError, AuthErrorKind, mask_token
from todolist_auth.models.session import IdentityClaim, Session, UserInfo

logger = logging.getLogger(__name__)


class SessionService:
    """Login, refresh and logout for one database session.

    Example:
        ```python
        async with get_db() as db:
            service = SessionService(
                db,
                verifier=get_credential_verifier(),
                issuer=TokenIssuer.from_settings(settings),
                settings=settings,
            )
            session = await service.login_with_google(id_token)
            return session.to_response()
        ```
    """

    def __init__(
        self,
        session: AsyncSession,
        verifier: CredentialVerifier,
        issuer: TokenIssuer,
        settings: Settings,
    ):
        self.session = session
        self.verifier = verifier
        self.issuer = issuer
        self.settings = settings

        self.users = UserRepository(session)
        self.directory = UserDirectory(session, self.users)
        self.refresh_tokens = RefreshTokenStore(session, ttl=settings.refresh_token_lifetime)

    async def login_with_google(self, id_token: str) -> Session:
        """Sign in with a Google ID token."""
        return await self._login("Google", self.verifier.verify_google, id_token)

    async def login_with_microsoft(self, authorization_code: str) -> Session:
        """Sign in with a Microsoft authorization code."""
        return await self._login("Microsoft", self.verifier.verify_microsoft, authorization_code)

    async def _login(
        self,
        provider: str,
        verify: Callable[[str], Awaitable[IdentityClaim]],
        credential: str,
    ) -> Session:
        try:
            claim = await verify(credential)
        except AuthError as e:
            logger.warning(
                f"{provider} authentication failed ({e.kind.value}) "
                f"for credential {mask_token(credential)}: {e.message}"
            )
            raise

        try:
            user = await self.directory.upsert(claim)
            return await self._open_session(user)
        except AuthError:
            raise
        except Exception as e:
            await self.session.rollback()
            logger.exception(f"{provider} login failed after verification: {e}")
            raise AuthError(
                AuthErrorKind.INTERNAL_ERROR,
                f"Could not create session: {e}",
                provider=provider,
            ) from e

    async def _open_session(self, user: User) -> Session:
        access = self.issuer.issue_access_token(user)
        refresh_token = self.issuer.issue_refresh_token()
        await self.refresh_tokens.store(user.id, refresh_token)

        return Session(
            access_token=access.token,
            refresh_token=refresh_token,
            expires_at=access.expires_at,
            user=UserInfo.from_user(user),
        )

    async def refresh(self, refresh_token: str) -> Session:
        """Exchange a refresh token for a new session.

        The presented token is revoked and must not be used again; the
        returned Session carries its successor.

        Raises:
            AuthError: TOKEN_INVALID, TOKEN_REVOKED or TOKEN_EXPIRED when the
                token cannot be used, INTERNAL_ERROR on persistence failure
        """
        try:
            record = await self.refresh_tokens.lookup(refresh_token)
            try:
                record = self.refresh_tokens.validate(record, refresh_token)
            except AuthError as e:
                if e.kind is AuthErrorKind.TOKEN_REVOKED:
                    await self._handle_reuse(e.user_id)
                raise

            user = await self.users.get(record.user_id)
            if user is None:
                logger.warning(f"Refresh token {mask_token(refresh_token)} has no owner")
                raise AuthError(AuthErrorKind.TOKEN_INVALID, "Invalid refresh token")

            access = self.issuer.issue_access_token(user)
            new_refresh_token = self.issuer.issue_refresh_token()
            await self.refresh_tokens.rotate(record, new_refresh_token)
        except AuthError:
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception(f"Token refresh failed: {e}")
            raise AuthError(AuthErrorKind.INTERNAL_ERROR, f"Token refresh failed: {e}") from e

        logger.info(f"Token refreshed for user: {user.email}")

        return Session(
            access_token=access.token,
            refresh_token=new_refresh_token,
            expires_at=access.expires_at,
            user=UserInfo.from_user(user),
        )

    async def _handle_reuse(self, user_id: str | None) -> None:
        """A revoked token came back: treat the token family as stolen."""
        if not self.settings.refresh_reuse_revokes_all or user_id is None:
            return

        count = await self.refresh_tokens.revoke_all_for_user(user_id)
        logger.warning(
            f"Revoked refresh token reused for user {user_id}; "
            f"revoked {count} live token(s)"
        )

    async def logout(self, refresh_token: str) -> None:
        """Revoke a refresh token. Unknown or already revoked tokens are ignored."""
        try:
            revoked = await self.refresh_tokens.revoke(refresh_token)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception(f"Logout failed: {e}")
            raise AuthError(AuthErrorKind.INTERNAL_ERROR, f"Logout failed: {e}") from e

        if revoked:
            logger.info(f"Refresh token {mask_token(refresh_token)} revoked on logout")

    async def get_user_info(self, access_token: str) -> UserInfo:
        """Profile of the user an access token belongs to."""
        claims = self.issuer.decode_access_token(access_token)
        user = await self.users.get(claims.user_id)
        if user is None:
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "Token subject no longer exists")
        return UserInfo.from_user(user)
