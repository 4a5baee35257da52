"""Tests for the session service (login, refresh, logout)."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from todolist_auth.auth.service import SessionService
from todolist_auth.auth.tokens import TokenIssuer
from todolist_auth.database.models import RefreshToken, User, as_utc
from todolist_auth.database.repositories import hash_token
from todolist_auth.errors import AuthError, AuthErrorKind


async def count_rows(session, model, *criteria) -> int:
    query = select(func.count()).select_from(model)
    if criteria:
        query = query.where(*criteria)
    return await session.scalar(query)


async def active_tokens(session, user_id: str) -> int:
    return await count_rows(
        session,
        RefreshToken,
        RefreshToken.user_id == user_id,
        RefreshToken.is_revoked == False,
    )


class TestLogin:
    """Tests for Google and Microsoft login."""

    async def test_google_first_login(self, service: SessionService, db_session, issuer):
        """Test a new Google identity gets a user and one active refresh token."""
        session = await service.login_with_google("google-id-token")

        user = await db_session.scalar(select(User))
        assert user.provider == "Google"
        assert user.provider_user_id == "g-123"
        assert user.email == "a@x.com"

        assert session.access_token
        assert session.refresh_token
        assert session.token_type == "Bearer"
        assert session.user.id == user.id
        assert session.user.email == "a@x.com"

        assert await count_rows(db_session, User) == 1
        assert await active_tokens(db_session, user.id) == 1

        claims = issuer.decode_access_token(session.access_token)
        assert claims.user_id == user.id
        assert claims.expires_at == session.expires_at

        service.verifier.verify_google.assert_awaited_once_with("google-id-token")

    async def test_google_repeat_login(self, service: SessionService, db_session):
        """Test a known identity gets no new user and keeps older sessions."""
        first = await service.login_with_google("google-id-token")
        user = await db_session.get(User, first.user.id)
        first_login = as_utc(user.last_login_at)

        second = await service.login_with_google("google-id-token")

        assert second.user.id == first.user.id
        assert second.refresh_token != first.refresh_token
        assert await count_rows(db_session, User) == 1
        assert await active_tokens(db_session, first.user.id) == 2

        user = await db_session.get(User, first.user.id)
        assert as_utc(user.last_login_at) >= first_login

    async def test_microsoft_login(self, service: SessionService, db_session):
        """Test Microsoft login creates a Microsoft user."""
        session = await service.login_with_microsoft("auth-code")

        user = await db_session.get(User, session.user.id)
        assert user.provider == "Microsoft"
        assert user.provider_user_id == "ms-456"
        assert session.user.picture is None
        service.verifier.verify_microsoft.assert_awaited_once_with("auth-code")

    async def test_refresh_token_stored_as_digest(self, service: SessionService, db_session):
        """Test the issued refresh token is persisted only as a digest."""
        session = await service.login_with_google("google-id-token")

        stored = await db_session.scalar(select(RefreshToken))
        assert stored.token_hash == hash_token(session.refresh_token)

    @pytest.mark.parametrize(
        "kind",
        [
            AuthErrorKind.INVALID_CREDENTIAL,
            AuthErrorKind.PROFILE_INCOMPLETE,
            AuthErrorKind.UPSTREAM_UNAVAILABLE,
        ],
    )
    async def test_verification_failure(
        self, service: SessionService, db_session, kind: AuthErrorKind
    ):
        """Test verification errors keep their kind and persist nothing."""
        service.verifier.verify_google.side_effect = AuthError(kind, provider="Google")

        with pytest.raises(AuthError) as exc_info:
            await service.login_with_google("bad-id-token")

        assert exc_info.value.kind is kind
        assert await count_rows(db_session, User) == 0
        assert await count_rows(db_session, RefreshToken) == 0

    async def test_unexpected_failure_is_internal(self, service: SessionService):
        """Test an unexpected error after verification becomes INTERNAL_ERROR."""
        service.directory.upsert = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(AuthError) as exc_info:
            await service.login_with_google("google-id-token")

        assert exc_info.value.kind is AuthErrorKind.INTERNAL_ERROR
        assert "boom" not in exc_info.value.public_message

    async def test_concurrent_first_login(self, service: SessionService, db_session):
        """Test a first login that loses the insert race uses the existing user."""
        winner = await service.users.insert(
            User(email="a@x.com", name="A", provider="Google", provider_user_id="g-123")
        )
        await db_session.commit()
        winner_id = winner.id

        real_find = service.users.find_by_provider_identity
        calls = []

        async def racing_find(provider: str, provider_user_id: str):
            calls.append(provider_user_id)
            if len(calls) == 1:
                return None
            return await real_find(provider, provider_user_id)

        service.users.find_by_provider_identity = racing_find

        session = await service.login_with_google("google-id-token")

        assert session.user.id == winner_id
        assert session.user.provider == "Google"
        assert await count_rows(db_session, User) == 1


class TestRefresh:
    """Tests for refresh token rotation."""

    async def test_refresh(self, service: SessionService, db_session, issuer):
        """Test a refresh returns a new pair and consumes the old token."""
        login = await service.login_with_google("google-id-token")

        refreshed = await service.refresh(login.refresh_token)

        assert refreshed.refresh_token != login.refresh_token
        assert refreshed.user.id == login.user.id
        assert issuer.decode_access_token(refreshed.access_token).user_id == login.user.id

        old = await service.refresh_tokens.lookup(login.refresh_token)
        assert old.is_revoked is True
        new = await service.refresh_tokens.lookup(refreshed.refresh_token)
        assert new.is_active
        assert await active_tokens(db_session, login.user.id) == 1

    async def test_refresh_twice_with_same_token(self, service: SessionService):
        """Test the same refresh token works exactly once."""
        login = await service.login_with_google("google-id-token")
        await service.refresh(login.refresh_token)

        with pytest.raises(AuthError) as exc_info:
            await service.refresh(login.refresh_token)
        assert exc_info.value.kind is AuthErrorKind.TOKEN_REVOKED

    async def test_chain_of_refreshes(self, service: SessionService):
        """Test each successor can itself be refreshed."""
        current = await service.login_with_google("google-id-token")
        for _ in range(3):
            current = await service.refresh(current.refresh_token)
        assert current.refresh_token

    async def test_signing_failure(
        self, service: SessionService, db_session, mock_verifier, settings
    ):
        """Test a signing failure during refresh is internal and consumes nothing."""
        login = await service.login_with_google("google-id-token")
        broken = SessionService(
            db_session,
            verifier=mock_verifier,
            issuer=TokenIssuer(secret_key=settings.jwt_secret_key, algorithm="HS257"),
            settings=settings,
        )

        with pytest.raises(AuthError) as exc_info:
            await broken.refresh(login.refresh_token)

        assert exc_info.value.kind is AuthErrorKind.INTERNAL_ERROR
        assert (await service.refresh_tokens.lookup(login.refresh_token)).is_active

    async def test_reuse_revokes_all_sessions(self, service: SessionService, db_session):
        """Test replaying a consumed token signs the user out everywhere."""
        login = await service.login_with_google("google-id-token")
        other_device = await service.login_with_google("google-id-token")
        refreshed = await service.refresh(login.refresh_token)

        with pytest.raises(AuthError):
            await service.refresh(login.refresh_token)

        assert await active_tokens(db_session, login.user.id) == 0
        for token in (refreshed.refresh_token, other_device.refresh_token):
            with pytest.raises(AuthError) as exc_info:
                await service.refresh(token)
            assert exc_info.value.kind is AuthErrorKind.TOKEN_REVOKED

    async def test_reuse_without_revoke_all(
        self, db_session, mock_verifier, issuer, settings
    ):
        """Test the successor survives a replay when revoke-all is disabled."""
        service = SessionService(
            db_session,
            verifier=mock_verifier,
            issuer=issuer,
            settings=settings.model_copy(update={"refresh_reuse_revokes_all": False}),
        )
        login = await service.login_with_google("google-id-token")
        refreshed = await service.refresh(login.refresh_token)

        with pytest.raises(AuthError):
            await service.refresh(login.refresh_token)

        assert await service.refresh(refreshed.refresh_token)

    async def test_expired_token(self, service: SessionService, db_session, sample_user: User):
        """Test an expired, never used token fails and issues nothing."""
        await service.refresh_tokens.store(
            sample_user.id, "expired-token-string", ttl=timedelta(days=-1)
        )

        with pytest.raises(AuthError) as exc_info:
            await service.refresh("expired-token-string")

        assert exc_info.value.kind is AuthErrorKind.TOKEN_EXPIRED
        assert await count_rows(db_session, RefreshToken) == 1

    async def test_unknown_token(self, service: SessionService):
        """Test a token that was never issued is invalid."""
        with pytest.raises(AuthError) as exc_info:
            await service.refresh("never-issued")
        assert exc_info.value.kind is AuthErrorKind.TOKEN_INVALID

    async def test_empty_token(self, service: SessionService):
        with pytest.raises(AuthError) as exc_info:
            await service.refresh("")
        assert exc_info.value.kind is AuthErrorKind.TOKEN_INVALID


class TestLogout:
    """Tests for logout."""

    async def test_logout(self, service: SessionService):
        """Test a logged out refresh token can no longer be used."""
        login = await service.login_with_google("google-id-token")

        await service.logout(login.refresh_token)

        with pytest.raises(AuthError) as exc_info:
            await service.refresh(login.refresh_token)
        assert exc_info.value.kind is AuthErrorKind.TOKEN_REVOKED

    async def test_logout_keeps_other_sessions(self, service: SessionService):
        """Test logging out one device leaves the others signed in."""
        phone = await service.login_with_google("google-id-token")
        laptop = await service.login_with_google("google-id-token")

        await service.logout(phone.refresh_token)

        assert await service.refresh(laptop.refresh_token)

    async def test_logout_unknown_token(self, service: SessionService):
        """Test logging out an unknown token is a no-op."""
        await service.logout("never-issued")
        await service.logout("")


class TestGetUserInfo:
    """Tests for resolving the current user from an access token."""

    async def test_user_info(self, service: SessionService):
        login = await service.login_with_google("google-id-token")

        info = await service.get_user_info(login.access_token)

        assert info.id == login.user.id
        assert info.email == "a@x.com"
        assert info.provider == "Google"

    async def test_unknown_subject(self, service: SessionService, issuer):
        """Test a valid token for a user that does not exist is rejected."""
        ghost = User(
            id="ghost",
            email="ghost@example.com",
            name="Ghost",
            provider="Google",
            provider_user_id="g-ghost",
        )
        access = issuer.issue_access_token(ghost)

        with pytest.raises(AuthError) as exc_info:
            await service.get_user_info(access.token)
        assert exc_info.value.kind is AuthErrorKind.TOKEN_INVALID

    async def test_invalid_token(self, service: SessionService):
        with pytest.raises(AuthError) as exc_info:
            await service.get_user_info("not-a-jwt")
        assert exc_info.value.kind is AuthErrorKind.TOKEN_INVALID
