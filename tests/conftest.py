"""Pytest fixtures for TodoList authentication tests.

This module provides test fixtures that ensure:
1. No external API calls are made (Google, Microsoft)
2. Each test gets its own throwaway SQLite database
3. Isolated test environment with controlled configuration
"""

import os
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment BEFORE importing application modules
# This ensures no real services are contacted during test collection
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-at-least-32-characters-long")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-google-client-id.apps.googleusercontent.com")
os.environ.setdefault("MICROSOFT_CLIENT_ID", "test-microsoft-client-id")
os.environ.setdefault("MICROSOFT_CLIENT_SECRET", "test-microsoft-client-secret")

from todolist_auth.auth.dependencies import get_token_issuer
from todolist_auth.auth.google import get_google_verifier
from todolist_auth.auth.microsoft import get_microsoft_oauth
from todolist_auth.auth.service import SessionService
from todolist_auth.auth.tokens import TokenIssuer
from todolist_auth.auth.verifier import CredentialVerifier
from todolist_auth.config import Settings, get_settings
from todolist_auth.database.connection import close_db, create_tables, get_db, init_db
from todolist_auth.database.models import User
from todolist_auth.models.session import IdentityClaim


# =============================================================================
# Test Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset cached settings and settings-derived clients around each test."""
    caches = (get_settings, get_token_issuer, get_google_verifier, get_microsoft_oauth)
    for cached in caches:
        cached.cache_clear()
    yield
    for cached in caches:
        cached.cache_clear()


@pytest.fixture
def database_url(tmp_path) -> str:
    """A fresh SQLite database file per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'auth-test.db'}"


@pytest.fixture
async def database(database_url: str):
    """Initialized database with all tables created."""
    await init_db(database_url)
    await create_tables()
    yield
    await close_db()


@pytest.fixture
async def db_session(database):
    """A database session on the per-test database."""
    async with get_db() as session:
        yield session


# =============================================================================
# Auth Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def issuer(settings: Settings) -> TokenIssuer:
    return TokenIssuer.from_settings(settings)


@pytest.fixture
def google_claim() -> IdentityClaim:
    """Identity asserted by a valid Google ID token."""
    return IdentityClaim(
        provider="Google",
        provider_user_id="g-123",
        email="a@x.com",
        display_name="A",
        avatar_url="https://example.com/a.jpg",
    )


@pytest.fixture
def microsoft_claim() -> IdentityClaim:
    """Identity obtained through a Microsoft code exchange."""
    return IdentityClaim(
        provider="Microsoft",
        provider_user_id="ms-456",
        email="b@contoso.com",
        display_name="B",
    )


@pytest.fixture
def mock_verifier(google_claim: IdentityClaim, microsoft_claim: IdentityClaim):
    """Credential verifier that never talks to Google or Microsoft."""
    verifier = MagicMock(spec=CredentialVerifier)
    verifier.verify_google = AsyncMock(return_value=google_claim)
    verifier.verify_microsoft = AsyncMock(return_value=microsoft_claim)
    return verifier


@pytest.fixture
def service(db_session, mock_verifier, issuer: TokenIssuer, settings: Settings) -> SessionService:
    return SessionService(db_session, verifier=mock_verifier, issuer=issuer, settings=settings)


@pytest.fixture
async def sample_user(db_session) -> User:
    """A persisted Google user."""
    now = datetime.now(timezone.utc)
    user = User(
        email="test@example.com",
        name="Test User",
        picture=None,
        provider="Google",
        provider_user_id="test-google-id",
        created_at=now,
        last_login_at=now,
    )
    db_session.add(user)
    await db_session.commit()
    return user
