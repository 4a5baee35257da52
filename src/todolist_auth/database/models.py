"""Database models for TodoList authentication.

## Security Notes

- Refresh tokens are never stored in plaintext: only their SHA-256 digest is
  persisted, so a leaked database cannot be replayed against /refresh
- Access tokens are stateless JWTs and are not stored at all

## Schema Overview

```
users
└── refresh_tokens (1:N, cascade delete)
```
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""


class Provider(str, Enum):
    """Supported identity providers."""

    GOOGLE = "Google"
    MICROSOFT = "Microsoft"


def _new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from the database.

    SQLite has no timezone support and returns naive values even for
    `DateTime(timezone=True)` columns.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(Base):
    """User account model.

    Users are created on their first successful sign-in. The pair
    (provider, provider_user_id) is the natural key; `id` is our own
    identifier used as the JWT subject and as the owner of todos.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    picture: Mapped[str | None] = mapped_column(String(512))

    # Identity provider
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    provider_user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_login_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("provider", "provider_user_id", name="uq_user_provider_identity"),
    )

    def __repr__(self) -> str:
        return f"<User {self.email} via {self.provider}>"


class RefreshToken(Base):
    """A persisted refresh token.

    Rows are revoked, never updated in place, when they are exchanged for a
    new token (rotation). Expiry is derived from `expires_at`.
    """

    __tablename__ = "refresh_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Revocation
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Relationships
    user: Mapped["User"] = relationship(back_populates="refresh_tokens")

    __table_args__ = (
        Index("ix_refresh_tokens_user", "user_id"),
        Index("ix_refresh_tokens_expires", "expires_at"),
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the token is past its expiry."""
        now = now or datetime.now(timezone.utc)
        return as_utc(self.expires_at) < now

    @property
    def is_active(self) -> bool:
        return not self.is_revoked and not self.is_expired()

    def __repr__(self) -> str:
        state = "revoked" if self.is_revoked else "active"
        return f"<RefreshToken user_id={self.user_id} {state}>"
