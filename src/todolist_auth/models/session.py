"""Session and identity models returned by the auth core."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from todolist_auth.database.models import User


@dataclass(frozen=True)
class IdentityClaim:
    """Normalized profile extracted from a verified provider credential."""

    provider: str
    provider_user_id: str
    email: str
    display_name: str
    avatar_url: str | None = None


class _CamelModel(BaseModel):
    """Serializes with camelCase keys, as the frontend expects."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserInfo(_CamelModel):
    """Public profile of the signed-in user."""

    id: str
    email: str
    name: str
    picture: str | None = None
    provider: str

    @classmethod
    def from_user(cls, user: User) -> UserInfo:
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            picture=user.picture,
            provider=user.provider,
        )


class Session(_CamelModel):
    """Credentials handed to the client after login or refresh.

    Serialized form:

    ```json
    {
      "accessToken": "eyJ...",
      "refreshToken": "q3Jf...",
      "tokenType": "Bearer",
      "expiresAt": "2025-01-01T12:00:00Z",
      "user": {"id": "...", "email": "...", "name": "...", "picture": null, "provider": "Google"}
    }
    ```
    """

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_at: datetime = Field(description="Access token expiry (UTC)")
    user: UserInfo

    def to_response(self) -> dict:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
