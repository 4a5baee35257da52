"""Access and refresh token issuance.

Access tokens are short-lived signed JWTs. Refresh tokens are opaque random
strings whose lifecycle is tracked in the database by `RefreshTokenStore`.

## Access Token Structure

```json
{
  "sub": "user-id",
  "email": "a@example.com",
  "name": "Ada",
  "provider": "Google",
  "jti": "uuid4",
  "iat": 1234567890,
  "exp": 1234571490,
  "iss": "TodoListApi",
  "aud": "TodoListApp",
  "type": "access"
}
```

## Security

- Tokens are signed with the configured secret key (HS256 by default)
- Issuer, audience, expiry and token type are all checked on decode
- Refresh tokens carry 256 bits of randomness and no user data
"""

from __future__ import annotations

import base64
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JOSEError

from todolist_auth.config import Settings
from todolist_auth.database.models import User
from todolist_auth.errors import AuthError, AuthErrorKind

logger = logging.getLogger(__name__)

TOKEN_TYPE = "access"
REFRESH_TOKEN_BYTES = 32


@dataclass(frozen=True)
class IssuedAccessToken:
    """A freshly signed access token."""

    token: str
    jti: str
    expires_at: datetime


@dataclass
class AccessTokenClaims:
    """Verified contents of an access token."""

    user_id: str
    email: str
    name: str
    provider: str
    jti: str
    issued_at: datetime
    expires_at: datetime

    @property
    def is_expired(self) -> bool:
        """Check if the token has expired."""
        return datetime.now(timezone.utc) > self.expires_at


class TokenIssuer:
    """Mints and verifies session credentials.

    Example:
        ```python
        issuer = TokenIssuer.from_settings(get_settings())

        access = issuer.issue_access_token(user)
        refresh = issuer.issue_refresh_token()

        claims = issuer.decode_access_token(access.token)
        ```
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        issuer: str = "TodoListApi",
        audience: str = "TodoListApp",
        access_token_lifetime: timedelta = timedelta(minutes=60),
    ):
        """Initialize the issuer.

        Args:
            secret_key: Signing key
            algorithm: JWS algorithm
            issuer: Value of the `iss` claim
            audience: Value of the `aud` claim
            access_token_lifetime: How long access tokens are valid
        """
        if not secret_key:
            raise ValueError("A signing key is required")

        self._secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.access_token_lifetime = access_token_lifetime

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenIssuer:
        return cls(
            secret_key=settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_token_lifetime=settings.access_token_lifetime,
        )

    def issue_access_token(self, user: User) -> IssuedAccessToken:
        """Create a signed access token for a user.

        Raises:
            AuthError: INTERNAL_ERROR if signing fails
        """
        now = datetime.now(timezone.utc)
        # Whole seconds, matching the `exp` claim
        expires_at = datetime.fromtimestamp(
            int((now + self.access_token_lifetime).timestamp()), tz=timezone.utc
        )
        jti = str(uuid.uuid4())

        payload = {
            "sub": user.id,
            "email": user.email,
            "name": user.name,
            "provider": user.provider,
            "jti": jti,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": self.issuer,
            "aud": self.audience,
            "type": TOKEN_TYPE,
        }

        try:
            token = jwt.encode(payload, self._secret_key, algorithm=self.algorithm)
        except JOSEError as e:
            logger.error(f"Failed to sign access token for user {user.id}: {e}")
            raise AuthError(
                AuthErrorKind.INTERNAL_ERROR,
                "Access token signing failed",
                user_id=user.id,
            ) from e

        return IssuedAccessToken(token=token, jti=jti, expires_at=expires_at)

    def issue_refresh_token(self) -> str:
        """Generate an opaque refresh token.

        Pure randomness from the OS CSPRNG, base64 encoded. Nothing about
        the user or session can be derived from it.
        """
        return base64.b64encode(secrets.token_bytes(REFRESH_TOKEN_BYTES)).decode("ascii")

    def decode_access_token(self, token: str) -> AccessTokenClaims:
        """Verify and decode an access token.

        Raises:
            AuthError: TOKEN_EXPIRED if past `exp`, TOKEN_INVALID for any
                other signature, claim or format problem
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
            )
        except ExpiredSignatureError as e:
            raise AuthError(AuthErrorKind.TOKEN_EXPIRED, "Access token expired") from e
        except JWTError as e:
            logger.debug(f"Access token verification failed: {e}")
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "Invalid access token") from e

        # Verify token type
        if payload.get("type") != TOKEN_TYPE:
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "Wrong token type")

        try:
            return AccessTokenClaims(
                user_id=payload["sub"],
                email=payload.get("email", ""),
                name=payload.get("name", ""),
                provider=payload.get("provider", ""),
                jti=payload["jti"],
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"Invalid access token payload: {e}")
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "Malformed access token") from e
