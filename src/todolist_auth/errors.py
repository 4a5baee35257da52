"""Authentication error taxonomy.

Every failure the auth core reports to its callers is an `AuthError` tagged
with an `AuthErrorKind`. Callers switch on `error.kind` instead of catching
a hierarchy of exception classes:

```python
try:
    session = await service.refresh(token)
except AuthError as e:
    if e.kind is AuthErrorKind.TOKEN_EXPIRED:
        ...  # ask the user to sign in again
```

## HTTP mapping

| Kind                   | Status |
|------------------------|--------|
| INVALID_CREDENTIAL     | 401    |
| PROFILE_INCOMPLETE     | 401    |
| UPSTREAM_UNAVAILABLE   | 503    |
| TOKEN_INVALID          | 401    |
| TOKEN_REVOKED          | 401    |
| TOKEN_EXPIRED          | 401    |
| INTERNAL_ERROR         | 500    |
"""

from __future__ import annotations

from enum import Enum


class AuthErrorKind(str, Enum):
    """Kinds of authentication failure."""

    INVALID_CREDENTIAL = "invalid_credential"  # Provider rejected the token/code
    PROFILE_INCOMPLETE = "profile_incomplete"  # Verified, but no usable id/email
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"  # Network/timeout talking to a provider
    TOKEN_INVALID = "token_invalid"
    TOKEN_REVOKED = "token_revoked"
    TOKEN_EXPIRED = "token_expired"
    INTERNAL_ERROR = "internal_error"


_STATUS_CODES = {
    AuthErrorKind.INVALID_CREDENTIAL: 401,
    AuthErrorKind.PROFILE_INCOMPLETE: 401,
    AuthErrorKind.UPSTREAM_UNAVAILABLE: 503,
    AuthErrorKind.TOKEN_INVALID: 401,
    AuthErrorKind.TOKEN_REVOKED: 401,
    AuthErrorKind.TOKEN_EXPIRED: 401,
    AuthErrorKind.INTERNAL_ERROR: 500,
}

_PUBLIC_MESSAGES = {
    AuthErrorKind.INVALID_CREDENTIAL: "Invalid credentials",
    AuthErrorKind.PROFILE_INCOMPLETE: "Identity provider returned an incomplete profile",
    AuthErrorKind.UPSTREAM_UNAVAILABLE: "Identity provider unavailable, try again later",
    AuthErrorKind.TOKEN_INVALID: "Invalid token",
    AuthErrorKind.TOKEN_REVOKED: "Token has been revoked",
    AuthErrorKind.TOKEN_EXPIRED: "Token expired",
    AuthErrorKind.INTERNAL_ERROR: "An unexpected error occurred",
}


class AuthError(Exception):
    """An authentication failure of a specific kind.

    Attributes:
        kind: What went wrong
        message: Internal diagnostic message (may be logged, never returned
            to clients for INTERNAL_ERROR)
        provider: Identity provider involved, if any
        user_id: Local user id, if known
    """

    def __init__(
        self,
        kind: AuthErrorKind,
        message: str | None = None,
        provider: str | None = None,
        user_id: str | None = None,
    ):
        self.kind = kind
        self.message = message or _PUBLIC_MESSAGES[kind]
        self.provider = provider
        self.user_id = user_id
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        """HTTP status code the API layer should return."""
        return _STATUS_CODES[self.kind]

    @property
    def public_message(self) -> str:
        """Message that is safe to show to clients."""
        return _PUBLIC_MESSAGES[self.kind]

    def __repr__(self) -> str:
        return f"<AuthError {self.kind.value}: {self.message}>"


class DuplicateKeyError(Exception):
    """Raised by storage when an insert violates a unique constraint."""


def mask_token(token: str | None, visible: int = 6) -> str:
    """Return a log-safe prefix of a secret token."""
    if not token:
        return "<empty>"
    if len(token) <= visible:
        return "*" * len(token)
    return f"{token[:visible]}..."
