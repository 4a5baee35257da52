"""Authentication module for the TodoList application.

Provides sign-in with Google and Microsoft and the access/refresh token
lifecycle.

## Flow

1. Frontend obtains a Google ID token or a Microsoft authorization code
2. Backend verifies it with the provider
3. User is created on first sign-in, last login recorded otherwise
4. Backend issues a short-lived access token (JWT) and a refresh token
5. Client exchanges the refresh token for a new pair before the access
   token expires; each refresh token works once

## Security

- Refresh tokens are stored as SHA-256 digests
- Replaying a consumed refresh token revokes all of that user's sessions
- HTTPS required in production
"""

from todolist_auth.auth.directory import UserDirectory
from todolist_auth.auth.google import GoogleIdTokenVerifier, get_google_verifier
from todolist_auth.auth.microsoft import MicrosoftOAuth, get_microsoft_oauth
from todolist_auth.auth.refresh_store import RefreshTokenStore
from todolist_auth.auth.service import SessionService
from todolist_auth.auth.tokens import AccessTokenClaims, IssuedAccessToken, TokenIssuer
from todolist_auth.auth.verifier import CredentialVerifier, get_credential_verifier

__all__ = [
    "AccessTokenClaims",
    "CredentialVerifier",
    "GoogleIdTokenVerifier",
    "IssuedAccessToken",
    "MicrosoftOAuth",
    "RefreshTokenStore",
    "SessionService",
    "TokenIssuer",
    "UserDirectory",
    "get_credential_verifier",
    "get_google_verifier",
    "get_microsoft_oauth",
]
