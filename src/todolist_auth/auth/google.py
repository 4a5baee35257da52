"""Google sign-in.

The frontend runs Google Identity Services and posts the resulting ID token
to the backend. We verify it locally with google-auth:

- Signature against Google's published certificates
- Audience equals our GOOGLE_CLIENT_ID
- Issuer is accounts.google.com
- Token is not expired

## Required Setup

1. Create OAuth 2.0 credentials (Web application) in Google Cloud Console
2. Add the frontend origin to authorized JavaScript origins
3. Set GOOGLE_CLIENT_ID

## Endpoints

- Certificates: https://www.googleapis.com/oauth2/v1/certs (fetched by google-auth)
"""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any

import cachecontrol
import requests
from google.auth import exceptions as google_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from todolist_auth.config import get_settings
from todolist_auth.database.models import Provider
from todolist_auth.errors import AuthError, AuthErrorKind, mask_token
from todolist_auth.models.session import IdentityClaim

logger = logging.getLogger(__name__)

PROVIDER = Provider.GOOGLE.value


class GoogleIdTokenVerifier:
    """Verifies Google ID tokens and extracts the user's identity.

    Example:
        ```python
        verifier = GoogleIdTokenVerifier(client_id="...apps.googleusercontent.com")
        claim = await verifier.verify(id_token_from_frontend)
        ```
    """

    def __init__(self, client_id: str | None, timeout: float = 15.0):
        """Initialize the verifier.

        Args:
            client_id: Google OAuth client ID (expected audience)
            timeout: Upper bound in seconds for verification including
                certificate discovery
        """
        self.client_id = client_id
        self.timeout = timeout
        # Certificates are cached for as long as their Cache-Control allows
        self._request = google_requests.Request(
            session=cachecontrol.CacheControl(requests.Session())
        )

        if not self.client_id:
            logger.warning(
                "Google sign-in not configured. Set GOOGLE_CLIENT_ID environment variable."
            )

    @property
    def is_configured(self) -> bool:
        """Check if Google sign-in is properly configured."""
        return bool(self.client_id)

    async def verify(self, token: str) -> IdentityClaim:
        """Verify an ID token and return the identity it asserts.

        Args:
            token: Google ID token (JWT) from the client

        Returns:
            IdentityClaim for provider "Google"

        Raises:
            AuthError: INVALID_CREDENTIAL if Google rejects the token,
                UPSTREAM_UNAVAILABLE if certificates cannot be fetched in time,
                PROFILE_INCOMPLETE if the token has no subject or email
        """
        if not self.is_configured:
            raise AuthError(
                AuthErrorKind.INVALID_CREDENTIAL,
                "Google sign-in not configured",
                provider=PROVIDER,
            )
        if not token:
            raise AuthError(
                AuthErrorKind.INVALID_CREDENTIAL, "Empty ID token", provider=PROVIDER
            )

        try:
            payload = await asyncio.wait_for(
                asyncio.to_thread(
                    id_token.verify_oauth2_token,
                    token,
                    self._request,
                    self.client_id,
                ),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, google_exceptions.TransportError) as e:
            logger.error(f"Google certificate discovery failed: {e!r}")
            raise AuthError(
                AuthErrorKind.UPSTREAM_UNAVAILABLE,
                "Google unreachable during ID token verification",
                provider=PROVIDER,
            ) from e
        except (ValueError, google_exceptions.GoogleAuthError) as e:
            logger.warning(f"Google ID token rejected ({mask_token(token)}): {e}")
            raise AuthError(
                AuthErrorKind.INVALID_CREDENTIAL,
                f"Invalid Google ID token: {e}",
                provider=PROVIDER,
            ) from e

        return self._to_claim(payload)

    def _to_claim(self, payload: dict[str, Any]) -> IdentityClaim:
        subject = payload.get("sub")
        email = payload.get("email")

        if not subject or not email:
            logger.warning("Verified Google ID token has no subject or email")
            raise AuthError(
                AuthErrorKind.PROFILE_INCOMPLETE,
                "Google ID token is missing sub or email",
                provider=PROVIDER,
            )

        return IdentityClaim(
            provider=PROVIDER,
            provider_user_id=subject,
            email=email,
            display_name=payload.get("name") or email,
            avatar_url=payload.get("picture"),
        )


@lru_cache
def get_google_verifier() -> GoogleIdTokenVerifier:
    """Get cached Google verifier built from settings."""
    settings = get_settings()
    return GoogleIdTokenVerifier(
        client_id=settings.google_client_id,
        timeout=settings.provider_timeout_seconds,
    )
