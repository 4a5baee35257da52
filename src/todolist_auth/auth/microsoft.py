"""Microsoft sign-in.

Implements the back half of the OAuth 2.0 authorization code flow against
the Microsoft identity platform. The frontend obtains a one-time code; the
backend exchanges it for an access token and reads the user's profile from
Microsoft Graph.

## OAuth Endpoints

- Token: https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token
- Profile: https://graph.microsoft.com/v1.0/me

## Redirect URI

The `redirect_uri` sent with the code exchange must match, character for
character, the one the frontend used when requesting the code. It is fixed
by configuration (MICROSOFT_REDIRECT_URI), never taken from the request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx

from todolist_auth.config import get_settings
from todolist_auth.database.models import Provider
from todolist_auth.errors import AuthError, AuthErrorKind, mask_token
from todolist_auth.models.session import IdentityClaim

logger = logging.getLogger(__name__)

PROVIDER = Provider.MICROSOFT.value

MICROSOFT_TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
MICROSOFT_PROFILE_URL = "https://graph.microsoft.com/v1.0/me"


@dataclass
class MicrosoftTokens:
    """Token response from the Microsoft identity platform."""

    access_token: str
    token_type: str
    expires_in: int | None
    scope: str


@dataclass
class MicrosoftUserProfile:
    """Subset of the Graph /me resource we use."""

    id: str | None
    display_name: str | None
    mail: str | None
    user_principal_name: str | None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> MicrosoftUserProfile:
        """Create from Microsoft Graph response."""
        return cls(
            id=data.get("id"),
            display_name=data.get("displayName"),
            mail=data.get("mail"),
            user_principal_name=data.get("userPrincipalName"),
        )


class MicrosoftOAuth:
    """Microsoft OAuth 2.0 client.

    Example:
        ```python
        oauth = MicrosoftOAuth(
            tenant_id="common",
            client_id="...",
            client_secret="...",
            redirect_uri="http://localhost:5173/login",
        )

        tokens = await oauth.exchange_code(code)
        profile = await oauth.get_user_profile(tokens.access_token)

        # or both steps at once
        claim = await oauth.verify(code)
        ```
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Microsoft OAuth client.

        Args:
            tenant_id: Directory (tenant) id, or "common"
            client_id: Application (client) id
            client_secret: Client secret
            redirect_uri: The pre-registered redirect URI used by the frontend
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject a mock here)
        """
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._transport = transport

        if not self.client_id or not self.client_secret:
            logger.warning(
                "Microsoft sign-in not configured. Set MICROSOFT_CLIENT_ID and "
                "MICROSOFT_CLIENT_SECRET environment variables."
            )

    @property
    def is_configured(self) -> bool:
        """Check if Microsoft sign-in is properly configured."""
        return bool(self.client_id and self.client_secret)

    @property
    def token_url(self) -> str:
        return MICROSOFT_TOKEN_URL.format(tenant=self.tenant_id)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def exchange_code(self, code: str) -> MicrosoftTokens:
        """Exchange authorization code for an access token.

        Args:
            code: Authorization code from the frontend

        Returns:
            MicrosoftTokens with the Graph access token

        Raises:
            AuthError: INVALID_CREDENTIAL on a non-success response,
                UPSTREAM_UNAVAILABLE on network failure or timeout
        """
        if not self.is_configured:
            raise AuthError(
                AuthErrorKind.INVALID_CREDENTIAL,
                "Microsoft sign-in not configured",
                provider=PROVIDER,
            )
        if not code:
            raise AuthError(
                AuthErrorKind.INVALID_CREDENTIAL, "Empty authorization code", provider=PROVIDER
            )

        logger.info(f"Exchanging Microsoft code with redirect_uri: {self.redirect_uri}")

        try:
            async with self._client() as client:
                response = await client.post(
                    self.token_url,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "code": code,
                        "redirect_uri": self.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                )
        except httpx.TransportError as e:
            logger.error(f"Microsoft token endpoint unreachable: {e!r}")
            raise AuthError(
                AuthErrorKind.UPSTREAM_UNAVAILABLE,
                "Microsoft token endpoint unreachable",
                provider=PROVIDER,
            ) from e

        if not response.is_success:
            logger.error(
                f"Microsoft token exchange failed with status "
                f"{response.status_code}: {response.text}"
            )
            raise AuthError(
                AuthErrorKind.INVALID_CREDENTIAL,
                f"Token exchange failed: {response.status_code}",
                provider=PROVIDER,
            )

        data = self._json(response)
        access_token = data.get("access_token")
        if not access_token:
            logger.error("Microsoft token response has no access_token")
            raise AuthError(
                AuthErrorKind.INVALID_CREDENTIAL,
                "Token response has no access_token",
                provider=PROVIDER,
            )

        return MicrosoftTokens(
            access_token=access_token,
            token_type=data.get("token_type", "Bearer"),
            expires_in=data.get("expires_in"),
            scope=data.get("scope", ""),
        )

    async def get_user_profile(self, access_token: str) -> MicrosoftUserProfile:
        """Get the signed-in user's profile from Microsoft Graph.

        Raises:
            AuthError: INVALID_CREDENTIAL on a non-success response,
                UPSTREAM_UNAVAILABLE on network failure or timeout
        """
        if not access_token:
            raise AuthError(
                AuthErrorKind.INVALID_CREDENTIAL, "Empty Graph access token", provider=PROVIDER
            )

        logger.info(f"Fetching Microsoft Graph profile with token: {mask_token(access_token)}")

        try:
            async with self._client() as client:
                response = await client.get(
                    MICROSOFT_PROFILE_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.TransportError as e:
            logger.error(f"Microsoft Graph unreachable: {e!r}")
            raise AuthError(
                AuthErrorKind.UPSTREAM_UNAVAILABLE,
                "Microsoft Graph unreachable",
                provider=PROVIDER,
            ) from e

        if not response.is_success:
            logger.error(
                f"Microsoft Graph request failed with status "
                f"{response.status_code}: {response.text}"
            )
            raise AuthError(
                AuthErrorKind.INVALID_CREDENTIAL,
                f"Profile request failed: {response.status_code}",
                provider=PROVIDER,
            )

        return MicrosoftUserProfile.from_api(self._json(response))

    async def verify(self, code: str) -> IdentityClaim:
        """Exchange the code and turn the Graph profile into an identity claim.

        Raises:
            AuthError: as for `exchange_code` and `get_user_profile`, plus
                PROFILE_INCOMPLETE if the profile has no id or no email
        """
        tokens = await self.exchange_code(code)
        profile = await self.get_user_profile(tokens.access_token)

        email = profile.mail or profile.user_principal_name
        if not profile.id or not email:
            logger.warning(
                f"Microsoft profile incomplete (id present: {bool(profile.id)}, "
                f"email present: {bool(email)})"
            )
            raise AuthError(
                AuthErrorKind.PROFILE_INCOMPLETE,
                "Microsoft profile is missing id or email/principal name",
                provider=PROVIDER,
            )

        return IdentityClaim(
            provider=PROVIDER,
            provider_user_id=profile.id,
            email=email,
            display_name=profile.display_name or email,
            avatar_url=None,  # Graph serves photos from a separate endpoint
        )

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise AuthError(
                AuthErrorKind.INVALID_CREDENTIAL,
                "Provider returned a non-JSON body",
                provider=PROVIDER,
            ) from e
        if not isinstance(data, dict):
            raise AuthError(
                AuthErrorKind.INVALID_CREDENTIAL,
                "Provider returned an unexpected body",
                provider=PROVIDER,
            )
        return data


@lru_cache
def get_microsoft_oauth() -> MicrosoftOAuth:
    """Get cached Microsoft OAuth client built from settings."""
    settings = get_settings()
    return MicrosoftOAuth(
        tenant_id=settings.microsoft_tenant_id,
        client_id=settings.microsoft_client_id,
        client_secret=settings.microsoft_client_secret,
        redirect_uri=settings.microsoft_redirect_uri,
        timeout=settings.provider_timeout_seconds,
    )
