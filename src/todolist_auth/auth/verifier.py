"""Credential verification across identity providers."""

from __future__ import annotations

from todolist_auth.auth.google import GoogleIdTokenVerifier, get_google_verifier
from todolist_auth.auth.microsoft import MicrosoftOAuth, get_microsoft_oauth
from todolist_auth.models.session import IdentityClaim


class CredentialVerifier:
    """Turns provider-issued artifacts into normalized identity claims.

    Read-only: makes network calls to the providers, never touches storage.
    """

    def __init__(self, google: GoogleIdTokenVerifier, microsoft: MicrosoftOAuth):
        self.google = google
        self.microsoft = microsoft

    async def verify_google(self, id_token: str) -> IdentityClaim:
        return await self.google.verify(id_token)

    async def verify_microsoft(self, authorization_code: str) -> IdentityClaim:
        return await self.microsoft.verify(authorization_code)


def get_credential_verifier() -> CredentialVerifier:
    """Verifier wired to the cached, settings-configured provider clients."""
    return CredentialVerifier(google=get_google_verifier(), microsoft=get_microsoft_oauth())
