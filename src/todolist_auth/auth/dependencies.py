"""FastAPI dependencies for authentication.

These dependencies are used by the TodoList API's route handlers to require
a valid access token and to obtain a ready-to-use `SessionService`.

## Usage

```python
from fastapi import Depends
from todolist_auth.auth.dependencies import get_current_user_id, get_session_service

@app.get("/api/todos")
async def list_todos(user_id: str = Depends(get_current_user_id)):
    return await todo_service.get_all(user_id)

@app.post("/api/auth/refresh")
async def refresh(body: RefreshRequest, service: SessionService = Depends(get_session_service)):
    try:
        return (await service.refresh(body.refresh_token)).to_response()
    except AuthError as e:
        raise auth_error_to_http(e)
```
"""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from todolist_auth.auth.service import SessionService
from todolist_auth.auth.tokens import AccessTokenClaims, TokenIssuer
from todolist_auth.auth.verifier import CredentialVerifier, get_credential_verifier
from todolist_auth.config import get_settings
from todolist_auth.database.connection import get_db_session
from todolist_auth.errors import AuthError, AuthErrorKind

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache
def get_token_issuer() -> TokenIssuer:
    """Get the process-wide token issuer (signing key loaded once)."""
    return TokenIssuer.from_settings(get_settings())


def auth_error_to_http(error: AuthError) -> HTTPException:
    """Translate an AuthError into the HTTP response the client should see.

    Internal details never leave the process: clients only get the public
    message for the error kind.
    """
    headers = None
    if error.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}

    if error.kind is AuthErrorKind.INTERNAL_ERROR:
        logger.error(f"Internal authentication error: {error.message}")

    return HTTPException(
        status_code=error.status_code,
        detail={"error": error.kind.value, "message": error.public_message},
        headers=headers,
    )


async def get_current_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> AccessTokenClaims:
    """Verify the bearer access token on the request.

    Raises 401 if the header is missing or the token is invalid or expired.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return issuer.decode_access_token(credentials.credentials)
    except AuthError as e:
        raise auth_error_to_http(e) from e


async def get_current_user_id(
    claims: AccessTokenClaims = Depends(get_current_claims),
) -> str:
    """Get just the user ID from the access token, without a database lookup.

    Todos and categories are scoped by this id.
    """
    return claims.user_id


async def get_session_service(
    db: AsyncSession = Depends(get_db_session),
    verifier: CredentialVerifier = Depends(get_credential_verifier),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> SessionService:
    """Session service bound to the request's database session."""
    return SessionService(db, verifier=verifier, issuer=issuer, settings=get_settings())
