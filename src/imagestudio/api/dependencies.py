"""Shared FastAPI dependencies for authenticated routes."""

from __future__ import annotations

from fastapi import Cookie, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from imagestudio.services.identity import Identity, verify_identity_token

# Optional bearer scheme -- auto_error=False so we can fall back to cookies
_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    id_token: str | None = Cookie(default=None),
) -> Identity:
    """Extract and validate the identity token, then return the caller.

    Token sources (checked in order):
      1. Authorization: Bearer <token> header
      2. ``id_token`` cookie

    Raises HTTPException(401) if no valid token is found.
    """
    token: str | None = None

    if credentials is not None:
        token = credentials.credentials
    elif id_token is not None:
        token = id_token

    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return verify_identity_token(token)
