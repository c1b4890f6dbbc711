"""Identity boundary: decode the sign-in token the front end forwards.

The identity provider is authoritative for who the caller is.  Its stable
account id (``sub``) becomes the ledger primary key without any further
validation; ``email`` and ``name`` are profile data for provisioning.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, status
from jose import JWTError, jwt

from imagestudio.config import settings

_ALGORITHMS = ["HS256"]


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str | None = None
    display_name: str | None = None


def verify_identity_token(token: str) -> Identity:
    """Decode and validate an identity token.

    Raises:
        HTTPException(401) if the token is invalid, expired, or has no subject.
    """
    try:
        payload = jwt.decode(token, settings.IDENTITY_TOKEN_SECRET, algorithms=_ALGORITHMS)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
        )

    return Identity(
        user_id=str(subject),
        email=payload.get("email"),
        display_name=payload.get("name"),
    )
