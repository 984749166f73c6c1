"""Caller identification for the HTTP API.

End users are authenticated upstream by the sign-in gateway, which
forwards the profile id in ``X-User-Id``. Client applications present
a session token as ``Authorization: Bearer <token>``.
"""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from truename.db import create_repository
from truename.db.repository import Repository

logger = logging.getLogger(__name__)

_db: Repository | None = None


def get_db() -> Repository:
    """Get or create the repository instance."""
    global _db
    if _db is None:
        _db = create_repository()
    return _db


def _parse_user_id(x_user_id: str) -> UUID:
    try:
        return UUID(x_user_id)
    except ValueError:
        logger.warning(f"Malformed X-User-Id header: {x_user_id[:36]!r}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user id",
        )


async def get_profile_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> UUID:
    """Signed-in profile id.

    Raises:
        HTTPException: 401 if the header is missing or not a UUID
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return _parse_user_id(x_user_id)


async def get_optional_profile_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> UUID | None:
    """Signed-in profile id, or None for anonymous callers."""
    if not x_user_id:
        return None
    return _parse_user_id(x_user_id)


async def get_bearer_token(
    authorization: Annotated[str | None, Header()] = None,
) -> str | None:
    """Token from an ``Authorization: Bearer`` header, unvalidated.

    Format checks happen in the session issuer so every malformed case
    maps to the same authentication-required error.
    """
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


# Type aliases for dependency injection
Db = Annotated[Repository, Depends(get_db)]
ProfileId = Annotated[UUID, Depends(get_profile_id)]
OptionalProfileId = Annotated[UUID | None, Depends(get_optional_profile_id)]
BearerToken = Annotated[str | None, Depends(get_bearer_token)]
