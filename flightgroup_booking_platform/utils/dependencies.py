"""
FastAPI dependencies for authentication and authorization.
"""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..utils.auth import Actor, actor_from_token, verify_token


# HTTP Bearer token scheme; a missing header is answered with 401 below
security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Actor:
    """
    Resolve the calling actor from the bearer token.

    Raises:
        HTTPException: If the token is invalid or carries unusable claims
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    token_data = verify_token(credentials.credentials)
    if token_data is None:
        raise credentials_exception

    actor = actor_from_token(token_data)
    if actor is None:
        raise credentials_exception

    return actor


async def get_current_admin(
    actor: Actor = Depends(get_current_actor)
) -> Actor:
    """Require an admin actor."""
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions"
        )
    return actor
