"""
Identity context and JWT token handling.

Accounts live in an external identity service; this module only issues and
decodes the bearer tokens that carry the caller's agency and role.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from jose import JWTError, jwt
from pydantic import BaseModel

from ..config import settings


class ActorRole(str, enum.Enum):
    """Roles known to the booking engine."""
    ADMIN = "ADMIN"
    AGENT = "AGENT"
    SYSTEM = "SYSTEM"


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation."""
    user_id: Optional[UUID]
    role: ActorRole
    agency_id: Optional[UUID] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def label(self) -> str:
        """Value recorded in the audit trail."""
        if self.role == ActorRole.SYSTEM:
            return "system"
        return str(self.user_id)


SYSTEM_ACTOR = Actor(user_id=None, role=ActorRole.SYSTEM)


class TokenData(BaseModel):
    """Token data model for JWT payload."""
    user_id: Optional[str] = None
    agency_id: Optional[str] = None
    role: Optional[str] = None


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        data: The claims to encode (``sub``, ``agency_id``, ``role``)
        expires_delta: Optional custom expiration time

    Returns:
        The encoded JWT token
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({"exp": expire})
    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def verify_token(token: str) -> Optional[TokenData]:
    """
    Verify and decode a JWT token.

    Returns:
        TokenData if token is valid, None otherwise
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None

    user_id = payload.get("sub")
    if user_id is None:
        return None

    return TokenData(
        user_id=user_id,
        agency_id=payload.get("agency_id"),
        role=payload.get("role"),
    )


def actor_from_token(token_data: TokenData) -> Optional[Actor]:
    """Build an Actor from decoded claims, or None if the claims are unusable."""
    try:
        role = ActorRole(token_data.role or ActorRole.AGENT.value)
        user_id = UUID(token_data.user_id)
        agency_id = UUID(token_data.agency_id) if token_data.agency_id else None
    except (ValueError, TypeError):
        return None

    # Tokens never grant the internal system role
    if role == ActorRole.SYSTEM:
        return None

    return Actor(user_id=user_id, role=role, agency_id=agency_id)
