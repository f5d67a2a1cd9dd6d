"""JWT token validation utilities.

Tokens are issued by the account service and shared with this one through
``JWT_SECRET``. Claims used here: ``sub`` (user id), ``email`` and ``roles``.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from jwt.exceptions import InvalidTokenError

from counselbook.lib.settings import settings


# Token expiration time (24 hours by default)
TOKEN_EXPIRY_HOURS = 24

ADMIN_ROLE = "ADMIN"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller extracted from a bearer token."""
    user_id: str
    email: Optional[str] = None
    roles: List[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    roles: Optional[List[str]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token for a user.

    Issuance normally happens in the account service; this mirrors its claim
    layout for local tooling and tests.

    Example:
        >>> token = create_access_token("user_123", "a@x.com", ["ADMIN"])
    """
    if expires_delta is None:
        expires_delta = timedelta(hours=TOKEN_EXPIRY_HOURS)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "roles": roles or [],
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token.

    Raises:
        InvalidTokenError: If token is invalid, expired, or signature doesn't match
    """
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
    )


def get_principal_from_token(token: str) -> Principal:
    """Verify a token and build the caller principal from its claims.

    Raises:
        InvalidTokenError: If token is invalid or has no subject
    """
    payload = verify_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise InvalidTokenError("Token has no subject")

    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [r.strip() for r in roles.split(",") if r.strip()]

    return Principal(
        user_id=str(user_id),
        email=payload.get("email"),
        roles=list(roles),
    )
