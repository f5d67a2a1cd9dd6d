"""
API dependencies for FastAPI dependency injection.

Provides database sessions, the booking lifecycle, and bearer-token
authentication.
"""
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt.exceptions import InvalidTokenError
from sqlalchemy.orm import Session

from counselbook.lib.db import get_db as get_db_session
from counselbook.lib.errors import ForbiddenException, UnauthorizedException
from counselbook.lib.jwt import Principal, get_principal_from_token
from counselbook.lib.logging import get_logger
from counselbook.services.booking_lifecycle import BookingLifecycle, get_booking_lifecycle

logger = get_logger(__name__)


# Re-export get_db for convenience
get_db = get_db_session


# HTTP Bearer token security scheme; missing headers are reported as 401 below
security = HTTPBearer(auto_error=False)


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """
    Dependency to get the authenticated caller from the JWT bearer token.

    Args:
        credentials: Bearer token from Authorization header

    Returns:
        Principal with user id, email and roles

    Raises:
        UnauthorizedException: 401 if the token is missing or invalid
    """
    if credentials is None:
        raise UnauthorizedException("Missing bearer token")

    try:
        return get_principal_from_token(credentials.credentials)
    except InvalidTokenError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise UnauthorizedException("Invalid authentication token")


def get_optional_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Principal]:
    """
    Dependency to get the caller if authenticated, None otherwise.

    Useful for endpoints that work with or without authentication. An
    invalid token is treated the same as no token.
    """
    if credentials is None:
        return None

    try:
        return get_principal_from_token(credentials.credentials)
    except InvalidTokenError:
        return None


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """
    Dependency that only admits callers holding the ADMIN role.

    Raises:
        ForbiddenException: 403 for authenticated non-admins
    """
    if not principal.is_admin:
        raise ForbiddenException("Admin role required")
    return principal


def get_lifecycle(db: Session = Depends(get_db)) -> BookingLifecycle:
    """Dependency providing a BookingLifecycle bound to the request session."""
    return get_booking_lifecycle(db)
