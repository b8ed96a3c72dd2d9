"""Authentication module using bearer JWTs.

Tokens are issued by the account service and signed with the shared
``jwt_secret``. This module verifies them and exposes the caller to the API:

1. Token verification and claim parsing
2. FastAPI dependencies for authenticated and admin-only routes
3. ``issue_token`` for scripts and tests that need a valid token
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict
from uuid import UUID

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from config import settings_conf

# Configure logging
logger = logging.getLogger(__name__)

# Constants
JWT_SECRET = settings_conf['jwt_secret']
JWT_ALGORITHM = settings_conf['jwt_algorithm']
TOKEN_EXPIRY_HOURS = 24


class AuthError(Exception):
    """Base exception for authentication errors."""
    pass


class TokenExpiredError(AuthError):
    """Raised when a token has expired."""
    pass


class InvalidTokenError(AuthError):
    """Raised when a token is malformed, badly signed or missing claims."""
    pass


class CurrentUser(BaseModel):
    """The authenticated caller."""
    id: UUID
    email: str
    username: str
    is_admin: bool = False


def issue_token(
    user_id: UUID,
    email: str,
    username: str,
    is_admin: bool = False,
    expires_in: timedelta = timedelta(hours=TOKEN_EXPIRY_HOURS)
) -> str:
    """Sign an access token carrying the caller's identity claims."""
    claims = {
        'sub': str(user_id),
        'email': email,
        'username': username,
        'is_admin': is_admin,
        'exp': datetime.now(timezone.utc) + expires_in
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> CurrentUser:
    """Verify a token and build the current user from its claims.

    Raises:
        TokenExpiredError: If the token has expired
        InvalidTokenError: If the token is invalid
    """
    try:
        claims: Dict[str, Any] = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise TokenExpiredError("Token has expired")
    except JWTError as e:
        raise InvalidTokenError(f"Invalid token: {e}")

    try:
        return CurrentUser(
            id=UUID(claims['sub']),
            email=claims['email'],
            username=claims['username'],
            is_admin=bool(claims.get('is_admin', False))
        )
    except (KeyError, ValueError, TypeError) as e:
        raise InvalidTokenError(f"Invalid token claims: {e}")


# FastAPI security scheme
auth_scheme = HTTPBearer(
    auto_error=True,  # Return 401 automatically if token is missing
    description="JWT Bearer token required"
)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(auth_scheme)
) -> CurrentUser:
    """FastAPI dependency for getting the authenticated user.

    Raises:
        HTTPException: If authentication fails
    """
    try:
        return verify_token(credentials.credentials)
    except TokenExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired"
        )
    except AuthError as e:
        logger.warning(f"Rejected token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token"
        )


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """FastAPI dependency for admin-only routes."""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user


# Export public interface
__all__ = [
    'CurrentUser',
    'issue_token',
    'verify_token',
    'get_current_user',
    'require_admin',
    'AuthError',
    'TokenExpiredError',
    'InvalidTokenError'
]
