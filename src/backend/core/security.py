"""
Security utilities for JWT token generation and validation.

The API only consumes bearer tokens; `create_access_token` exists for
tooling, seeding scripts and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from core.config import settings
from db import User


class SecurityError(Exception):
    """Base exception for security-related errors."""

    pass


class TokenExpiredError(SecurityError):
    """Raised when a token has expired."""

    pass


class TokenInvalidError(SecurityError):
    """Raised when a token is invalid."""

    pass


def _secret_key() -> str:
    if not settings.security.secret_key:
        raise SecurityError("SECURITY_SECRET_KEY is not configured")
    return settings.security.secret_key


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token for the given user.

    Args:
        user: User object for token payload
        expires_delta: Custom expiration time delta
            (default: SECURITY_ACCESS_TOKEN_EXPIRE_MINUTES)

    Returns:
        JWT access token string

    Raises:
        SecurityError: If token creation fails
    """
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta
        or timedelta(minutes=settings.security.access_token_expire_minutes)
    )

    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value if hasattr(user.role, "value") else user.role,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
        "jti": str(uuid4()),
        "iss": settings.security.jwt_issuer,
        "aud": settings.security.jwt_audience,
    }

    try:
        return jwt.encode(payload, _secret_key(), algorithm=settings.security.algorithm)
    except SecurityError:
        raise
    except Exception as e:
        raise SecurityError(f"Failed to create access token: {str(e)}")


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload

    Raises:
        TokenExpiredError: If token has expired
        TokenInvalidError: If token is invalid
        SecurityError: For other security issues
    """
    try:
        return jwt.decode(
            token,
            _secret_key(),
            algorithms=[settings.security.algorithm],
            audience=settings.security.jwt_audience,
            issuer=settings.security.jwt_issuer,
        )
    except ExpiredSignatureError:
        raise TokenExpiredError("Token has expired")
    except InvalidTokenError as e:
        raise TokenInvalidError(f"Invalid token: {str(e)}")


def get_user_id_from_token(payload: Dict[str, Any]) -> UUID:
    """Extract the user ID from a token payload.

    Raises:
        TokenInvalidError: If the subject is missing or not a UUID
    """
    sub = payload.get("sub")
    if not sub:
        raise TokenInvalidError("User ID missing from token")

    try:
        return UUID(str(sub))
    except ValueError:
        raise TokenInvalidError("User ID in token is not a valid UUID")
