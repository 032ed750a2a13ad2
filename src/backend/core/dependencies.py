"""
Authentication dependencies for FastAPI.

Every intervention route runs as an authenticated Actor resolved from the
bearer token. Authorization itself is decided by the workflow services.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_session
from core.exceptions import UnauthenticatedError
from core.security import SecurityError, decode_token, get_user_id_from_token
from services.intervention_lifecycle import Actor
from services.user_service import UserService

# auto_error=False so a missing header goes through the 401 envelope instead of
# FastAPI's default 403
security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_session),
) -> Actor:
    """Get the authenticated actor from the JWT bearer token.

    Args:
        credentials: HTTP Bearer credentials containing the JWT token
        db: Database session

    Returns:
        Actor with the caller's id, role and team

    Raises:
        UnauthenticatedError: Missing, invalid or expired token, or unknown user
    """
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("Authentication required")

    try:
        payload = decode_token(credentials.credentials)
        user_id = get_user_id_from_token(payload)
    except SecurityError as e:
        raise UnauthenticatedError(str(e))

    return await UserService.resolve_actor(db, user_id)
