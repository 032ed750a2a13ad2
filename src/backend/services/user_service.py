"""
User service: identity lookups for guards and profile updates.

Profiles resolved for authentication are cached in the process-wide
ProfileCache. Destructive actions call `verify_actor`, which always reads
the users table.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.cache import profile_cache
from core.decorators import (
    log_database_operation,
    transactional_database_operation,
)
from core.exceptions import (
    ForbiddenError,
    NotFoundError,
    UnauthenticatedError,
    ValidationFailedError,
)
from db import User, UserRole
from services.intervention_lifecycle import Actor

logger = logging.getLogger(__name__)

USER_CACHE = "user"

UPDATABLE_FIELDS = {"full_name", "role", "team_id", "phone", "is_active"}


def actor_from_user(user: User) -> Actor:
    return Actor(user_id=user.id, role=UserRole(user.role), team_id=user.team_id)


class UserService:
    """Service for reading and updating users."""

    @staticmethod
    @log_database_operation("user retrieval", level="debug")
    async def get_user(db: AsyncSession, user_id: UUID, fresh: bool = False) -> Optional[User]:
        """
        Get a user by ID.

        Args:
            db: Database session
            user_id: User ID
            fresh: Bypass the session identity map and re-read the row

        Returns:
            User or None
        """
        stmt = select(User).where(User.id == user_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def resolve_actor(db: AsyncSession, user_id: UUID) -> Actor:
        """
        Resolve the authenticated actor, using the profile cache when warm.

        Raises:
            UnauthenticatedError: Unknown or inactive user
        """
        cached = profile_cache.get(USER_CACHE, user_id)
        if cached is not None:
            return cached

        user = await UserService.get_user(db, user_id)
        if user is None:
            raise UnauthenticatedError("User not found")
        if not user.is_active:
            raise UnauthenticatedError("User account is inactive")

        actor = actor_from_user(user)
        profile_cache.set(USER_CACHE, user_id, actor)
        return actor

    @staticmethod
    async def verify_actor(db: AsyncSession, actor: Actor) -> Actor:
        """
        Re-read the actor from the database.

        Returns the fresh actor; a changed profile also evicts the cache entry.

        Raises:
            ForbiddenError: The user no longer exists or was deactivated
        """
        user = await UserService.get_user(db, actor.user_id, fresh=True)
        if user is None or not user.is_active:
            profile_cache.invalidate(USER_CACHE, actor.user_id)
            raise ForbiddenError("User is no longer allowed to act")

        fresh_actor = actor_from_user(user)
        if fresh_actor != actor:
            logger.info(
                f"Cached profile was stale | User ID: {actor.user_id} | "
                f"Cached role: {actor.role.value} | Current role: {fresh_actor.role.value}"
            )
            profile_cache.invalidate(USER_CACHE, actor.user_id)
        return fresh_actor

    @staticmethod
    @log_database_operation("user listing", level="debug")
    async def list_team_managers(db: AsyncSession, team_id: UUID) -> List[User]:
        """Active managers of a team."""
        result = await db.execute(
            select(User).where(
                User.team_id == team_id,
                User.role == UserRole.MANAGER,
                User.is_active.is_(True),
            )
        )
        return list(result.scalars().all())

    @staticmethod
    @transactional_database_operation("update_user")
    @log_database_operation("user update", level="info")
    async def update_user(db: AsyncSession, user_id: UUID, changes: Dict[str, Any]) -> User:
        """
        Update a user profile and evict its cached snapshot.

        Args:
            db: Database session
            user_id: User ID
            changes: Field name -> new value (full_name, role, team_id, phone, is_active)

        Returns:
            Updated user

        Raises:
            NotFoundError: Unknown user
            ValidationFailedError: Unknown field in changes
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationFailedError(
                f"Cannot update fields: {', '.join(sorted(unknown))}"
            )

        user = await UserService.get_user(db, user_id)
        if user is None:
            raise NotFoundError("User", user_id)

        for key, value in changes.items():
            setattr(user, key, value)
        await db.flush()

        profile_cache.invalidate(USER_CACHE, user_id)
        return user
