"""
In-app notification persistence.

NotificationEvent rows are the only delivery channel: clients poll
GET /notifications and acknowledge with POST /notifications/{id}/read.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.decorators import (
    log_database_operation,
    safe_database_query,
    transactional_database_operation,
)
from core.exceptions import ForbiddenError, NotFoundError
from db import NotificationEvent, utc_now
from services.intervention_lifecycle import Actor

logger = logging.getLogger(__name__)


class NotificationService:
    """Notification events: create, list, mark read."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        user_id: UUID,
        event_type: str,
        message: str,
        intervention_id: Optional[UUID] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> NotificationEvent:
        """
        Stage a notification event and flush it.

        The caller owns the transaction.

        Args:
            db: Database session
            user_id: Target user UUID
            event_type: Type of notification (usually the lifecycle action)
            message: Human readable text
            intervention_id: Related intervention
            payload: Event-specific data

        Returns:
            Created NotificationEvent
        """
        notification = NotificationEvent(
            user_id=user_id,
            event_type=event_type,
            message=message[:500],
            intervention_id=intervention_id,
            payload=payload or {},
        )
        db.add(notification)
        await db.flush()

        logger.debug(
            f"[NOTIFICATION] Created {event_type} for user {user_id}, "
            f"intervention_id={intervention_id}, notification_id={notification.id}"
        )
        return notification

    @staticmethod
    @log_database_operation("notification listing", level="debug")
    async def list_for_user(
        db: AsyncSession,
        user_id: UUID,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> List[NotificationEvent]:
        """Most recent notifications of a user first."""
        conditions = [NotificationEvent.user_id == user_id]
        if unread_only:
            conditions.append(NotificationEvent.read_at.is_(None))

        stmt = (
            select(NotificationEvent)
            .where(and_(*conditions))
            .order_by(NotificationEvent.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    @safe_database_query("count_unread_notifications", default_return=0)
    async def count_unread(db: AsyncSession, user_id: UUID) -> int:
        """Unread badge count; a database error degrades to 0."""
        result = await db.execute(
            select(func.count(NotificationEvent.id)).where(
                NotificationEvent.user_id == user_id,
                NotificationEvent.read_at.is_(None),
            )
        )
        return result.scalar_one()

    @staticmethod
    @transactional_database_operation("mark_notification_read")
    async def mark_read(
        db: AsyncSession, actor: Actor, notification_id: UUID
    ) -> NotificationEvent:
        """
        Mark one notification as read. Reading twice keeps the first timestamp.

        Raises:
            NotFoundError: Unknown notification
            ForbiddenError: Notification belongs to another user
        """
        notification = await db.get(NotificationEvent, notification_id)
        if notification is None:
            raise NotFoundError("Notification", notification_id)
        if notification.user_id != actor.user_id:
            raise ForbiddenError("Notification belongs to another user")

        if notification.read_at is None:
            notification.read_at = utc_now()
            await db.flush()
        return notification
