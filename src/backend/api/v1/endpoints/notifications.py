"""
Notification Endpoints

Clients poll GET /notifications and acknowledge each event with
POST /notifications/{id}/read.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.notification import NotificationList, NotificationRead
from core.config import settings
from core.database import get_session
from core.dependencies import get_current_actor
from core.schema_base import SuccessResponse
from services.intervention_lifecycle import Actor
from services.notification_service import NotificationService

router = APIRouter()


@router.get("/notifications", response_model=SuccessResponse[NotificationList])
async def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    limit: Optional[int] = Query(None, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """
    Notifications of the current user, newest first.

    - **unreadOnly**: Only return notifications not yet read
    """
    notifications = await NotificationService.list_for_user(
        db,
        actor.user_id,
        unread_only=unread_only,
        limit=limit or settings.notification.default_page_size,
        offset=offset,
    )
    unread = await NotificationService.count_unread(db, actor.user_id)
    return SuccessResponse(
        data=NotificationList(
            notifications=[NotificationRead.model_validate(n) for n in notifications],
            unread_count=unread,
        )
    )


@router.post("/notifications/{notification_id}/read", response_model=SuccessResponse[NotificationRead])
async def mark_notification_read(
    notification_id: UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    notification = await NotificationService.mark_read(db, actor, notification_id)
    return SuccessResponse(data=NotificationRead.model_validate(notification))
