"""
Notification schemas for API serialization.
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from core.schema_base import HTTPSchemaModel


class NotificationRead(HTTPSchemaModel):
    """Notification event for API responses."""
    id: UUID
    event_type: str
    intervention_id: Optional[UUID] = None
    message: str
    payload: dict = Field(default_factory=dict)
    created_at: datetime
    read_at: Optional[datetime] = None


class NotificationList(HTTPSchemaModel):
    notifications: List[NotificationRead] = Field(default_factory=list)
    unread_count: int = 0
