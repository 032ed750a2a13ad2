"""
Fire-and-forget notification dispatch.

Runs after the triggering transition has been committed. A failure to
notify one recipient is logged and counted, never raised: the transition
already happened.
"""

import logging
from typing import Any, Dict, FrozenSet, Iterable, Optional, Sequence, Set
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.logging_config import InterventionLogger
from core.metrics import notification_failures, notifications_sent
from db import (
    AssignmentRole,
    Intervention,
    InterventionAction,
    InterventionAssignment,
    User,
    UserRole,
)
from services.notification_service import NotificationService

logger = logging.getLogger(__name__)
intervention_logger = InterventionLogger("notifications")

TENANT = "tenant"
PROVIDERS = "providers"
MANAGERS = "managers"

# Who hears about each event, by party
AUDIENCES: Dict[str, FrozenSet[str]] = {
    "create": frozenset({MANAGERS, TENANT}),
    InterventionAction.APPROVE.value: frozenset({TENANT}),
    InterventionAction.REJECT.value: frozenset({TENANT}),
    InterventionAction.REQUEST_QUOTE.value: frozenset({PROVIDERS}),
    InterventionAction.START_PLANNING.value: frozenset({TENANT, PROVIDERS}),
    InterventionAction.CONFIRM_SCHEDULE.value: frozenset({TENANT, PROVIDERS, MANAGERS}),
    InterventionAction.START_WORK.value: frozenset({TENANT, MANAGERS}),
    InterventionAction.COMPLETE_WORK.value: frozenset({TENANT, MANAGERS}),
    InterventionAction.VALIDATE_BY_TENANT.value: frozenset({MANAGERS, PROVIDERS}),
    InterventionAction.FINALIZE_BY_MANAGER.value: frozenset({TENANT, PROVIDERS}),
    InterventionAction.CANCEL.value: frozenset({TENANT, PROVIDERS}),
    "participation_confirmed": frozenset({MANAGERS}),
    "participation_rejected": frozenset({MANAGERS}),
    "confirmation_requested": frozenset(),
    "quote_submitted": frozenset({MANAGERS}),
    "availabilities_submitted": frozenset({MANAGERS}),
    "visit_reminder": frozenset({TENANT, PROVIDERS, MANAGERS}),
}

MESSAGES: Dict[str, str] = {
    "create": "New intervention {reference} was requested",
    InterventionAction.APPROVE.value: "Intervention {reference} was approved",
    InterventionAction.REJECT.value: "Intervention {reference} was rejected",
    InterventionAction.REQUEST_QUOTE.value: "A quote is requested for intervention {reference}",
    InterventionAction.START_PLANNING.value: "Scheduling started for intervention {reference}",
    InterventionAction.CONFIRM_SCHEDULE.value: "Intervention {reference} is scheduled",
    InterventionAction.START_WORK.value: "Work started on intervention {reference}",
    InterventionAction.COMPLETE_WORK.value: "Work on intervention {reference} is complete",
    InterventionAction.VALIDATE_BY_TENANT.value: "The tenant validated intervention {reference}",
    InterventionAction.FINALIZE_BY_MANAGER.value: "Intervention {reference} was closed",
    InterventionAction.CANCEL.value: "Intervention {reference} was cancelled",
    "participation_confirmed": "A participant confirmed the slot of intervention {reference}",
    "participation_rejected": "A participant declined the slot of intervention {reference}",
    "confirmation_requested": "Please confirm your availability for intervention {reference}",
    "quote_submitted": "A quote was submitted for intervention {reference}",
    "quote_accepted": "Your quote for intervention {reference} was accepted",
    "quote_rejected": "Your quote for intervention {reference} was rejected",
    "availabilities_submitted": "A participant updated their availabilities for intervention {reference}",
    "visit_reminder": "Reminder: intervention {reference} is scheduled soon",
}


class NotificationDispatcher:
    """Resolves recipients and persists one event per recipient."""

    @staticmethod
    async def recipients_for(
        db: AsyncSession,
        intervention: Intervention,
        audience: Iterable[str],
    ) -> Set[UUID]:
        audience = set(audience)
        recipients: Set[UUID] = set()

        if TENANT in audience and intervention.tenant_id:
            recipients.add(intervention.tenant_id)

        if PROVIDERS in audience:
            result = await db.execute(
                select(InterventionAssignment.user_id).where(
                    InterventionAssignment.intervention_id == intervention.id,
                    InterventionAssignment.role == AssignmentRole.PROVIDER,
                )
            )
            recipients.update(result.scalars().all())

        if MANAGERS in audience:
            result = await db.execute(
                select(User.id).where(
                    User.team_id == intervention.team_id,
                    User.role == UserRole.MANAGER,
                    User.is_active.is_(True),
                )
            )
            recipients.update(result.scalars().all())

        return recipients

    @staticmethod
    async def notify(
        db: AsyncSession,
        intervention: Intervention,
        event_type: str,
        actor_id: Optional[UUID] = None,
        recipients: Optional[Iterable[UUID]] = None,
        payload: Optional[Dict[str, Any]] = None,
        keep_loaded: Sequence[Any] = (),
    ) -> int:
        """
        Persist one notification per recipient, excluding the actor.

        Args:
            db: Session whose transition work is already committed
            intervention: The intervention concerned
            event_type: Action or collaborator event name
            actor_id: User who triggered the event
            recipients: Explicit recipients; default is the event audience
            payload: Extra event data
            keep_loaded: ORM objects the caller still returns; they are
                reloaded if a failure forced a rollback

        Returns:
            Number of notifications persisted
        """
        if not settings.notification.enabled:
            return 0

        intervention_id = intervention.id
        reference = intervention.reference
        base_payload = {
            "intervention_id": str(intervention_id),
            "reference": reference,
            "status": getattr(intervention.status, "value", intervention.status),
            **(payload or {}),
        }
        message = MESSAGES.get(event_type, "Intervention {reference} was updated").format(
            reference=reference
        )

        rolled_back = False
        try:
            if recipients is None:
                recipients = await NotificationDispatcher.recipients_for(
                    db, intervention, AUDIENCES.get(event_type, frozenset())
                )
            targets = [user_id for user_id in set(recipients) if user_id != actor_id]
        except Exception as e:
            await db.rollback()
            await NotificationDispatcher._reload(db, [intervention, *keep_loaded])
            intervention_logger.notification_failed(intervention_id, actor_id, event_type, str(e))
            notification_failures.labels(event_type=event_type).inc()
            return 0

        sent = 0
        for user_id in targets:
            try:
                await NotificationService.create_notification(
                    db,
                    user_id=user_id,
                    event_type=event_type,
                    message=message,
                    intervention_id=intervention_id,
                    payload=base_payload,
                )
                await db.commit()
                sent += 1
                notifications_sent.labels(event_type=event_type).inc()
            except Exception as e:
                rolled_back = True
                await db.rollback()
                intervention_logger.notification_failed(intervention_id, user_id, event_type, str(e))
                notification_failures.labels(event_type=event_type).inc()

        if rolled_back:
            await NotificationDispatcher._reload(db, [intervention, *keep_loaded])
        return sent

    @staticmethod
    async def _reload(db: AsyncSession, instances: Sequence[Any]) -> None:
        """Refresh objects expired by a rollback so callers can still read them."""
        for instance in instances:
            try:
                await db.refresh(instance)
            except Exception as e:
                logger.warning(f"Could not reload {type(instance).__name__} after rollback: {e}")
