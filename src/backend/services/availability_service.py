"""
Participant availabilities and their overlap matching.

Each participant keeps one set of availability windows per intervention;
submitting again replaces the whole set. Availabilities count towards the
time slot precondition of start_planning, and the matcher turns them into
candidate slots for the manager.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, List, Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.decorators import log_database_operation, transactional_database_operation
from core.exceptions import InvalidTransitionError, ValidationFailedError
from db import InterventionStatus, UserAvailability, utc_now
from services.availability_matcher import AvailabilityWindow, MatchingResult, match_availabilities
from services.history_service import HistoryService
from services.intervention_lifecycle import Actor
from services.intervention_service import InterventionWorkflowService, parse_slot_proposals
from services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

# Statuses in which availabilities still feed the planning
AVAILABILITY_STATUSES = frozenset(
    {
        InterventionStatus.APPROVED,
        InterventionStatus.QUOTE_REQUESTED,
        InterventionStatus.SCHEDULING_IN_PROGRESS,
    }
)


@dataclass
class AvailabilityListing:
    own: List[UserAvailability]
    participants: List[UserAvailability]


class AvailabilityService:
    """Declare, list and match participant availabilities."""

    @staticmethod
    async def _list(db: AsyncSession, intervention_id: UUID) -> List[UserAvailability]:
        result = await db.execute(
            select(UserAvailability)
            .where(UserAvailability.intervention_id == intervention_id)
            .order_by(
                UserAvailability.available_date,
                UserAvailability.start_time,
                UserAvailability.created_at,
            )
        )
        return list(result.scalars().all())

    @staticmethod
    @transactional_database_operation("replace_availabilities")
    @log_database_operation("availability submission", level="info")
    async def _replace_availabilities(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        availabilities: Sequence[Any],
    ) -> List[UserAvailability]:
        intervention, _ = await InterventionWorkflowService.require_party_member(
            db, actor, intervention_id
        )
        if intervention.status not in AVAILABILITY_STATUSES:
            raise InvalidTransitionError(intervention.status, "submit_availabilities")

        today = utc_now().date()
        parsed = parse_slot_proposals(availabilities, today)
        horizon = today + timedelta(days=settings.workflow.availability_horizon_days)
        for index, (available_date, _, _) in enumerate(parsed):
            if available_date > horizon:
                raise ValidationFailedError(
                    "Availability is too far in the future",
                    {"slot": index, "max_date": horizon.isoformat()},
                )

        await db.execute(
            delete(UserAvailability).where(
                UserAvailability.intervention_id == intervention.id,
                UserAvailability.user_id == actor.user_id,
            )
        )
        rows = [
            UserAvailability(
                intervention_id=intervention.id,
                user_id=actor.user_id,
                available_date=available_date,
                start_time=start_time,
                end_time=end_time,
            )
            for available_date, start_time, end_time in parsed
        ]
        db.add_all(rows)
        HistoryService.record(
            db, intervention.id, "submit_availabilities", actor.user_id,
            details={"count": len(rows)},
        )
        await db.flush()
        return rows

    @staticmethod
    async def replace_availabilities(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        availabilities: Sequence[Any],
    ) -> List[UserAvailability]:
        """
        Replace the caller's availabilities for an intervention.

        An empty list clears them. The team managers are notified once the
        new set is committed.

        Raises:
            NotFoundError: Unknown intervention
            ForbiddenError: Caller is not a party to the intervention
            InvalidTransitionError: Intervention is past scheduling
            ValidationFailedError: Malformed, past or too distant window
        """
        rows = await AvailabilityService._replace_availabilities(
            db, actor, intervention_id, availabilities
        )
        intervention = await InterventionWorkflowService.get_intervention(db, intervention_id)
        await NotificationDispatcher.notify(
            db, intervention, "availabilities_submitted", actor.user_id,
            payload={"count": len(rows)}, keep_loaded=rows,
        )
        return rows

    @staticmethod
    async def list_availabilities(
        db: AsyncSession, actor: Actor, intervention_id: UUID
    ) -> AvailabilityListing:
        """The caller's own availabilities and those of every participant."""
        await InterventionWorkflowService.require_party_member(db, actor, intervention_id)
        rows = await AvailabilityService._list(db, intervention_id)
        return AvailabilityListing(
            own=[row for row in rows if row.user_id == actor.user_id],
            participants=rows,
        )

    @staticmethod
    async def match(
        db: AsyncSession, actor: Actor, intervention_id: UUID
    ) -> MatchingResult:
        await InterventionWorkflowService.require_party_member(db, actor, intervention_id)
        rows = await AvailabilityService._list(db, intervention_id)
        result = match_availabilities(AvailabilityWindow.from_row(row) for row in rows)
        logger.debug(
            f"Matched availabilities for {intervention_id}: "
            f"{len(result.perfect)} perfect, {len(result.partial)} partial"
        )
        return result
