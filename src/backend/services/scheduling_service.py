"""
Scheduling: time slots, participant confirmations and the all-confirmed rule.

An intervention in scheduling_in_progress advances to scheduled once every
assignment flagged `requires_confirmation` is confirmed. The decision is
re-derived from the full set of sibling assignments on every answer and the
status write is conditional on the status still being
scheduling_in_progress, so two concurrent last confirmations advance it
once.

Scheduled visits starting soon get one reminder, sent by a periodic job.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.decorators import log_database_operation, transactional_database_operation
from core.exceptions import (
    AlreadyProcessedError,
    ForbiddenError,
    InterventionError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from core.logging_config import InterventionLogger
from core.metrics import participation_confirmations, track_refusal, track_transition
from db import (
    TERMINAL_STATUSES,
    AssignmentRole,
    ConfirmationStatus,
    Intervention,
    InterventionAction,
    InterventionAssignment,
    InterventionStatus,
    TimeSlot,
    TimeSlotStatus,
    User,
    UserRole,
    utc_now,
)
from services import intervention_lifecycle as lifecycle
from services.history_service import HistoryService
from services.intervention_lifecycle import Actor, AggregateResult
from services.intervention_service import InterventionWorkflowService, parse_slot_proposals
from services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)
intervention_logger = InterventionLogger("scheduling")

# Statuses in which participants can still be asked to confirm
CONFIRMATION_STATUSES = frozenset(
    {
        InterventionStatus.APPROVED,
        InterventionStatus.QUOTE_REQUESTED,
        InterventionStatus.SCHEDULING_IN_PROGRESS,
    }
)

ASSIGNMENT_ROLE_FOR_USER = {
    UserRole.TENANT: AssignmentRole.TENANT,
    UserRole.MANAGER: AssignmentRole.MANAGER,
    UserRole.PROVIDER: AssignmentRole.PROVIDER,
}


@dataclass
class ConfirmationOutcome:
    assignment: InterventionAssignment
    intervention: Intervention
    aggregate: AggregateResult
    advanced: bool


class SchedulingService:
    """Time slots and multi-party confirmation."""

    @staticmethod
    async def list_time_slots(db: AsyncSession, intervention_id: UUID) -> List[TimeSlot]:
        result = await db.execute(
            select(TimeSlot)
            .where(TimeSlot.intervention_id == intervention_id)
            .order_by(TimeSlot.slot_date, TimeSlot.start_time)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------

    @staticmethod
    @transactional_database_operation("propose_time_slots")
    @log_database_operation("time slot proposal", level="info")
    async def propose_time_slots(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        proposals: Sequence[Any],
    ) -> List[TimeSlot]:
        """
        Add candidate slots while scheduling is in progress.

        Raises:
            InvalidTransitionError: Intervention is not being scheduled
            ForbiddenError: Caller is neither a team manager nor an assigned provider
            ValidationFailedError: Malformed or past slot
        """
        intervention = await InterventionWorkflowService.get_intervention(db, intervention_id)
        if intervention.status != InterventionStatus.SCHEDULING_IN_PROGRESS:
            raise InvalidTransitionError(intervention.status, "propose_time_slots")

        party = await InterventionWorkflowService.load_party(db, intervention)
        if not lifecycle.guard_allows(lifecycle.Guard.TEAM_MANAGER_OR_ASSIGNED_PROVIDER, actor, party):
            raise ForbiddenError("Only the team manager or an assigned provider can propose slots")

        parsed = parse_slot_proposals(proposals)
        if not parsed:
            raise ValidationFailedError("At least one time slot is required", {"field": "time_slots"})

        slots = [
            TimeSlot(
                intervention_id=intervention.id,
                slot_date=slot_date,
                start_time=start_time,
                end_time=end_time,
                proposed_by=actor.user_id,
            )
            for slot_date, start_time, end_time in parsed
        ]
        db.add_all(slots)
        HistoryService.record(
            db, intervention.id, "propose_time_slots", actor.user_id,
            details={"count": len(slots)},
        )
        await db.flush()
        return slots

    @staticmethod
    @transactional_database_operation("select_time_slot")
    async def select_time_slot(
        db: AsyncSession, actor: Actor, intervention_id: UUID, slot_id: UUID
    ) -> TimeSlot:
        """
        Mark the slot participants should confirm. Clears the mark on siblings.

        Raises:
            InvalidTransitionError: Intervention is not being scheduled
            ForbiddenError: Caller is not a manager of the team
            NotFoundError: Slot missing, foreign or no longer pending
        """
        intervention = await InterventionWorkflowService.get_intervention(db, intervention_id)
        if intervention.status != InterventionStatus.SCHEDULING_IN_PROGRESS:
            raise InvalidTransitionError(intervention.status, "select_time_slot")

        party = await InterventionWorkflowService.load_party(db, intervention)
        if not lifecycle.is_team_manager(actor, party):
            raise ForbiddenError("Only a manager of the team can select a slot")

        slots = await SchedulingService.list_time_slots(db, intervention.id)
        target = next(
            (s for s in slots if s.id == slot_id and s.status == TimeSlotStatus.PENDING),
            None,
        )
        if target is None:
            raise NotFoundError("Time slot", slot_id)

        for slot in slots:
            slot.selected_by_manager = slot.id == target.id

        HistoryService.record(
            db, intervention.id, "select_time_slot", actor.user_id,
            details={"slot_id": str(target.id)},
        )
        await db.flush()
        return target

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    @staticmethod
    @transactional_database_operation("assign_provider")
    async def assign_provider(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        provider_id: UUID,
        requires_confirmation: bool = False,
    ) -> InterventionAssignment:
        """
        Attach a provider to an intervention.

        Raises:
            InvalidTransitionError: Intervention is closed
            ForbiddenError: Caller is not a manager of the team
            ValidationFailedError: User is not an active provider
        """
        intervention = await InterventionWorkflowService.get_intervention(db, intervention_id)
        if intervention.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(intervention.status, "assign_provider")

        party = await InterventionWorkflowService.load_party(db, intervention)
        if not lifecycle.is_team_manager(actor, party):
            raise ForbiddenError("Only a manager of the team can assign providers")

        provider = await db.get(User, provider_id)
        if provider is None or provider.role != UserRole.PROVIDER or not provider.is_active:
            raise ValidationFailedError("User is not an active provider", {"field": "provider_id"})

        assignment = await SchedulingService._find_assignment(
            db, intervention.id, provider_id, AssignmentRole.PROVIDER
        )
        if assignment is None:
            assignment = InterventionAssignment(
                intervention_id=intervention.id,
                user_id=provider_id,
                role=AssignmentRole.PROVIDER,
                assigned_by=actor.user_id,
            )
            db.add(assignment)
            HistoryService.record(
                db, intervention.id, "assign_provider", actor.user_id,
                details={"provider_id": str(provider_id)},
            )

        if requires_confirmation and not assignment.requires_confirmation:
            assignment.requires_confirmation = True
            assignment.confirmation_status = ConfirmationStatus.PENDING

        await db.flush()
        return assignment

    @staticmethod
    async def _find_assignment(
        db: AsyncSession, intervention_id: UUID, user_id: UUID, role: AssignmentRole
    ) -> Optional[InterventionAssignment]:
        result = await db.execute(
            select(InterventionAssignment)
            .where(
                InterventionAssignment.intervention_id == intervention_id,
                InterventionAssignment.user_id == user_id,
                InterventionAssignment.role == role,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    @transactional_database_operation("request_confirmation")
    async def _request_confirmation(
        db: AsyncSession, actor: Actor, intervention_id: UUID, user_id: UUID
    ) -> InterventionAssignment:
        intervention = await InterventionWorkflowService.get_intervention(db, intervention_id)
        if intervention.status not in CONFIRMATION_STATUSES:
            raise InvalidTransitionError(intervention.status, "request_confirmation")

        party = await InterventionWorkflowService.load_party(db, intervention)
        if not lifecycle.is_team_manager(actor, party):
            raise ForbiddenError("Only a manager of the team can request confirmations")

        user = await db.get(User, user_id)
        if user is None or not user.is_active or user.role not in ASSIGNMENT_ROLE_FOR_USER:
            raise ValidationFailedError("User cannot take part in interventions", {"field": "user_id"})
        role = ASSIGNMENT_ROLE_FOR_USER[UserRole(user.role)]

        assignment = await SchedulingService._find_assignment(db, intervention.id, user_id, role)
        if assignment is None:
            assignment = InterventionAssignment(
                intervention_id=intervention.id,
                user_id=user_id,
                role=role,
                assigned_by=actor.user_id,
            )
            db.add(assignment)
        elif assignment.requires_confirmation and assignment.confirmation_status == ConfirmationStatus.CONFIRMED:
            raise AlreadyProcessedError("Participant already confirmed")
        elif (
            assignment.requires_confirmation
            and assignment.confirmation_status == ConfirmationStatus.PENDING
        ):
            return assignment

        # New request, or the manual follow-up after a rejection
        reopened = assignment.confirmation_status == ConfirmationStatus.REJECTED
        assignment.requires_confirmation = True
        assignment.confirmation_status = ConfirmationStatus.PENDING
        assignment.confirmed_at = None
        assignment.confirmation_reason = None

        HistoryService.record(
            db, intervention.id, "request_confirmation", actor.user_id,
            details={"user_id": str(user_id), "reopened": reopened},
        )
        await db.flush()
        return assignment

    @staticmethod
    async def request_confirmation(
        db: AsyncSession, actor: Actor, intervention_id: UUID, user_id: UUID
    ) -> InterventionAssignment:
        """
        Require a participant's confirmation, creating the assignment if needed.

        Re-opening a rejected confirmation is how a manager follows up after
        a participant declined.

        Raises:
            InvalidTransitionError: Intervention is past scheduling
            ForbiddenError: Caller is not a manager of the team
            ValidationFailedError: Unknown or inactive user
            AlreadyProcessedError: The participant already confirmed
        """
        assignment = await SchedulingService._request_confirmation(db, actor, intervention_id, user_id)
        intervention = await InterventionWorkflowService.get_intervention(db, intervention_id)
        await NotificationDispatcher.notify(
            db, intervention, "confirmation_requested", actor.user_id,
            recipients=[user_id], keep_loaded=[assignment],
        )
        return assignment

    # ------------------------------------------------------------------
    # Confirmation and aggregation
    # ------------------------------------------------------------------

    @staticmethod
    @transactional_database_operation("confirm_participation")
    async def _confirm_participation(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        confirmed: bool,
        reason: Optional[str],
    ) -> ConfirmationOutcome:
        intervention = await InterventionWorkflowService.get_intervention(db, intervention_id)

        assignments = await InterventionWorkflowService.list_assignments(db, intervention.id)
        own = [a for a in assignments if a.user_id == actor.user_id and a.requires_confirmation]
        if not own:
            raise ForbiddenError("No confirmation is expected from this user")

        # A repeated answer is reported as such even once the intervention moved on
        assignment = own[0]
        if assignment.confirmation_status in (ConfirmationStatus.CONFIRMED, ConfirmationStatus.REJECTED):
            raise AlreadyProcessedError(
                f"Participation already {assignment.confirmation_status.value}",
                {"confirmation_status": assignment.confirmation_status.value},
            )

        if intervention.status != InterventionStatus.SCHEDULING_IN_PROGRESS:
            raise InvalidTransitionError(intervention.status, "confirm_participation")

        slots = await SchedulingService.list_time_slots(db, intervention.id)
        target_slot = lifecycle.resolve_target_slot(slots)
        if target_slot is None:
            raise InvalidTransitionError(
                intervention.status, "confirm_participation",
                "No time slot is selected for confirmation",
            )

        assignment.confirmation_status = (
            ConfirmationStatus.CONFIRMED if confirmed else ConfirmationStatus.REJECTED
        )
        assignment.confirmed_at = utc_now()
        if not confirmed:
            assignment.confirmation_reason = (reason or "").strip() or None

        HistoryService.record(
            db, intervention.id,
            "participation_confirmed" if confirmed else "participation_rejected",
            actor.user_id,
            comment=assignment.confirmation_reason,
            details={"assignment_id": str(assignment.id), "slot_id": str(target_slot.id)},
        )
        await db.flush()

        # Re-read every sibling instead of trusting what was loaded above
        siblings = await InterventionWorkflowService.list_assignments(db, intervention.id)
        aggregate = lifecycle.evaluate_aggregate(siblings)

        advanced = False
        if confirmed and aggregate.all_confirmed:
            advanced = await SchedulingService._advance_to_scheduled(db, intervention, target_slot)

        return ConfirmationOutcome(
            assignment=assignment,
            intervention=intervention,
            aggregate=aggregate,
            advanced=advanced,
        )

    @staticmethod
    async def _advance_to_scheduled(
        db: AsyncSession, intervention: Intervention, slot: TimeSlot
    ) -> bool:
        """
        Apply confirm_schedule as the system actor.

        Returns False when another request already advanced the intervention.
        """
        transition = lifecycle.transition_for(
            InterventionStatus.SCHEDULING_IN_PROGRESS, InterventionAction.CONFIRM_SCHEDULE
        )
        lifecycle.check_guard(transition, None, await InterventionWorkflowService.load_party(db, intervention))

        try:
            await InterventionWorkflowService.apply_status(
                db, intervention, transition, None,
                values={"scheduled_date": slot.starts_at, "reminder_sent_at": None},
                details={"slot_id": str(slot.id)},
            )
        except InvalidTransitionError:
            logger.info(f"Intervention {intervention.id} was already advanced by a concurrent confirmation")
            await db.refresh(intervention)
            return False

        await db.execute(
            update(TimeSlot)
            .where(TimeSlot.id == slot.id)
            .values(status=TimeSlotStatus.SELECTED, selected_by_manager=True)
            .execution_options(synchronize_session=False)
        )
        await db.flush()
        await db.refresh(slot)
        return True

    @staticmethod
    async def confirm_participation(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        confirmed: bool,
        reason: Optional[str] = None,
    ) -> ConfirmationOutcome:
        """
        Record a participant's answer for the target slot.

        A confirmation that completes the set advances the intervention to
        scheduled. A rejection never changes the intervention.

        Raises:
            NotFoundError: Unknown intervention
            InvalidTransitionError: Not in scheduling, or no target slot
            ForbiddenError: No confirmation expected from the caller
            AlreadyProcessedError: The caller already answered
        """
        try:
            outcome = await SchedulingService._confirm_participation(
                db, actor, intervention_id, confirmed, reason
            )
        except InterventionError as exc:
            track_refusal("confirm_participation", exc.code)
            raise

        participation_confirmations.labels(outcome="confirmed" if confirmed else "rejected").inc()
        intervention_logger.confirmation_recorded(
            intervention_id, outcome.assignment.id, actor.user_id, confirmed
        )
        intervention_logger.aggregation_evaluated(
            intervention_id, outcome.aggregate.confirmed, outcome.aggregate.required, outcome.advanced
        )

        keep = [outcome.assignment]
        await NotificationDispatcher.notify(
            db, outcome.intervention,
            "participation_confirmed" if confirmed else "participation_rejected",
            actor.user_id, keep_loaded=keep,
        )
        if outcome.advanced:
            intervention_logger.transition_applied(
                intervention_id,
                InterventionAction.CONFIRM_SCHEDULE.value,
                InterventionStatus.SCHEDULING_IN_PROGRESS.value,
                InterventionStatus.SCHEDULED.value,
            )
            track_transition(InterventionAction.CONFIRM_SCHEDULE.value, InterventionStatus.SCHEDULED.value)
            await NotificationDispatcher.notify(
                db, outcome.intervention, InterventionAction.CONFIRM_SCHEDULE.value,
                keep_loaded=keep,
            )
        return outcome

    # ------------------------------------------------------------------
    # Visit reminders
    # ------------------------------------------------------------------

    @staticmethod
    @transactional_database_operation("claim_visit_reminders")
    async def _claim_due_reminders(db: AsyncSession, now: datetime) -> List[UUID]:
        """Mark scheduled visits starting within the lookahead as reminded."""
        horizon = now + timedelta(hours=settings.workflow.reminder_lookahead_hours)
        due = (
            await db.execute(
                select(Intervention.id).where(
                    Intervention.status == InterventionStatus.SCHEDULED,
                    Intervention.scheduled_date.is_not(None),
                    Intervention.scheduled_date >= now,
                    Intervention.scheduled_date <= horizon,
                    Intervention.reminder_sent_at.is_(None),
                )
            )
        ).scalars().all()

        claimed = []
        for intervention_id in due:
            # Conditional so two runners never remind the same visit twice
            result = await db.execute(
                update(Intervention)
                .where(Intervention.id == intervention_id, Intervention.reminder_sent_at.is_(None))
                .values(reminder_sent_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed.append(intervention_id)
        return claimed

    @staticmethod
    async def send_visit_reminders(db: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Remind the tenant, providers and managers of visits coming up soon.

        A visit is reminded once per scheduled date. Returns the number of
        interventions reminded.
        """
        now = now or utc_now()
        claimed = await SchedulingService._claim_due_reminders(db, now)
        for intervention_id in claimed:
            intervention = await InterventionWorkflowService.get_intervention(db, intervention_id)
            await NotificationDispatcher.notify(
                db, intervention, "visit_reminder",
                payload={"scheduled_date": intervention.scheduled_date.isoformat()},
            )
        return len(claimed)
