"""
Intervention workflow service.

Applies lifecycle transitions to persisted interventions:

1. load the intervention (NotFound)
2. resolve the transition from the table (InvalidTransition)
3. check the guard against the party snapshot (Forbidden)
4. validate the payload and preconditions (ValidationFailed / InvalidTransition)
5. write the status with a conditional UPDATE on the expected previous
   status, stage the history row, commit
6. dispatch notifications (failures never reach the caller)

Nothing is written before step 5, so a refused call leaves no trace.
"""

import logging
import re
import secrets
import string
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.decorators import log_database_operation, transactional_database_operation
from core.exceptions import (
    ForbiddenError,
    InterventionError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from core.logging_config import InterventionLogger
from core.metrics import track_refusal, track_transition
from db import (
    ACTIVE_QUOTE_STATUSES,
    AssignmentRole,
    Building,
    Intervention,
    InterventionAction,
    InterventionAssignment,
    InterventionHistory,
    InterventionStatus,
    InterventionUrgency,
    Lot,
    Quote,
    QuoteStatus,
    TimeSlot,
    User,
    UserAvailability,
    UserRole,
    WorkCompletionReport,
    utc_now,
)
from services import intervention_lifecycle as lifecycle
from services.alert_service import requires_attention, status_label
from services.history_service import HistoryService
from services.intervention_lifecycle import Actor, InterventionParty, Precondition, Transition
from services.notification_dispatcher import NotificationDispatcher
from services.user_service import UserService

logger = logging.getLogger(__name__)
intervention_logger = InterventionLogger("workflow")

A = InterventionAction

# Column receiving the mandatory reason of a transition
REASON_FIELDS = {
    A.REJECT: "rejection_reason",
    A.CANCEL: "cancellation_reason",
}

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

StageFn = Callable[[AsyncSession, Intervention, Actor], Awaitable[Optional[Dict[str, Any]]]]


@dataclass
class InterventionView:
    """An intervention with what the caller needs to render it."""

    intervention: Intervention
    requires_attention: bool
    available_actions: List[InterventionAction]
    status_label: str
    assignments: List[InterventionAssignment] = field(default_factory=list)
    time_slots: List[TimeSlot] = field(default_factory=list)
    quotes: List[Quote] = field(default_factory=list)
    reports: List[WorkCompletionReport] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Payload validation
# ---------------------------------------------------------------------------


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def generate_reference(now: Optional[datetime] = None) -> str:
    """Human readable reference, e.g. INT-20250314-K7Q2."""
    now = now or utc_now()
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(4))
    return f"INT-{now:%Y%m%d}-{suffix}"


def validate_reason(reason: Optional[str], field_name: str = "reason") -> str:
    cleaned = (reason or "").strip()
    minimum = settings.workflow.min_reason_length
    if len(cleaned) < minimum:
        raise ValidationFailedError(
            f"{field_name} must be at least {minimum} characters",
            {"field": field_name, "min_length": minimum},
        )
    return cleaned


def _text(value: Any, field_name: str, max_length: int, required: bool = True) -> Optional[str]:
    cleaned = str(value).strip() if value is not None else ""
    if not cleaned:
        if required:
            raise ValidationFailedError(f"{field_name} is required", {"field": field_name})
        return None
    if len(cleaned) > max_length:
        raise ValidationFailedError(
            f"{field_name} must be at most {max_length} characters",
            {"field": field_name, "max_length": max_length},
        )
    return cleaned


def _get(source: Any, name: str, default: Any = None) -> Any:
    if isinstance(source, dict):
        return source.get(name, default)
    return getattr(source, name, default)


def parse_slot_proposals(
    proposals: Iterable[Any], today: Optional[date] = None
) -> List[Tuple[date, time, time]]:
    """
    Validate proposed slots given as {date: YYYY-MM-DD, start_time: HH:MM, end_time: HH:MM}.

    Raises:
        ValidationFailedError: Malformed value, date in the past, or end not after start
    """
    today = today or utc_now().date()
    parsed = []
    for index, proposal in enumerate(proposals):
        raw_date = _get(proposal, "date", _get(proposal, "slot_date"))
        raw_start = _get(proposal, "start_time")
        raw_end = _get(proposal, "end_time")

        slot_date = raw_date if isinstance(raw_date, date) else None
        if slot_date is None:
            if not isinstance(raw_date, str) or not _DATE_RE.match(raw_date):
                raise ValidationFailedError(
                    "Slot date must use the YYYY-MM-DD format", {"slot": index}
                )
            try:
                slot_date = date.fromisoformat(raw_date)
            except ValueError:
                raise ValidationFailedError("Slot date is not a valid date", {"slot": index})

        times = []
        for raw in (raw_start, raw_end):
            if isinstance(raw, time):
                times.append(raw.replace(second=0, microsecond=0))
            elif isinstance(raw, str) and _TIME_RE.match(raw):
                hours, minutes = raw.split(":")
                times.append(time(int(hours), int(minutes)))
            else:
                raise ValidationFailedError("Slot times must use the HH:MM format", {"slot": index})
        start_time, end_time = times

        if slot_date < today:
            raise ValidationFailedError("Slot date is in the past", {"slot": index})
        if end_time <= start_time:
            raise ValidationFailedError("Slot end time must be after its start time", {"slot": index})

        parsed.append((slot_date, start_time, end_time))
    return parsed


def validate_completion_report(report: Any) -> Dict[str, Any]:
    """
    Check a work completion report.

    Every quality-assurance item must be explicitly true.

    Returns:
        Normalized report fields ready for WorkCompletionReport
    """
    errors: List[str] = []

    summary = (_get(report, "work_summary") or "").strip()
    details = (_get(report, "work_details") or "").strip()
    if not summary:
        errors.append("work_summary is required")
    if not details:
        errors.append("work_details is required")

    duration = _get(report, "actual_duration_hours")
    try:
        duration = float(duration)
        if duration <= 0:
            errors.append("actual_duration_hours must be greater than 0")
    except (TypeError, ValueError):
        errors.append("actual_duration_hours is required")

    actual_cost = _get(report, "actual_cost")
    if actual_cost is not None:
        try:
            actual_cost = float(actual_cost)
            if actual_cost < 0:
                errors.append("actual_cost cannot be negative")
        except (TypeError, ValueError):
            errors.append("actual_cost must be a number")

    checklist = _get(report, "quality_assurance") or {}
    unchecked = [
        item for item in settings.workflow.quality_assurance_items
        if checklist.get(item) is not True
    ]
    if unchecked:
        errors.append(f"Quality assurance items not checked: {', '.join(unchecked)}")

    if errors:
        raise ValidationFailedError(
            "Completion report is incomplete",
            {"errors": errors, "unchecked": unchecked},
        )

    return {
        "work_summary": summary,
        "work_details": details,
        "materials_used": _get(report, "materials_used"),
        "actual_duration_hours": duration,
        "actual_cost": actual_cost,
        "issues_encountered": _get(report, "issues_encountered"),
        "recommendations": _get(report, "recommendations"),
        "quality_assurance": {item: bool(value) for item, value in checklist.items()},
    }


def build_party(
    intervention: Intervention,
    assignments: Sequence[InterventionAssignment],
    time_slot_count: int = 0,
    has_accepted_quote: bool = False,
    availability_count: int = 0,
) -> InterventionParty:
    return InterventionParty(
        intervention_id=intervention.id,
        team_id=intervention.team_id,
        tenant_id=intervention.tenant_id,
        provider_ids=frozenset(
            a.user_id for a in assignments if a.role == AssignmentRole.PROVIDER
        ),
        participant_ids=frozenset(a.user_id for a in assignments),
        requires_quote=bool(intervention.requires_quote),
        time_slot_count=time_slot_count,
        availability_count=availability_count,
        has_accepted_quote=has_accepted_quote,
    )


class InterventionWorkflowService:
    """Creates interventions and moves them through the lifecycle."""

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @staticmethod
    async def get_intervention(db: AsyncSession, intervention_id: UUID) -> Intervention:
        """
        Load an intervention with its current row state.

        Raises:
            NotFoundError: Unknown intervention
        """
        result = await db.execute(
            select(Intervention)
            .where(Intervention.id == intervention_id)
            .execution_options(populate_existing=True)
        )
        intervention = result.scalar_one_or_none()
        if intervention is None:
            raise NotFoundError("Intervention", intervention_id)
        return intervention

    @staticmethod
    async def list_assignments(
        db: AsyncSession, intervention_id: UUID
    ) -> List[InterventionAssignment]:
        result = await db.execute(
            select(InterventionAssignment)
            .where(InterventionAssignment.intervention_id == intervention_id)
            .order_by(InterventionAssignment.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def load_party(db: AsyncSession, intervention: Intervention) -> InterventionParty:
        """Snapshot of the intervention's participants and guard facts."""
        assignments = await InterventionWorkflowService.list_assignments(db, intervention.id)

        slot_count = len(
            (
                await db.execute(
                    select(TimeSlot.id).where(TimeSlot.intervention_id == intervention.id)
                )
            ).scalars().all()
        )
        has_accepted_quote = bool(
            await db.scalar(
                select(
                    exists().where(
                        Quote.intervention_id == intervention.id,
                        Quote.status == QuoteStatus.ACCEPTED,
                    )
                )
            )
        )
        availability_count = await db.scalar(
            select(func.count()).select_from(UserAvailability).where(
                UserAvailability.intervention_id == intervention.id
            )
        )
        return build_party(
            intervention, assignments, slot_count, has_accepted_quote, availability_count or 0
        )

    @staticmethod
    async def require_party_member(
        db: AsyncSession, actor: Actor, intervention_id: UUID
    ) -> Tuple[Intervention, InterventionParty]:
        """
        Load an intervention the actor is allowed to see.

        Raises:
            NotFoundError: Unknown intervention
            ForbiddenError: The actor is not a party to it
        """
        intervention = await InterventionWorkflowService.get_intervention(db, intervention_id)
        party = await InterventionWorkflowService.load_party(db, intervention)
        if not lifecycle.is_party_member(actor, party):
            raise ForbiddenError("Not a party to this intervention")
        return intervention, party

    # ------------------------------------------------------------------
    # Transition machinery
    # ------------------------------------------------------------------

    @staticmethod
    async def prepare_transition(
        db: AsyncSession,
        actor: Optional[Actor],
        intervention_id: UUID,
        action: InterventionAction,
        proposed_slot_count: int = 0,
    ) -> Tuple[Intervention, Transition, Optional[Actor], InterventionParty]:
        """Run every check of a transition without writing anything."""
        intervention = await InterventionWorkflowService.get_intervention(db, intervention_id)
        transition = lifecycle.transition_for(intervention.status, action)
        party = await InterventionWorkflowService.load_party(db, intervention)

        if transition.verify_actor and actor is not None:
            actor = await UserService.verify_actor(db, actor)
        lifecycle.check_guard(transition, actor, party)

        unmet = lifecycle.unmet_preconditions(transition, party, proposed_slot_count)
        if Precondition.QUOTE_FLAGGED in unmet:
            raise InvalidTransitionError(
                intervention.status, action,
                "Intervention does not require a quote",
            )
        if Precondition.QUOTE_ACCEPTED in unmet:
            raise InvalidTransitionError(
                intervention.status, action,
                "A quote must be accepted before scheduling",
            )
        if Precondition.TIME_SLOT_AVAILABLE in unmet:
            raise ValidationFailedError(
                "At least one time slot or participant availability is required to start planning",
                {"field": "time_slots"},
            )
        return intervention, transition, actor, party

    @staticmethod
    async def apply_status(
        db: AsyncSession,
        intervention: Intervention,
        transition: Transition,
        actor_id: Optional[UUID],
        values: Optional[Dict[str, Any]] = None,
        comment: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Intervention:
        """
        Write the new status guarded by the expected previous one.

        Raises:
            InvalidTransitionError: The status changed since it was read
        """
        row_values = {"status": transition.to_status, "updated_at": utc_now(), **(values or {})}
        result = await db.execute(
            update(Intervention)
            .where(
                Intervention.id == intervention.id,
                Intervention.status == transition.from_status,
            )
            .values(**row_values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await db.scalar(
                select(Intervention.status).where(Intervention.id == intervention.id)
            )
            raise InvalidTransitionError(
                current, transition.action,
                "Intervention status changed concurrently",
            )

        HistoryService.record(
            db,
            intervention.id,
            transition.action,
            actor_id,
            from_status=transition.from_status,
            to_status=transition.to_status,
            comment=comment,
            details=details,
        )
        await db.flush()
        await db.refresh(intervention)
        return intervention

    @staticmethod
    @transactional_database_operation("execute_transition")
    async def execute_transition(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        action: InterventionAction,
        *,
        reason: Optional[str] = None,
        comment: Optional[str] = None,
        values: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
        stage: Optional[StageFn] = None,
        proposed_slot_count: int = 0,
    ) -> Tuple[Intervention, Transition]:
        """
        Check and apply one transition in a single transaction.

        Args:
            db: Database session
            actor: Caller
            intervention_id: Target intervention
            action: Lifecycle action
            reason: Mandatory for reject and cancel
            comment: Stored on the history row
            values: Extra intervention columns to set with the status
            details: Extra history details
            stage: Validates the payload and stages related rows once the
                guard passed; may return extra intervention columns
            proposed_slot_count: Slots proposed along with the action
        """
        intervention, transition, actor, _ = await InterventionWorkflowService.prepare_transition(
            db, actor, intervention_id, action, proposed_slot_count
        )

        row_values = dict(values or {})
        if transition.requires_reason:
            row_values[REASON_FIELDS[action]] = validate_reason(reason)
            comment = comment or row_values[REASON_FIELDS[action]]
        if stage is not None:
            row_values.update(await stage(db, intervention, actor) or {})

        intervention = await InterventionWorkflowService.apply_status(
            db, intervention, transition, actor.user_id, row_values, comment, details
        )
        return intervention, transition

    @staticmethod
    async def transition(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        action: InterventionAction,
        **kwargs: Any,
    ) -> Intervention:
        """Apply a transition, log the outcome and notify the parties."""
        try:
            intervention, applied = await InterventionWorkflowService.execute_transition(
                db, actor, intervention_id, action, **kwargs
            )
        except InterventionError as exc:
            intervention_logger.transition_refused(
                intervention_id,
                action.value,
                exc.details.get("current_status", "-"),
                exc.message,
                actor.user_id,
            )
            track_refusal(action.value, exc.code)
            raise

        intervention_logger.transition_applied(
            intervention.id, action.value, applied.from_status.value,
            applied.to_status.value, actor.user_id,
        )
        track_transition(action.value, applied.to_status.value)

        await NotificationDispatcher.notify(db, intervention, action.value, actor.user_id)
        return intervention

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    @transactional_database_operation("create_intervention")
    async def _create(
        db: AsyncSession,
        actor: Actor,
        title: str,
        description: str,
        lot_id: Optional[UUID],
        building_id: Optional[UUID],
        intervention_type: Optional[str],
        urgency: InterventionUrgency,
        requires_quote: bool,
    ) -> Intervention:
        if actor.role not in (UserRole.TENANT, UserRole.MANAGER):
            raise ForbiddenError("Only tenants and managers can request interventions")
        if lot_id is None and building_id is None:
            raise ValidationFailedError(
                "A lot or a building is required", {"field": "lot_id"}
            )

        lot = await db.get(Lot, lot_id) if lot_id else None
        if lot_id and lot is None:
            raise NotFoundError("Lot", lot_id)
        building = await db.get(Building, building_id) if building_id else None
        if building_id and building is None:
            raise NotFoundError("Building", building_id)
        if lot and building and lot.building_id != building.id:
            raise ValidationFailedError("Lot does not belong to the building", {"field": "lot_id"})

        team_id = lot.team_id if lot else building.team_id

        if actor.role == UserRole.TENANT:
            if lot is None or lot.tenant_id != actor.user_id:
                raise ForbiddenError("Tenants can only request interventions for their own lot")
            tenant_id = actor.user_id
        else:
            if actor.team_id != team_id:
                raise ForbiddenError("Lot or building belongs to another team")
            tenant_id = lot.tenant_id if lot else None

        reference = generate_reference()
        while await db.scalar(select(exists().where(Intervention.reference == reference))):
            reference = generate_reference()

        intervention = Intervention(
            reference=reference,
            title=_text(title, "title", 200),
            description=_text(description, "description", 5000),
            intervention_type=_text(intervention_type, "intervention_type", 100, required=False),
            urgency=InterventionUrgency(urgency),
            status=InterventionStatus.REQUESTED,
            team_id=team_id,
            lot_id=lot.id if lot else None,
            building_id=building.id if building else (lot.building_id if lot else None),
            tenant_id=tenant_id,
            created_by=actor.user_id,
            requires_quote=requires_quote,
        )
        db.add(intervention)
        await db.flush()

        if tenant_id:
            db.add(
                InterventionAssignment(
                    intervention_id=intervention.id,
                    user_id=tenant_id,
                    role=AssignmentRole.TENANT,
                    is_primary=True,
                    assigned_by=actor.user_id,
                )
            )
        if actor.role == UserRole.MANAGER:
            db.add(
                InterventionAssignment(
                    intervention_id=intervention.id,
                    user_id=actor.user_id,
                    role=AssignmentRole.MANAGER,
                    is_primary=True,
                    assigned_by=actor.user_id,
                )
            )

        HistoryService.record(
            db, intervention.id, "create", actor.user_id,
            to_status=InterventionStatus.REQUESTED,
            details={"reference": reference},
        )
        await db.flush()
        return intervention

    @staticmethod
    async def create_intervention(
        db: AsyncSession,
        actor: Actor,
        *,
        title: str,
        description: str,
        lot_id: Optional[UUID] = None,
        building_id: Optional[UUID] = None,
        intervention_type: Optional[str] = None,
        urgency: InterventionUrgency = InterventionUrgency.NORMALE,
        requires_quote: bool = False,
    ) -> Intervention:
        """
        Create an intervention in status requested.

        Tenants request for their own lot; managers for any lot or building
        of their team. The tenant and the creating manager are assigned.

        Raises:
            ForbiddenError: Wrong role or foreign lot/building
            NotFoundError: Unknown lot or building
            ValidationFailedError: Missing location or invalid text fields
        """
        intervention = await InterventionWorkflowService._create(
            db, actor, title, description, lot_id, building_id,
            intervention_type, urgency, requires_quote,
        )
        logger.info(
            f"Intervention created | ID: {intervention.id} | Reference: {intervention.reference} | "
            f"User ID: {actor.user_id}"
        )
        await NotificationDispatcher.notify(db, intervention, "create", actor.user_id)
        return intervention

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @staticmethod
    async def approve(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        comment: Optional[str] = None,
        requires_quote: Optional[bool] = None,
    ) -> Intervention:
        """requested -> approved. Optionally flags the intervention as needing a quote."""
        values: Dict[str, Any] = {}
        if comment:
            values["manager_comment"] = comment
        if requires_quote is not None:
            values["requires_quote"] = requires_quote
        return await InterventionWorkflowService.transition(
            db, actor, intervention_id, A.APPROVE, comment=comment, values=values
        )

    @staticmethod
    async def reject(
        db: AsyncSession, actor: Actor, intervention_id: UUID, reason: Optional[str]
    ) -> Intervention:
        """requested -> rejected. Terminal."""
        return await InterventionWorkflowService.transition(
            db, actor, intervention_id, A.REJECT, reason=reason
        )

    @staticmethod
    async def request_quote(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        provider_ids: Sequence[UUID],
        deadline: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> Intervention:
        """
        approved -> quote_requested.

        Creates one pending quote per provider and assigns the providers.
        """
        provider_ids = list(dict.fromkeys(provider_ids or []))

        async def stage(db: AsyncSession, intervention: Intervention, actor: Actor):
            if not provider_ids:
                raise ValidationFailedError("At least one provider is required", {"field": "provider_ids"})
            result = await db.execute(select(User).where(User.id.in_(provider_ids)))
            providers = {user.id: user for user in result.scalars().all()}
            invalid = [
                str(pid) for pid in provider_ids
                if pid not in providers
                or providers[pid].role != UserRole.PROVIDER
                or not providers[pid].is_active
            ]
            if invalid:
                raise ValidationFailedError(
                    "Unknown or inactive providers", {"provider_ids": invalid}
                )

            assigned = {
                a.user_id
                for a in await InterventionWorkflowService.list_assignments(db, intervention.id)
                if a.role == AssignmentRole.PROVIDER
            }
            for provider_id in provider_ids:
                db.add(
                    Quote(
                        intervention_id=intervention.id,
                        provider_id=provider_id,
                        requested_by=actor.user_id,
                        description=description,
                        deadline=to_naive_utc(deadline),
                        status=QuoteStatus.PENDING,
                    )
                )
                if provider_id not in assigned:
                    db.add(
                        InterventionAssignment(
                            intervention_id=intervention.id,
                            user_id=provider_id,
                            role=AssignmentRole.PROVIDER,
                            assigned_by=actor.user_id,
                        )
                    )
            return None

        return await InterventionWorkflowService.transition(
            db, actor, intervention_id, A.REQUEST_QUOTE,
            stage=stage,
            details={"provider_ids": [str(pid) for pid in provider_ids]},
        )

    @staticmethod
    async def start_planning(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        time_slots: Sequence[Any] = (),
        comment: Optional[str] = None,
    ) -> Intervention:
        """
        approved|quote_requested -> scheduling_in_progress.

        Slots may be proposed with the action; at least one must exist afterwards.
        """
        time_slots = list(time_slots or [])

        async def stage(db: AsyncSession, intervention: Intervention, actor: Actor):
            for slot_date, start_time, end_time in parse_slot_proposals(time_slots):
                db.add(
                    TimeSlot(
                        intervention_id=intervention.id,
                        slot_date=slot_date,
                        start_time=start_time,
                        end_time=end_time,
                        proposed_by=actor.user_id,
                    )
                )
            return None

        return await InterventionWorkflowService.transition(
            db, actor, intervention_id, A.START_PLANNING,
            comment=comment,
            stage=stage,
            details={"proposed_slots": len(time_slots)},
            proposed_slot_count=len(time_slots),
        )

    @staticmethod
    async def start_work(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        started_at: Optional[datetime] = None,
        comment: Optional[str] = None,
    ) -> Intervention:
        """scheduled -> in_progress."""
        return await InterventionWorkflowService.transition(
            db, actor, intervention_id, A.START_WORK,
            comment=comment,
            values={"started_at": to_naive_utc(started_at) or utc_now()},
        )

    @staticmethod
    async def complete_work(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        report: Any,
    ) -> Intervention:
        """
        in_progress -> closed_by_provider.

        The completion report is validated after the guard; an incomplete
        report leaves the intervention in progress and can be resubmitted.
        """
        async def stage(db: AsyncSession, intervention: Intervention, actor: Actor):
            fields = validate_completion_report(report)
            db.add(
                WorkCompletionReport(
                    intervention_id=intervention.id,
                    provider_id=actor.user_id,
                    **fields,
                )
            )
            return {"completed_at": utc_now()}

        return await InterventionWorkflowService.transition(
            db, actor, intervention_id, A.COMPLETE_WORK, stage=stage
        )

    @staticmethod
    async def validate_by_tenant(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        satisfaction: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> Intervention:
        """closed_by_provider -> closed_by_tenant."""
        async def stage(db: AsyncSession, intervention: Intervention, actor: Actor):
            if satisfaction is None:
                return None
            low, high = settings.workflow.satisfaction_min, settings.workflow.satisfaction_max
            if not low <= satisfaction <= high:
                raise ValidationFailedError(
                    f"Satisfaction must be between {low} and {high}",
                    {"field": "satisfaction"},
                )
            return {"tenant_satisfaction": satisfaction}

        return await InterventionWorkflowService.transition(
            db, actor, intervention_id, A.VALIDATE_BY_TENANT, comment=comment, stage=stage
        )

    @staticmethod
    async def finalize(
        db: AsyncSession,
        actor: Actor,
        intervention_id: UUID,
        final_cost: Optional[float] = None,
        comment: Optional[str] = None,
    ) -> Intervention:
        """closed_by_provider|closed_by_tenant -> closed_by_manager."""
        async def stage(db: AsyncSession, intervention: Intervention, actor: Actor):
            values: Dict[str, Any] = {"finalized_at": utc_now()}
            if final_cost is not None:
                if final_cost < 0:
                    raise ValidationFailedError("final_cost cannot be negative", {"field": "final_cost"})
                values["final_cost"] = final_cost
            if comment:
                values["manager_comment"] = comment
            return values

        return await InterventionWorkflowService.transition(
            db, actor, intervention_id, A.FINALIZE_BY_MANAGER, comment=comment, stage=stage
        )

    @staticmethod
    async def cancel(
        db: AsyncSession, actor: Actor, intervention_id: UUID, reason: Optional[str]
    ) -> Intervention:
        """Any non-terminal status -> cancelled. Open quotes are cancelled with it."""
        async def stage(db: AsyncSession, intervention: Intervention, actor: Actor):
            await db.execute(
                update(Quote)
                .where(
                    Quote.intervention_id == intervention.id,
                    Quote.status.in_([QuoteStatus.DRAFT, *ACTIVE_QUOTE_STATUSES]),
                )
                .values(status=QuoteStatus.CANCELLED, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            return {"cancelled_at": utc_now()}

        return await InterventionWorkflowService.transition(
            db, actor, intervention_id, A.CANCEL, reason=reason, stage=stage
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def build_view(
        intervention: Intervention,
        actor: Actor,
        assignments: Sequence[InterventionAssignment],
        time_slots: Sequence[TimeSlot],
        quotes: Sequence[Quote],
        now: Optional[datetime] = None,
    ) -> InterventionView:
        party = build_party(
            intervention,
            assignments,
            len(time_slots),
            any(q.status == QuoteStatus.ACCEPTED for q in quotes),
        )
        return InterventionView(
            intervention=intervention,
            requires_attention=requires_attention(
                intervention.status,
                actor.role,
                quotes=quotes,
                time_slots=time_slots,
                scheduled_date=intervention.scheduled_date,
                now=now,
            ),
            available_actions=lifecycle.permitted_actions(intervention.status, actor, party),
            status_label=status_label(intervention.status, actor.role),
            assignments=list(assignments),
            time_slots=list(time_slots),
            quotes=list(quotes),
        )

    @staticmethod
    @log_database_operation("intervention listing", level="debug")
    async def list_for_actor(
        db: AsyncSession,
        actor: Actor,
        status: Optional[InterventionStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[InterventionView]:
        """
        Interventions visible to the actor, newest first.

        Admins see everything, managers their team, tenants and providers
        the interventions they are a party to.
        """
        stmt = select(Intervention)
        assigned = select(InterventionAssignment.intervention_id).where(
            InterventionAssignment.user_id == actor.user_id
        )

        if actor.role == UserRole.MANAGER:
            if actor.team_id is None:
                return []
            stmt = stmt.where(Intervention.team_id == actor.team_id)
        elif actor.role == UserRole.TENANT:
            stmt = stmt.where(
                or_(Intervention.tenant_id == actor.user_id, Intervention.id.in_(assigned))
            )
        elif actor.role == UserRole.PROVIDER:
            stmt = stmt.where(Intervention.id.in_(assigned))

        if status is not None:
            stmt = stmt.where(Intervention.status == status)

        stmt = stmt.order_by(Intervention.created_at.desc()).limit(limit).offset(offset)
        interventions = list((await db.execute(stmt)).scalars().all())
        if not interventions:
            return []

        ids = [i.id for i in interventions]
        assignments = (
            await db.execute(
                select(InterventionAssignment).where(InterventionAssignment.intervention_id.in_(ids))
            )
        ).scalars().all()
        slots = (
            await db.execute(select(TimeSlot).where(TimeSlot.intervention_id.in_(ids)))
        ).scalars().all()
        quotes = (
            await db.execute(select(Quote).where(Quote.intervention_id.in_(ids)))
        ).scalars().all()

        now = utc_now()
        return [
            InterventionWorkflowService.build_view(
                intervention,
                actor,
                [a for a in assignments if a.intervention_id == intervention.id],
                [s for s in slots if s.intervention_id == intervention.id],
                [q for q in quotes if q.intervention_id == intervention.id],
                now=now,
            )
            for intervention in interventions
        ]

    @staticmethod
    async def get_detail(db: AsyncSession, actor: Actor, intervention_id: UUID) -> InterventionView:
        """
        Full view of one intervention for a party member.

        Raises:
            NotFoundError: Unknown intervention
            ForbiddenError: The actor is not a party to it
        """
        intervention, _ = await InterventionWorkflowService.require_party_member(
            db, actor, intervention_id
        )
        assignments = await InterventionWorkflowService.list_assignments(db, intervention.id)
        slots = (
            await db.execute(
                select(TimeSlot)
                .where(TimeSlot.intervention_id == intervention.id)
                .order_by(TimeSlot.slot_date, TimeSlot.start_time)
            )
        ).scalars().all()
        quotes = (
            await db.execute(
                select(Quote)
                .where(Quote.intervention_id == intervention.id)
                .order_by(Quote.created_at)
            )
        ).scalars().all()
        reports = (
            await db.execute(
                select(WorkCompletionReport)
                .where(WorkCompletionReport.intervention_id == intervention.id)
                .order_by(WorkCompletionReport.submitted_at)
            )
        ).scalars().all()

        view = InterventionWorkflowService.build_view(intervention, actor, assignments, slots, quotes)
        view.reports = list(reports)
        return view

    @staticmethod
    async def get_history(
        db: AsyncSession, actor: Actor, intervention_id: UUID
    ) -> List[InterventionHistory]:
        """Activity log of an intervention, oldest first."""
        await InterventionWorkflowService.require_party_member(db, actor, intervention_id)
        return await HistoryService.list_for_intervention(db, intervention_id)
