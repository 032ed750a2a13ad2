"""
Integration tests for the intervention workflow service.

Tests:
- Creation rules (roles, lot ownership, team membership)
- Full lifecycle from request to manager closure
- Refusals leave the stored status untouched (forbidden, invalid, validation)
- Completion report rejected then accepted on retry
- Cancellation and terminal statuses
- History and listings
- Notifications, including failures that must not undo a transition
"""

from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from db import (
    AssignmentRole,
    Intervention,
    InterventionAction,
    InterventionAssignment,
    InterventionHistory,
    InterventionStatus,
    NotificationEvent,
    Quote,
    QuoteStatus,
    TimeSlot,
    TimeSlotStatus,
    WorkCompletionReport,
)
from services.intervention_service import InterventionWorkflowService
from services.notification_service import NotificationService
from services.scheduling_service import SchedulingService
from services.user_service import UserService
from tests.factories import LotFactory, complete_report, future_slot

S = InterventionStatus


# ============================================================================
# Helpers
# ============================================================================

async def stored_status(db: AsyncSession, intervention_id) -> InterventionStatus:
    """Status as persisted, bypassing the identity map."""
    result = await db.execute(
        select(Intervention.status).where(Intervention.id == intervention_id)
    )
    return InterventionStatus(result.scalar_one())


async def count_rows(db: AsyncSession, model, **filters) -> int:
    stmt = select(func.count()).select_from(model)
    for name, value in filters.items():
        stmt = stmt.where(getattr(model, name) == value)
    return (await db.execute(stmt)).scalar_one()


async def create_request(db: AsyncSession, tenant_actor, lot_id, **kwargs):
    intervention = await InterventionWorkflowService.create_intervention(
        db,
        tenant_actor,
        title="Fuite sous l'evier",
        description="Water is leaking under the kitchen sink since this morning.",
        lot_id=lot_id,
        intervention_type="plomberie",
        **kwargs,
    )
    return intervention.id


async def bring_to_scheduling(db, manager_actor, tenant_actor, provider_id, lot_id):
    """Create, approve, assign a confirming provider and start planning with one slot."""
    intervention_id = await create_request(db, tenant_actor, lot_id)
    await InterventionWorkflowService.approve(db, manager_actor, intervention_id)
    await SchedulingService.assign_provider(
        db, manager_actor, intervention_id, provider_id, requires_confirmation=True
    )
    await InterventionWorkflowService.start_planning(
        db, manager_actor, intervention_id, time_slots=[future_slot()]
    )
    return intervention_id


# ============================================================================
# Creation
# ============================================================================

class TestInterventionCreation:
    """Tests for create_intervention."""

    @pytest.mark.asyncio
    async def test_tenant_creates_for_own_lot(self, db_session, tenant_actor, lot, team):
        """The tenant is assigned and the reference is generated."""
        intervention = await InterventionWorkflowService.create_intervention(
            db_session,
            tenant_actor,
            title="Chauffage en panne",
            description="No heating in the living room.",
            lot_id=lot.id,
        )

        assert intervention.status == S.REQUESTED
        assert intervention.team_id == team.id
        assert intervention.tenant_id == tenant_actor.user_id
        assert intervention.building_id == lot.building_id
        assert intervention.reference.startswith("INT-")

        assignments = await InterventionWorkflowService.list_assignments(db_session, intervention.id)
        assert [(a.user_id, a.role) for a in assignments] == [
            (tenant_actor.user_id, AssignmentRole.TENANT)
        ]

    @pytest.mark.asyncio
    async def test_manager_creates_for_team_lot(self, db_session, manager_actor, tenant_actor, lot):
        """A manager request assigns both the lot tenant and the manager."""
        intervention = await InterventionWorkflowService.create_intervention(
            db_session,
            manager_actor,
            title="Controle chaudiere",
            description="Yearly boiler inspection.",
            lot_id=lot.id,
            requires_quote=True,
        )

        assert intervention.tenant_id == tenant_actor.user_id
        assert intervention.requires_quote is True
        roles = {
            a.role for a in await InterventionWorkflowService.list_assignments(db_session, intervention.id)
        }
        assert roles == {AssignmentRole.TENANT, AssignmentRole.MANAGER}

    @pytest.mark.asyncio
    async def test_manager_of_another_team_is_forbidden(self, db_session, other_manager_actor, lot):
        lot_id = lot.id
        with pytest.raises(ForbiddenError):
            await InterventionWorkflowService.create_intervention(
                db_session, other_manager_actor, title="x", description="y", lot_id=lot_id
            )
        assert await count_rows(db_session, Intervention) == 0

    @pytest.mark.asyncio
    async def test_tenant_cannot_use_another_lot(self, db_session, team, building, tenant_actor):
        vacant = LotFactory.create(team_id=team.id, building_id=building.id)
        db_session.add(vacant)
        await db_session.commit()
        vacant_id = vacant.id

        with pytest.raises(ForbiddenError):
            await InterventionWorkflowService.create_intervention(
                db_session, tenant_actor, title="x", description="y", lot_id=vacant_id
            )

    @pytest.mark.asyncio
    async def test_provider_and_admin_cannot_create(self, db_session, provider_actor, admin_actor, lot):
        lot_id = lot.id
        for actor in (provider_actor, admin_actor):
            with pytest.raises(ForbiddenError):
                await InterventionWorkflowService.create_intervention(
                    db_session, actor, title="x", description="y", lot_id=lot_id
                )

    @pytest.mark.asyncio
    async def test_location_is_required(self, db_session, manager_actor):
        with pytest.raises(ValidationFailedError):
            await InterventionWorkflowService.create_intervention(
                db_session, manager_actor, title="x", description="y"
            )

    @pytest.mark.asyncio
    async def test_unknown_lot(self, db_session, manager_actor):
        with pytest.raises(NotFoundError):
            await InterventionWorkflowService.create_intervention(
                db_session, manager_actor, title="x", description="y", lot_id=uuid4()
            )

    @pytest.mark.asyncio
    async def test_blank_title_is_rejected(self, db_session, tenant_actor, lot):
        lot_id = lot.id
        with pytest.raises(ValidationFailedError):
            await InterventionWorkflowService.create_intervention(
                db_session, tenant_actor, title="   ", description="Something broke", lot_id=lot_id
            )


# ============================================================================
# Full lifecycle
# ============================================================================

class TestFullLifecycle:
    """Happy path from request to closed_by_manager."""

    @pytest.mark.asyncio
    async def test_request_to_manager_closure(
        self, db_session, manager_actor, tenant_actor, provider_actor, lot
    ):
        """Every step moves the status forward and is recorded in the history."""
        db = db_session
        intervention_id = await create_request(db, tenant_actor, lot.id)

        approved = await InterventionWorkflowService.approve(
            db, manager_actor, intervention_id, comment="Plumber needed"
        )
        assert approved.status == S.APPROVED
        assert approved.manager_comment == "Plumber needed"

        await SchedulingService.assign_provider(
            db, manager_actor, intervention_id, provider_actor.user_id, requires_confirmation=True
        )
        planning = await InterventionWorkflowService.start_planning(
            db, manager_actor, intervention_id, time_slots=[future_slot()]
        )
        assert planning.status == S.SCHEDULING_IN_PROGRESS

        await SchedulingService.request_confirmation(
            db, manager_actor, intervention_id, tenant_actor.user_id
        )

        first = await SchedulingService.confirm_participation(
            db, provider_actor, intervention_id, confirmed=True
        )
        assert not first.advanced
        assert (first.aggregate.confirmed, first.aggregate.required) == (1, 2)
        assert await stored_status(db, intervention_id) == S.SCHEDULING_IN_PROGRESS

        last = await SchedulingService.confirm_participation(
            db, tenant_actor, intervention_id, confirmed=True
        )
        assert last.advanced
        assert last.intervention.status == S.SCHEDULED
        assert last.intervention.scheduled_date is not None

        started = await InterventionWorkflowService.start_work(db, provider_actor, intervention_id)
        assert started.status == S.IN_PROGRESS
        assert started.started_at is not None

        completed = await InterventionWorkflowService.complete_work(
            db, provider_actor, intervention_id, complete_report()
        )
        assert completed.status == S.CLOSED_BY_PROVIDER
        assert completed.completed_at is not None

        validated = await InterventionWorkflowService.validate_by_tenant(
            db, tenant_actor, intervention_id, satisfaction=5, comment="Quick and clean"
        )
        assert validated.status == S.CLOSED_BY_TENANT
        assert validated.tenant_satisfaction == 5

        closed = await InterventionWorkflowService.finalize(
            db, manager_actor, intervention_id, final_cost=180.0
        )
        assert closed.status == S.CLOSED_BY_MANAGER
        assert closed.final_cost == 180.0
        assert closed.finalized_at is not None

        history = await InterventionWorkflowService.get_history(db, manager_actor, intervention_id)
        transitions = [(h.action, h.to_status) for h in history if h.from_status is not None]
        assert transitions == [
            ("approve", "approved"),
            ("start_planning", "scheduling_in_progress"),
            ("confirm_schedule", "scheduled"),
            ("start_work", "in_progress"),
            ("complete_work", "closed_by_provider"),
            ("validate_by_tenant", "closed_by_tenant"),
            ("finalize_by_manager", "closed_by_manager"),
        ]

        slot = (await db.execute(select(TimeSlot).where(TimeSlot.intervention_id == intervention_id))).scalar_one()
        assert TimeSlotStatus(slot.status) == TimeSlotStatus.SELECTED

    @pytest.mark.asyncio
    async def test_manager_can_finalize_without_tenant_validation(
        self, db_session, manager_actor, tenant_actor, provider_actor, lot
    ):
        db = db_session
        intervention_id = await bring_to_scheduling(
            db, manager_actor, tenant_actor, provider_actor.user_id, lot.id
        )
        await SchedulingService.confirm_participation(db, provider_actor, intervention_id, True)
        await InterventionWorkflowService.start_work(db, manager_actor, intervention_id)
        await InterventionWorkflowService.complete_work(
            db, provider_actor, intervention_id, complete_report()
        )

        closed = await InterventionWorkflowService.finalize(db, manager_actor, intervention_id)
        assert closed.status == S.CLOSED_BY_MANAGER


# ============================================================================
# Refusals
# ============================================================================

class TestRefusals:
    """A refused action never changes the stored intervention."""

    @pytest.mark.asyncio
    async def test_tenant_cannot_approve(self, db_session, tenant_actor, lot):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)

        with pytest.raises(ForbiddenError):
            await InterventionWorkflowService.approve(db_session, tenant_actor, intervention_id)

        assert await stored_status(db_session, intervention_id) == S.REQUESTED
        assert await count_rows(db_session, InterventionHistory, action="approve") == 0

    @pytest.mark.asyncio
    async def test_manager_of_another_team_cannot_approve(
        self, db_session, tenant_actor, other_manager_actor, lot
    ):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)
        with pytest.raises(ForbiddenError):
            await InterventionWorkflowService.approve(db_session, other_manager_actor, intervention_id)
        assert await stored_status(db_session, intervention_id) == S.REQUESTED

    @pytest.mark.asyncio
    async def test_admin_can_approve(self, db_session, tenant_actor, admin_actor, lot):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)
        approved = await InterventionWorkflowService.approve(db_session, admin_actor, intervention_id)
        assert approved.status == S.APPROVED

    @pytest.mark.asyncio
    async def test_action_not_allowed_from_status(self, db_session, tenant_actor, manager_actor, lot):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await InterventionWorkflowService.start_work(db_session, manager_actor, intervention_id)

        assert exc_info.value.details == {"current_status": "requested", "action": "start_work"}
        assert await stored_status(db_session, intervention_id) == S.REQUESTED

    @pytest.mark.asyncio
    async def test_reject_needs_a_reason(self, db_session, tenant_actor, manager_actor, lot):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)

        with pytest.raises(ValidationFailedError):
            await InterventionWorkflowService.reject(db_session, manager_actor, intervention_id, "no")
        assert await stored_status(db_session, intervention_id) == S.REQUESTED

        rejected = await InterventionWorkflowService.reject(
            db_session, manager_actor, intervention_id, "Handled by the building insurance"
        )
        assert rejected.status == S.REJECTED
        assert rejected.rejection_reason == "Handled by the building insurance"

    @pytest.mark.asyncio
    async def test_deactivated_manager_cannot_cancel(self, db_session, tenant_actor, manager_actor, lot):
        """Cancellation re-reads the user instead of trusting the cached profile."""
        intervention_id = await create_request(db_session, tenant_actor, lot.id)
        await UserService.update_user(db_session, manager_actor.user_id, {"is_active": False})

        with pytest.raises(ForbiddenError):
            await InterventionWorkflowService.cancel(
                db_session, manager_actor, intervention_id, "Tenant moved out last week"
            )
        assert await stored_status(db_session, intervention_id) == S.REQUESTED

    @pytest.mark.asyncio
    async def test_planning_needs_a_slot(self, db_session, tenant_actor, manager_actor, lot):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)
        await InterventionWorkflowService.approve(db_session, manager_actor, intervention_id)

        with pytest.raises(ValidationFailedError):
            await InterventionWorkflowService.start_planning(db_session, manager_actor, intervention_id)
        assert await stored_status(db_session, intervention_id) == S.APPROVED

    @pytest.mark.asyncio
    async def test_invalid_slot_leaves_nothing_behind(self, db_session, tenant_actor, manager_actor, lot):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)
        await InterventionWorkflowService.approve(db_session, manager_actor, intervention_id)

        slots = [future_slot(), future_slot(start="15:00", end="14:00")]
        with pytest.raises(ValidationFailedError):
            await InterventionWorkflowService.start_planning(
                db_session, manager_actor, intervention_id, time_slots=slots
            )
        assert await stored_status(db_session, intervention_id) == S.APPROVED
        assert await count_rows(db_session, TimeSlot) == 0

    @pytest.mark.asyncio
    async def test_quote_request_needs_the_quote_flag(
        self, db_session, tenant_actor, manager_actor, provider_actor, lot
    ):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)
        await InterventionWorkflowService.approve(db_session, manager_actor, intervention_id)

        with pytest.raises(InvalidTransitionError):
            await InterventionWorkflowService.request_quote(
                db_session, manager_actor, intervention_id, [provider_actor.user_id]
            )
        assert await stored_status(db_session, intervention_id) == S.APPROVED
        assert await count_rows(db_session, Quote) == 0

    @pytest.mark.asyncio
    async def test_unknown_intervention(self, db_session, manager_actor):

        with pytest.raises(NotFoundError):
            await InterventionWorkflowService.approve(db_session, manager_actor, uuid4())


# ============================================================================
# Work completion
# ============================================================================

class TestWorkCompletion:
    """Completion reports are validated after the guard."""

    @pytest.mark.asyncio
    async def test_incomplete_report_then_retry(
        self, db_session, manager_actor, tenant_actor, provider_actor, lot
    ):
        db = db_session
        intervention_id = await bring_to_scheduling(
            db, manager_actor, tenant_actor, provider_actor.user_id, lot.id
        )
        await SchedulingService.confirm_participation(db, provider_actor, intervention_id, True)
        await InterventionWorkflowService.start_work(db, provider_actor, intervention_id)

        report = complete_report()
        report["quality_assurance"]["warranty_given"] = False
        with pytest.raises(ValidationFailedError) as exc_info:
            await InterventionWorkflowService.complete_work(db, provider_actor, intervention_id, report)

        assert exc_info.value.details["unchecked"] == ["warranty_given"]
        assert await stored_status(db, intervention_id) == S.IN_PROGRESS
        assert await count_rows(db, WorkCompletionReport) == 0

        completed = await InterventionWorkflowService.complete_work(
            db, provider_actor, intervention_id, complete_report()
        )
        assert completed.status == S.CLOSED_BY_PROVIDER
        assert await count_rows(db, WorkCompletionReport, intervention_id=intervention_id) == 1

    @pytest.mark.asyncio
    async def test_manager_cannot_complete_work(
        self, db_session, manager_actor, tenant_actor, provider_actor, lot
    ):
        """The guard is checked before the report, even for an invalid report."""
        db = db_session
        intervention_id = await bring_to_scheduling(
            db, manager_actor, tenant_actor, provider_actor.user_id, lot.id
        )
        await SchedulingService.confirm_participation(db, provider_actor, intervention_id, True)
        await InterventionWorkflowService.start_work(db, provider_actor, intervention_id)

        with pytest.raises(ForbiddenError):
            await InterventionWorkflowService.complete_work(db, manager_actor, intervention_id, {})
        assert await stored_status(db, intervention_id) == S.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_satisfaction_out_of_range(
        self, db_session, manager_actor, tenant_actor, provider_actor, lot
    ):
        db = db_session
        intervention_id = await bring_to_scheduling(
            db, manager_actor, tenant_actor, provider_actor.user_id, lot.id
        )
        await SchedulingService.confirm_participation(db, provider_actor, intervention_id, True)
        await InterventionWorkflowService.start_work(db, provider_actor, intervention_id)
        await InterventionWorkflowService.complete_work(
            db, provider_actor, intervention_id, complete_report()
        )

        with pytest.raises(ValidationFailedError):
            await InterventionWorkflowService.validate_by_tenant(
                db, tenant_actor, intervention_id, satisfaction=9
            )
        assert await stored_status(db, intervention_id) == S.CLOSED_BY_PROVIDER


# ============================================================================
# Cancellation
# ============================================================================

class TestCancellation:
    """Tests for cancel."""

    @pytest.mark.asyncio
    async def test_cancel_closes_open_quotes(
        self, db_session, manager_actor, tenant_actor, provider_actor, second_provider_actor, lot
    ):
        db = db_session
        intervention_id = await create_request(db, tenant_actor, lot.id)
        await InterventionWorkflowService.approve(db, manager_actor, intervention_id, requires_quote=True)
        await InterventionWorkflowService.request_quote(
            db, manager_actor, intervention_id,
            [provider_actor.user_id, second_provider_actor.user_id],
        )

        cancelled = await InterventionWorkflowService.cancel(
            db, manager_actor, intervention_id, "Owner decided to renovate the kitchen"
        )

        assert cancelled.status == S.CANCELLED
        assert cancelled.cancelled_at is not None
        statuses = (
            await db.execute(select(Quote.status).where(Quote.intervention_id == intervention_id))
        ).scalars().all()
        assert [QuoteStatus(s) for s in statuses] == [QuoteStatus.CANCELLED, QuoteStatus.CANCELLED]

    @pytest.mark.asyncio
    async def test_terminal_status_refuses_everything(self, db_session, manager_actor, tenant_actor, lot):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)
        await InterventionWorkflowService.cancel(
            db_session, manager_actor, intervention_id, "Request sent by mistake"
        )

        with pytest.raises(InvalidTransitionError):
            await InterventionWorkflowService.cancel(
                db_session, manager_actor, intervention_id, "Request sent by mistake"
            )
        with pytest.raises(InvalidTransitionError):
            await InterventionWorkflowService.approve(db_session, manager_actor, intervention_id)
        assert await stored_status(db_session, intervention_id) == S.CANCELLED


# ============================================================================
# Reads
# ============================================================================

class TestReads:
    """Listings, detail and history visibility."""

    @pytest.mark.asyncio
    async def test_listing_is_scoped_by_role(
        self, db_session, manager_actor, other_manager_actor, tenant_actor, provider_actor, admin_actor, lot
    ):
        db = db_session
        intervention_id = await create_request(db, tenant_actor, lot.id)

        for actor in (manager_actor, tenant_actor, admin_actor):
            views = await InterventionWorkflowService.list_for_actor(db, actor)
            assert [v.intervention.id for v in views] == [intervention_id]
        assert await InterventionWorkflowService.list_for_actor(db, other_manager_actor) == []
        assert await InterventionWorkflowService.list_for_actor(db, provider_actor) == []

    @pytest.mark.asyncio
    async def test_listing_carries_badge_and_actions(self, db_session, manager_actor, tenant_actor, lot):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)

        manager_view = (await InterventionWorkflowService.list_for_actor(db_session, manager_actor))[0]
        assert manager_view.requires_attention
        assert manager_view.status_label == "Awaiting approval"
        assert manager_view.available_actions == [
            InterventionAction.APPROVE, InterventionAction.REJECT, InterventionAction.CANCEL,
        ]

        tenant_view = await InterventionWorkflowService.get_detail(db_session, tenant_actor, intervention_id)
        assert not tenant_view.requires_attention
        assert tenant_view.available_actions == []

    @pytest.mark.asyncio
    async def test_listing_filters_by_status(self, db_session, manager_actor, tenant_actor, lot):
        first = await create_request(db_session, tenant_actor, lot.id)
        await create_request(db_session, tenant_actor, lot.id)
        await InterventionWorkflowService.approve(db_session, manager_actor, first)

        views = await InterventionWorkflowService.list_for_actor(
            db_session, manager_actor, status=S.APPROVED
        )
        assert [v.intervention.id for v in views] == [first]

    @pytest.mark.asyncio
    async def test_outsider_cannot_read(self, db_session, tenant_actor, other_manager_actor, lot):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)
        with pytest.raises(ForbiddenError):
            await InterventionWorkflowService.get_detail(db_session, other_manager_actor, intervention_id)
        with pytest.raises(ForbiddenError):
            await InterventionWorkflowService.get_history(db_session, other_manager_actor, intervention_id)


# ============================================================================
# Notifications
# ============================================================================

class TestNotifications:
    """Notifications follow committed transitions and never undo them."""

    @pytest.mark.asyncio
    async def test_approval_notifies_the_tenant(self, db_session, manager_actor, tenant_actor, lot):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)
        await InterventionWorkflowService.approve(db_session, manager_actor, intervention_id)

        notifications = await NotificationService.list_for_user(db_session, tenant_actor.user_id)
        assert [n.event_type for n in notifications] == ["approve"]
        assert notifications[0].intervention_id == intervention_id
        assert await NotificationService.count_unread(db_session, tenant_actor.user_id) == 1

    @pytest.mark.asyncio
    async def test_creation_notifies_team_managers_not_the_actor(
        self, db_session, manager_actor, tenant_actor, lot
    ):
        await create_request(db_session, tenant_actor, lot.id)
        assert await count_rows(db_session, NotificationEvent, user_id=manager_actor.user_id) == 1
        assert await count_rows(db_session, NotificationEvent, user_id=tenant_actor.user_id) == 0

    @pytest.mark.asyncio
    async def test_failed_notification_keeps_the_transition(
        self, db_session, manager_actor, tenant_actor, lot
    ):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)

        with patch.object(
            NotificationService,
            "create_notification",
            new=AsyncMock(side_effect=RuntimeError("notification store unavailable")),
        ):
            approved = await InterventionWorkflowService.approve(
                db_session, manager_actor, intervention_id
            )

        assert approved.status == S.APPROVED
        assert await stored_status(db_session, intervention_id) == S.APPROVED
        assert await count_rows(db_session, NotificationEvent, event_type="approve") == 0

    @pytest.mark.asyncio
    async def test_mark_read(self, db_session, manager_actor, tenant_actor, lot):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)
        await InterventionWorkflowService.approve(db_session, manager_actor, intervention_id)
        notification = (await NotificationService.list_for_user(db_session, tenant_actor.user_id))[0]
        notification_id = notification.id

        with pytest.raises(ForbiddenError):
            await NotificationService.mark_read(db_session, manager_actor, notification_id)

        read = await NotificationService.mark_read(db_session, tenant_actor, notification_id)
        first_read_at = read.read_at
        assert first_read_at is not None
        again = await NotificationService.mark_read(db_session, tenant_actor, notification_id)
        assert again.read_at == first_read_at
        assert await NotificationService.count_unread(db_session, tenant_actor.user_id) == 0


# ============================================================================
# Assignments
# ============================================================================

class TestAssignments:
    """Provider assignment rules."""

    @pytest.mark.asyncio
    async def test_assigning_twice_keeps_one_row(
        self, db_session, manager_actor, tenant_actor, provider_actor, lot
    ):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)
        await SchedulingService.assign_provider(db_session, manager_actor, intervention_id, provider_actor.user_id)
        await SchedulingService.assign_provider(
            db_session, manager_actor, intervention_id, provider_actor.user_id, requires_confirmation=True
        )

        rows = (
            await db_session.execute(
                select(InterventionAssignment).where(
                    InterventionAssignment.intervention_id == intervention_id,
                    InterventionAssignment.role == AssignmentRole.PROVIDER,
                )
            )
        ).scalars().all()
        assert len(rows) == 1
        assert rows[0].requires_confirmation

    @pytest.mark.asyncio
    async def test_only_providers_can_be_assigned(
        self, db_session, manager_actor, tenant_actor, lot
    ):
        intervention_id = await create_request(db_session, tenant_actor, lot.id)
        with pytest.raises(ValidationFailedError):
            await SchedulingService.assign_provider(
                db_session, manager_actor, intervention_id, tenant_actor.user_id
            )
