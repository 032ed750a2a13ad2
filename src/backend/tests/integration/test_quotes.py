"""
Integration tests for provider quotes.

Tests:
- Submission (ownership, amounts, status)
- Acceptance rejects every other open quote
- Planning from quote_requested needs an accepted quote
- Rejection, cancellation, expiry and resubmission
- Provider visibility
"""

from datetime import timedelta

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import (
    AlreadyProcessedError,
    ForbiddenError,
    InvalidTransitionError,
    ValidationFailedError,
)
from db import Intervention, InterventionStatus, Quote, QuoteStatus, utc_now
from services.intervention_service import InterventionWorkflowService
from services.quote_service import SUPERSEDED_REASON, QuoteService
from tests.factories import future_slot


# ============================================================================
# Helpers
# ============================================================================

async def reload_quote(db: AsyncSession, quote_id) -> Quote:
    result = await db.execute(
        select(Quote).where(Quote.id == quote_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def quotes_requested(db, manager_actor, tenant_actor, lot_id, provider_ids):
    """Intervention in quote_requested with one pending quote per provider."""
    intervention = await InterventionWorkflowService.create_intervention(
        db,
        tenant_actor,
        title="Remplacement chaudiere",
        description="The boiler is fifteen years old and keeps failing.",
        lot_id=lot_id,
    )
    intervention_id = intervention.id
    await InterventionWorkflowService.approve(db, manager_actor, intervention_id, requires_quote=True)
    await InterventionWorkflowService.request_quote(
        db, manager_actor, intervention_id, provider_ids, description="Full boiler replacement"
    )
    quotes = await QuoteService.list_quotes(db, manager_actor, intervention_id)
    by_provider = {q.provider_id: q.id for q in quotes}
    return intervention_id, [by_provider[pid] for pid in provider_ids]


async def submit(db, provider_actor, quote_id, labor=900.0, materials=1600.0, **kwargs):
    return await QuoteService.submit_quote(
        db, provider_actor, quote_id,
        labor_cost=labor,
        materials_cost=materials,
        description="Condensing boiler, installation and disposal of the old unit",
        **kwargs,
    )


# ============================================================================
# Request and submission
# ============================================================================

class TestQuoteSubmission:
    """Tests for request_quote and submit_quote."""

    @pytest.mark.asyncio
    async def test_request_creates_pending_quotes_and_assignments(
        self, db_session, manager_actor, tenant_actor, provider_actor, second_provider_actor, lot
    ):
        intervention_id, quote_ids = await quotes_requested(
            db_session, manager_actor, tenant_actor, lot.id,
            [provider_actor.user_id, second_provider_actor.user_id],
        )

        intervention = await InterventionWorkflowService.get_intervention(db_session, intervention_id)
        assert intervention.status == InterventionStatus.QUOTE_REQUESTED
        for quote_id in quote_ids:
            assert (await reload_quote(db_session, quote_id)).status == QuoteStatus.PENDING

        view = await InterventionWorkflowService.get_detail(db_session, provider_actor, intervention_id)
        assert view.intervention.id == intervention_id

    @pytest.mark.asyncio
    async def test_submit_prices_the_quote(
        self, db_session, manager_actor, tenant_actor, provider_actor, lot
    ):
        _, (quote_id,) = await quotes_requested(
            db_session, manager_actor, tenant_actor, lot.id, [provider_actor.user_id]
        )

        quote = await submit(db_session, provider_actor, quote_id, labor=900.0, materials=1600.5)

        assert quote.status == QuoteStatus.SENT
        assert quote.total_amount == 2500.5
        assert quote.submitted_at is not None

        with pytest.raises(InvalidTransitionError):
            await submit(db_session, provider_actor, quote_id)

    @pytest.mark.asyncio
    async def test_only_the_owner_can_submit(
        self, db_session, manager_actor, tenant_actor, provider_actor, second_provider_actor, lot
    ):
        _, (quote_id,) = await quotes_requested(
            db_session, manager_actor, tenant_actor, lot.id, [provider_actor.user_id]
        )

        with pytest.raises(ForbiddenError):
            await submit(db_session, second_provider_actor, quote_id)
        assert (await reload_quote(db_session, quote_id)).status == QuoteStatus.PENDING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("labor, materials", [(0.0, 0.0), (-10.0, 50.0)])
    async def test_invalid_amounts(
        self, db_session, manager_actor, tenant_actor, provider_actor, lot, labor, materials
    ):
        _, (quote_id,) = await quotes_requested(
            db_session, manager_actor, tenant_actor, lot.id, [provider_actor.user_id]
        )

        with pytest.raises(ValidationFailedError):
            await submit(db_session, provider_actor, quote_id, labor=labor, materials=materials)
        assert (await reload_quote(db_session, quote_id)).status == QuoteStatus.PENDING

    @pytest.mark.asyncio
    async def test_providers_only_see_their_own_quotes(
        self, db_session, manager_actor, tenant_actor, provider_actor, second_provider_actor, lot
    ):
        intervention_id, (first_id, _) = await quotes_requested(
            db_session, manager_actor, tenant_actor, lot.id,
            [provider_actor.user_id, second_provider_actor.user_id],
        )

        own = await QuoteService.list_quotes(db_session, provider_actor, intervention_id)
        assert [q.id for q in own] == [first_id]
        assert len(await QuoteService.list_quotes(db_session, manager_actor, intervention_id)) == 2


# ============================================================================
# Decisions
# ============================================================================

class TestQuoteDecisions:
    """Tests for accept_quote and reject_quote."""

    @pytest.mark.asyncio
    async def test_accepting_one_rejects_the_others(
        self, db_session, manager_actor, tenant_actor, provider_actor, second_provider_actor, lot
    ):
        db = db_session
        intervention_id, (first_id, second_id) = await quotes_requested(
            db, manager_actor, tenant_actor, lot.id,
            [provider_actor.user_id, second_provider_actor.user_id],
        )
        await submit(db, provider_actor, first_id, labor=1000.0, materials=1500.0)
        await submit(db, second_provider_actor, second_id, labor=800.0, materials=1400.0)

        accepted = await QuoteService.accept_quote(db, manager_actor, second_id)

        assert accepted.status == QuoteStatus.ACCEPTED
        assert accepted.reviewed_by == manager_actor.user_id
        other = await reload_quote(db, first_id)
        assert other.status == QuoteStatus.REJECTED
        assert other.rejection_reason == SUPERSEDED_REASON

        intervention = await InterventionWorkflowService.get_intervention(db, intervention_id)
        assert intervention.estimated_cost == 2200.0

        summary = await QuoteService.summarize(db, manager_actor, intervention_id)
        assert summary.has_accepted
        assert summary.active == 0

    @pytest.mark.asyncio
    async def test_accepting_twice(
        self, db_session, manager_actor, tenant_actor, provider_actor, second_provider_actor, lot
    ):
        db = db_session
        _, (first_id, second_id) = await quotes_requested(
            db, manager_actor, tenant_actor, lot.id,
            [provider_actor.user_id, second_provider_actor.user_id],
        )
        await submit(db, provider_actor, first_id)
        await QuoteService.accept_quote(db, manager_actor, first_id)

        with pytest.raises(AlreadyProcessedError):
            await QuoteService.accept_quote(db, manager_actor, first_id)
        with pytest.raises(InvalidTransitionError):
            await QuoteService.accept_quote(db, manager_actor, second_id)

        accepted = (
            await db.execute(select(Quote.id).where(Quote.status == QuoteStatus.ACCEPTED))
        ).scalars().all()
        assert accepted == [first_id]

    @pytest.mark.asyncio
    async def test_price_already_recorded_blocks_a_second_acceptance(
        self, db_session, manager_actor, tenant_actor, provider_actor, second_provider_actor, lot
    ):
        db = db_session
        intervention_id, (first_id, second_id) = await quotes_requested(
            db, manager_actor, tenant_actor, lot.id,
            [provider_actor.user_id, second_provider_actor.user_id],
        )
        await submit(db, provider_actor, first_id)
        await submit(db, second_provider_actor, second_id)

        # A concurrent acceptance has already claimed the intervention
        await db.execute(
            update(Intervention)
            .where(Intervention.id == intervention_id)
            .values(estimated_cost=2500.0)
        )
        await db.commit()

        with pytest.raises(InvalidTransitionError):
            await QuoteService.accept_quote(db, manager_actor, second_id)

        assert (await reload_quote(db, second_id)).status == QuoteStatus.SENT
        assert (await reload_quote(db, first_id)).status == QuoteStatus.SENT
        intervention = await InterventionWorkflowService.get_intervention(db, intervention_id)
        assert intervention.estimated_cost == 2500.0

    @pytest.mark.asyncio
    async def test_pending_quote_cannot_be_accepted(
        self, db_session, manager_actor, tenant_actor, provider_actor, lot
    ):
        _, (quote_id,) = await quotes_requested(
            db_session, manager_actor, tenant_actor, lot.id, [provider_actor.user_id]
        )
        with pytest.raises(InvalidTransitionError):
            await QuoteService.accept_quote(db_session, manager_actor, quote_id)

    @pytest.mark.asyncio
    async def test_only_team_managers_decide(
        self, db_session, manager_actor, other_manager_actor, tenant_actor, provider_actor, lot
    ):
        _, (quote_id,) = await quotes_requested(
            db_session, manager_actor, tenant_actor, lot.id, [provider_actor.user_id]
        )
        await submit(db_session, provider_actor, quote_id)

        for actor in (other_manager_actor, provider_actor, tenant_actor):
            with pytest.raises(ForbiddenError):
                await QuoteService.accept_quote(db_session, actor, quote_id)
        assert (await reload_quote(db_session, quote_id)).status == QuoteStatus.SENT

    @pytest.mark.asyncio
    async def test_reject_with_reason(
        self, db_session, manager_actor, tenant_actor, provider_actor, lot
    ):
        _, (quote_id,) = await quotes_requested(
            db_session, manager_actor, tenant_actor, lot.id, [provider_actor.user_id]
        )
        await submit(db_session, provider_actor, quote_id)

        with pytest.raises(ValidationFailedError):
            await QuoteService.reject_quote(db_session, manager_actor, quote_id, "expensive")

        rejected = await QuoteService.reject_quote(
            db_session, manager_actor, quote_id, "Too expensive compared to last year"
        )
        assert rejected.status == QuoteStatus.REJECTED
        assert rejected.rejection_reason == "Too expensive compared to last year"

        with pytest.raises(AlreadyProcessedError):
            await QuoteService.reject_quote(
                db_session, manager_actor, quote_id, "Too expensive compared to last year"
            )


# ============================================================================
# Planning after quotes
# ============================================================================

class TestPlanningAfterQuotes:
    """start_planning from quote_requested."""

    @pytest.mark.asyncio
    async def test_planning_needs_an_accepted_quote(
        self, db_session, manager_actor, tenant_actor, provider_actor, lot
    ):
        db = db_session
        intervention_id, (quote_id,) = await quotes_requested(
            db, manager_actor, tenant_actor, lot.id, [provider_actor.user_id]
        )

        with pytest.raises(InvalidTransitionError) as exc_info:
            await InterventionWorkflowService.start_planning(
                db, manager_actor, intervention_id, time_slots=[future_slot()]
            )
        assert exc_info.value.details["current_status"] == "quote_requested"

        await submit(db, provider_actor, quote_id)
        await QuoteService.accept_quote(db, manager_actor, quote_id)

        intervention = await InterventionWorkflowService.start_planning(
            db, provider_actor, intervention_id, time_slots=[future_slot()]
        )
        assert intervention.status == InterventionStatus.SCHEDULING_IN_PROGRESS


# ============================================================================
# Cancellation, expiry and resubmission
# ============================================================================

class TestQuoteLifecycleExits:
    """Tests for cancel_quote, expire_overdue_quotes and resubmit_quote."""

    @pytest.mark.asyncio
    async def test_cancel_then_resubmit(
        self, db_session, manager_actor, tenant_actor, provider_actor, second_provider_actor, lot
    ):
        _, (quote_id,) = await quotes_requested(
            db_session, manager_actor, tenant_actor, lot.id, [provider_actor.user_id]
        )

        with pytest.raises(ForbiddenError):
            await QuoteService.cancel_quote(db_session, provider_actor, quote_id)

        cancelled = await QuoteService.cancel_quote(db_session, manager_actor, quote_id)
        assert cancelled.status == QuoteStatus.CANCELLED

        with pytest.raises(ForbiddenError):
            await QuoteService.resubmit_quote(db_session, second_provider_actor, quote_id)

        reopened = await QuoteService.resubmit_quote(db_session, provider_actor, quote_id)
        assert reopened.status == QuoteStatus.PENDING

        with pytest.raises(InvalidTransitionError):
            await QuoteService.resubmit_quote(db_session, provider_actor, quote_id)

    @pytest.mark.asyncio
    async def test_sent_quote_cannot_be_cancelled(
        self, db_session, manager_actor, tenant_actor, provider_actor, lot
    ):
        _, (quote_id,) = await quotes_requested(
            db_session, manager_actor, tenant_actor, lot.id, [provider_actor.user_id]
        )
        await submit(db_session, provider_actor, quote_id)

        with pytest.raises(InvalidTransitionError):
            await QuoteService.cancel_quote(db_session, manager_actor, quote_id)

    @pytest.mark.asyncio
    async def test_overdue_quotes_expire(
        self, db_session, manager_actor, tenant_actor, provider_actor, second_provider_actor, lot
    ):
        db = db_session
        _, (stale_id, fresh_id) = await quotes_requested(
            db, manager_actor, tenant_actor, lot.id,
            [provider_actor.user_id, second_provider_actor.user_id],
        )
        now = utc_now()
        await submit(db, provider_actor, stale_id, valid_until=now - timedelta(days=1))
        await submit(db, second_provider_actor, fresh_id, valid_until=now + timedelta(days=30))

        assert await QuoteService.expire_overdue_quotes(db, now=now) == 1
        assert (await reload_quote(db, stale_id)).status == QuoteStatus.EXPIRED
        assert (await reload_quote(db, fresh_id)).status == QuoteStatus.SENT

        with pytest.raises(InvalidTransitionError):
            await QuoteService.accept_quote(db, manager_actor, stale_id)

        reopened = await QuoteService.resubmit_quote(db, provider_actor, stale_id)
        assert reopened.status == QuoteStatus.PENDING
        assert await QuoteService.expire_overdue_quotes(db, now=now) == 0
