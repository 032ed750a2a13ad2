"""
Provider quotes.

Quote status moves draft/pending -> sent -> accepted|rejected, with
cancelled and expired as side exits. At most one quote of an intervention
is ever accepted: accepting one rejects every other open quote in the same
transaction.
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.decorators import log_database_operation, transactional_database_operation
from core.exceptions import (
    AlreadyProcessedError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from db import (
    ACTIVE_QUOTE_STATUSES,
    Intervention,
    InterventionStatus,
    Quote,
    QuoteStatus,
    utc_now,
)
from services import intervention_lifecycle as lifecycle
from services.alert_service import QuoteSummary, classify_quotes
from services.history_service import HistoryService
from services.intervention_lifecycle import Actor
from services.intervention_service import (
    InterventionWorkflowService,
    to_naive_utc,
    validate_reason,
)
from services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

SUBMITTABLE_STATUSES = frozenset({QuoteStatus.DRAFT, QuoteStatus.PENDING})
RESUBMITTABLE_STATUSES = frozenset({QuoteStatus.CANCELLED, QuoteStatus.EXPIRED})
SUPERSEDED_REASON = "Another quote was accepted for this intervention"


class QuoteService:
    """Quote decisions for providers and managers."""

    @staticmethod
    async def _load(db: AsyncSession, quote_id: UUID) -> Quote:
        result = await db.execute(
            select(Quote).where(Quote.id == quote_id).execution_options(populate_existing=True)
        )
        quote = result.scalar_one_or_none()
        if quote is None:
            raise NotFoundError("Quote", quote_id)
        return quote

    @staticmethod
    async def _require_team_manager(
        db: AsyncSession, actor: Actor, quote: Quote
    ) -> Intervention:
        intervention = await InterventionWorkflowService.get_intervention(db, quote.intervention_id)
        party = await InterventionWorkflowService.load_party(db, intervention)
        if not lifecycle.is_team_manager(actor, party):
            raise ForbiddenError("Only a manager of the team can decide on quotes")
        return intervention

    @staticmethod
    def _require_owner(actor: Actor, quote: Quote) -> None:
        if actor.user_id != quote.provider_id:
            raise ForbiddenError("Only the provider who owns the quote can change it")

    @staticmethod
    async def _set_status(
        db: AsyncSession, quote: Quote, expected: QuoteStatus, **values
    ) -> Quote:
        """Conditional status write; a concurrent change surfaces as InvalidTransition."""
        result = await db.execute(
            update(Quote)
            .where(Quote.id == quote.id, Quote.status == expected)
            .values(updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.refresh(quote)
            raise InvalidTransitionError(quote.status, values.get("status", "update_quote"))
        await db.flush()
        await db.refresh(quote)
        return quote

    @staticmethod
    async def _claim_intervention(db: AsyncSession, quote: Quote, now: datetime) -> None:
        """
        Record the accepted price on the intervention, once.

        The write only matches while the intervention waits for quotes and has
        no price yet, so two concurrent accepts of different quotes cannot both
        succeed: the second one matches no row.
        """
        result = await db.execute(
            update(Intervention)
            .where(
                Intervention.id == quote.intervention_id,
                Intervention.status == InterventionStatus.QUOTE_REQUESTED,
                Intervention.estimated_cost.is_(None),
            )
            .values(estimated_cost=quote.total_amount, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(
                quote.status, "accept_quote",
                "Another quote is already accepted for this intervention",
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    @log_database_operation("quote listing", level="debug")
    async def list_quotes(
        db: AsyncSession, actor: Actor, intervention_id: UUID
    ) -> List[Quote]:
        """
        Quotes of an intervention. Providers only see their own.
        """
        await InterventionWorkflowService.require_party_member(db, actor, intervention_id)

        conditions = [Quote.intervention_id == intervention_id]
        if actor.role.value == "provider":
            conditions.append(Quote.provider_id == actor.user_id)
        result = await db.execute(
            select(Quote).where(and_(*conditions)).order_by(Quote.created_at)
        )
        return list(result.scalars().all())

    @staticmethod
    async def summarize(db: AsyncSession, actor: Actor, intervention_id: UUID) -> QuoteSummary:
        """Quote counts by status, scoped like list_quotes."""
        await InterventionWorkflowService.require_party_member(db, actor, intervention_id)

        query = select(Quote.status).where(Quote.intervention_id == intervention_id)
        if actor.role.value == "provider":
            query = query.where(Quote.provider_id == actor.user_id)
        result = await db.execute(query)
        return classify_quotes(result.scalars().all())

    # ------------------------------------------------------------------
    # Provider operations
    # ------------------------------------------------------------------

    @staticmethod
    @transactional_database_operation("submit_quote")
    async def submit_quote(
        db: AsyncSession,
        actor: Actor,
        quote_id: UUID,
        labor_cost: float,
        materials_cost: float,
        description: str,
        valid_until: Optional[datetime] = None,
    ) -> Quote:
        """
        Provider sends a priced quote.

        Raises:
            ForbiddenError: Not the owning provider
            InvalidTransitionError: Quote is not draft or pending
            ValidationFailedError: Negative costs, zero total or empty description
        """
        quote = await QuoteService._load(db, quote_id)
        QuoteService._require_owner(actor, quote)
        if quote.status not in SUBMITTABLE_STATUSES:
            raise InvalidTransitionError(quote.status, "submit_quote")

        if labor_cost is None or materials_cost is None or labor_cost < 0 or materials_cost < 0:
            raise ValidationFailedError("Costs must be zero or positive", {"field": "labor_cost"})
        total = round(labor_cost + materials_cost, 2)
        if total <= 0:
            raise ValidationFailedError("Quote total must be greater than 0", {"field": "total_amount"})
        description = (description or "").strip()
        if not description or len(description) > 5000:
            raise ValidationFailedError(
                "Description is required (max 5000 characters)", {"field": "description"}
            )

        quote = await QuoteService._set_status(
            db, quote, quote.status,
            status=QuoteStatus.SENT,
            labor_cost=labor_cost,
            materials_cost=materials_cost,
            total_amount=total,
            description=description,
            valid_until=to_naive_utc(valid_until) if valid_until else None,
            submitted_at=utc_now(),
        )
        HistoryService.record(
            db, quote.intervention_id, "quote_submitted", actor.user_id,
            details={"quote_id": str(quote.id), "total_amount": total},
        )
        await db.flush()
        return quote

    @staticmethod
    @transactional_database_operation("resubmit_quote")
    async def resubmit_quote(db: AsyncSession, actor: Actor, quote_id: UUID) -> Quote:
        """
        Reopen a cancelled or expired quote so it can be priced again.

        Raises:
            ForbiddenError: Not the owning provider
            InvalidTransitionError: Quote is not cancelled or expired, or the
                intervention is no longer waiting for quotes
        """
        quote = await QuoteService._load(db, quote_id)
        QuoteService._require_owner(actor, quote)
        if quote.status not in RESUBMITTABLE_STATUSES:
            raise InvalidTransitionError(quote.status, "resubmit_quote")

        intervention = await InterventionWorkflowService.get_intervention(db, quote.intervention_id)
        if intervention.status != InterventionStatus.QUOTE_REQUESTED:
            raise InvalidTransitionError(intervention.status, "resubmit_quote")

        quote = await QuoteService._set_status(
            db, quote, quote.status,
            status=QuoteStatus.PENDING,
            rejection_reason=None,
            reviewed_at=None,
            reviewed_by=None,
        )
        HistoryService.record(
            db, quote.intervention_id, "quote_resubmitted", actor.user_id,
            details={"quote_id": str(quote.id)},
        )
        await db.flush()
        return quote

    # ------------------------------------------------------------------
    # Manager operations
    # ------------------------------------------------------------------

    @staticmethod
    @transactional_database_operation("accept_quote")
    async def accept_quote(db: AsyncSession, actor: Actor, quote_id: UUID) -> Quote:
        """
        Accept a sent quote and reject every other open quote of the intervention.

        Raises:
            ForbiddenError: Not a manager of the team
            AlreadyProcessedError: This quote is already accepted
            InvalidTransitionError: Quote not sent, intervention not waiting
                for quotes, or another quote already accepted
        """
        quote = await QuoteService._load(db, quote_id)
        intervention = await QuoteService._require_team_manager(db, actor, quote)

        if quote.status == QuoteStatus.ACCEPTED:
            raise AlreadyProcessedError("Quote already accepted")
        if intervention.status != InterventionStatus.QUOTE_REQUESTED:
            raise InvalidTransitionError(intervention.status, "accept_quote")
        if quote.status != QuoteStatus.SENT:
            raise InvalidTransitionError(quote.status, "accept_quote")

        other_accepted = await db.scalar(
            select(Quote.id).where(
                Quote.intervention_id == quote.intervention_id,
                Quote.status == QuoteStatus.ACCEPTED,
                Quote.id != quote.id,
            )
        )
        if other_accepted is not None:
            raise InvalidTransitionError(
                quote.status, "accept_quote",
                "Another quote is already accepted for this intervention",
            )

        now = utc_now()
        await QuoteService._claim_intervention(db, quote, now)
        quote = await QuoteService._set_status(
            db, quote, QuoteStatus.SENT,
            status=QuoteStatus.ACCEPTED,
            reviewed_at=now,
            reviewed_by=actor.user_id,
        )

        superseded = await db.execute(
            update(Quote)
            .where(
                Quote.intervention_id == quote.intervention_id,
                Quote.id != quote.id,
                Quote.status.in_(list(ACTIVE_QUOTE_STATUSES)),
            )
            .values(
                status=QuoteStatus.REJECTED,
                rejection_reason=SUPERSEDED_REASON,
                reviewed_at=now,
                reviewed_by=actor.user_id,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        HistoryService.record(
            db, quote.intervention_id, "quote_accepted", actor.user_id,
            details={
                "quote_id": str(quote.id),
                "total_amount": quote.total_amount,
                "rejected_others": superseded.rowcount,
            },
        )
        await db.flush()
        await db.refresh(intervention)
        logger.info(
            f"Quote accepted | Quote: {quote.id} | Intervention: {quote.intervention_id} | "
            f"Other quotes rejected: {superseded.rowcount}"
        )
        return quote

    @staticmethod
    @transactional_database_operation("reject_quote")
    async def reject_quote(
        db: AsyncSession, actor: Actor, quote_id: UUID, reason: Optional[str]
    ) -> Quote:
        """
        Reject a pending or sent quote.

        Raises:
            ForbiddenError: Not a manager of the team
            AlreadyProcessedError: Quote already rejected
            InvalidTransitionError: Quote is not pending or sent
            ValidationFailedError: Reason too short
        """
        quote = await QuoteService._load(db, quote_id)
        await QuoteService._require_team_manager(db, actor, quote)

        if quote.status == QuoteStatus.REJECTED:
            raise AlreadyProcessedError("Quote already rejected")
        if quote.status not in ACTIVE_QUOTE_STATUSES:
            raise InvalidTransitionError(quote.status, "reject_quote")
        reason = validate_reason(reason)

        quote = await QuoteService._set_status(
            db, quote, quote.status,
            status=QuoteStatus.REJECTED,
            rejection_reason=reason,
            reviewed_at=utc_now(),
            reviewed_by=actor.user_id,
        )
        HistoryService.record(
            db, quote.intervention_id, "quote_rejected", actor.user_id,
            comment=reason, details={"quote_id": str(quote.id)},
        )
        await db.flush()
        return quote

    @staticmethod
    @transactional_database_operation("cancel_quote")
    async def cancel_quote(db: AsyncSession, actor: Actor, quote_id: UUID) -> Quote:
        """
        Withdraw a quote request that the provider has not answered yet.

        Raises:
            ForbiddenError: Not a manager of the team
            InvalidTransitionError: Quote is not pending
        """
        quote = await QuoteService._load(db, quote_id)
        await QuoteService._require_team_manager(db, actor, quote)
        if quote.status != QuoteStatus.PENDING:
            raise InvalidTransitionError(quote.status, "cancel_quote")

        quote = await QuoteService._set_status(
            db, quote, QuoteStatus.PENDING, status=QuoteStatus.CANCELLED
        )
        HistoryService.record(
            db, quote.intervention_id, "quote_cancelled", actor.user_id,
            details={"quote_id": str(quote.id)},
        )
        await db.flush()
        return quote

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    @staticmethod
    @transactional_database_operation("expire_overdue_quotes")
    async def expire_overdue_quotes(db: AsyncSession, now: Optional[datetime] = None) -> int:
        """Mark sent quotes past their validity date as expired. Returns the count."""
        now = now or utc_now()
        result = await db.execute(
            update(Quote)
            .where(
                Quote.status == QuoteStatus.SENT,
                Quote.valid_until.is_not(None),
                Quote.valid_until < now,
            )
            .values(status=QuoteStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Expired {result.rowcount} overdue quotes")
        return result.rowcount

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    @staticmethod
    async def notify(db: AsyncSession, actor: Actor, quote: Quote, event_type: str) -> None:
        """Tell the other side about a quote decision."""
        intervention = await InterventionWorkflowService.get_intervention(db, quote.intervention_id)
        recipients = None
        if event_type in ("quote_accepted", "quote_rejected"):
            recipients = [quote.provider_id]
        await NotificationDispatcher.notify(
            db, intervention, event_type, actor.user_id,
            recipients=recipients,
            payload={"quote_id": str(quote.id)},
            keep_loaded=[quote],
        )
