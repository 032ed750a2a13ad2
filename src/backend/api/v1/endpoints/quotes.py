"""
Quote API endpoints.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.quote import QuoteRead, QuoteReject, QuoteSubmit, QuoteSummaryRead
from core.database import get_session
from core.dependencies import get_current_actor
from core.schema_base import SuccessResponse
from services.intervention_lifecycle import Actor
from services.quote_service import QuoteService

router = APIRouter()


@router.get(
    "/interventions/{intervention_id}/quotes",
    response_model=SuccessResponse[List[QuoteRead]],
)
async def list_quotes(
    intervention_id: UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Quotes of an intervention; providers only see their own."""
    quotes = await QuoteService.list_quotes(db, actor, intervention_id)
    return SuccessResponse(data=[QuoteRead.model_validate(quote) for quote in quotes])


@router.get(
    "/interventions/{intervention_id}/quotes/summary",
    response_model=SuccessResponse[QuoteSummaryRead],
)
async def quote_summary(
    intervention_id: UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Quote counts by status, used for the comparison header."""
    summary = await QuoteService.summarize(db, actor, intervention_id)
    return SuccessResponse(
        data=QuoteSummaryRead(
            total=summary.total,
            by_status=summary.by_status,
            active=summary.active,
            accepted=summary.accepted,
            has_accepted=summary.has_accepted,
        )
    )


@router.post("/quotes/{quote_id}/submit", response_model=SuccessResponse[QuoteRead])
async def submit_quote(
    quote_id: UUID,
    body: QuoteSubmit,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Provider prices a draft or pending quote."""
    quote = await QuoteService.submit_quote(
        db,
        actor,
        quote_id,
        labor_cost=body.labor_cost,
        materials_cost=body.materials_cost,
        description=body.description,
        valid_until=body.valid_until,
    )
    await QuoteService.notify(db, actor, quote, "quote_submitted")
    return SuccessResponse(data=QuoteRead.model_validate(quote))


@router.post("/quotes/{quote_id}/accept", response_model=SuccessResponse[QuoteRead])
async def accept_quote(
    quote_id: UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Accept a sent quote; every other open quote is rejected."""
    quote = await QuoteService.accept_quote(db, actor, quote_id)
    await QuoteService.notify(db, actor, quote, "quote_accepted")
    return SuccessResponse(data=QuoteRead.model_validate(quote))


@router.post("/quotes/{quote_id}/reject", response_model=SuccessResponse[QuoteRead])
async def reject_quote(
    quote_id: UUID,
    body: QuoteReject,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    quote = await QuoteService.reject_quote(db, actor, quote_id, body.reason)
    await QuoteService.notify(db, actor, quote, "quote_rejected")
    return SuccessResponse(data=QuoteRead.model_validate(quote))


@router.post("/quotes/{quote_id}/cancel", response_model=SuccessResponse[QuoteRead])
async def cancel_quote(
    quote_id: UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    quote = await QuoteService.cancel_quote(db, actor, quote_id)
    return SuccessResponse(data=QuoteRead.model_validate(quote))


@router.post("/quotes/{quote_id}/resubmit", response_model=SuccessResponse[QuoteRead])
async def resubmit_quote(
    quote_id: UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    quote = await QuoteService.resubmit_quote(db, actor, quote_id)
    return SuccessResponse(data=QuoteRead.model_validate(quote))
