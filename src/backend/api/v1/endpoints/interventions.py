"""
Intervention API endpoints.

Reads and creation live under /interventions; lifecycle actions are posted to
the /intervention-* action routes.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.intervention import (
    ApproveRequest,
    AssignmentRead,
    ConfirmationRead,
    ConfirmParticipationRequest,
    FinalizeRequest,
    HistoryRead,
    InterventionCreate,
    InterventionDetailRead,
    InterventionListItem,
    InterventionRead,
    QuoteRequest,
    ReasonRequest,
    ScheduleRequest,
    StartWorkRequest,
    TenantValidationRequest,
)
from core.database import get_session
from core.dependencies import get_current_actor
from core.schema_base import SuccessResponse
from db import InterventionStatus
from services.intervention_lifecycle import Actor
from services.intervention_service import InterventionWorkflowService
from services.scheduling_service import SchedulingService

logger = logging.getLogger(__name__)

router = APIRouter()


def _read(intervention) -> SuccessResponse[InterventionRead]:
    return SuccessResponse(data=InterventionRead.model_validate(intervention))


# ============================================================================
# Resource routes
# ============================================================================


@router.post(
    "/interventions",
    response_model=SuccessResponse[InterventionRead],
    status_code=201,
)
async def create_intervention(
    body: InterventionCreate,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """
    Request a new intervention.

    - **lotId** / **buildingId**: Location; tenants must use their own lot
    - **urgency**: basse, normale, haute or urgente
    """
    intervention = await InterventionWorkflowService.create_intervention(
        db,
        actor,
        title=body.title,
        description=body.description,
        lot_id=body.lot_id,
        building_id=body.building_id,
        intervention_type=body.intervention_type,
        urgency=body.urgency,
        requires_quote=body.requires_quote,
    )
    return _read(intervention)


@router.get("/interventions", response_model=SuccessResponse[List[InterventionListItem]])
async def list_interventions(
    status: Optional[InterventionStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Interventions visible to the caller, newest first, with attention badges."""
    views = await InterventionWorkflowService.list_for_actor(
        db, actor, status=status, limit=limit, offset=offset
    )
    return SuccessResponse(data=[InterventionListItem.from_view(view) for view in views])


@router.get(
    "/interventions/{intervention_id}",
    response_model=SuccessResponse[InterventionDetailRead],
)
async def get_intervention(
    intervention_id: UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    view = await InterventionWorkflowService.get_detail(db, actor, intervention_id)
    return SuccessResponse(data=InterventionDetailRead.from_view(view))


@router.get(
    "/interventions/{intervention_id}/history",
    response_model=SuccessResponse[List[HistoryRead]],
)
async def get_intervention_history(
    intervention_id: UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    history = await InterventionWorkflowService.get_history(db, actor, intervention_id)
    return SuccessResponse(data=[HistoryRead.model_validate(row) for row in history])


# ============================================================================
# Lifecycle actions
# ============================================================================


@router.post("/intervention-approve", response_model=SuccessResponse[InterventionRead])
async def approve_intervention(
    body: ApproveRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """requested -> approved (team manager or admin)."""
    intervention = await InterventionWorkflowService.approve(
        db, actor, body.intervention_id, comment=body.comment, requires_quote=body.requires_quote
    )
    return _read(intervention)


@router.post("/intervention-reject", response_model=SuccessResponse[InterventionRead])
async def reject_intervention(
    body: ReasonRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """requested -> rejected. A reason is mandatory."""
    intervention = await InterventionWorkflowService.reject(
        db, actor, body.intervention_id, body.reason
    )
    return _read(intervention)


@router.post("/intervention-quote-request", response_model=SuccessResponse[InterventionRead])
async def request_quote(
    body: QuoteRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """approved -> quote_requested, one pending quote per provider."""
    intervention = await InterventionWorkflowService.request_quote(
        db,
        actor,
        body.intervention_id,
        provider_ids=body.provider_ids,
        deadline=body.deadline,
        description=body.description,
    )
    return _read(intervention)


@router.post("/intervention-schedule", response_model=SuccessResponse[InterventionRead])
async def start_planning(
    body: ScheduleRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """approved|quote_requested -> scheduling_in_progress with proposed time slots."""
    intervention = await InterventionWorkflowService.start_planning(
        db,
        actor,
        body.intervention_id,
        time_slots=[slot.model_dump() for slot in body.time_slots],
        comment=body.comment,
    )
    return _read(intervention)


@router.post(
    "/intervention-confirm-participation",
    response_model=SuccessResponse[ConfirmationRead],
)
async def confirm_participation(
    body: ConfirmParticipationRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """
    Answer a confirmation request for the target slot.

    The intervention moves to scheduled once every required participant confirmed.
    """
    outcome = await SchedulingService.confirm_participation(
        db, actor, body.intervention_id, body.confirmed, body.reason
    )
    return SuccessResponse(
        data=ConfirmationRead(
            assignment=AssignmentRead.model_validate(outcome.assignment),
            intervention=InterventionRead.model_validate(outcome.intervention),
            confirmed_count=outcome.aggregate.confirmed,
            required_count=outcome.aggregate.required,
            scheduled=outcome.advanced,
        )
    )


@router.post("/intervention-start", response_model=SuccessResponse[InterventionRead])
async def start_work(
    body: StartWorkRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """scheduled -> in_progress (assigned provider)."""
    intervention = await InterventionWorkflowService.start_work(
        db, actor, body.intervention_id, started_at=body.started_at, comment=body.comments
    )
    return _read(intervention)


@router.post("/intervention-validate-tenant", response_model=SuccessResponse[InterventionRead])
async def validate_by_tenant(
    body: TenantValidationRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """closed_by_provider -> closed_by_tenant (intervention tenant)."""
    intervention = await InterventionWorkflowService.validate_by_tenant(
        db, actor, body.intervention_id, satisfaction=body.satisfaction, comment=body.comment
    )
    return _read(intervention)


@router.post("/intervention-finalize", response_model=SuccessResponse[InterventionRead])
async def finalize_intervention(
    body: FinalizeRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """closed_by_tenant -> closed_by_manager (team manager or admin)."""
    intervention = await InterventionWorkflowService.finalize(
        db, actor, body.intervention_id, final_cost=body.final_cost, comment=body.comment
    )
    return _read(intervention)


@router.post("/intervention-cancel", response_model=SuccessResponse[InterventionRead])
async def cancel_intervention(
    body: ReasonRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Any non-terminal status -> cancelled. A reason is mandatory."""
    intervention = await InterventionWorkflowService.cancel(
        db, actor, body.intervention_id, body.reason
    )
    return _read(intervention)
