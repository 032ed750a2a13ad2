"""
Intervention collaborator endpoints.

Time slots, availabilities, participants, providers and the work completion
report of a single intervention, addressed as /intervention/{intervention_id}/...
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.availability import (
    AvailabilitiesRequest,
    AvailabilityListRead,
    AvailabilityMatchRead,
    AvailabilityRead,
)
from api.schemas.intervention import (
    AssignmentRead,
    InterventionRead,
    ParticipantRequest,
    ProviderAssignRequest,
    SelectSlotRequest,
    TimeSlotRead,
    TimeSlotsRequest,
    WorkCompletionRequest,
)
from core.database import get_session
from core.dependencies import get_current_actor
from core.schema_base import SuccessResponse
from services.availability_service import AvailabilityService
from services.intervention_lifecycle import Actor
from services.intervention_service import InterventionWorkflowService
from services.scheduling_service import SchedulingService

router = APIRouter()


@router.post(
    "/intervention/{intervention_id}/time-slots",
    response_model=SuccessResponse[List[TimeSlotRead]],
    status_code=201,
)
async def propose_time_slots(
    intervention_id: UUID,
    body: TimeSlotsRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Add candidate slots while scheduling is in progress."""
    slots = await SchedulingService.propose_time_slots(
        db, actor, intervention_id, [slot.model_dump() for slot in body.time_slots]
    )
    return SuccessResponse(data=[TimeSlotRead.model_validate(slot) for slot in slots])


@router.post(
    "/intervention/{intervention_id}/select-slot",
    response_model=SuccessResponse[TimeSlotRead],
)
async def select_time_slot(
    intervention_id: UUID,
    body: SelectSlotRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Choose the slot participants are asked to confirm (team manager)."""
    slot = await SchedulingService.select_time_slot(db, actor, intervention_id, body.slot_id)
    return SuccessResponse(data=TimeSlotRead.model_validate(slot))


@router.post(
    "/intervention/{intervention_id}/participants",
    response_model=SuccessResponse[AssignmentRead],
)
async def request_confirmation(
    intervention_id: UUID,
    body: ParticipantRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Require a participant's confirmation; re-opens a rejected one."""
    assignment = await SchedulingService.request_confirmation(
        db, actor, intervention_id, body.user_id
    )
    return SuccessResponse(data=AssignmentRead.model_validate(assignment))


@router.post(
    "/intervention/{intervention_id}/providers",
    response_model=SuccessResponse[AssignmentRead],
    status_code=201,
)
async def assign_provider(
    intervention_id: UUID,
    body: ProviderAssignRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    assignment = await SchedulingService.assign_provider(
        db, actor, intervention_id, body.provider_id, body.requires_confirmation
    )
    return SuccessResponse(data=AssignmentRead.model_validate(assignment))


@router.post(
    "/intervention/{intervention_id}/work-completion",
    response_model=SuccessResponse[InterventionRead],
)
async def complete_work(
    intervention_id: UUID,
    body: WorkCompletionRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """
    in_progress -> closed_by_provider with a completion report.

    Every quality-assurance item must be checked.
    """
    intervention = await InterventionWorkflowService.complete_work(
        db, actor, intervention_id, body.model_dump()
    )
    return SuccessResponse(data=InterventionRead.model_validate(intervention))


@router.post(
    "/intervention/{intervention_id}/availabilities",
    response_model=SuccessResponse[List[AvailabilityRead]],
)
async def replace_availabilities(
    intervention_id: UUID,
    body: AvailabilitiesRequest,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Replace the caller's availabilities; an empty list clears them."""
    rows = await AvailabilityService.replace_availabilities(
        db, actor, intervention_id, [a.model_dump() for a in body.availabilities]
    )
    return SuccessResponse(data=[AvailabilityRead.model_validate(row) for row in rows])


@router.get(
    "/intervention/{intervention_id}/availabilities",
    response_model=SuccessResponse[AvailabilityListRead],
)
async def list_availabilities(
    intervention_id: UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    listing = await AvailabilityService.list_availabilities(db, actor, intervention_id)
    return SuccessResponse(
        data=AvailabilityListRead(
            own=[AvailabilityRead.model_validate(row) for row in listing.own],
            participants=[AvailabilityRead.model_validate(row) for row in listing.participants],
        )
    )


@router.get(
    "/intervention/{intervention_id}/availability-matches",
    response_model=SuccessResponse[AvailabilityMatchRead],
)
async def match_availabilities(
    intervention_id: UUID,
    db: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
):
    """Periods of at least 30 minutes shared by the participants, best first."""
    result = await AvailabilityService.match(db, actor, intervention_id)
    return SuccessResponse(data=AvailabilityMatchRead.from_result(result))
