"""
Intervention schemas for API validation and serialization.
"""
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import Field

from core.schema_base import HTTPSchemaModel
from db import (
    AssignmentRole,
    ConfirmationStatus,
    InterventionAction,
    InterventionStatus,
    InterventionUrgency,
    TimeSlotStatus,
)
from services.intervention_service import InterventionView


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class InterventionCreate(HTTPSchemaModel):
    """Schema for requesting a new intervention."""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    lot_id: Optional[UUID] = None
    building_id: Optional[UUID] = None
    intervention_type: Optional[str] = Field(None, max_length=100)
    urgency: InterventionUrgency = InterventionUrgency.NORMALE
    requires_quote: bool = False


class InterventionActionRequest(HTTPSchemaModel):
    """Common body of the action endpoints."""
    intervention_id: UUID
    comment: Optional[str] = Field(None, max_length=2000)


class ApproveRequest(InterventionActionRequest):
    requires_quote: Optional[bool] = None


class ReasonRequest(HTTPSchemaModel):
    """Body of reject and cancel. The reason length is checked by the workflow."""
    intervention_id: UUID
    reason: Optional[str] = Field(None, max_length=2000)


class QuoteRequest(HTTPSchemaModel):
    intervention_id: UUID
    provider_ids: List[UUID] = Field(default_factory=list)
    deadline: Optional[datetime] = None
    description: Optional[str] = Field(None, max_length=5000)


class TimeSlotProposal(HTTPSchemaModel):
    """A slot as entered by the user; format checks happen in the workflow."""
    date: str = Field(..., description="YYYY-MM-DD")
    start_time: str = Field(..., description="HH:MM")
    end_time: str = Field(..., description="HH:MM")


class ScheduleRequest(InterventionActionRequest):
    time_slots: List[TimeSlotProposal] = Field(default_factory=list)


class TimeSlotsRequest(HTTPSchemaModel):
    time_slots: List[TimeSlotProposal] = Field(..., min_length=1)


class SelectSlotRequest(HTTPSchemaModel):
    slot_id: UUID


class ParticipantRequest(HTTPSchemaModel):
    user_id: UUID


class ProviderAssignRequest(HTTPSchemaModel):
    provider_id: UUID
    requires_confirmation: bool = False


class ConfirmParticipationRequest(HTTPSchemaModel):
    intervention_id: UUID
    confirmed: bool
    reason: Optional[str] = Field(None, max_length=2000)


class StartWorkRequest(HTTPSchemaModel):
    intervention_id: UUID
    started_at: Optional[datetime] = None
    comments: Optional[str] = Field(None, max_length=2000)


class WorkCompletionRequest(HTTPSchemaModel):
    """Completion report. Required fields and the checklist are checked by the workflow."""
    work_summary: Optional[str] = Field(None, max_length=2000)
    work_details: Optional[str] = Field(None, max_length=10000)
    materials_used: Optional[str] = Field(None, max_length=5000)
    actual_duration_hours: Optional[float] = None
    actual_cost: Optional[float] = None
    issues_encountered: Optional[str] = Field(None, max_length=5000)
    recommendations: Optional[str] = Field(None, max_length=5000)
    quality_assurance: Dict[str, Any] = Field(default_factory=dict)


class TenantValidationRequest(InterventionActionRequest):
    satisfaction: Optional[int] = None


class FinalizeRequest(InterventionActionRequest):
    final_cost: Optional[float] = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class InterventionRead(HTTPSchemaModel):
    """Schema for reading intervention data."""
    id: UUID
    reference: str
    title: str
    description: str
    intervention_type: Optional[str] = None
    urgency: InterventionUrgency
    status: InterventionStatus
    team_id: UUID
    lot_id: Optional[UUID] = None
    building_id: Optional[UUID] = None
    tenant_id: Optional[UUID] = None
    created_by: UUID
    requires_quote: bool
    scheduled_date: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    manager_comment: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    estimated_cost: Optional[float] = None
    final_cost: Optional[float] = None
    tenant_satisfaction: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class AssignmentRead(HTTPSchemaModel):
    id: UUID
    user_id: UUID
    role: AssignmentRole
    is_primary: bool
    requires_confirmation: bool
    confirmation_status: Optional[ConfirmationStatus] = None
    confirmed_at: Optional[datetime] = None
    confirmation_reason: Optional[str] = None


class TimeSlotRead(HTTPSchemaModel):
    id: UUID
    slot_date: date
    start_time: time
    end_time: time
    status: TimeSlotStatus
    selected_by_manager: bool
    proposed_by: UUID


class ReportRead(HTTPSchemaModel):
    id: UUID
    provider_id: UUID
    work_summary: str
    work_details: str
    materials_used: Optional[str] = None
    actual_duration_hours: float
    actual_cost: Optional[float] = None
    issues_encountered: Optional[str] = None
    recommendations: Optional[str] = None
    quality_assurance: Dict[str, Any]
    submitted_at: datetime


class HistoryRead(HTTPSchemaModel):
    id: UUID
    action: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    actor_id: Optional[UUID] = None
    comment: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class InterventionListItem(InterventionRead):
    """Intervention with the caller-specific badge, label and actions."""
    requires_attention: bool
    status_label: str
    available_actions: List[InterventionAction]

    @classmethod
    def from_view(cls, view: InterventionView) -> "InterventionListItem":
        return cls(
            **InterventionRead.model_validate(view.intervention).model_dump(),
            requires_attention=view.requires_attention,
            status_label=view.status_label,
            available_actions=view.available_actions,
        )


class InterventionDetailRead(InterventionListItem):
    """Full intervention view with its collaborators."""
    assignments: List[AssignmentRead] = Field(default_factory=list)
    time_slots: List[TimeSlotRead] = Field(default_factory=list)
    reports: List[ReportRead] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: InterventionView) -> "InterventionDetailRead":
        item = InterventionListItem.from_view(view)
        return cls(
            **item.model_dump(),
            assignments=[AssignmentRead.model_validate(a) for a in view.assignments],
            time_slots=[TimeSlotRead.model_validate(s) for s in view.time_slots],
            reports=[ReportRead.model_validate(r) for r in view.reports],
        )


class ConfirmationRead(HTTPSchemaModel):
    """Outcome of a participation answer."""
    assignment: AssignmentRead
    intervention: InterventionRead
    confirmed_count: int
    required_count: int
    scheduled: bool
