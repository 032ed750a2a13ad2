"""
Quote schemas for API validation and serialization.
"""
from datetime import datetime
from typing import Dict, Optional
from uuid import UUID

from pydantic import Field

from core.schema_base import HTTPSchemaModel
from db import QuoteStatus


class QuoteSubmit(HTTPSchemaModel):
    """Schema for a provider pricing a quote."""
    labor_cost: float
    materials_cost: float = 0
    description: str = Field(..., max_length=5000)
    valid_until: Optional[datetime] = None


class QuoteReject(HTTPSchemaModel):
    reason: Optional[str] = Field(None, max_length=2000)


class QuoteRead(HTTPSchemaModel):
    """Schema for reading quote data."""
    id: UUID
    intervention_id: UUID
    provider_id: UUID
    status: QuoteStatus
    labor_cost: Optional[float] = None
    materials_cost: Optional[float] = None
    total_amount: Optional[float] = None
    description: Optional[str] = None
    valid_until: Optional[datetime] = None
    deadline: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime


class QuoteSummaryRead(HTTPSchemaModel):
    """Quote counts of an intervention, by status."""
    total: int
    by_status: Dict[str, int]
    active: int
    accepted: int
    has_accepted: bool
