"""
Business logic services for the intervention workflow.
"""
from .document_service import DocumentService
from .intervention_service import InterventionWorkflowService
from .quote_service import QuoteService
from .scheduling_service import SchedulingService
from .user_service import UserService

__all__ = [
    "UserService",
    "InterventionWorkflowService",
    "SchedulingService",
    "QuoteService",
    "DocumentService",
]
