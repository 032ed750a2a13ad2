"""
Database models and enums.

Import models from here rather than from db.models so call sites stay stable
if the module is split later.
"""
from .enums import (
    ACTIVE_QUOTE_STATUSES,
    TERMINAL_STATUSES,
    AssignmentRole,
    ConfirmationStatus,
    DocumentType,
    InterventionAction,
    InterventionStatus,
    InterventionUrgency,
    QuoteStatus,
    TimeSlotStatus,
    UserRole,
)
from .models import (
    Building,
    Intervention,
    InterventionAssignment,
    InterventionDocument,
    InterventionHistory,
    Lot,
    NotificationEvent,
    Quote,
    TableModel,
    Team,
    TimeSlot,
    User,
    UserAvailability,
    WorkCompletionReport,
    utc_now,
)

__all__ = [
    # Enums
    "ACTIVE_QUOTE_STATUSES",
    "TERMINAL_STATUSES",
    "AssignmentRole",
    "ConfirmationStatus",
    "DocumentType",
    "InterventionAction",
    "InterventionStatus",
    "InterventionUrgency",
    "QuoteStatus",
    "TimeSlotStatus",
    "UserRole",
    # Identity and property
    "Team",
    "User",
    "Building",
    "Lot",
    # Intervention workflow
    "Intervention",
    "InterventionAssignment",
    "TimeSlot",
    "UserAvailability",
    "Quote",
    "WorkCompletionReport",
    "InterventionDocument",
    "InterventionHistory",
    "NotificationEvent",
    # Helpers
    "TableModel",
    "utc_now",
]
