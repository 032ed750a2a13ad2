"""
Enumerations used by the database models and the intervention workflow.

Values are stored as plain strings (non-native enums) so the schema stays
portable across PostgreSQL and SQLite.
"""

from enum import Enum


class InterventionStatus(str, Enum):
    """
    Lifecycle status of an intervention.

    Used by Intervention.status field.
    """
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    QUOTE_REQUESTED = "quote_requested"
    SCHEDULING_IN_PROGRESS = "scheduling_in_progress"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    CLOSED_BY_PROVIDER = "closed_by_provider"
    CLOSED_BY_TENANT = "closed_by_tenant"
    CLOSED_BY_MANAGER = "closed_by_manager"
    CANCELLED = "cancelled"


# closed_by_manager has no outgoing transition, so it is terminal as well
TERMINAL_STATUSES = frozenset(
    {
        InterventionStatus.REJECTED,
        InterventionStatus.CANCELLED,
        InterventionStatus.CLOSED_BY_MANAGER,
    }
)


class InterventionAction(str, Enum):
    """Actions that move an intervention from one status to another."""
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_QUOTE = "request_quote"
    START_PLANNING = "start_planning"
    CONFIRM_SCHEDULE = "confirm_schedule"
    START_WORK = "start_work"
    COMPLETE_WORK = "complete_work"
    VALIDATE_BY_TENANT = "validate_by_tenant"
    FINALIZE_BY_MANAGER = "finalize_by_manager"
    CANCEL = "cancel"


class UserRole(str, Enum):
    """
    Application role of a user.

    Used by User.role field.
    """
    TENANT = "tenant"
    MANAGER = "manager"
    PROVIDER = "provider"
    ADMIN = "admin"


class InterventionUrgency(str, Enum):
    """Urgency level chosen when the intervention is requested."""
    BASSE = "basse"
    NORMALE = "normale"
    HAUTE = "haute"
    URGENTE = "urgente"


class AssignmentRole(str, Enum):
    """Role a user plays on a given intervention."""
    TENANT = "tenant"
    MANAGER = "manager"
    PROVIDER = "provider"


class ConfirmationStatus(str, Enum):
    """
    Confirmation sub-state of an assignment.

    Only meaningful when InterventionAssignment.requires_confirmation is set.
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class TimeSlotStatus(str, Enum):
    """Status of a proposed time slot."""
    PENDING = "pending"
    SELECTED = "selected"


class QuoteStatus(str, Enum):
    """
    Status of a provider quote.

    Used by Quote.status field.
    """
    DRAFT = "draft"
    PENDING = "pending"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


ACTIVE_QUOTE_STATUSES = frozenset({QuoteStatus.PENDING, QuoteStatus.SENT})


class DocumentType(str, Enum):
    """Category of an uploaded intervention document."""
    CHAT_ATTACHMENT = "chat_attachment"
    PROPERTY_DOCUMENT = "property_document"
    CONTRACT_DOCUMENT = "contract_document"
    WORK_COMPLETION = "work_completion"
    QUOTE = "quote"
    INVOICE = "invoice"
    PHOTO = "photo"
    OTHER = "other"
