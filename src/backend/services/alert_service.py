"""
"Requires your attention" badge derivation.

Pure functions over an intervention's status, the caller's role and the
intervention's quotes and time slots. Nothing here is persisted.
"""

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Iterable, Optional

from core.config import settings
from db import (
    ACTIVE_QUOTE_STATUSES,
    InterventionStatus,
    QuoteStatus,
    TimeSlotStatus,
    UserRole,
    utc_now,
)

S = InterventionStatus

ALERT_TABLE: Dict[UserRole, FrozenSet[InterventionStatus]] = {
    UserRole.MANAGER: frozenset(
        {
            S.REQUESTED,
            S.APPROVED,
            S.QUOTE_REQUESTED,
            S.SCHEDULING_IN_PROGRESS,
            S.CLOSED_BY_PROVIDER,
            S.CLOSED_BY_TENANT,
        }
    ),
    UserRole.PROVIDER: frozenset(
        {S.QUOTE_REQUESTED, S.SCHEDULING_IN_PROGRESS, S.SCHEDULED, S.IN_PROGRESS}
    ),
    UserRole.TENANT: frozenset({S.SCHEDULING_IN_PROGRESS, S.CLOSED_BY_PROVIDER}),
    UserRole.ADMIN: frozenset(),
}

STATUS_LABELS: Dict[InterventionStatus, str] = {
    S.REQUESTED: "Requested",
    S.APPROVED: "Approved",
    S.REJECTED: "Rejected",
    S.QUOTE_REQUESTED: "Quote requested",
    S.SCHEDULING_IN_PROGRESS: "Scheduling",
    S.SCHEDULED: "Scheduled",
    S.IN_PROGRESS: "In progress",
    S.CLOSED_BY_PROVIDER: "Closed by provider",
    S.CLOSED_BY_TENANT: "Closed by tenant",
    S.CLOSED_BY_MANAGER: "Closed",
    S.CANCELLED: "Cancelled",
}

# Wording that differs from the default for a given role
ROLE_STATUS_LABELS: Dict[UserRole, Dict[InterventionStatus, str]] = {
    UserRole.TENANT: {
        S.REQUESTED: "Request sent",
        S.QUOTE_REQUESTED: "Awaiting estimate",
        S.CLOSED_BY_PROVIDER: "Awaiting your validation",
    },
    UserRole.PROVIDER: {
        S.QUOTE_REQUESTED: "Quote to submit",
        S.SCHEDULING_IN_PROGRESS: "Availability needed",
    },
    UserRole.MANAGER: {
        S.REQUESTED: "Awaiting approval",
        S.CLOSED_BY_TENANT: "Awaiting finalization",
    },
}


@dataclass(frozen=True)
class QuoteSummary:
    total: int
    by_status: Dict[str, int]
    active: int
    accepted: int

    @property
    def has_active(self) -> bool:
        return self.active > 0

    @property
    def has_accepted(self) -> bool:
        return self.accepted > 0


def _quote_status(quote) -> QuoteStatus:
    return QuoteStatus(getattr(quote, "status", quote))


def classify_quotes(quotes: Iterable) -> QuoteSummary:
    """Count quotes (rows or bare statuses) by status."""
    statuses = [_quote_status(q) for q in quotes]
    counts = Counter(status.value for status in statuses)
    return QuoteSummary(
        total=len(statuses),
        by_status=dict(counts),
        active=sum(1 for status in statuses if status in ACTIVE_QUOTE_STATUSES),
        accepted=counts.get(QuoteStatus.ACCEPTED.value, 0),
    )


def requires_attention(
    status: InterventionStatus,
    role: UserRole,
    quotes: Iterable = (),
    time_slots: Iterable = (),
    scheduled_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Whether the caller should see the attention badge.

    Args:
        status: Current intervention status
        role: Caller's role
        quotes: Quote rows or statuses of the intervention
        time_slots: Time slots of the intervention, used when scheduled_date is unset
        scheduled_date: Scheduled start (naive UTC)
        now: Reference time (naive UTC), defaults to the current time
    """
    status = InterventionStatus(status)
    role = UserRole(role)

    if status not in ALERT_TABLE.get(role, frozenset()):
        return False

    if role == UserRole.MANAGER and status == S.QUOTE_REQUESTED:
        return classify_quotes(quotes).has_active

    if role == UserRole.PROVIDER and status == S.SCHEDULED:
        starts_at = scheduled_date or _selected_slot_start(time_slots)
        if starts_at is None:
            return False
        now = now or utc_now()
        window = timedelta(hours=settings.workflow.provider_alert_window_hours)
        return now <= starts_at <= now + window

    return True


def _selected_slot_start(time_slots: Iterable) -> Optional[datetime]:
    for slot in time_slots:
        if getattr(slot, "status", None) == TimeSlotStatus.SELECTED:
            return slot.starts_at
    return None


def status_label(status: InterventionStatus, role: Optional[UserRole] = None) -> str:
    status = InterventionStatus(status)
    if role is not None:
        label = ROLE_STATUS_LABELS.get(UserRole(role), {}).get(status)
        if label:
            return label
    return STATUS_LABELS[status]
