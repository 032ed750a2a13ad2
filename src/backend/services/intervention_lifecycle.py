"""
Intervention lifecycle state machine.

The whole legal-transition surface lives in TRANSITIONS: a mapping from the
current status to the actions allowed from it, each with its guard and
preconditions. Everything here is pure; persistence, notifications and
logging are handled by the workflow services.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from core.exceptions import ForbiddenError, InvalidTransitionError
from db import (
    TERMINAL_STATUSES,
    ConfirmationStatus,
    InterventionAction,
    InterventionStatus,
    TimeSlotStatus,
    UserRole,
)

S = InterventionStatus
A = InterventionAction


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as seen by guards."""

    user_id: UUID
    role: UserRole
    team_id: Optional[UUID] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class InterventionParty:
    """Snapshot of who is involved in an intervention, and facts guards need."""

    intervention_id: UUID
    team_id: UUID
    tenant_id: Optional[UUID] = None
    provider_ids: FrozenSet[UUID] = frozenset()
    participant_ids: FrozenSet[UUID] = frozenset()
    requires_quote: bool = False
    time_slot_count: int = 0
    availability_count: int = 0
    has_accepted_quote: bool = False


class Guard(str, Enum):
    """Who may trigger a transition."""

    TEAM_MANAGER = "team_manager"
    TEAM_MANAGER_OR_ADMIN = "team_manager_or_admin"
    TEAM_MANAGER_OR_ASSIGNED_PROVIDER = "team_manager_or_assigned_provider"
    ASSIGNED_PROVIDER = "assigned_provider"
    INTERVENTION_TENANT = "intervention_tenant"
    SYSTEM = "system"


class Precondition(str, Enum):
    """Facts about the intervention that must hold besides the guard."""

    QUOTE_FLAGGED = "quote_flagged"
    TIME_SLOT_AVAILABLE = "time_slot_available"
    QUOTE_ACCEPTED = "quote_accepted"


# Roles that can satisfy a guard at all, used for role-level action listings
GUARD_ROLES: Dict[Guard, FrozenSet[UserRole]] = {
    Guard.TEAM_MANAGER: frozenset({UserRole.MANAGER}),
    Guard.TEAM_MANAGER_OR_ADMIN: frozenset({UserRole.MANAGER, UserRole.ADMIN}),
    Guard.TEAM_MANAGER_OR_ASSIGNED_PROVIDER: frozenset({UserRole.MANAGER, UserRole.PROVIDER}),
    Guard.ASSIGNED_PROVIDER: frozenset({UserRole.PROVIDER}),
    Guard.INTERVENTION_TENANT: frozenset({UserRole.TENANT}),
    Guard.SYSTEM: frozenset(),
}


@dataclass(frozen=True)
class Transition:
    from_status: InterventionStatus
    action: InterventionAction
    to_status: InterventionStatus
    guard: Guard
    preconditions: Tuple[Precondition, ...] = ()
    requires_reason: bool = False
    # Re-read the actor from the database before applying
    verify_actor: bool = False


_TABLE: List[Transition] = [
    Transition(S.REQUESTED, A.APPROVE, S.APPROVED, Guard.TEAM_MANAGER_OR_ADMIN),
    Transition(
        S.REQUESTED, A.REJECT, S.REJECTED, Guard.TEAM_MANAGER_OR_ADMIN,
        requires_reason=True, verify_actor=True,
    ),
    Transition(
        S.APPROVED, A.REQUEST_QUOTE, S.QUOTE_REQUESTED, Guard.TEAM_MANAGER,
        preconditions=(Precondition.QUOTE_FLAGGED,),
    ),
    Transition(
        S.APPROVED, A.START_PLANNING, S.SCHEDULING_IN_PROGRESS,
        Guard.TEAM_MANAGER_OR_ASSIGNED_PROVIDER,
        preconditions=(Precondition.TIME_SLOT_AVAILABLE,),
    ),
    Transition(
        S.QUOTE_REQUESTED, A.START_PLANNING, S.SCHEDULING_IN_PROGRESS,
        Guard.TEAM_MANAGER_OR_ASSIGNED_PROVIDER,
        preconditions=(Precondition.QUOTE_ACCEPTED, Precondition.TIME_SLOT_AVAILABLE),
    ),
    Transition(S.SCHEDULING_IN_PROGRESS, A.CONFIRM_SCHEDULE, S.SCHEDULED, Guard.SYSTEM),
    Transition(
        S.SCHEDULED, A.START_WORK, S.IN_PROGRESS, Guard.TEAM_MANAGER_OR_ASSIGNED_PROVIDER
    ),
    Transition(S.IN_PROGRESS, A.COMPLETE_WORK, S.CLOSED_BY_PROVIDER, Guard.ASSIGNED_PROVIDER),
    Transition(
        S.CLOSED_BY_PROVIDER, A.VALIDATE_BY_TENANT, S.CLOSED_BY_TENANT,
        Guard.INTERVENTION_TENANT,
    ),
    Transition(
        S.CLOSED_BY_PROVIDER, A.FINALIZE_BY_MANAGER, S.CLOSED_BY_MANAGER,
        Guard.TEAM_MANAGER_OR_ADMIN,
    ),
    Transition(
        S.CLOSED_BY_TENANT, A.FINALIZE_BY_MANAGER, S.CLOSED_BY_MANAGER,
        Guard.TEAM_MANAGER_OR_ADMIN,
    ),
] + [
    Transition(
        status, A.CANCEL, S.CANCELLED, Guard.TEAM_MANAGER_OR_ADMIN,
        requires_reason=True, verify_actor=True,
    )
    for status in S
    if status not in TERMINAL_STATUSES
]

TRANSITIONS: Dict[InterventionStatus, Dict[InterventionAction, Transition]] = {
    status: {} for status in S
}
for _transition in _TABLE:
    TRANSITIONS[_transition.from_status][_transition.action] = _transition


def transition_for(status: InterventionStatus, action: InterventionAction) -> Transition:
    """Return the transition for (status, action) or raise InvalidTransitionError."""
    transition = TRANSITIONS.get(InterventionStatus(status), {}).get(InterventionAction(action))
    if transition is None:
        raise InvalidTransitionError(status, action)
    return transition


def next_status(status: InterventionStatus, action: InterventionAction) -> InterventionStatus:
    return transition_for(status, action).to_status


def is_terminal(status: InterventionStatus) -> bool:
    return not TRANSITIONS.get(InterventionStatus(status))


def available_actions(status: InterventionStatus, role: UserRole) -> List[InterventionAction]:
    """User-triggerable actions a role could take from a status, ignoring membership."""
    return [
        action
        for action, transition in TRANSITIONS.get(InterventionStatus(status), {}).items()
        if role in GUARD_ROLES[transition.guard]
    ]


def is_team_manager(actor: Actor, party: InterventionParty) -> bool:
    return (
        actor.role == UserRole.MANAGER
        and actor.team_id is not None
        and actor.team_id == party.team_id
    )


def is_party_member(actor: Actor, party: InterventionParty) -> bool:
    """True when the actor may see the intervention at all."""
    return (
        actor.is_admin
        or is_team_manager(actor, party)
        or actor.user_id == party.tenant_id
        or actor.user_id in party.participant_ids
    )


def guard_allows(guard: Guard, actor: Optional[Actor], party: InterventionParty) -> bool:
    if guard == Guard.SYSTEM:
        return actor is None
    if actor is None:
        return False

    if guard == Guard.TEAM_MANAGER:
        return is_team_manager(actor, party)
    if guard == Guard.TEAM_MANAGER_OR_ADMIN:
        return actor.is_admin or is_team_manager(actor, party)
    if guard == Guard.TEAM_MANAGER_OR_ASSIGNED_PROVIDER:
        return is_team_manager(actor, party) or (
            actor.role == UserRole.PROVIDER and actor.user_id in party.provider_ids
        )
    if guard == Guard.ASSIGNED_PROVIDER:
        return actor.role == UserRole.PROVIDER and actor.user_id in party.provider_ids
    if guard == Guard.INTERVENTION_TENANT:
        return actor.role == UserRole.TENANT and actor.user_id == party.tenant_id
    return False


def check_guard(transition: Transition, actor: Optional[Actor], party: InterventionParty) -> None:
    """Raise ForbiddenError unless the actor satisfies the transition's guard."""
    if not guard_allows(transition.guard, actor, party):
        raise ForbiddenError(
            f"Not allowed to {transition.action.value} this intervention",
            {"action": transition.action.value, "guard": transition.guard.value},
        )


def unmet_preconditions(
    transition: Transition,
    party: InterventionParty,
    proposed_slot_count: int = 0,
) -> List[Precondition]:
    """Preconditions of the transition that the party snapshot does not satisfy."""
    unmet = []
    for precondition in transition.preconditions:
        if precondition == Precondition.QUOTE_FLAGGED and not party.requires_quote:
            unmet.append(precondition)
        elif precondition == Precondition.QUOTE_ACCEPTED and not party.has_accepted_quote:
            unmet.append(precondition)
        elif (
            precondition == Precondition.TIME_SLOT_AVAILABLE
            and party.time_slot_count + party.availability_count + proposed_slot_count < 1
        ):
            unmet.append(precondition)
    return unmet


def permitted_actions(
    status: InterventionStatus,
    actor: Actor,
    party: InterventionParty,
) -> List[InterventionAction]:
    """Actions the actor may trigger right now, membership included."""
    return [
        action
        for action, transition in TRANSITIONS.get(InterventionStatus(status), {}).items()
        if guard_allows(transition.guard, actor, party)
    ]


# ---------------------------------------------------------------------------
# Multi-party confirmation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AggregateResult:
    required: int
    confirmed: int
    pending: int
    rejected: int

    @property
    def all_confirmed(self) -> bool:
        return self.required > 0 and self.confirmed == self.required


def evaluate_aggregate(assignments: Iterable) -> AggregateResult:
    """
    Count required confirmations by status.

    Only assignments flagged `requires_confirmation` take part; the result is
    recomputed from the full set every time.
    """
    required = [a for a in assignments if a.requires_confirmation]
    statuses = [
        ConfirmationStatus(a.confirmation_status) if a.confirmation_status else ConfirmationStatus.PENDING
        for a in required
    ]
    return AggregateResult(
        required=len(required),
        confirmed=statuses.count(ConfirmationStatus.CONFIRMED),
        pending=statuses.count(ConfirmationStatus.PENDING),
        rejected=statuses.count(ConfirmationStatus.REJECTED),
    )


def resolve_target_slot(slots: Sequence):
    """
    The slot participants are confirming.

    A slot selected by the manager wins; otherwise the only pending slot.
    Returns None when there is no unambiguous target.
    """
    selected = [s for s in slots if s.selected_by_manager and s.status == TimeSlotStatus.PENDING]
    if len(selected) == 1:
        return selected[0]
    if selected:
        return None

    pending = [s for s in slots if s.status == TimeSlotStatus.PENDING]
    if len(pending) == 1:
        return pending[0]
    return None
