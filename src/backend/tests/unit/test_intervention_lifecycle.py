"""
Unit tests for the intervention lifecycle state machine.

Tests cover:
- The full status x action table (allowed pairs and their targets)
- Terminal statuses
- Guards per role, team and assignment
- Preconditions (quote flag, accepted quote, time slots)
- Role-level and membership-level action listings
- Confirmation aggregation and target slot resolution
"""

from dataclasses import dataclass
from datetime import date, time
from typing import Optional
from uuid import uuid4

import pytest

from core.exceptions import ForbiddenError, InvalidTransitionError
from db import (
    ConfirmationStatus,
    InterventionAction,
    InterventionStatus,
    TimeSlotStatus,
    UserRole,
)
from services import intervention_lifecycle as lifecycle
from services.intervention_lifecycle import (
    Actor,
    Guard,
    InterventionParty,
    Precondition,
)

S = InterventionStatus
A = InterventionAction

NON_TERMINAL = [
    S.REQUESTED,
    S.APPROVED,
    S.QUOTE_REQUESTED,
    S.SCHEDULING_IN_PROGRESS,
    S.SCHEDULED,
    S.IN_PROGRESS,
    S.CLOSED_BY_PROVIDER,
    S.CLOSED_BY_TENANT,
]

EXPECTED = {
    (S.REQUESTED, A.APPROVE): S.APPROVED,
    (S.REQUESTED, A.REJECT): S.REJECTED,
    (S.APPROVED, A.REQUEST_QUOTE): S.QUOTE_REQUESTED,
    (S.APPROVED, A.START_PLANNING): S.SCHEDULING_IN_PROGRESS,
    (S.QUOTE_REQUESTED, A.START_PLANNING): S.SCHEDULING_IN_PROGRESS,
    (S.SCHEDULING_IN_PROGRESS, A.CONFIRM_SCHEDULE): S.SCHEDULED,
    (S.SCHEDULED, A.START_WORK): S.IN_PROGRESS,
    (S.IN_PROGRESS, A.COMPLETE_WORK): S.CLOSED_BY_PROVIDER,
    (S.CLOSED_BY_PROVIDER, A.VALIDATE_BY_TENANT): S.CLOSED_BY_TENANT,
    (S.CLOSED_BY_PROVIDER, A.FINALIZE_BY_MANAGER): S.CLOSED_BY_MANAGER,
    (S.CLOSED_BY_TENANT, A.FINALIZE_BY_MANAGER): S.CLOSED_BY_MANAGER,
    **{(status, A.CANCEL): S.CANCELLED for status in NON_TERMINAL},
}


@dataclass
class FakeAssignment:
    requires_confirmation: bool
    confirmation_status: Optional[ConfirmationStatus] = None


@dataclass
class FakeSlot:
    status: TimeSlotStatus = TimeSlotStatus.PENDING
    selected_by_manager: bool = False
    slot_date: date = date(2030, 1, 15)
    start_time: time = time(9, 0)


@pytest.fixture
def team_id():
    return uuid4()


@pytest.fixture
def manager(team_id):
    return Actor(user_id=uuid4(), role=UserRole.MANAGER, team_id=team_id)


@pytest.fixture
def tenant(team_id):
    return Actor(user_id=uuid4(), role=UserRole.TENANT, team_id=team_id)


@pytest.fixture
def provider():
    return Actor(user_id=uuid4(), role=UserRole.PROVIDER)


@pytest.fixture
def admin():
    return Actor(user_id=uuid4(), role=UserRole.ADMIN)


@pytest.fixture
def party(team_id, tenant, provider):
    return InterventionParty(
        intervention_id=uuid4(),
        team_id=team_id,
        tenant_id=tenant.user_id,
        provider_ids=frozenset({provider.user_id}),
        participant_ids=frozenset({tenant.user_id, provider.user_id}),
    )


class TestTransitionTable:
    """Tests for the status x action table."""

    @pytest.mark.parametrize("status", list(S))
    @pytest.mark.parametrize("action", list(A))
    def test_every_pair(self, status, action):
        """Allowed pairs map to their target; every other pair is refused."""
        expected = EXPECTED.get((status, action))
        if expected is None:
            with pytest.raises(InvalidTransitionError) as exc_info:
                lifecycle.transition_for(status, action)
            assert exc_info.value.details["current_status"] == status.value
            assert exc_info.value.details["action"] == action.value
        else:
            assert lifecycle.next_status(status, action) == expected

    def test_table_has_no_extra_entries(self):
        """The table holds exactly the expected transitions."""
        actual = {
            (status, action)
            for status, actions in lifecycle.TRANSITIONS.items()
            for action in actions
        }
        assert actual == set(EXPECTED)

    @pytest.mark.parametrize("status", [S.REJECTED, S.CANCELLED, S.CLOSED_BY_MANAGER])
    def test_terminal_statuses_allow_nothing(self, status):
        assert lifecycle.is_terminal(status)
        for role in UserRole:
            assert lifecycle.available_actions(status, role) == []

    @pytest.mark.parametrize("status", NON_TERMINAL)
    def test_non_terminal_statuses_can_be_cancelled(self, status):
        assert not lifecycle.is_terminal(status)
        transition = lifecycle.transition_for(status, A.CANCEL)
        assert transition.requires_reason
        assert transition.verify_actor

    def test_reject_requires_reason(self):
        assert lifecycle.transition_for(S.REQUESTED, A.REJECT).requires_reason
        assert not lifecycle.transition_for(S.REQUESTED, A.APPROVE).requires_reason

    def test_accepts_raw_string_values(self):
        """Statuses read back as plain strings are accepted."""
        assert lifecycle.next_status("requested", "approve") == S.APPROVED


class TestGuards:
    """Tests for guard evaluation."""

    def test_team_manager_must_belong_to_team(self, manager, party):
        outsider = Actor(user_id=uuid4(), role=UserRole.MANAGER, team_id=uuid4())
        assert lifecycle.is_team_manager(manager, party)
        assert not lifecycle.is_team_manager(outsider, party)

    def test_manager_without_team_is_not_team_manager(self, party):
        loose = Actor(user_id=uuid4(), role=UserRole.MANAGER, team_id=None)
        assert not lifecycle.is_team_manager(loose, party)

    def test_approve_allows_team_manager_and_admin(self, manager, admin, tenant, provider, party):
        transition = lifecycle.transition_for(S.REQUESTED, A.APPROVE)
        lifecycle.check_guard(transition, manager, party)
        lifecycle.check_guard(transition, admin, party)
        for actor in (tenant, provider):
            with pytest.raises(ForbiddenError):
                lifecycle.check_guard(transition, actor, party)

    def test_request_quote_is_team_manager_only(self, manager, admin, party):
        transition = lifecycle.transition_for(S.APPROVED, A.REQUEST_QUOTE)
        assert lifecycle.guard_allows(transition.guard, manager, party)
        assert not lifecycle.guard_allows(transition.guard, admin, party)

    def test_assigned_provider_guard(self, provider, party):
        stranger = Actor(user_id=uuid4(), role=UserRole.PROVIDER)
        assert lifecycle.guard_allows(Guard.ASSIGNED_PROVIDER, provider, party)
        assert not lifecycle.guard_allows(Guard.ASSIGNED_PROVIDER, stranger, party)

    def test_complete_work_refuses_manager(self, manager, party):
        transition = lifecycle.transition_for(S.IN_PROGRESS, A.COMPLETE_WORK)
        with pytest.raises(ForbiddenError) as exc_info:
            lifecycle.check_guard(transition, manager, party)
        assert exc_info.value.details["guard"] == Guard.ASSIGNED_PROVIDER.value

    def test_tenant_guard_requires_the_intervention_tenant(self, tenant, party, team_id):
        neighbour = Actor(user_id=uuid4(), role=UserRole.TENANT, team_id=team_id)
        assert lifecycle.guard_allows(Guard.INTERVENTION_TENANT, tenant, party)
        assert not lifecycle.guard_allows(Guard.INTERVENTION_TENANT, neighbour, party)

    def test_system_guard_only_accepts_no_actor(self, manager, admin, party):
        transition = lifecycle.transition_for(S.SCHEDULING_IN_PROGRESS, A.CONFIRM_SCHEDULE)
        lifecycle.check_guard(transition, None, party)
        for actor in (manager, admin):
            with pytest.raises(ForbiddenError):
                lifecycle.check_guard(transition, actor, party)

    def test_user_guards_refuse_missing_actor(self, party):
        for guard in Guard:
            if guard != Guard.SYSTEM:
                assert not lifecycle.guard_allows(guard, None, party)

    def test_party_membership(self, manager, tenant, provider, admin, party):
        outsider = Actor(user_id=uuid4(), role=UserRole.TENANT, team_id=uuid4())
        for actor in (manager, tenant, provider, admin):
            assert lifecycle.is_party_member(actor, party)
        assert not lifecycle.is_party_member(outsider, party)


class TestPreconditions:
    """Tests for preconditions checked besides the guard."""

    def test_request_quote_needs_the_quote_flag(self, party):
        transition = lifecycle.transition_for(S.APPROVED, A.REQUEST_QUOTE)
        assert lifecycle.unmet_preconditions(transition, party) == [Precondition.QUOTE_FLAGGED]

        flagged = InterventionParty(
            intervention_id=party.intervention_id, team_id=party.team_id, requires_quote=True
        )
        assert lifecycle.unmet_preconditions(transition, flagged) == []

    def test_start_planning_needs_a_slot(self, party):
        transition = lifecycle.transition_for(S.APPROVED, A.START_PLANNING)
        assert lifecycle.unmet_preconditions(transition, party) == [Precondition.TIME_SLOT_AVAILABLE]
        assert lifecycle.unmet_preconditions(transition, party, proposed_slot_count=2) == []

        offered = InterventionParty(
            intervention_id=party.intervention_id, team_id=party.team_id, availability_count=1
        )
        assert lifecycle.unmet_preconditions(transition, offered) == []

    def test_start_planning_after_quotes_needs_acceptance(self, party):
        transition = lifecycle.transition_for(S.QUOTE_REQUESTED, A.START_PLANNING)
        unmet = lifecycle.unmet_preconditions(transition, party, proposed_slot_count=1)
        assert unmet == [Precondition.QUOTE_ACCEPTED]

        accepted = InterventionParty(
            intervention_id=party.intervention_id,
            team_id=party.team_id,
            has_accepted_quote=True,
            time_slot_count=1,
        )
        assert lifecycle.unmet_preconditions(transition, accepted) == []


class TestActionListings:
    """Tests for available_actions and permitted_actions."""

    def test_available_actions_by_role(self):
        assert lifecycle.available_actions(S.REQUESTED, UserRole.MANAGER) == [
            A.APPROVE, A.REJECT, A.CANCEL,
        ]
        assert lifecycle.available_actions(S.REQUESTED, UserRole.TENANT) == []
        assert lifecycle.available_actions(S.IN_PROGRESS, UserRole.PROVIDER) == [A.COMPLETE_WORK]
        assert lifecycle.available_actions(S.CLOSED_BY_PROVIDER, UserRole.TENANT) == [
            A.VALIDATE_BY_TENANT,
        ]

    def test_system_action_never_listed(self):
        for role in UserRole:
            assert A.CONFIRM_SCHEDULE not in lifecycle.available_actions(
                S.SCHEDULING_IN_PROGRESS, role
            )

    def test_permitted_actions_take_membership_into_account(self, provider, party):
        stranger = Actor(user_id=uuid4(), role=UserRole.PROVIDER)
        assert lifecycle.permitted_actions(S.SCHEDULED, provider, party) == [A.START_WORK]
        assert lifecycle.permitted_actions(S.SCHEDULED, stranger, party) == []


class TestConfirmationAggregate:
    """Tests for evaluate_aggregate."""

    def test_no_required_confirmation_is_never_all_confirmed(self):
        result = lifecycle.evaluate_aggregate([FakeAssignment(requires_confirmation=False)])
        assert result.required == 0
        assert not result.all_confirmed

    def test_all_confirmed(self):
        result = lifecycle.evaluate_aggregate([
            FakeAssignment(True, ConfirmationStatus.CONFIRMED),
            FakeAssignment(True, ConfirmationStatus.CONFIRMED),
            FakeAssignment(False),
        ])
        assert (result.required, result.confirmed) == (2, 2)
        assert result.all_confirmed

    def test_rejection_blocks_the_aggregate(self):
        result = lifecycle.evaluate_aggregate([
            FakeAssignment(True, ConfirmationStatus.CONFIRMED),
            FakeAssignment(True, ConfirmationStatus.REJECTED),
        ])
        assert result.rejected == 1
        assert not result.all_confirmed

    def test_missing_status_counts_as_pending(self):
        result = lifecycle.evaluate_aggregate([FakeAssignment(True, None)])
        assert result.pending == 1


class TestTargetSlot:
    """Tests for resolve_target_slot."""

    def test_single_pending_slot_is_the_target(self):
        slot = FakeSlot()
        assert lifecycle.resolve_target_slot([slot]) is slot

    def test_several_pending_slots_are_ambiguous(self):
        assert lifecycle.resolve_target_slot([FakeSlot(), FakeSlot()]) is None

    def test_manager_selection_wins(self):
        chosen = FakeSlot(selected_by_manager=True)
        assert lifecycle.resolve_target_slot([FakeSlot(), chosen, FakeSlot()]) is chosen

    def test_selected_slots_are_not_targets(self):
        assert lifecycle.resolve_target_slot([FakeSlot(status=TimeSlotStatus.SELECTED)]) is None

    def test_no_slots(self):
        assert lifecycle.resolve_target_slot([]) is None
