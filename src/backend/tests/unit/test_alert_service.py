"""
Unit tests for the attention badge and status labels.

Tests cover:
- Role x status alert table
- Manager quote_requested rule (active quotes only)
- Provider scheduled rule (start within the lookahead window)
- Quote classification
- Role-specific status labels
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

import pytest

from db import InterventionStatus, QuoteStatus, TimeSlotStatus, UserRole
from services.alert_service import classify_quotes, requires_attention, status_label

S = InterventionStatus
NOW = datetime(2030, 5, 10, 8, 0)


@dataclass
class FakeQuote:
    status: QuoteStatus


@dataclass
class FakeSlot:
    slot_date: date
    start_time: time
    status: TimeSlotStatus = TimeSlotStatus.PENDING

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.slot_date, self.start_time)


class TestAlertTable:
    """Tests for the plain role x status table."""

    @pytest.mark.parametrize(
        "status",
        [S.REQUESTED, S.APPROVED, S.SCHEDULING_IN_PROGRESS, S.CLOSED_BY_PROVIDER, S.CLOSED_BY_TENANT],
    )
    def test_manager_alerts(self, status):
        assert requires_attention(status, UserRole.MANAGER)

    @pytest.mark.parametrize("status", [S.SCHEDULED, S.IN_PROGRESS, S.CANCELLED, S.CLOSED_BY_MANAGER])
    def test_manager_quiet(self, status):
        assert not requires_attention(status, UserRole.MANAGER)

    @pytest.mark.parametrize("status", [S.SCHEDULING_IN_PROGRESS, S.CLOSED_BY_PROVIDER])
    def test_tenant_alerts(self, status):
        assert requires_attention(status, UserRole.TENANT)

    @pytest.mark.parametrize("status", [S.REQUESTED, S.APPROVED, S.SCHEDULED, S.CLOSED_BY_TENANT])
    def test_tenant_quiet(self, status):
        assert not requires_attention(status, UserRole.TENANT)

    @pytest.mark.parametrize("status", [S.QUOTE_REQUESTED, S.SCHEDULING_IN_PROGRESS, S.IN_PROGRESS])
    def test_provider_alerts(self, status):
        assert requires_attention(status, UserRole.PROVIDER)

    @pytest.mark.parametrize("status", list(S))
    def test_admin_never_alerted(self, status):
        assert not requires_attention(status, UserRole.ADMIN)


class TestManagerQuoteRule:
    """quote_requested only alerts a manager while a quote is still open."""

    def test_active_quote_alerts(self):
        quotes = [FakeQuote(QuoteStatus.SENT), FakeQuote(QuoteStatus.REJECTED)]
        assert requires_attention(S.QUOTE_REQUESTED, UserRole.MANAGER, quotes=quotes)

    def test_no_active_quote_is_quiet(self):
        quotes = [FakeQuote(QuoteStatus.REJECTED), FakeQuote(QuoteStatus.EXPIRED)]
        assert not requires_attention(S.QUOTE_REQUESTED, UserRole.MANAGER, quotes=quotes)

    def test_bare_statuses_are_accepted(self):
        assert requires_attention(S.QUOTE_REQUESTED, UserRole.MANAGER, quotes=["pending"])


class TestProviderScheduledRule:
    """scheduled alerts a provider only when the start is within the window."""

    def test_start_within_window(self):
        assert requires_attention(
            S.SCHEDULED, UserRole.PROVIDER, scheduled_date=NOW + timedelta(hours=5), now=NOW
        )

    def test_start_beyond_window(self):
        assert not requires_attention(
            S.SCHEDULED, UserRole.PROVIDER, scheduled_date=NOW + timedelta(days=3), now=NOW
        )

    def test_start_in_the_past(self):
        assert not requires_attention(
            S.SCHEDULED, UserRole.PROVIDER, scheduled_date=NOW - timedelta(hours=1), now=NOW
        )

    def test_falls_back_to_selected_slot(self):
        slots = [
            FakeSlot(date(2030, 5, 20), time(9, 0)),
            FakeSlot(date(2030, 5, 10), time(14, 0), TimeSlotStatus.SELECTED),
        ]
        assert requires_attention(S.SCHEDULED, UserRole.PROVIDER, time_slots=slots, now=NOW)

    def test_no_date_is_quiet(self):
        assert not requires_attention(S.SCHEDULED, UserRole.PROVIDER, now=NOW)


class TestClassifyQuotes:
    """Tests for classify_quotes."""

    def test_counts(self):
        summary = classify_quotes([
            FakeQuote(QuoteStatus.PENDING),
            FakeQuote(QuoteStatus.SENT),
            FakeQuote(QuoteStatus.ACCEPTED),
            FakeQuote(QuoteStatus.REJECTED),
        ])
        assert summary.total == 4
        assert summary.active == 2
        assert summary.has_accepted
        assert summary.by_status["rejected"] == 1

    def test_empty(self):
        summary = classify_quotes([])
        assert summary.total == 0
        assert not summary.has_active
        assert not summary.has_accepted


class TestStatusLabel:
    """Tests for status_label."""

    def test_default_label(self):
        assert status_label(S.CLOSED_BY_MANAGER) == "Closed"

    def test_role_specific_label(self):
        assert status_label(S.CLOSED_BY_PROVIDER, UserRole.TENANT) == "Awaiting your validation"
        assert status_label(S.CLOSED_BY_PROVIDER, UserRole.MANAGER) == "Closed by provider"

    def test_every_status_has_a_label(self):
        for status in S:
            for role in UserRole:
                assert status_label(status, role)
