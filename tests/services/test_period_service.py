"""
PeriodService tests.

Tests cover:
- Period lifecycle: create, overlap rejection, close, reopen
- Posting-date guard: no group written into a CLOSED period
- Reversal-date guard: same-date reversal into a CLOSED period is allowed,
  any other date in a CLOSED period is refused
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from agri_kernel.exceptions import (
    ClosedPeriodError,
    InvalidArgumentError,
    PeriodNotFoundError,
    PeriodOverlapError,
    PeriodStatusError,
)
from agri_kernel.models.period import PeriodStatus
from agri_kernel.models.posting import PostingGroup
from agri_kernel.services.ledger_store import PostingLine

CLOSER_ID = uuid4()


def _cash_sale(amount=10000):
    return [
        PostingLine.debit("CASH", amount, "GBP"),
        PostingLine.credit("SALES_REVENUE", amount, "GBP"),
    ]


def _group_count(session):
    return session.execute(select(func.count(PostingGroup.id))).scalar_one()


@pytest.fixture
def closed_march(period_service):
    period_service.create_monthly_period(2024, 3)
    return period_service.close_period("2024-03", actor_id=CLOSER_ID)


class TestLifecycle:
    """OPEN -> CLOSED -> OPEN, with non-overlapping ranges."""

    def test_monthly_period(self, period_service):
        period = period_service.create_monthly_period(2024, 2)

        assert period.period_code == "2024-02"
        assert (period.start_date, period.end_date) == (date(2024, 2, 1), date(2024, 2, 29))
        assert period.status == PeriodStatus.OPEN.value

    def test_inverted_range(self, period_service):
        with pytest.raises(InvalidArgumentError):
            period_service.create_period("BAD", "Bad", date(2024, 3, 31), date(2024, 3, 1))

    def test_overlap_rejected(self, period_service):
        period_service.create_monthly_period(2024, 3)
        with pytest.raises(PeriodOverlapError) as exc_info:
            period_service.create_period("Q1", "First quarter", date(2024, 1, 1), date(2024, 3, 31))
        assert exc_info.value.existing_period_code == "2024-03"

    def test_close_records_actor(self, closed_march, deterministic_clock):
        assert closed_march.is_closed
        assert closed_march.closed_by_id == CLOSER_ID
        assert closed_march.closed_at == deterministic_clock.now()

    def test_close_twice(self, period_service, closed_march):
        with pytest.raises(PeriodStatusError):
            period_service.close_period("2024-03")

    def test_reopen(self, period_service, closed_march):
        period = period_service.reopen_period("2024-03", actor_id=CLOSER_ID)

        assert period.status == PeriodStatus.OPEN.value
        assert period.reopened_by_id == CLOSER_ID
        assert not period_service.is_date_locked(date(2024, 3, 15))

    def test_reopen_open_period(self, period_service):
        period_service.create_monthly_period(2024, 5)
        with pytest.raises(PeriodStatusError):
            period_service.reopen_period("2024-05")

    def test_unknown_code(self, period_service):
        with pytest.raises(PeriodNotFoundError):
            period_service.close_period("1999-01")

    def test_list_overlapping_window(self, period_service):
        for month in (1, 2, 3, 4):
            period_service.create_monthly_period(2024, month)

        codes = [
            p.period_code
            for p in period_service.list_periods(date(2024, 2, 15), date(2024, 3, 1))
        ]
        assert codes == ["2024-02", "2024-03"]


class TestPostingGuard:
    """Nothing is written into a CLOSED period."""

    def test_journal_into_closed_period(self, session, ledger_store, closed_march, captured_logs):
        with pytest.raises(ClosedPeriodError) as exc_info:
            ledger_store.post_journal(posting_date=date(2024, 3, 10), lines=_cash_sale())

        assert exc_info.value.period_code == "2024-03"
        assert _group_count(session) == 0
        [violation] = [r for r in captured_logs() if r["message"] == "period_closed_violation"]
        assert violation["level"] == "WARNING"
        assert violation["posting_date"] == "2024-03-10"

    def test_invoice_post_into_closed_period(
        self, session, invoice_service, parties, closed_march
    ):
        invoice = invoice_service.create(
            buyer_party_id=parties["mill"].id,
            amount_minor=5000,
            currency="GBP",
            invoice_date=date(2024, 3, 20),
        )
        with pytest.raises(ClosedPeriodError):
            invoice_service.post(invoice.id)

        assert invoice.status == "DRAFT"
        assert _group_count(session) == 0

    def test_settlement_post_into_closed_period(
        self, session, settlement_service, landlord_grower_rule, closed_march
    ):
        settlement = settlement_service.create(
            basis_minor=100000, currency="GBP", share_rule_id=landlord_grower_rule.id
        )
        with pytest.raises(ClosedPeriodError):
            settlement_service.post(settlement.id, posting_date=date(2024, 3, 31))

        assert settlement.status == "DRAFT"
        assert _group_count(session) == 0

    def test_dates_outside_any_period_are_open(self, ledger_store, closed_march):
        group = ledger_store.post_journal(posting_date=date(2024, 4, 2), lines=_cash_sale())
        assert group.posting_date == date(2024, 4, 2)

    def test_reopened_period_accepts_postings(self, period_service, ledger_store, closed_march):
        period_service.reopen_period("2024-03")
        group = ledger_store.post_journal(posting_date=date(2024, 3, 10), lines=_cash_sale())
        assert group.seq is not None


class TestReversalGuard:
    """Same-date reversals pass a CLOSED period; other dates do not."""

    def test_same_date_reversal_into_closed_period(self, period_service, ledger_store):
        period_service.create_monthly_period(2024, 3)
        original = ledger_store.post_journal(posting_date=date(2024, 3, 10), lines=_cash_sale())
        period_service.close_period("2024-03")

        reversal = ledger_store.write_reversal(original.id, posting_date=date(2024, 3, 10))

        assert reversal.reversal_of_id == original.id

    def test_later_date_in_closed_period_blocked(self, session, period_service, ledger_store):
        period_service.create_monthly_period(2024, 3)
        original = ledger_store.post_journal(posting_date=date(2024, 3, 10), lines=_cash_sale())
        period_service.close_period("2024-03")

        with pytest.raises(ClosedPeriodError):
            ledger_store.write_reversal(original.id, posting_date=date(2024, 3, 20))

        assert ledger_store.reversal_of(original.id) is None
        assert _group_count(session) == 1

    def test_reversal_into_open_later_period(self, period_service, ledger_store):
        period_service.create_monthly_period(2024, 3)
        period_service.create_monthly_period(2024, 4)
        original = ledger_store.post_journal(posting_date=date(2024, 3, 10), lines=_cash_sale())
        period_service.close_period("2024-03")

        reversal = ledger_store.write_reversal(original.id, posting_date=date(2024, 4, 1))

        assert reversal.posting_date == date(2024, 4, 1)

    def test_settlement_same_day_reversal_after_close(
        self, period_service, settlement_service, landlord_grower_rule
    ):
        period_service.create_monthly_period(2024, 3)
        settlement = settlement_service.create(
            basis_minor=100000, currency="GBP", share_rule_id=landlord_grower_rule.id
        )
        settlement = settlement_service.post(settlement.id, posting_date=date(2024, 3, 31))
        period_service.close_period("2024-03")

        settlement = settlement_service.reverse(settlement.id, reversal_date=date(2024, 3, 31))

        assert settlement.status == "REVERSED"
