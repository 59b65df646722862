"""
Invoice and payment lifecycle tests.

Covers posting and reversal of receivables, payment posting by direction,
and application of received payments to open invoices (explicit and FIFO).
"""

from datetime import date

import pytest
from sqlalchemy import func, select

from agri_kernel.exceptions import (
    AlreadyPostedError,
    AlreadyReversedError,
    ClosedPeriodError,
    InvalidArgumentError,
    NotPostedError,
    PaymentApplicationError,
    StateTransitionError,
)
from agri_kernel.models.invoice import ApplicationStatus, PaymentApplication
from agri_kernel.models.posting import PostingGroup


def _amounts_by_account(group, chart):
    codes = {a.id: code for code, a in chart.items()}
    return {codes[p.account_id]: p.amount_minor for p in group.postings}


class TestInvoiceLifecycle:
    """DRAFT -> POSTED -> REVERSED for sales invoices."""

    def test_create_has_no_ledger_effect(self, session, invoice_service, parties):
        invoice = invoice_service.create(
            buyer_party_id=parties["mill"].id,
            amount_minor=100000,
            currency="GBP",
            invoice_date=date(2024, 1, 15),
        )
        assert invoice.status == "DRAFT"
        assert invoice.invoice_no.startswith("INV-")
        assert session.execute(select(PostingGroup)).first() is None

    def test_post_debits_receivable_credits_revenue(self, session, posted_invoice, chart):
        invoice = posted_invoice(100000, date(2024, 1, 15))

        group = session.get(PostingGroup, invoice.posting_group_id)
        assert invoice.status == "POSTED"
        assert invoice.posting_date == date(2024, 1, 15)
        assert _amounts_by_account(group, chart) == {"AR": 100000, "SALES_REVENUE": -100000}
        assert all(p.party_id == invoice.buyer_party_id for p in group.postings)

    def test_post_twice_rejected(self, invoice_service, posted_invoice):
        invoice = posted_invoice(100000, date(2024, 1, 15))
        with pytest.raises(AlreadyPostedError):
            invoice_service.post(invoice.id)

    def test_reverse_negates(self, session, invoice_service, posted_invoice, chart):
        invoice = posted_invoice(100000, date(2024, 1, 15))

        invoice_service.reverse(invoice.id, reversal_date=date(2024, 2, 1))

        assert invoice.status == "REVERSED"
        reversal = session.get(PostingGroup, invoice.reversal_posting_group_id)
        assert reversal.reversal_of_id == invoice.posting_group_id
        assert _amounts_by_account(reversal, chart) == {"AR": -100000, "SALES_REVENUE": 100000}

    def test_reverse_twice_rejected(self, invoice_service, posted_invoice):
        invoice = posted_invoice(100000, date(2024, 1, 15))
        invoice_service.reverse(invoice.id, reversal_date=date(2024, 2, 1))
        with pytest.raises(AlreadyReversedError):
            invoice_service.reverse(invoice.id, reversal_date=date(2024, 2, 2))

    def test_reverse_draft_rejected(self, invoice_service, parties):
        invoice = invoice_service.create(
            buyer_party_id=parties["mill"].id,
            amount_minor=100,
            currency="GBP",
            invoice_date=date(2024, 1, 15),
        )
        with pytest.raises(NotPostedError):
            invoice_service.reverse(invoice.id)

    def test_reversal_before_posting_date(self, session, invoice_service, posted_invoice):
        invoice = posted_invoice(100000, date(2024, 1, 15))

        with pytest.raises(InvalidArgumentError):
            invoice_service.reverse(invoice.id, reversal_date=date(2024, 1, 14))

        assert invoice.status == "POSTED"
        assert invoice.reversal_posting_group_id is None
        assert session.execute(select(func.count(PostingGroup.id))).scalar_one() == 1

    def test_non_positive_amount(self, invoice_service, parties):
        with pytest.raises(InvalidArgumentError):
            invoice_service.create(
                buyer_party_id=parties["mill"].id,
                amount_minor=0,
                currency="GBP",
                invoice_date=date(2024, 1, 15),
            )

    def test_due_date_before_invoice_date(self, invoice_service, parties):
        with pytest.raises(InvalidArgumentError):
            invoice_service.create(
                buyer_party_id=parties["mill"].id,
                amount_minor=100,
                currency="GBP",
                invoice_date=date(2024, 1, 15),
                due_date=date(2024, 1, 1),
            )


class TestPayments:
    """Payment posting by direction."""

    def test_in_payment_credits_receivable(self, session, payment_service, parties, chart):
        payment = payment_service.create(
            party_id=parties["mill"].id,
            direction="IN",
            amount_minor=40000,
            currency="GBP",
            payment_date=date(2024, 2, 1),
            method="BANK",
        )
        payment_service.post(payment.id)

        group = session.get(PostingGroup, payment.posting_group_id)
        assert _amounts_by_account(group, chart) == {"BANK": 40000, "AR": -40000}

    def test_out_payment_debits_role_payable(self, session, payment_service, parties, chart):
        payment = payment_service.create(
            party_id=parties["landlord"].id,
            direction="OUT",
            amount_minor=60000,
            currency="GBP",
            payment_date=date(2024, 2, 1),
        )
        payment_service.post(payment.id)

        group = session.get(PostingGroup, payment.posting_group_id)
        assert _amounts_by_account(group, chart) == {"PAYABLE_LANDLORD": 60000, "CASH": -60000}

    def test_unknown_direction(self, payment_service, parties):
        with pytest.raises(InvalidArgumentError):
            payment_service.create(
                party_id=parties["mill"].id,
                direction="SIDEWAYS",
                amount_minor=1,
                currency="GBP",
                payment_date=date(2024, 2, 1),
            )


class TestPaymentApplication:
    """Applying received payments never drives an open balance negative."""

    def _receipt(self, payment_service, parties, amount, buyer="mill", when=date(2024, 3, 1)):
        payment = payment_service.create(
            party_id=parties[buyer].id,
            direction="IN",
            amount_minor=amount,
            currency="GBP",
            payment_date=when,
        )
        return payment_service.post(payment.id)

    def test_explicit_application_caps_at_open_balance(
        self, payment_service, invoice_service, posted_invoice, parties
    ):
        invoice = posted_invoice(30000, date(2024, 1, 10))
        payment = self._receipt(payment_service, parties, 50000)

        [application] = payment_service.apply(payment.id, invoice_id=invoice.id)

        assert application.amount_minor == 30000
        assert invoice_service.open_balance(invoice) == 0
        assert payment_service.unapplied_amount(payment) == 20000

    def test_fifo_oldest_first(self, payment_service, invoice_service, posted_invoice, parties):
        newer = posted_invoice(30000, date(2024, 2, 10))
        older = posted_invoice(20000, date(2024, 1, 10))
        payment = self._receipt(payment_service, parties, 35000)

        applications = payment_service.apply(payment.id)

        assert [(a.invoice_id, a.amount_minor) for a in applications] == [
            (older.id, 20000),
            (newer.id, 15000),
        ]
        assert invoice_service.open_balance(newer) == 15000

    def test_over_application_rejected(self, payment_service, posted_invoice, parties):
        invoice = posted_invoice(30000, date(2024, 1, 10))
        payment = self._receipt(payment_service, parties, 50000)

        with pytest.raises(PaymentApplicationError):
            payment_service.apply(payment.id, invoice_id=invoice.id, amount_minor=40000)

    def test_amount_above_unapplied_rejected(self, payment_service, posted_invoice, parties):
        posted_invoice(90000, date(2024, 1, 10))
        payment = self._receipt(payment_service, parties, 10000)

        with pytest.raises(PaymentApplicationError):
            payment_service.apply(payment.id, amount_minor=10001)

    def test_other_buyers_invoice_rejected(self, payment_service, posted_invoice, parties):
        invoice = posted_invoice(30000, date(2024, 1, 10), buyer="coop")
        payment = self._receipt(payment_service, parties, 30000)

        with pytest.raises(PaymentApplicationError):
            payment_service.apply(payment.id, invoice_id=invoice.id)

    def test_invoice_with_applications_cannot_be_reversed(
        self, payment_service, invoice_service, posted_invoice, parties
    ):
        invoice = posted_invoice(30000, date(2024, 1, 10))
        payment = self._receipt(payment_service, parties, 10000)
        payment_service.apply(payment.id, invoice_id=invoice.id)

        with pytest.raises(StateTransitionError):
            invoice_service.reverse(invoice.id)

    def test_payment_reversal_voids_applications(
        self, session, payment_service, invoice_service, posted_invoice, parties
    ):
        invoice = posted_invoice(30000, date(2024, 1, 10))
        payment = self._receipt(payment_service, parties, 10000)
        payment_service.apply(payment.id, invoice_id=invoice.id)

        payment_service.reverse(payment.id, reversal_date=date(2024, 3, 5))

        statuses = session.execute(
            select(PaymentApplication.status).where(PaymentApplication.payment_id == payment.id)
        ).scalars().all()
        assert statuses == [ApplicationStatus.VOID.value]
        assert invoice_service.open_balance(invoice) == 30000
        invoice_service.reverse(invoice.id, reversal_date=date(2024, 3, 6))
        assert invoice.status == "REVERSED"

    def test_payment_reversal_before_posting_date(
        self, session, payment_service, invoice_service, posted_invoice, parties
    ):
        invoice = posted_invoice(30000, date(2024, 1, 10))
        payment = self._receipt(payment_service, parties, 10000)
        payment_service.apply(payment.id, invoice_id=invoice.id)

        with pytest.raises(InvalidArgumentError):
            payment_service.reverse(payment.id, reversal_date=date(2024, 2, 28))

        assert payment.status == "POSTED"
        assert invoice_service.open_balance(invoice) == 20000

    def test_failed_payment_reversal_keeps_applications(
        self, session, payment_service, period_service, invoice_service, posted_invoice, parties
    ):
        invoice = posted_invoice(30000, date(2024, 1, 10))
        payment = self._receipt(payment_service, parties, 10000)
        payment_service.apply(payment.id, invoice_id=invoice.id)
        period_service.create_monthly_period(2024, 4)
        period_service.close_period("2024-04")

        with pytest.raises(ClosedPeriodError):
            payment_service.reverse(payment.id, reversal_date=date(2024, 4, 2))

        statuses = session.execute(
            select(PaymentApplication.status).where(PaymentApplication.payment_id == payment.id)
        ).scalars().all()
        assert statuses == [ApplicationStatus.ACTIVE.value]
        assert payment.status == "POSTED"
        assert payment.reversal_posting_group_id is None
        assert invoice_service.open_balance(invoice) == 20000
