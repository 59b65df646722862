"""
PaymentService -- cash and bank movements and their application to invoices.

Responsibility:
    Creates, posts and reverses payments, and applies received (IN)
    payments against a buyer's open invoices, either to one named invoice
    or oldest first (FIFO).

Architecture position:
    Kernel > Services -- imperative shell.  Uses AllocationEngine for FIFO
    application and LedgerStore for every ledger write.

Invariants enforced:
    - IN posts Dr cash/bank / Cr receivable; OUT posts Dr payable /
      Cr cash/bank.  The payable is chosen by the party's type.
    - Application never exceeds the payment's unapplied amount nor the
      invoice's open balance, so open balance is never negative.
    - Reversing a payment voids its ACTIVE applications in the same
      transaction as the negating posting group.

Failure modes:
    - PaymentApplicationError: wrong direction, unposted payment, currency
      or buyer mismatch, over-application.
    - AlreadyPostedError / NotPostedError / AlreadyReversedError.
    - InvalidArgumentError: reversal dated before the payment posted.
    - ClosedPeriodError: posting or reversal into a CLOSED period.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from agri_engines.allocation import AllocationEngine, OpenTarget
from agri_kernel.domain.accounts import LedgerAccounts
from agri_kernel.domain.clock import Clock
from agri_kernel.exceptions import (
    AlreadyPostedError,
    AlreadyReversedError,
    InvalidArgumentError,
    NotPostedError,
    PaymentApplicationError,
    PaymentNotFoundError,
)
from agri_kernel.logging_config import get_logger
from agri_kernel.models.invoice import (
    ApplicationStatus,
    DocumentStatus,
    Invoice,
    Payment,
    PaymentApplication,
    PaymentDirection,
    PaymentMethod,
)
from agri_kernel.models.posting import SourceType
from agri_kernel.services.base import BaseService
from agri_kernel.services.invoice_service import (
    InvoiceService,
    require_currency,
    require_party,
    require_positive_minor,
    require_project,
)
from agri_kernel.services.ledger_store import LedgerStore, PostingLine

logger = get_logger("services.payment")


class PaymentService(BaseService):
    """
    Payment lifecycle and application.

    Contract:
        All methods flush within the caller's transaction.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        accounts: LedgerAccounts | None = None,
        actor_id: UUID | None = None,
    ):
        super().__init__(session, clock)
        self.accounts = accounts or LedgerAccounts()
        self.ledger = LedgerStore(session, self.clock, actor_id)
        self.invoices = InvoiceService(session, self.clock, self.accounts, actor_id)
        self._engine = AllocationEngine()

    def create(
        self,
        *,
        party_id: UUID,
        direction: PaymentDirection | str,
        amount_minor: int,
        currency: str,
        payment_date: date,
        method: PaymentMethod | str = PaymentMethod.CASH,
        project_id: UUID | None = None,
        reference: str | None = None,
    ) -> Payment:
        """Create a DRAFT payment. No ledger effect."""
        require_positive_minor("amount_minor", amount_minor)
        currency = require_currency(currency)
        try:
            direction = PaymentDirection(direction)
            method = PaymentMethod(method)
        except ValueError as e:
            raise InvalidArgumentError("payment", (direction, method), str(e)) from e
        require_party(self.session, party_id)
        require_project(self.session, project_id)

        payment = Payment(
            party_id=party_id,
            project_id=project_id,
            direction=direction.value,
            method=method.value,
            amount_minor=amount_minor,
            currency=currency,
            payment_date=payment_date,
            reference=reference,
            status=DocumentStatus.DRAFT.value,
            created_by_id=self.ledger.actor_id,
        )
        self.session.add(payment)
        self.session.flush()

        logger.info("payment_created", extra={
            "payment_id": str(payment.id),
            "direction": payment.direction,
            "method": payment.method,
            "amount_minor": amount_minor,
            "currency": currency,
        })
        return payment

    def get(self, payment_id: UUID, *, for_update: bool = False) -> Payment:
        stmt = select(Payment).where(Payment.id == payment_id)
        if for_update:
            stmt = stmt.with_for_update()
        payment = self.session.execute(stmt).scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment

    def _lines_for(self, payment: Payment) -> list[PostingLine]:
        money_account = self.accounts.settlement_account(payment.method)
        if payment.direction == PaymentDirection.IN.value:
            return [
                PostingLine.debit(money_account, payment.amount_minor, payment.currency,
                                  party_id=payment.party_id),
                PostingLine.credit(self.accounts.receivable, payment.amount_minor, payment.currency,
                                   party_id=payment.party_id),
            ]
        party = require_party(self.session, payment.party_id)
        return [
            PostingLine.debit(self.accounts.payable_for(party.party_type), payment.amount_minor,
                              payment.currency, party_id=payment.party_id),
            PostingLine.credit(money_account, payment.amount_minor, payment.currency,
                               party_id=payment.party_id),
        ]

    def post(self, payment_id: UUID, *, posting_date: date | None = None) -> Payment:
        payment = self.get(payment_id, for_update=True)
        if payment.status != DocumentStatus.DRAFT.value:
            raise AlreadyPostedError("Payment", str(payment.id), payment.status)

        posting_date = posting_date or payment.payment_date
        group = self.ledger.write_group(
            source_type=SourceType.PAYMENT,
            source_id=payment.id,
            posting_date=posting_date,
            project_id=payment.project_id,
            description=f"Payment {payment.direction} {payment.reference or payment.id}",
            reference=payment.reference,
            lines=self._lines_for(payment),
        )

        payment.posting_group_id = group.id
        payment.posting_date = posting_date
        payment.posted_at = self.clock.now()
        payment.status = DocumentStatus.POSTED.value
        self.session.flush()

        logger.info("payment_posted", extra={
            "payment_id": str(payment.id),
            "group_id": str(group.id),
            "direction": payment.direction,
            "posting_date": posting_date.isoformat(),
        })
        return payment

    def unapplied_amount(self, payment: Payment) -> int:
        applied = self.session.execute(
            select(func.coalesce(func.sum(PaymentApplication.amount_minor), 0)).where(
                PaymentApplication.payment_id == payment.id,
                PaymentApplication.status == ApplicationStatus.ACTIVE.value,
            )
        ).scalar_one()
        return payment.amount_minor - int(applied)

    def _check_invoice(self, payment: Payment, invoice: Invoice) -> None:
        if invoice.status != DocumentStatus.POSTED.value:
            raise PaymentApplicationError(
                str(payment.id), f"invoice status is {invoice.status}", str(invoice.id)
            )
        if invoice.buyer_party_id != payment.party_id:
            raise PaymentApplicationError(
                str(payment.id), "invoice belongs to another buyer", str(invoice.id)
            )
        if invoice.currency != payment.currency:
            raise PaymentApplicationError(
                str(payment.id),
                f"currency mismatch ({payment.currency} vs {invoice.currency})",
                str(invoice.id),
            )

    def apply(
        self,
        payment_id: UUID,
        *,
        invoice_id: UUID | None = None,
        amount_minor: int | None = None,
        applied_on: date | None = None,
    ) -> list[PaymentApplication]:
        """
        Apply a posted IN payment to open invoices.

        With ``invoice_id`` the amount goes to that invoice (default: as
        much as both sides allow).  Without it, the amount is spread over
        the buyer's open invoices in the payment currency, oldest posting
        date first.

        Postconditions:
            - No invoice's open balance goes below zero.
            - Returns the applications written (may be empty for FIFO when
              nothing is open).
        Raises:
            PaymentApplicationError: On any violation; nothing is written.
        """
        payment = self.get(payment_id, for_update=True)
        if payment.direction != PaymentDirection.IN.value:
            raise PaymentApplicationError(str(payment.id), "only IN payments can be applied")
        if payment.status != DocumentStatus.POSTED.value:
            raise PaymentApplicationError(str(payment.id), f"payment status is {payment.status}")

        unapplied = self.unapplied_amount(payment)
        if amount_minor is not None:
            require_positive_minor("amount_minor", amount_minor)
            if amount_minor > unapplied:
                raise PaymentApplicationError(
                    str(payment.id),
                    f"amount {amount_minor} exceeds unapplied {unapplied}",
                )
        to_apply = unapplied if amount_minor is None else amount_minor
        applied_on = applied_on or payment.posting_date or payment.payment_date

        if invoice_id is not None:
            invoice = self.invoices.get(invoice_id, for_update=True)
            self._check_invoice(payment, invoice)
            open_minor = self.invoices.open_balance(invoice)
            if amount_minor is None:
                to_apply = min(to_apply, open_minor)
            elif amount_minor > open_minor:
                raise PaymentApplicationError(
                    str(payment.id),
                    f"amount {amount_minor} exceeds open balance {open_minor}",
                    str(invoice.id),
                )
            if to_apply <= 0:
                raise PaymentApplicationError(
                    str(payment.id), "nothing left to apply", str(invoice.id)
                )
            allocations = [(invoice.id, to_apply)]
        else:
            open_invoices = self.session.execute(
                select(Invoice)
                .where(
                    Invoice.buyer_party_id == payment.party_id,
                    Invoice.currency == payment.currency,
                    Invoice.status == DocumentStatus.POSTED.value,
                )
                .order_by(Invoice.posting_date, Invoice.invoice_no)
                .with_for_update()
            ).scalars().all()
            result = self._engine.allocate_fifo(
                to_apply,
                [
                    OpenTarget(
                        target_id=inv.id,
                        eligible_minor=self.invoices.open_balance(inv),
                        date=inv.posting_date,
                        priority=i,
                    )
                    for i, inv in enumerate(open_invoices)
                ],
            )
            allocations = [(l.target_id, l.allocated_minor) for l in result.lines if l.allocated_minor]

        applications = []
        for target_id, minor in allocations:
            application = PaymentApplication(
                payment_id=payment.id,
                invoice_id=target_id,
                amount_minor=minor,
                applied_on=applied_on,
                status=ApplicationStatus.ACTIVE.value,
                created_by_id=self.ledger.actor_id,
            )
            self.session.add(application)
            applications.append(application)
        self.session.flush()

        logger.info("payment_applied", extra={
            "payment_id": str(payment.id),
            "mode": "explicit" if invoice_id is not None else "fifo",
            "application_count": len(applications),
            "applied_minor": sum(a.amount_minor for a in applications),
            "applied_on": applied_on.isoformat(),
        })
        return applications

    def reverse(self, payment_id: UUID, *, reversal_date: date | None = None) -> Payment:
        """
        Void the payment's applications and negate its posting group.

        Either both happen or neither does; a failed reversal leaves the
        applications ACTIVE and the payment POSTED.

        Raises:
            NotPostedError: If the payment is DRAFT.
            AlreadyReversedError: If the payment is already REVERSED.
            InvalidArgumentError: If reversal_date is before the posting date.
            ClosedPeriodError: If reversal_date falls in a CLOSED period.
        """
        with self.session.begin_nested():
            payment = self.get(payment_id, for_update=True)
            if payment.status == DocumentStatus.REVERSED.value:
                raise AlreadyReversedError("Payment", str(payment.id))
            if payment.status != DocumentStatus.POSTED.value:
                raise NotPostedError("Payment", str(payment.id), payment.status)

            reversal_date = reversal_date or self.clock.today()
            if payment.posting_date and reversal_date < payment.posting_date:
                raise InvalidArgumentError(
                    "reversal_date", reversal_date, "is before the posting date"
                )

            now = self.clock.now()
            active = self.session.execute(
                select(PaymentApplication).where(
                    PaymentApplication.payment_id == payment.id,
                    PaymentApplication.status == ApplicationStatus.ACTIVE.value,
                )
            ).scalars().all()
            for application in active:
                application.status = ApplicationStatus.VOID.value
                application.voided_at = now
            self.session.flush()

            group = self.ledger.write_reversal(
                payment.posting_group_id,
                posting_date=reversal_date,
                description=f"Reversal of payment {payment.reference or payment.id}",
            )

            payment.reversal_posting_group_id = group.id
            payment.reversed_at = now
            payment.status = DocumentStatus.REVERSED.value
            self.session.flush()

        logger.info("payment_reversed", extra={
            "payment_id": str(payment.id),
            "reversal_group_id": str(group.id),
            "voided_applications": len(active),
            "reversal_date": reversal_date.isoformat(),
        })
        return payment
