"""
InvoiceService -- receivable lifecycle: create, post, reverse.

Responsibility:
    Creates DRAFT sales invoices, posts them to the ledger (Dr receivable /
    Cr revenue) and reverses them by negation.

Architecture position:
    Kernel > Services -- imperative shell.  Writes ledger rows only through
    LedgerStore.

Invariants enforced:
    - Status transitions are one-way: DRAFT -> POSTED -> REVERSED.
    - A DRAFT invoice has no ledger effect and never appears in ageing.
    - An invoice with ACTIVE payment applications cannot be reversed; the
      payments must be reversed (or their applications voided) first, so
      open balance never goes negative.

Failure modes:
    - InvalidArgumentError: non-positive amount, unknown currency.
    - PartyNotFoundError / ProjectNotFoundError / InvoiceNotFoundError.
    - AlreadyPostedError / NotPostedError / AlreadyReversedError.
    - StateTransitionError: reverse while payments are applied.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from agri_kernel.domain.accounts import LedgerAccounts
from agri_kernel.domain.clock import Clock
from agri_kernel.domain.currency import CurrencyRegistry
from agri_kernel.exceptions import (
    AlreadyPostedError,
    AlreadyReversedError,
    InvalidArgumentError,
    InvoiceNotFoundError,
    NotPostedError,
    PartyNotFoundError,
    ProjectNotFoundError,
    StateTransitionError,
)
from agri_kernel.logging_config import get_logger
from agri_kernel.models.invoice import (
    ApplicationStatus,
    DocumentStatus,
    Invoice,
    PaymentApplication,
)
from agri_kernel.models.party import Party, Project
from agri_kernel.models.posting import SourceType
from agri_kernel.services.base import BaseService
from agri_kernel.services.ledger_store import LedgerStore, PostingLine
from agri_kernel.services.sequence_service import SequenceService

logger = get_logger("services.invoice")


def require_positive_minor(name: str, value: object) -> int:
    """Validate a positive integer minor-unit amount."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidArgumentError(name, value, "must be integer minor units")
    if value <= 0:
        raise InvalidArgumentError(name, value, "must be greater than zero")
    return value


def require_currency(currency: object) -> str:
    try:
        return CurrencyRegistry.validate(currency)  # type: ignore[arg-type]
    except ValueError as e:
        raise InvalidArgumentError("currency", currency, str(e)) from e


def require_party(session: Session, party_id: UUID) -> Party:
    party = session.get(Party, party_id)
    if party is None:
        raise PartyNotFoundError(str(party_id))
    return party


def require_project(session: Session, project_id: UUID | None) -> Project | None:
    if project_id is None:
        return None
    project = session.get(Project, project_id)
    if project is None:
        raise ProjectNotFoundError(str(project_id))
    return project


class InvoiceService(BaseService):
    """
    Receivable lifecycle.

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
        self._sequence = SequenceService(session)

    def create(
        self,
        *,
        buyer_party_id: UUID,
        amount_minor: int,
        currency: str,
        invoice_date: date,
        invoice_no: str | None = None,
        due_date: date | None = None,
        project_id: UUID | None = None,
        description: str | None = None,
    ) -> Invoice:
        """Create a DRAFT invoice. No ledger effect."""
        require_positive_minor("amount_minor", amount_minor)
        currency = require_currency(currency)
        require_party(self.session, buyer_party_id)
        require_project(self.session, project_id)
        if due_date is not None and due_date < invoice_date:
            raise InvalidArgumentError("due_date", due_date, "is before invoice_date")

        invoice = Invoice(
            invoice_no=invoice_no
            or self._sequence.next_document_number(SequenceService.INVOICE, "INV"),
            buyer_party_id=buyer_party_id,
            project_id=project_id,
            amount_minor=amount_minor,
            currency=currency,
            invoice_date=invoice_date,
            due_date=due_date,
            description=description,
            status=DocumentStatus.DRAFT.value,
            created_by_id=self.ledger.actor_id,
        )
        self.session.add(invoice)
        self.session.flush()

        logger.info("invoice_created", extra={
            "invoice_id": str(invoice.id),
            "invoice_no": invoice.invoice_no,
            "buyer_party_id": str(buyer_party_id),
            "amount_minor": amount_minor,
            "currency": currency,
        })
        return invoice

    def get(self, invoice_id: UUID, *, for_update: bool = False) -> Invoice:
        stmt = select(Invoice).where(Invoice.id == invoice_id)
        if for_update:
            stmt = stmt.with_for_update()
        invoice = self.session.execute(stmt).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def applied_total(self, invoice_id: UUID, as_of: date | None = None) -> int:
        """Sum of ACTIVE applications, optionally only those applied on or before ``as_of``."""
        stmt = select(func.coalesce(func.sum(PaymentApplication.amount_minor), 0)).where(
            PaymentApplication.invoice_id == invoice_id,
            PaymentApplication.status == ApplicationStatus.ACTIVE.value,
        )
        if as_of is not None:
            stmt = stmt.where(PaymentApplication.applied_on <= as_of)
        return int(self.session.execute(stmt).scalar_one())

    def open_balance(self, invoice: Invoice, as_of: date | None = None) -> int:
        return invoice.amount_minor - self.applied_total(invoice.id, as_of)

    def post(self, invoice_id: UUID, *, posting_date: date | None = None) -> Invoice:
        """
        Post a DRAFT invoice: Dr receivable / Cr revenue for the full amount.

        Raises:
            AlreadyPostedError: If the invoice is not DRAFT.
        """
        invoice = self.get(invoice_id, for_update=True)
        if invoice.status != DocumentStatus.DRAFT.value:
            raise AlreadyPostedError("Invoice", str(invoice.id), invoice.status)

        posting_date = posting_date or invoice.invoice_date
        group = self.ledger.write_group(
            source_type=SourceType.INVOICE,
            source_id=invoice.id,
            posting_date=posting_date,
            project_id=invoice.project_id,
            description=invoice.description or f"Invoice {invoice.invoice_no}",
            reference=invoice.invoice_no,
            lines=[
                PostingLine.debit(
                    self.accounts.receivable,
                    invoice.amount_minor,
                    invoice.currency,
                    party_id=invoice.buyer_party_id,
                ),
                PostingLine.credit(
                    self.accounts.revenue,
                    invoice.amount_minor,
                    invoice.currency,
                    party_id=invoice.buyer_party_id,
                ),
            ],
        )

        invoice.posting_group_id = group.id
        invoice.posting_date = posting_date
        invoice.posted_at = self.clock.now()
        invoice.status = DocumentStatus.POSTED.value
        self.session.flush()

        logger.info("invoice_posted", extra={
            "invoice_id": str(invoice.id),
            "invoice_no": invoice.invoice_no,
            "group_id": str(group.id),
            "posting_date": posting_date.isoformat(),
        })
        return invoice

    def reverse(self, invoice_id: UUID, *, reversal_date: date | None = None) -> Invoice:
        """
        Reverse a POSTED invoice by negating its posting group.

        Raises:
            NotPostedError: If the invoice is DRAFT.
            AlreadyReversedError: If the invoice is already REVERSED.
            StateTransitionError: If ACTIVE payment applications exist.
            InvalidArgumentError: If reversal_date is before the posting date.
        """
        invoice = self.get(invoice_id, for_update=True)
        if invoice.status == DocumentStatus.REVERSED.value:
            raise AlreadyReversedError("Invoice", str(invoice.id))
        if invoice.status != DocumentStatus.POSTED.value:
            raise NotPostedError("Invoice", str(invoice.id), invoice.status)

        applied = self.applied_total(invoice.id)
        if applied:
            raise StateTransitionError(
                "Invoice",
                str(invoice.id),
                invoice.status,
                f"Cannot reverse invoice {invoice.invoice_no}: "
                f"{applied} minor units of payments are applied to it",
            )

        reversal_date = reversal_date or self.clock.today()
        if invoice.posting_date and reversal_date < invoice.posting_date:
            raise InvalidArgumentError(
                "reversal_date", reversal_date, "is before the posting date"
            )

        group = self.ledger.write_reversal(
            invoice.posting_group_id,
            posting_date=reversal_date,
            description=f"Reversal of invoice {invoice.invoice_no}",
        )

        invoice.reversal_posting_group_id = group.id
        invoice.reversed_at = self.clock.now()
        invoice.status = DocumentStatus.REVERSED.value
        self.session.flush()

        logger.info("invoice_reversed", extra={
            "invoice_id": str(invoice.id),
            "invoice_no": invoice.invoice_no,
            "reversal_group_id": str(group.id),
            "reversal_date": reversal_date.isoformat(),
        })
        return invoice
