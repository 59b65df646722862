"""
Module: agri_kernel.models.invoice
Responsibility: ORM persistence for receivables (sales invoices), payments,
    and the applications that link them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - open balance = amount - sum(ACTIVE applications) and is never negative
      (PaymentService refuses over-application).
    - Amounts are positive integer minor units.
    - Status transitions are one-way: DRAFT -> POSTED -> REVERSED.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agri_kernel.db.base import TrackedBase, UUIDString


class DocumentStatus(str, Enum):
    """Lifecycle status of an invoice or payment."""

    DRAFT = "DRAFT"
    POSTED = "POSTED"
    REVERSED = "REVERSED"


class PaymentDirection(str, Enum):
    """IN: money received from a buyer.  OUT: money paid to a party."""

    IN = "IN"
    OUT = "OUT"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANK = "BANK"


class ApplicationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    VOID = "VOID"


class Invoice(TrackedBase):
    """
    A receivable billed to one buyer party.

    Contract:
        DRAFT invoices have no ledger effect.  Posting writes one posting
        group (Dr receivable / Cr revenue) and sets posting_date.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_no", name="uq_invoice_no"),
        Index("idx_invoice_buyer", "buyer_party_id"),
        Index("idx_invoice_status", "status"),
    )

    invoice_no: Mapped[str] = mapped_column(String(50), nullable=False)

    buyer_party_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("parties.id"),
        nullable=False,
    )

    project_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id"),
        nullable=True,
    )

    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    posting_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DocumentStatus.DRAFT.value,
    )

    posting_group_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("posting_groups.id"),
        nullable=True,
    )

    reversal_posting_group_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("posting_groups.id"),
        nullable=True,
    )

    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    applications: Mapped[list["PaymentApplication"]] = relationship(
        back_populates="invoice",
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_no} {self.status}>"


class Payment(TrackedBase):
    """
    Cash or bank movement to or from a party.

    Contract:
        Posting an IN payment writes Dr cash / Cr receivable; an OUT payment
        writes Dr payable / Cr cash.  IN payments may be applied to the
        buyer's open invoices.
    """

    __tablename__ = "payments"

    __table_args__ = (
        Index("idx_payment_party", "party_id"),
        Index("idx_payment_status", "status"),
    )

    party_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("parties.id"),
        nullable=False,
    )

    project_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id"),
        nullable=True,
    )

    direction: Mapped[str] = mapped_column(String(3), nullable=False)

    method: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=PaymentMethod.CASH.value,
    )

    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    posting_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DocumentStatus.DRAFT.value,
    )

    posting_group_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("posting_groups.id"),
        nullable=True,
    )

    reversal_posting_group_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("posting_groups.id"),
        nullable=True,
    )

    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    applications: Mapped[list["PaymentApplication"]] = relationship(
        back_populates="payment",
    )

    def __repr__(self) -> str:
        return f"<Payment {self.direction} {self.amount_minor} {self.currency} {self.status}>"


class PaymentApplication(TrackedBase):
    """
    Portion of a payment applied against one invoice.

    Only ACTIVE applications with applied_on <= cutoff reduce an invoice's
    open balance as of that cutoff.
    """

    __tablename__ = "payment_applications"

    __table_args__ = (
        Index("idx_application_invoice", "invoice_id"),
        Index("idx_application_payment", "payment_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payments.id"),
        nullable=False,
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
    )

    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    applied_on: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=ApplicationStatus.ACTIVE.value,
    )

    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    payment: Mapped[Payment] = relationship(back_populates="applications")

    invoice: Mapped[Invoice] = relationship(back_populates="applications")
