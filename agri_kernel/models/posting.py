"""
Module: agri_kernel.models.posting
Responsibility: ORM persistence for posting groups, ledger postings, and
    settlement allocation rows -- the append-only ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One posting group per (source_type, source_id) (uq_posting_group_source).
    - Postings are keyed by (source_type, source_id, sequence)
      (uq_posting_source_seq).
    - At most one reversal group per original group
      (uq_posting_group_reversal_of); a second reversal fails at the database
      even if the service-level check is bypassed.
    - Signed amounts: debit positive, credit negative, integer minor units.
      The postings of a group net to zero per currency (checked by
      LedgerStore before flush).
    - Append-only: UPDATE and DELETE are rejected by db/immutability.py.

Audit relevance:
    A reversal never mutates the original group.  The reversal group carries
    reversal_of_id, and its postings are the exact negation of the original.
"""

from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agri_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from agri_kernel.models.account import Account


class SourceType(str, Enum):
    """Kind of document a posting group was written for."""

    INVOICE = "INVOICE"
    PAYMENT = "PAYMENT"
    SETTLEMENT = "SETTLEMENT"
    JOURNAL = "JOURNAL"
    REVERSAL = "REVERSAL"


class PostingGroup(TrackedBase):
    """
    Header of one balanced posting set.

    Contract:
        Written once by LedgerStore with all of its postings in the same
        flush.  Never updated or deleted.

    Guarantees:
        - seq is strictly monotonic across groups (SequenceService).
        - reversal_of_id, when set, references the group this one negates.
    """

    __tablename__ = "posting_groups"

    __table_args__ = (
        UniqueConstraint("source_type", "source_id", name="uq_posting_group_source"),
        UniqueConstraint("seq", name="uq_posting_group_seq"),
        UniqueConstraint("reversal_of_id", name="uq_posting_group_reversal_of"),
        Index("idx_posting_group_date", "posting_date"),
        Index("idx_posting_group_project", "project_id"),
    )

    source_type: Mapped[str] = mapped_column(String(20), nullable=False)

    source_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    posting_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Project scope of the source document (None = unscoped)
    project_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id"),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Human reference of the source document (invoice no, settlement no)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("posting_groups.id"),
        nullable=True,
    )

    postings: Mapped[list["LedgerPosting"]] = relationship(
        back_populates="group",
        order_by="LedgerPosting.sequence",
    )

    allocation_rows: Mapped[list["AllocationRow"]] = relationship(
        back_populates="group",
    )

    def __repr__(self) -> str:
        return f"<PostingGroup {self.source_type}:{self.source_id} seq={self.seq}>"

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None


class LedgerPosting(TrackedBase):
    """
    A single signed ledger entry against one account in one currency.

    Guarantees:
        - amount_minor != 0.
        - (source_type, source_id, sequence) is unique.
    """

    __tablename__ = "ledger_postings"

    __table_args__ = (
        UniqueConstraint(
            "source_type", "source_id", "sequence", name="uq_posting_source_seq"
        ),
        Index("idx_posting_group", "group_id"),
        Index("idx_posting_account_currency", "account_id", "currency"),
    )

    group_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("posting_groups.id"),
        nullable=False,
    )

    source_type: Mapped[str] = mapped_column(String(20), nullable=False)

    source_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Signed minor units: debit > 0, credit < 0
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    party_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("parties.id"),
        nullable=True,
    )

    memo: Mapped[str | None] = mapped_column(String(255), nullable=True)

    group: Mapped[PostingGroup] = relationship(back_populates="postings")

    account: Mapped["Account"] = relationship()

    def __repr__(self) -> str:
        return (
            f"<LedgerPosting {self.source_type}:{self.source_id}#{self.sequence} "
            f"{self.amount_minor} {self.currency}>"
        )

    @property
    def is_debit(self) -> bool:
        return self.amount_minor > 0

    @property
    def debit_minor(self) -> int:
        return self.amount_minor if self.amount_minor > 0 else 0

    @property
    def credit_minor(self) -> int:
        return -self.amount_minor if self.amount_minor < 0 else 0


class AllocationRow(TrackedBase):
    """
    One party's share of a posted settlement.

    Contract:
        Written alongside the settlement's posting group.  A reversal writes a
        mirrored row with the negated amount and reversal_of_id set.

    Guarantees:
        - rule_snapshot is the share-rule state the amount was computed from.
    """

    __tablename__ = "allocation_rows"

    __table_args__ = (
        UniqueConstraint("reversal_of_id", name="uq_allocation_row_reversal_of"),
        Index("idx_allocation_row_group", "group_id"),
        Index("idx_allocation_row_party", "party_id"),
    )

    group_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("posting_groups.id"),
        nullable=False,
    )

    settlement_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    party_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("parties.id"),
        nullable=False,
    )

    role: Mapped[str] = mapped_column(String(20), nullable=False)

    project_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    rule_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("allocation_rows.id"),
        nullable=True,
    )

    group: Mapped[PostingGroup] = relationship(back_populates="allocation_rows")

    def __repr__(self) -> str:
        return f"<AllocationRow party={self.party_id} {self.amount_minor} {self.currency}>"
