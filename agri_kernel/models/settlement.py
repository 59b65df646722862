"""
Module: agri_kernel.models.settlement
Responsibility: ORM persistence for share rules and sales settlements.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Share rule percentages sum to exactly 100 (validated by
      ShareRuleService on write and by SettlementService at post).
    - settlement_no is unique.
    - Settlement status transitions are one-way: DRAFT -> POSTED -> REVERSED.
    - Settlement.rule_snapshot is written once, at post, and is the only
      share-rule state that historical allocations depend on.
    - Settlement.row_version is an optimistic lock: an UPDATE issued against
      a stale version raises StaleDataError, surfaced as BusyError.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agri_kernel.db.base import TrackedBase, UUIDString


class SettlementStatus(str, Enum):
    """Lifecycle status of a settlement.

    Transitions are one-way: DRAFT -> POSTED -> REVERSED.
    """

    DRAFT = "DRAFT"
    POSTED = "POSTED"
    REVERSED = "REVERSED"


class ShareRuleAppliesTo(str, Enum):
    CROP_CYCLE = "CROP_CYCLE"
    PROJECT = "PROJECT"
    SALE = "SALE"


class ShareRuleBasis(str, Enum):
    MARGIN = "MARGIN"
    REVENUE = "REVENUE"


class ShareRole(str, Enum):
    LANDLORD = "LANDLORD"
    GROWER = "GROWER"
    PARTNER = "PARTNER"


class ShareRule(TrackedBase):
    """
    Named, versioned proportional split among recipient parties.

    Guarantees:
        - version increases by one on every change to the lines.
    """

    __tablename__ = "share_rules"

    __table_args__ = (Index("idx_share_rule_applies_to", "applies_to", "is_active"),)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    applies_to: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ShareRuleAppliesTo.CROP_CYCLE.value,
    )

    basis: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ShareRuleBasis.MARGIN.value,
    )

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)

    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    lines: Mapped[list["ShareRuleLine"]] = relationship(
        back_populates="share_rule",
        order_by="ShareRuleLine.line_order",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ShareRule {self.name} v{self.version}>"


class ShareRuleLine(TrackedBase):
    """One recipient's percentage within a share rule."""

    __tablename__ = "share_rule_lines"

    share_rule_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("share_rules.id"),
        nullable=False,
    )

    party_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("parties.id"),
        nullable=False,
    )

    role: Mapped[str] = mapped_column(String(20), nullable=False)

    percentage: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)

    # Receives the rounding remainder
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    line_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    share_rule: Mapped[ShareRule] = relationship(back_populates="lines")


class Settlement(TrackedBase):
    """
    Allocation of a basis amount among parties under a share rule.

    Contract:
        create -> DRAFT (no ledger effect); post -> POSTED (one balanced
        posting group, allocation rows, rule snapshot); reverse -> REVERSED
        (exact negating group, original untouched).
    """

    __tablename__ = "settlements"

    __table_args__ = (
        UniqueConstraint("settlement_no", name="uq_settlement_no"),
        Index("idx_settlement_status", "status"),
        Index("idx_settlement_share_rule", "share_rule_id"),
    )

    settlement_no: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SettlementStatus.DRAFT.value,
    )

    basis_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    share_rule_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("share_rules.id"),
        nullable=False,
    )

    # Rule version observed at creation
    share_rule_version: Mapped[int] = mapped_column(Integer, nullable=False)

    project_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id"),
        nullable=True,
    )

    from_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    to_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    posting_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    reversal_date: Mapped[date | None] = mapped_column(Date, nullable=True)

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

    rule_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    row_version: Mapped[int] = mapped_column(Integer, nullable=False)

    lines: Mapped[list["SettlementLine"]] = relationship(
        back_populates="settlement",
        order_by="SettlementLine.line_order",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": row_version}

    def __repr__(self) -> str:
        return f"<Settlement {self.settlement_no} {self.status}>"


class SettlementLine(TrackedBase):
    """A recipient's allocation, written from the rule snapshot at post."""

    __tablename__ = "settlement_lines"

    settlement_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("settlements.id"),
        nullable=False,
    )

    party_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("parties.id"),
        nullable=False,
    )

    role: Mapped[str] = mapped_column(String(20), nullable=False)

    percentage: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)

    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    line_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    settlement: Mapped[Settlement] = relationship(back_populates="lines")
