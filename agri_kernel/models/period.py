"""
Module: agri_kernel.models.period
Responsibility: Accounting periods -- the date ranges that accept postings.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - No posting group may be written with a posting_date inside a CLOSED
      period, except a reversal dated on its original's posting date.

Failure modes:
    - ClosedPeriodError from LedgerStore when a write targets a CLOSED period.

Audit relevance:
    Close and reopen are recorded on the row (closed_at/by, reopened_at/by)
    and logged by PeriodService.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from agri_kernel.db.base import TrackedBase, UUIDString


class PeriodStatus(str, Enum):
    """OPEN periods accept postings; CLOSED periods do not.  Reopening is allowed."""

    OPEN = "OPEN"
    CLOSED = "CLOSED"


class AccountingPeriod(TrackedBase):
    """
    One accounting period, usually a calendar month.

    Guarantees:
        - period_code is unique (uq_accounting_period_code).
        - start_date <= end_date and ranges never overlap (checked by
          PeriodService at creation).

    Non-goals:
        - Dates outside every period are not blocked; an unmapped date is
          treated as open.
    """

    __tablename__ = "accounting_periods"

    __table_args__ = (
        UniqueConstraint("period_code", name="uq_accounting_period_code"),
        Index("idx_accounting_period_dates", "start_date", "end_date"),
    )

    # e.g. "2024-03"
    period_code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=PeriodStatus.OPEN.value,
    )

    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString())

    reopened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reopened_by_id: Mapped[UUID | None] = mapped_column(UUIDString())

    @property
    def is_closed(self) -> bool:
        return self.status == PeriodStatus.CLOSED.value

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def __repr__(self) -> str:
        return f"<AccountingPeriod {self.period_code} {self.status}>"
