"""
Module: agri_kernel.models.account
Responsibility: ORM persistence for the chart of accounts -- the target of
    every ledger posting.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Account.code is unique.
    - normal_balance flags credit-normal accounts (liabilities, equity,
      revenue).  Aggregations surface both debit and credit totals and never
      re-sign balances; presentation is the caller's concern.

Failure modes:
    - AccountNotFoundError when a posting references an unknown or inactive
      account code (raised by LedgerStore, not this model).
"""

from enum import Enum

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from agri_kernel.db.base import TrackedBase


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    REVENUE = "REVENUE"
    EXPENSE = "EXPENSE"


class NormalBalance(str, Enum):
    """Normal balance side for an account."""

    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


DEFAULT_NORMAL_BALANCE: dict[AccountType, NormalBalance] = {
    AccountType.ASSET: NormalBalance.DEBIT,
    AccountType.EXPENSE: NormalBalance.DEBIT,
    AccountType.LIABILITY: NormalBalance.CREDIT,
    AccountType.EQUITY: NormalBalance.CREDIT,
    AccountType.REVENUE: NormalBalance.CREDIT,
}


class Account(TrackedBase):
    """
    Chart of accounts entry.

    Contract:
        Account.code is globally unique (uq_account_code).

    Guarantees:
        - account_type is one of ASSET, LIABILITY, EQUITY, REVENUE, EXPENSE.
        - normal_balance is DEBIT or CREDIT.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        Index("idx_account_type", "account_type"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[str] = mapped_column(String(20), nullable=False)

    normal_balance: Mapped[str] = mapped_column(String(10), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_credit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.CREDIT.value
