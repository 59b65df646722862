"""
Module: agri_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries: per-account balances, per-currency
    trial balance totals, integrity verification and the cashbook.  The
    ledger is a derived view over posted LedgerPostings -- there are no
    stored balances anywhere in the system.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - balance = debits - credits for every row; no re-signing by account
      type.  Credit-normal accounts are flagged, not flipped.
    - Reversal groups are ordinary postings: a posted-then-reversed
      document contributes zero net to every balance.
    - Rows are ordered by account code, then currency.

Failure modes:
    - Returns empty results when no postings match.

Audit relevance:
    verify_integrity() is the read-side check that every stored posting
    group nets to zero per currency.
"""

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import case, func, select

from agri_kernel.models.account import Account, NormalBalance
from agri_kernel.models.posting import LedgerPosting, PostingGroup
from agri_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AccountBalanceRow:
    """One (account, currency) rollup in integer minor units."""

    account_id: UUID
    account_code: str
    account_name: str
    account_type: str
    normal_balance: str
    currency: str
    debit_minor: int
    credit_minor: int

    @property
    def balance_minor(self) -> int:
        """Net balance (debits - credits)."""
        return self.debit_minor - self.credit_minor

    @property
    def is_credit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.CREDIT.value


@dataclass(frozen=True)
class CurrencyTotals:
    """Total debits and credits for one currency."""

    currency: str
    debit_minor: int
    credit_minor: int

    @property
    def is_balanced(self) -> bool:
        return self.debit_minor == self.credit_minor


@dataclass(frozen=True)
class GroupImbalance:
    group_id: UUID
    source_type: str
    source_id: UUID
    currency: str
    net_minor: int


@dataclass(frozen=True)
class CashbookRow:
    """A movement on a cash account."""

    posting_date: date
    seq: int
    sequence: int
    account_code: str
    description: str | None
    reference: str | None
    direction: str  # IN when the cash account is debited
    amount_minor: int
    currency: str
    source_type: str
    source_id: UUID
    party_id: UUID | None


_debit_sum = func.coalesce(
    func.sum(case((LedgerPosting.amount_minor > 0, LedgerPosting.amount_minor), else_=0)), 0
)
_credit_sum = func.coalesce(
    func.sum(case((LedgerPosting.amount_minor < 0, -LedgerPosting.amount_minor), else_=0)), 0
)


class LedgerSelector(BaseSelector):
    """
    Selector for ledger queries -- the authoritative balance computation.

    Contract:
        Every figure is computed at query time from LedgerPosting rows
        joined to their PostingGroup (for posting date and project scope).

    Non-goals:
        - No currency conversion; balances stay in posting currency.
    """

    def balances(
        self,
        as_of: date,
        project_id: UUID | None = None,
    ) -> list[AccountBalanceRow]:
        """
        Per-(account, currency) rollup of postings dated on or before ``as_of``.

        With ``project_id``, only groups scoped to that project count;
        unscoped groups are excluded.
        """
        query = (
            select(
                Account.id,
                Account.code,
                Account.name,
                Account.account_type,
                Account.normal_balance,
                LedgerPosting.currency,
                _debit_sum.label("debit_minor"),
                _credit_sum.label("credit_minor"),
            )
            .select_from(LedgerPosting)
            .join(PostingGroup, LedgerPosting.group_id == PostingGroup.id)
            .join(Account, LedgerPosting.account_id == Account.id)
            .where(PostingGroup.posting_date <= as_of)
            .group_by(
                Account.id,
                Account.code,
                Account.name,
                Account.account_type,
                Account.normal_balance,
                LedgerPosting.currency,
            )
            .order_by(Account.code, LedgerPosting.currency)
        )
        if project_id is not None:
            query = query.where(PostingGroup.project_id == project_id)

        return [
            AccountBalanceRow(
                account_id=row.id,
                account_code=row.code,
                account_name=row.name,
                account_type=row.account_type,
                normal_balance=row.normal_balance,
                currency=row.currency,
                debit_minor=int(row.debit_minor),
                credit_minor=int(row.credit_minor),
            )
            for row in self.session.execute(query).all()
        ]

    def trial_balance_totals(self, as_of: date | None = None) -> list[CurrencyTotals]:
        """
        Total debits and credits per currency.

        For a consistent ledger every currency is balanced.
        """
        query = (
            select(
                LedgerPosting.currency,
                _debit_sum.label("debit_minor"),
                _credit_sum.label("credit_minor"),
            )
            .select_from(LedgerPosting)
            .join(PostingGroup, LedgerPosting.group_id == PostingGroup.id)
            .group_by(LedgerPosting.currency)
            .order_by(LedgerPosting.currency)
        )
        if as_of is not None:
            query = query.where(PostingGroup.posting_date <= as_of)

        return [
            CurrencyTotals(
                currency=row.currency,
                debit_minor=int(row.debit_minor),
                credit_minor=int(row.credit_minor),
            )
            for row in self.session.execute(query).all()
        ]

    def verify_integrity(self) -> list[GroupImbalance]:
        """Posting groups whose postings do not net to zero, per currency."""
        net = func.sum(LedgerPosting.amount_minor)
        query = (
            select(
                PostingGroup.id,
                PostingGroup.source_type,
                PostingGroup.source_id,
                LedgerPosting.currency,
                net.label("net_minor"),
            )
            .select_from(LedgerPosting)
            .join(PostingGroup, LedgerPosting.group_id == PostingGroup.id)
            .group_by(
                PostingGroup.id,
                PostingGroup.source_type,
                PostingGroup.source_id,
                LedgerPosting.currency,
            )
            .having(net != 0)
            .order_by(PostingGroup.seq)
        )
        return [
            GroupImbalance(
                group_id=row.id,
                source_type=row.source_type,
                source_id=row.source_id,
                currency=row.currency,
                net_minor=int(row.net_minor),
            )
            for row in self.session.execute(query).all()
        ]

    def cashbook(
        self,
        from_date: date,
        to_date: date,
        cash_account_codes: tuple[str, ...] | list[str],
    ) -> list[CashbookRow]:
        """
        Movements on the cash accounts with posting date in [from_date, to_date].

        Ordered by posting date, group seq, posting sequence.
        """
        if not cash_account_codes:
            return []

        query = (
            select(LedgerPosting, PostingGroup, Account.code)
            .join(PostingGroup, LedgerPosting.group_id == PostingGroup.id)
            .join(Account, LedgerPosting.account_id == Account.id)
            .where(
                Account.code.in_(list(cash_account_codes)),
                PostingGroup.posting_date >= from_date,
                PostingGroup.posting_date <= to_date,
            )
            .order_by(PostingGroup.posting_date, PostingGroup.seq, LedgerPosting.sequence)
        )

        return [
            CashbookRow(
                posting_date=group.posting_date,
                seq=group.seq,
                sequence=posting.sequence,
                account_code=code,
                description=group.description,
                reference=group.reference,
                direction="IN" if posting.amount_minor > 0 else "OUT",
                amount_minor=abs(posting.amount_minor),
                currency=posting.currency,
                source_type=group.source_type,
                source_id=group.source_id,
                party_id=posting.party_id,
            )
            for posting, group, code in self.session.execute(query).all()
        ]
