"""
LedgerStore -- the single writer of posting groups, postings and allocation rows.

Responsibility:
    Persists one balanced posting set per source document, and the exact
    negation of a posted set on reversal.  Every ledger write in the
    system goes through ``write_group`` or ``write_reversal``; no other
    module creates PostingGroup, LedgerPosting or AllocationRow rows.

Architecture position:
    Kernel > Services -- imperative shell.  Called by InvoiceService,
    PaymentService and SettlementService; delegates group numbering to
    SequenceService.

Invariants enforced:
    - Balance: the postings of a group net to zero per currency.  An
      unbalanced set is never flushed; the operator alert fires first and
      InconsistentLedgerError is raised.
    - One group per (source_type, source_id); one reversal per group.
    - Reversal negates every posting and every allocation row exactly and
      never touches the original rows.
    - All amounts are non-zero signed integer minor units.

Failure modes:
    - InvalidArgumentError: empty posting set, zero amount, unknown currency.
    - AccountNotFoundError: a posting names an unknown or inactive account.
    - AlreadyPostedError: the source already has a posting group.
    - AlreadyReversedError: the group has already been reversed (service
      check, or the uq_posting_group_reversal_of constraint under a race).
    - InconsistentLedgerError: the set (or the original, on reversal) does
      not net to zero.
    - ClosedPeriodError: the posting date falls in a CLOSED accounting
      period (a reversal dated on its original's posting date is exempt).
    - InvalidArgumentError: a reversal dated before its original.

Audit relevance:
    Every group is logged with its seq, source and per-currency debit
    total.  Integrity failures go to the ``agri_kernel.alerts`` logger at
    CRITICAL.
"""

import time
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agri_kernel.db.base import SYSTEM_ACTOR_ID
from agri_kernel.domain.clock import Clock
from agri_kernel.domain.currency import CurrencyRegistry
from agri_kernel.exceptions import (
    AccountNotFoundError,
    AlreadyPostedError,
    AlreadyReversedError,
    InconsistentLedgerError,
    InvalidArgumentError,
    PostingGroupNotFoundError,
)
from agri_kernel.logging_config import get_alert_logger, get_logger
from agri_kernel.models.account import Account
from agri_kernel.models.posting import (
    AllocationRow,
    LedgerPosting,
    PostingGroup,
    SourceType,
)
from agri_kernel.services.base import BaseService
from agri_kernel.services.period_service import PeriodService
from agri_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger_store")
alerts = get_alert_logger()


@dataclass(frozen=True)
class PostingLine:
    """
    One signed posting to be written.

    amount_minor > 0 is a debit, < 0 a credit.
    """

    account_code: str
    amount_minor: int
    currency: str
    party_id: UUID | None = None
    memo: str | None = None

    @classmethod
    def debit(cls, account_code: str, amount_minor: int, currency: str, **kwargs: Any) -> "PostingLine":
        return cls(account_code, abs(amount_minor), currency, **kwargs)

    @classmethod
    def credit(cls, account_code: str, amount_minor: int, currency: str, **kwargs: Any) -> "PostingLine":
        return cls(account_code, -abs(amount_minor), currency, **kwargs)


@dataclass(frozen=True)
class AllocationEntry:
    """A party's share of a settlement, written with the settlement's group."""

    settlement_id: UUID
    party_id: UUID
    role: str
    amount_minor: int
    currency: str
    rule_snapshot: dict[str, Any] = field(default_factory=dict)
    project_id: UUID | None = None


def net_by_currency(amounts: Iterable[tuple[str, int]]) -> dict[str, int]:
    """Net signed minor units per currency."""
    totals: dict[str, int] = defaultdict(int)
    for currency, amount in amounts:
        totals[currency] += amount
    return dict(totals)


def imbalances_of(amounts: Iterable[tuple[str, int]]) -> dict[str, int]:
    """Currencies whose signed amounts do not net to zero."""
    return {cur: net for cur, net in net_by_currency(amounts).items() if net != 0}


class LedgerStore(BaseService):
    """
    Append-only writer of balanced posting groups.

    Contract:
        ``write_group`` persists one group with all of its postings (and
        optional allocation rows) in the caller's transaction and flushes.
        ``write_reversal`` persists the negating group for an existing one.

    Guarantees:
        - Nothing is flushed for a set that fails validation.
        - The returned group has its id and seq assigned.

    Non-goals:
        - Does NOT commit.
        - Does NOT change document status; the owning service does.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ):
        super().__init__(session, clock)
        self.actor_id = actor_id or SYSTEM_ACTOR_ID
        self._sequence = SequenceService(session)
        self._periods = PeriodService(session, clock)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _resolve_accounts(self, codes: Iterable[str]) -> dict[str, Account]:
        wanted = set(codes)
        found = {
            a.code: a
            for a in self.session.execute(
                select(Account).where(Account.code.in_(wanted))
            ).scalars()
        }
        for code in sorted(wanted):
            account = found.get(code)
            if account is None or not account.is_active:
                logger.warning("posting_account_unresolved", extra={"account_code": code})
                raise AccountNotFoundError(code)
        return found

    def _validate_lines(self, lines: Sequence[PostingLine]) -> None:
        if not lines:
            raise InvalidArgumentError("lines", [], "a posting group needs at least one posting")
        for line in lines:
            if not isinstance(line.amount_minor, int) or isinstance(line.amount_minor, bool):
                raise InvalidArgumentError(
                    "amount_minor", line.amount_minor, "must be integer minor units"
                )
            if line.amount_minor == 0:
                raise InvalidArgumentError(
                    "amount_minor", 0, f"zero posting to {line.account_code}"
                )
            if not CurrencyRegistry.is_valid(line.currency):
                raise InvalidArgumentError("currency", line.currency, "unknown ISO 4217 code")

    def _assert_balanced(
        self,
        source_type: str,
        source_id: UUID,
        amounts: Iterable[tuple[str, int]],
    ) -> None:
        """Raise InconsistentLedgerError (after alerting) unless every currency nets to zero."""
        imbalances = imbalances_of(amounts)
        if not imbalances:
            return
        alerts.critical(
            "ledger_inconsistency_detected",
            extra={
                "source_type": source_type,
                "source_id": str(source_id),
                "imbalances": imbalances,
            },
        )
        raise InconsistentLedgerError(source_type, str(source_id), imbalances)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def find_group(self, source_type: SourceType | str, source_id: UUID) -> PostingGroup | None:
        st = source_type.value if isinstance(source_type, SourceType) else source_type
        return self.session.execute(
            select(PostingGroup).where(
                PostingGroup.source_type == st,
                PostingGroup.source_id == source_id,
            )
        ).scalar_one_or_none()

    def write_group(
        self,
        *,
        source_type: SourceType | str,
        source_id: UUID,
        posting_date: date,
        lines: Sequence[PostingLine],
        project_id: UUID | None = None,
        description: str | None = None,
        reference: str | None = None,
        allocations: Sequence[AllocationEntry] = (),
    ) -> PostingGroup:
        """
        Write one balanced posting group.

        Preconditions:
            - ``lines`` is non-empty; every amount is a non-zero int.
        Postconditions:
            - One PostingGroup with len(lines) postings numbered from 1,
              plus one AllocationRow per ``allocations`` entry, all flushed.
        Raises:
            InvalidArgumentError, AccountNotFoundError, AlreadyPostedError,
            InconsistentLedgerError, ClosedPeriodError.
        """
        t0 = time.monotonic()
        st = source_type.value if isinstance(source_type, SourceType) else source_type

        self._validate_lines(lines)
        self._assert_balanced(st, source_id, ((l.currency, l.amount_minor) for l in lines))
        accounts = self._resolve_accounts(l.account_code for l in lines)
        self._periods.assert_posting_date_allowed(posting_date)

        if self.find_group(st, source_id) is not None:
            raise AlreadyPostedError(st, str(source_id), "POSTED")

        group = PostingGroup(
            id=uuid4(),
            source_type=st,
            source_id=source_id,
            seq=self._sequence.next_value(SequenceService.POSTING_GROUP),
            posting_date=posting_date,
            project_id=project_id,
            description=description,
            reference=reference,
            created_by_id=self.actor_id,
        )
        self.session.add(group)
        self.session.flush()

        for i, line in enumerate(lines, start=1):
            self.session.add(
                LedgerPosting(
                    group_id=group.id,
                    source_type=st,
                    source_id=source_id,
                    sequence=i,
                    account_id=accounts[line.account_code].id,
                    currency=line.currency,
                    amount_minor=line.amount_minor,
                    party_id=line.party_id,
                    memo=line.memo,
                    created_by_id=self.actor_id,
                )
            )

        for entry in allocations:
            self.session.add(
                AllocationRow(
                    group_id=group.id,
                    settlement_id=entry.settlement_id,
                    party_id=entry.party_id,
                    role=entry.role,
                    project_id=entry.project_id,
                    currency=entry.currency,
                    amount_minor=entry.amount_minor,
                    rule_snapshot=entry.rule_snapshot,
                    created_by_id=self.actor_id,
                )
            )

        self.session.flush()

        logger.info("posting_group_written", extra={
            "group_id": str(group.id),
            "seq": group.seq,
            "source_type": st,
            "source_id": str(source_id),
            "posting_date": posting_date.isoformat(),
            "posting_count": len(lines),
            "allocation_count": len(allocations),
            "debits_by_currency": net_by_currency(
                (l.currency, l.amount_minor) for l in lines if l.amount_minor > 0
            ),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return group

    def post_journal(
        self,
        *,
        posting_date: date,
        lines: Sequence[PostingLine],
        journal_id: UUID | None = None,
        project_id: UUID | None = None,
        description: str | None = None,
        reference: str | None = None,
    ) -> PostingGroup:
        """Write a manual journal (opening balances, adjustments)."""
        return self.write_group(
            source_type=SourceType.JOURNAL,
            source_id=journal_id or uuid4(),
            posting_date=posting_date,
            lines=lines,
            project_id=project_id,
            description=description,
            reference=reference,
        )

    def get_group(self, group_id: UUID, *, for_update: bool = False) -> PostingGroup:
        stmt = select(PostingGroup).where(PostingGroup.id == group_id)
        if for_update:
            stmt = stmt.with_for_update()
        group = self.session.execute(stmt).scalar_one_or_none()
        if group is None:
            raise PostingGroupNotFoundError(str(group_id))
        return group

    def reversal_of(self, group_id: UUID) -> PostingGroup | None:
        """The group that reverses ``group_id``, if any."""
        return self.session.execute(
            select(PostingGroup).where(PostingGroup.reversal_of_id == group_id)
        ).scalar_one_or_none()

    def write_reversal(
        self,
        original_group_id: UUID,
        *,
        posting_date: date,
        description: str | None = None,
    ) -> PostingGroup:
        """
        Write the exact negation of a posted group.

        Postconditions:
            - New group with source_type REVERSAL, source_id and
              reversal_of_id equal to the original group id.
            - One posting per original posting, same account, currency and
              party, amount negated.
            - One mirrored allocation row per original allocation row.
            - original + reversal net to zero per (account, currency).
        Raises:
            PostingGroupNotFoundError, AlreadyReversedError,
            InconsistentLedgerError, ClosedPeriodError, InvalidArgumentError.
        """
        t0 = time.monotonic()
        original = self.get_group(original_group_id, for_update=True)

        if original.reversal_of_id is not None:
            raise InvalidArgumentError(
                "original_group_id", str(original_group_id), "a reversal cannot be reversed"
            )
        if self.reversal_of(original.id) is not None:
            raise AlreadyReversedError("PostingGroup", str(original.id))
        if posting_date < original.posting_date:
            raise InvalidArgumentError(
                "posting_date",
                posting_date,
                f"is before the original posting date {original.posting_date}",
            )
        self._periods.assert_reversal_date_allowed(original.posting_date, posting_date)

        postings = list(original.postings)
        self._assert_balanced(
            original.source_type,
            original.source_id,
            ((p.currency, p.amount_minor) for p in postings),
        )

        savepoint = self.session.begin_nested()
        try:
            reversal = PostingGroup(
                id=uuid4(),
                source_type=SourceType.REVERSAL.value,
                source_id=original.id,
                seq=self._sequence.next_value(SequenceService.POSTING_GROUP),
                posting_date=posting_date,
                project_id=original.project_id,
                description=description or f"Reversal of {original.reference or original.id}",
                reference=original.reference,
                reversal_of_id=original.id,
                created_by_id=self.actor_id,
            )
            self.session.add(reversal)
            self.session.flush()

            for p in postings:
                self.session.add(
                    LedgerPosting(
                        group_id=reversal.id,
                        source_type=SourceType.REVERSAL.value,
                        source_id=original.id,
                        sequence=p.sequence,
                        account_id=p.account_id,
                        currency=p.currency,
                        amount_minor=-p.amount_minor,
                        party_id=p.party_id,
                        memo=p.memo,
                        created_by_id=self.actor_id,
                    )
                )

            mirrored = 0
            for row in original.allocation_rows:
                self.session.add(
                    AllocationRow(
                        group_id=reversal.id,
                        settlement_id=row.settlement_id,
                        party_id=row.party_id,
                        role=row.role,
                        project_id=row.project_id,
                        currency=row.currency,
                        amount_minor=-row.amount_minor,
                        rule_snapshot=row.rule_snapshot,
                        reversal_of_id=row.id,
                        created_by_id=self.actor_id,
                    )
                )
                mirrored += 1

            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.warning("reversal_conflict", extra={"original_group_id": str(original.id)})
            raise AlreadyReversedError("PostingGroup", str(original.id))

        logger.info("posting_group_reversed", extra={
            "group_id": str(reversal.id),
            "seq": reversal.seq,
            "original_group_id": str(original.id),
            "original_source_type": original.source_type,
            "original_source_id": str(original.source_id),
            "posting_count": len(postings),
            "allocation_count": mirrored,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return reversal

    def group_imbalances(self, group_id: UUID) -> dict[str, int]:
        """Per-currency net of a stored group; empty when balanced."""
        group = self.get_group(group_id)
        return imbalances_of((p.currency, p.amount_minor) for p in group.postings)
