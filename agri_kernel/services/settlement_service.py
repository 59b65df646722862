"""
SettlementService -- allocate a basis among parties and post it to the ledger.

Responsibility:
    Owns the settlement lifecycle DRAFT -> POSTED -> REVERSED.  Posting
    freezes the live share rule into a snapshot, splits the basis with
    AllocationEngine and writes one balanced posting group with one
    allocation row per recipient.  Reversal writes the exact negation.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    agri_services.settlements.SettlementCommands, which holds the
    per-settlement lock and owns the transaction.

Invariants enforced:
    - create never touches the ledger.
    - post: allocations sum exactly to the basis; the rule snapshot is
      written once and never rewritten; debits == credits.
    - reverse: not idempotent; the original group, postings and allocation
      rows are never modified or deleted.
    - Each transition runs inside a SAVEPOINT, so a failure leaves no
      partial rows or status change in the caller's transaction.
    - The settlement row is read FOR UPDATE and carries an optimistic
      version column; a stale version surfaces as BusyError.

Failure modes:
    - InvalidArgumentError: basis <= 0, bad currency, bad date range.
    - InvalidShareRuleError: rule inactive or percentages != 100.
    - AlreadyPostedError / NotPostedError / AlreadyReversedError.
    - BusyError: concurrent modification detected at flush.
    - InconsistentLedgerError: from LedgerStore (alerted there).

Audit relevance:
    settlement_posted / settlement_reversed carry the group id, rule
    version and per-party amounts.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from agri_engines.allocation import AllocationEngine, ShareAllocationResult, ShareTarget
from agri_kernel.domain.accounts import LedgerAccounts
from agri_kernel.domain.clock import Clock
from agri_kernel.exceptions import (
    AlreadyPostedError,
    AlreadyReversedError,
    BusyError,
    InvalidArgumentError,
    InvalidShareRuleError,
    NotPostedError,
    SettlementNotFoundError,
)
from agri_kernel.logging_config import get_logger
from agri_kernel.models.posting import AllocationRow, SourceType
from agri_kernel.models.settlement import (
    Settlement,
    SettlementLine,
    SettlementStatus,
    ShareRule,
)
from agri_kernel.services.base import BaseService
from agri_kernel.services.invoice_service import (
    require_currency,
    require_positive_minor,
    require_project,
)
from agri_kernel.services.ledger_store import AllocationEntry, LedgerStore, PostingLine
from agri_kernel.services.sequence_service import SequenceService
from agri_kernel.services.share_rule_service import (
    ShareRuleService,
    rule_snapshot,
    rule_targets,
)

logger = get_logger("services.settlement")


@dataclass(frozen=True)
class SettlementPreview:
    """Allocations ``post`` would produce under the rule's current lines."""

    share_rule_id: UUID
    share_rule_version: int
    allocation: ShareAllocationResult


class SettlementService(BaseService):
    """
    Settlement lifecycle.

    Contract:
        Methods flush within the caller's transaction; none commits.

    Guarantees:
        - A settlement has at most one posting group and at most one
          reversal group.
        - Historical allocations depend only on the stored snapshot.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        accounts: LedgerAccounts | None = None,
        actor_id: UUID | None = None,
        number_prefix: str = "STL",
    ):
        super().__init__(session, clock)
        self.accounts = accounts or LedgerAccounts()
        self.number_prefix = number_prefix
        self.ledger = LedgerStore(session, self.clock, actor_id)
        self.rules = ShareRuleService(session, self.clock)
        self._sequence = SequenceService(session)
        self._engine = AllocationEngine()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, settlement_id: UUID, *, for_update: bool = False) -> Settlement:
        stmt = select(Settlement).where(Settlement.id == settlement_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        settlement = self.session.execute(stmt).scalar_one_or_none()
        if settlement is None:
            raise SettlementNotFoundError(str(settlement_id))
        return settlement

    def list(
        self,
        *,
        status: SettlementStatus | str | None = None,
        share_rule_id: UUID | None = None,
        project_id: UUID | None = None,
    ) -> list[Settlement]:
        stmt = select(Settlement)
        if status is not None:
            try:
                stmt = stmt.where(Settlement.status == SettlementStatus(status).value)
            except ValueError as e:
                raise InvalidArgumentError("status", status, str(e)) from e
        if share_rule_id is not None:
            stmt = stmt.where(Settlement.share_rule_id == share_rule_id)
        if project_id is not None:
            stmt = stmt.where(Settlement.project_id == project_id)
        return list(self.session.execute(stmt.order_by(Settlement.settlement_no)).scalars())

    def allocation_rows(self, settlement_id: UUID) -> list[AllocationRow]:
        """All allocation rows of a settlement, originals before mirrors."""
        rows = self.session.execute(
            select(AllocationRow).where(AllocationRow.settlement_id == settlement_id)
        ).scalars().all()
        return sorted(rows, key=lambda r: (r.reversal_of_id is not None, str(r.party_id), r.role))

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def _active_rule(self, share_rule_id: UUID) -> ShareRule:
        rule = self.rules.get(share_rule_id)
        if not rule.is_active:
            raise InvalidShareRuleError(str(rule.id), "n/a", "share rule is inactive")
        self.rules.check_complete(rule)
        return rule

    def _allocate(
        self,
        rule_id: UUID,
        basis_minor: int,
        currency: str,
        targets: list[ShareTarget],
    ) -> ShareAllocationResult:
        try:
            return self._engine.allocate_shares(
                basis_minor=basis_minor,
                currency=currency,
                targets=targets,
            )
        except ValueError as e:
            raise InvalidShareRuleError(str(rule_id), "n/a", str(e)) from e

    def preview(
        self,
        *,
        basis_minor: int,
        currency: str,
        share_rule_id: UUID,
    ) -> SettlementPreview:
        require_positive_minor("basis_minor", basis_minor)
        currency = require_currency(currency)
        rule = self._active_rule(share_rule_id)
        return SettlementPreview(
            share_rule_id=rule.id,
            share_rule_version=rule.version,
            allocation=self._allocate(rule.id, basis_minor, currency, rule_targets(rule.lines)),
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create(
        self,
        *,
        basis_minor: int,
        currency: str,
        share_rule_id: UUID,
        project_id: UUID | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
        settlement_no: str | None = None,
        notes: str | None = None,
    ) -> Settlement:
        """
        Create a DRAFT settlement.  No ledger effect.

        Raises:
            InvalidArgumentError: basis <= 0, bad currency or period.
            InvalidShareRuleError: rule inactive or does not sum to 100.
        """
        require_positive_minor("basis_minor", basis_minor)
        currency = require_currency(currency)
        if from_date and to_date and to_date < from_date:
            raise InvalidArgumentError("to_date", to_date, "is before from_date")
        rule = self._active_rule(share_rule_id)
        require_project(self.session, project_id)

        settlement = Settlement(
            settlement_no=settlement_no
            or self._sequence.next_document_number(SequenceService.SETTLEMENT, self.number_prefix),
            status=SettlementStatus.DRAFT.value,
            basis_minor=basis_minor,
            currency=currency,
            share_rule_id=rule.id,
            share_rule_version=rule.version,
            project_id=project_id,
            from_date=from_date,
            to_date=to_date,
            notes=notes,
            created_by_id=self.ledger.actor_id,
        )
        self.session.add(settlement)
        self.session.flush()

        logger.info("settlement_created", extra={
            "settlement_id": str(settlement.id),
            "settlement_no": settlement.settlement_no,
            "basis_minor": basis_minor,
            "currency": currency,
            "share_rule_id": str(rule.id),
            "share_rule_version": rule.version,
        })
        return settlement

    def post(self, settlement_id: UUID, *, posting_date: date) -> Settlement:
        """
        Post a DRAFT settlement.

        Postconditions:
            - status POSTED, rule_snapshot set, one balanced posting group
              (Dr distribution / Cr role payables), one allocation row and
              one settlement line per recipient.
        Raises:
            AlreadyPostedError, InvalidShareRuleError, BusyError,
            InconsistentLedgerError, ClosedPeriodError.
        """
        t0 = time.monotonic()
        try:
            with self.session.begin_nested():
                settlement = self.get(settlement_id, for_update=True)
                if settlement.status != SettlementStatus.DRAFT.value:
                    raise AlreadyPostedError("Settlement", str(settlement.id), settlement.status)

                rule = self._active_rule(settlement.share_rule_id)
                snapshot = rule_snapshot(rule)
                result = self._allocate(
                    rule.id, settlement.basis_minor, settlement.currency, rule_targets(rule.lines)
                )

                lines = [
                    PostingLine.debit(
                        self.accounts.distribution,
                        settlement.basis_minor,
                        settlement.currency,
                        memo=f"Settlement {settlement.settlement_no} basis",
                    )
                ]
                lines.extend(
                    PostingLine.credit(
                        self.accounts.payable_for(share.role),
                        share.amount_minor,
                        settlement.currency,
                        party_id=share.party_id,
                        memo=f"{share.role} {share.percentage}%",
                    )
                    for share in result.lines
                    if share.amount_minor
                )

                group = self.ledger.write_group(
                    source_type=SourceType.SETTLEMENT,
                    source_id=settlement.id,
                    posting_date=posting_date,
                    lines=lines,
                    project_id=settlement.project_id,
                    description=f"Settlement {settlement.settlement_no}",
                    reference=settlement.settlement_no,
                    allocations=[
                        AllocationEntry(
                            settlement_id=settlement.id,
                            party_id=share.party_id,
                            role=share.role,
                            amount_minor=share.amount_minor,
                            currency=settlement.currency,
                            rule_snapshot=snapshot,
                            project_id=settlement.project_id,
                        )
                        for share in result.lines
                    ],
                )

                settlement.lines = [
                    SettlementLine(
                        party_id=share.party_id,
                        role=share.role,
                        percentage=Decimal(share.percentage),
                        amount_minor=share.amount_minor,
                        is_primary=share.is_primary,
                        line_order=share.line_order,
                    )
                    for share in result.lines
                ]
                settlement.rule_snapshot = snapshot
                settlement.posting_date = posting_date
                settlement.posting_group_id = group.id
                settlement.posted_at = self.clock.now()
                settlement.status = SettlementStatus.POSTED.value
                self.session.flush()
        except StaleDataError as e:
            logger.warning("settlement_version_conflict", extra={
                "settlement_id": str(settlement_id),
                "operation": "post",
            })
            raise BusyError("Settlement", str(settlement_id)) from e

        logger.info("settlement_posted", extra={
            "settlement_id": str(settlement.id),
            "settlement_no": settlement.settlement_no,
            "group_id": str(group.id),
            "posting_date": posting_date.isoformat(),
            "share_rule_version": snapshot["version"],
            "allocations": {str(s.party_id): s.amount_minor for s in result.lines},
            "rounding_adjustment": result.rounding_adjustment,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return settlement

    def reverse(self, settlement_id: UUID, *, reversal_date: date) -> Settlement:
        """
        Reverse a POSTED settlement by writing the negating posting group.

        Raises:
            NotPostedError: settlement is DRAFT.
            AlreadyReversedError: settlement is already REVERSED.
            ClosedPeriodError: reversal_date in a CLOSED period, unless it is
                the posting date.
            BusyError, InconsistentLedgerError.
        """
        t0 = time.monotonic()
        try:
            with self.session.begin_nested():
                settlement = self.get(settlement_id, for_update=True)
                if settlement.status == SettlementStatus.REVERSED.value:
                    raise AlreadyReversedError("Settlement", str(settlement.id))
                if settlement.status != SettlementStatus.POSTED.value:
                    raise NotPostedError("Settlement", str(settlement.id), settlement.status)
                if settlement.posting_date and reversal_date < settlement.posting_date:
                    raise InvalidArgumentError(
                        "reversal_date", reversal_date, "is before the posting date"
                    )

                group = self.ledger.write_reversal(
                    settlement.posting_group_id,
                    posting_date=reversal_date,
                    description=f"Reversal of settlement {settlement.settlement_no}",
                )

                settlement.reversal_date = reversal_date
                settlement.reversal_posting_group_id = group.id
                settlement.reversed_at = self.clock.now()
                settlement.status = SettlementStatus.REVERSED.value
                self.session.flush()
        except StaleDataError as e:
            logger.warning("settlement_version_conflict", extra={
                "settlement_id": str(settlement_id),
                "operation": "reverse",
            })
            raise BusyError("Settlement", str(settlement_id)) from e

        logger.info("settlement_reversed", extra={
            "settlement_id": str(settlement.id),
            "settlement_no": settlement.settlement_no,
            "reversal_group_id": str(group.id),
            "original_group_id": str(settlement.posting_group_id),
            "reversal_date": reversal_date.isoformat(),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return settlement
