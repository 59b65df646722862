"""
SettlementCommands -- transactional settlement entry points.

Responsibility:
    Wraps SettlementService so each command runs in its own transaction
    and each post/reverse holds the per-settlement lock from before
    validation until after commit.

Architecture position:
    agri_services -- outer layer.  Owns the session, the commit and the
    in-process lock; SettlementService owns the rules of the lifecycle.

Invariants enforced:
    - post and reverse on the same settlement id never overlap within a
      process.  Across processes the FOR UPDATE row lock and the
      optimistic version column serialize them.
    - A failed command commits nothing.

Failure modes:
    - BusyError: the lock was not acquired within
      ``settlement.lock_timeout_seconds`` (retryable).
    - Everything SettlementService raises, unchanged.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from agri_config.schema import AppConfig
from agri_kernel.db.engine import session_scope
from agri_kernel.domain.clock import Clock, SystemClock
from agri_kernel.domain.values import format_minor
from agri_kernel.exceptions import AgriLedgerError, InvalidArgumentError
from agri_kernel.logging_config import LogContext, get_logger
from agri_kernel.models.settlement import Settlement
from agri_kernel.services.invoice_service import require_currency
from agri_kernel.services.settlement_service import SettlementPreview, SettlementService
from agri_kernel.services.share_rule_service import PERCENT_QUANTUM
from agri_kernel.utils.locking import KeyedLockRegistry
from agri_services.params import parse_amount_minor, parse_date, parse_uuid

logger = get_logger("services.settlement_commands")

# Shared by every SettlementCommands in the process unless one is injected.
SETTLEMENT_LOCKS = KeyedLockRegistry(entity_type="Settlement")

_CREATE_FIELDS = frozenset({
    "basis",
    "basis_minor",
    "currency",
    "share_rule_id",
    "project_id",
    "from_date",
    "to_date",
    "settlement_no",
    "notes",
})


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


def _str_or_none(value: UUID | None) -> str | None:
    return str(value) if value else None


def settlement_document(settlement: Settlement) -> dict[str, Any]:
    """JSON-ready view of a settlement, including its allocated lines."""
    currency = settlement.currency
    return {
        "id": str(settlement.id),
        "settlement_no": settlement.settlement_no,
        "status": settlement.status,
        "basis": format_minor(settlement.basis_minor, currency),
        "currency": currency,
        "share_rule_id": str(settlement.share_rule_id),
        "share_rule_version": settlement.share_rule_version,
        "project_id": _str_or_none(settlement.project_id),
        "from_date": _iso(settlement.from_date),
        "to_date": _iso(settlement.to_date),
        "posting_date": _iso(settlement.posting_date),
        "reversal_date": _iso(settlement.reversal_date),
        "posting_group_id": _str_or_none(settlement.posting_group_id),
        "reversal_posting_group_id": _str_or_none(settlement.reversal_posting_group_id),
        "rule_snapshot": settlement.rule_snapshot,
        "notes": settlement.notes,
        "lines": [
            {
                "party_id": str(line.party_id),
                "role": line.role,
                "percentage": str(Decimal(line.percentage).quantize(PERCENT_QUANTUM)),
                "amount": format_minor(line.amount_minor, currency),
                "is_primary": line.is_primary,
            }
            for line in sorted(settlement.lines, key=lambda l: l.line_order)
        ],
    }


def preview_document(preview: SettlementPreview) -> dict[str, Any]:
    allocation = preview.allocation
    return {
        "share_rule_id": str(preview.share_rule_id),
        "share_rule_version": preview.share_rule_version,
        "basis": format_minor(allocation.basis_minor, allocation.currency),
        "currency": allocation.currency,
        "rounding_adjustment": allocation.rounding_adjustment,
        "lines": [
            {
                "party_id": str(line.party_id),
                "role": line.role,
                "percentage": str(line.percentage.quantize(PERCENT_QUANTUM)),
                "amount": format_minor(line.amount_minor, allocation.currency),
                "is_primary": line.is_primary,
            }
            for line in allocation.lines
        ],
    }


def error_payload(exc: BaseException) -> dict[str, Any]:
    """
    Convert an error into ``{code, message, retryable}``.

    Untyped exceptions are reported as INTERNAL_ERROR and never as
    retryable.
    """
    if isinstance(exc, AgriLedgerError):
        return {"code": exc.code, "message": str(exc), "retryable": exc.retryable}
    return {"code": "INTERNAL_ERROR", "message": str(exc), "retryable": False}


class SettlementCommands:
    """
    Settlement commands for callers.

    Contract:
        Each method commits on success and rolls back on any error.
        Returns settlement documents (see ``settlement_document``).
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        config: AppConfig | None = None,
        clock: Clock | None = None,
        locks: KeyedLockRegistry | None = None,
        actor_id: UUID | None = None,
    ):
        self._factory = session_factory
        self.config = config or AppConfig()
        self.clock = clock or SystemClock()
        self.locks = locks or SETTLEMENT_LOCKS
        self.actor_id = actor_id

    def _service(self, session: Session) -> SettlementService:
        return SettlementService(
            session,
            self.clock,
            accounts=self.config.ledger.accounts,
            actor_id=self.actor_id,
            number_prefix=self.config.settlement.number_prefix,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """
        Create a DRAFT settlement.

        ``payload`` keys: ``share_rule_id`` (required), either ``basis``
        (display amount) or ``basis_minor``, and optionally ``currency``,
        ``project_id``, ``from_date``, ``to_date``, ``settlement_no``,
        ``notes``.
        """
        unknown = set(payload) - _CREATE_FIELDS
        if unknown:
            raise InvalidArgumentError("payload", sorted(unknown), "unknown fields")

        currency = require_currency(payload.get("currency") or self.config.ledger.default_currency)
        if "basis_minor" in payload:
            basis_minor = payload["basis_minor"]
        else:
            basis_minor = parse_amount_minor("basis", payload.get("basis"), currency)

        with session_scope(self._factory) as session:
            settlement = self._service(session).create(
                basis_minor=basis_minor,
                currency=currency,
                share_rule_id=parse_uuid("share_rule_id", payload.get("share_rule_id")),
                project_id=parse_uuid("project_id", payload.get("project_id"), required=False),
                from_date=parse_date("from_date", payload.get("from_date"), required=False),
                to_date=parse_date("to_date", payload.get("to_date"), required=False),
                settlement_no=payload.get("settlement_no"),
                notes=payload.get("notes"),
            )
            return settlement_document(settlement)

    def post(self, settlement_id: UUID | str, posting_date: date | str) -> dict[str, Any]:
        """Post a DRAFT settlement under the settlement's lock."""
        sid = parse_uuid("settlement_id", settlement_id)
        when = parse_date("posting_date", posting_date)
        with LogContext.bind(settlement_id=str(sid)):
            with self.locks.hold(sid, self.config.settlement.lock_timeout_seconds):
                with session_scope(self._factory) as session:
                    document = settlement_document(
                        self._service(session).post(sid, posting_date=when)
                    )
            logger.info("settlement_post_committed", extra={
                "settlement_no": document["settlement_no"],
                "posting_group_id": document["posting_group_id"],
            })
        return document

    def reverse(self, settlement_id: UUID | str, reversal_date: date | str) -> dict[str, Any]:
        """Reverse a POSTED settlement under the settlement's lock."""
        sid = parse_uuid("settlement_id", settlement_id)
        when = parse_date("reversal_date", reversal_date)
        with LogContext.bind(settlement_id=str(sid)):
            with self.locks.hold(sid, self.config.settlement.lock_timeout_seconds):
                with session_scope(self._factory) as session:
                    document = settlement_document(
                        self._service(session).reverse(sid, reversal_date=when)
                    )
            logger.info("settlement_reverse_committed", extra={
                "settlement_no": document["settlement_no"],
                "reversal_posting_group_id": document["reversal_posting_group_id"],
            })
        return document

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def preview(
        self,
        share_rule_id: UUID | str,
        basis: str | Decimal | int,
        currency: str | None = None,
    ) -> dict[str, Any]:
        """Allocations a post would produce now.  Writes nothing."""
        currency = require_currency(currency or self.config.ledger.default_currency)
        basis_minor = parse_amount_minor("basis", basis, currency)
        with session_scope(self._factory) as session:
            preview = self._service(session).preview(
                basis_minor=basis_minor,
                currency=currency,
                share_rule_id=parse_uuid("share_rule_id", share_rule_id),
            )
        return preview_document(preview)

    def get(self, settlement_id: UUID | str) -> dict[str, Any]:
        with session_scope(self._factory) as session:
            settlement = self._service(session).get(parse_uuid("settlement_id", settlement_id))
            return settlement_document(settlement)

    def list(
        self,
        status: str | None = None,
        share_rule_id: UUID | str | None = None,
        project_id: UUID | str | None = None,
    ) -> list[dict[str, Any]]:
        with session_scope(self._factory) as session:
            settlements = self._service(session).list(
                status=status,
                share_rule_id=parse_uuid("share_rule_id", share_rule_id, required=False),
                project_id=parse_uuid("project_id", project_id, required=False),
            )
            return [settlement_document(s) for s in settlements]
