"""
ReportFacade -- read-only ledger reports for callers.

Responsibility:
    Parses and validates query parameters, runs the selectors and engines
    inside a fresh session, and serializes the result.  Amounts leave this
    module as fixed-point display strings (``"1000.00"``); everything
    below works in integer minor units.

Architecture position:
    agri_services -- outer layer.  Reads through agri_kernel.selectors and
    classifies with agri_engines.ageing.

Invariants enforced:
    - Reports never write; a failed call has no side effects.
    - Ageing totals are always present, zero when nothing is outstanding.
    - Every call runs in its own transaction (REPEATABLE READ on
      PostgreSQL), so one report sees one consistent ledger state.

Failure modes:
    - InvalidArgumentError: missing or unparseable dates, ids or ranges.
"""

import time
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from agri_config.schema import AppConfig
from agri_engines.ageing import AGEING_BUCKETS, BUCKET_NAMES, AgeingClassifier, AgeingRow
from agri_kernel.db.engine import session_scope
from agri_kernel.domain.clock import Clock, SystemClock
from agri_kernel.domain.values import format_minor
from agri_kernel.exceptions import InvalidArgumentError
from agri_kernel.logging_config import get_logger
from agri_kernel.selectors.ledger_selector import AccountBalanceRow, CashbookRow, LedgerSelector
from agri_kernel.selectors.receivable_selector import ReceivableSelector
from agri_services.params import parse_date, parse_uuid

logger = get_logger("services.reports")


def _row_buckets(row: AgeingRow) -> dict[str, str]:
    out = {b.key: format_minor(row.bucket_amount(b.key), row.currency) for b in AGEING_BUCKETS}
    out["total_outstanding"] = format_minor(row.total_outstanding, row.currency)
    return out


def balance_row_dict(row: AccountBalanceRow) -> dict[str, Any]:
    return {
        "account_code": row.account_code,
        "account_name": row.account_name,
        "account_type": row.account_type,
        "normal_balance": row.normal_balance,
        "currency": row.currency,
        "debits": format_minor(row.debit_minor, row.currency),
        "credits": format_minor(row.credit_minor, row.currency),
        "balance": format_minor(row.balance_minor, row.currency),
    }


def cashbook_row_dict(row: CashbookRow) -> dict[str, Any]:
    return {
        "date": row.posting_date.isoformat(),
        "account_code": row.account_code,
        "description": row.description,
        "reference": row.reference,
        "type": row.direction,
        "amount": format_minor(row.amount_minor, row.currency),
        "currency": row.currency,
        "source_type": row.source_type,
        "source_id": str(row.source_id),
    }


class ReportFacade:
    """
    Report entry points.

    Contract:
        Inputs may be ``date``/``UUID`` objects or their string forms.
        Outputs are JSON-ready dicts and lists.

    Non-goals:
        - No pagination and no currency conversion.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        config: AppConfig | None = None,
        clock: Clock | None = None,
    ):
        self._factory = session_factory
        self.config = config or AppConfig()
        self.clock = clock or SystemClock()
        self._classifier = AgeingClassifier()

    # ------------------------------------------------------------------
    # Ageing
    # ------------------------------------------------------------------

    def _ageing_report(self, as_of, buyer_party_id, project_id, currency):
        cutoff = parse_date("as_of", as_of)
        buyer = parse_uuid("buyer_party_id", buyer_party_id, required=False)
        project = parse_uuid("project_id", project_id, required=False)

        with session_scope(self._factory) as session:
            items = ReceivableSelector(session).open_items(
                cutoff,
                buyer_party_id=buyer,
                project_id=project,
                currency=currency,
            )
        return cutoff, self._classifier.build_report(cutoff=cutoff, items=items)

    def ageing(
        self,
        as_of: date | str,
        buyer_party_id: UUID | str | None = None,
        project_id: UUID | str | None = None,
        currency: str | None = None,
    ) -> dict[str, Any]:
        """
        Receivable ageing as of ``as_of``.

        Returns:
            ``{"as_of", "buckets", "rows", "totals"}``.  ``totals`` maps
            currency to the bucket sums; when nothing is outstanding it
            holds a zero row for the requested (or default) currency.
        """
        t0 = time.monotonic()
        cutoff, report = self._ageing_report(as_of, buyer_party_id, project_id, currency)

        totals = {cur: _row_buckets(row) for cur, row in sorted(report.totals.items())}
        if not totals:
            empty_currency = currency or self.config.ledger.default_currency
            totals[empty_currency] = _row_buckets(report.totals_for(empty_currency))

        result = {
            "as_of": cutoff.isoformat(),
            "buckets": list(BUCKET_NAMES),
            "rows": [
                {
                    "buyer_party_id": str(row.buyer_party_id),
                    "buyer_name": row.buyer_name,
                    "currency": row.currency,
                    **_row_buckets(row),
                }
                for row in report.rows
            ],
            "totals": totals,
        }
        logger.info("ageing_report_served", extra={
            "as_of": cutoff.isoformat(),
            "row_count": len(result["rows"]),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return result

    def ageing_detail(
        self,
        as_of: date | str,
        buyer_party_id: UUID | str | None = None,
        project_id: UUID | str | None = None,
        currency: str | None = None,
    ) -> list[dict[str, Any]]:
        """One row per open invoice with its age and bucket."""
        _, report = self._ageing_report(as_of, buyer_party_id, project_id, currency)
        return [
            {
                "invoice_id": str(aged.item.document_id),
                "invoice_no": aged.item.reference,
                "buyer_party_id": str(aged.item.buyer_party_id),
                "buyer_name": aged.item.buyer_name,
                "posting_date": aged.item.posting_date.isoformat(),
                "due_date": aged.item.due_date.isoformat() if aged.item.due_date else None,
                "age_days": aged.age_days,
                "bucket": aged.bucket.name,
                "currency": aged.item.currency,
                "amount": (
                    format_minor(aged.item.amount_minor, aged.item.currency)
                    if aged.item.amount_minor is not None
                    else None
                ),
                "open_balance": format_minor(aged.item.open_minor, aged.item.currency),
            }
            for aged in report.items
        ]

    # ------------------------------------------------------------------
    # Balances and cashbook
    # ------------------------------------------------------------------

    def balances(
        self,
        as_of: date | str,
        project_id: UUID | str | None = None,
    ) -> list[dict[str, Any]]:
        """Per-(account, currency) balances as of ``as_of``."""
        cutoff = parse_date("as_of", as_of)
        project = parse_uuid("project_id", project_id, required=False)
        with session_scope(self._factory) as session:
            rows = LedgerSelector(session).balances(cutoff, project_id=project)
        return [balance_row_dict(r) for r in rows]

    def trial_balance(self, as_of: date | str | None = None) -> list[dict[str, Any]]:
        cutoff = parse_date("as_of", as_of, required=False)
        with session_scope(self._factory) as session:
            totals = LedgerSelector(session).trial_balance_totals(cutoff)
        return [
            {
                "currency": t.currency,
                "debits": format_minor(t.debit_minor, t.currency),
                "credits": format_minor(t.credit_minor, t.currency),
                "balanced": t.is_balanced,
            }
            for t in totals
        ]

    def cashbook(
        self,
        from_date: date | str,
        to_date: date | str,
    ) -> list[dict[str, Any]]:
        """
        Cash account movements in [from_date, to_date].

        Raises:
            InvalidArgumentError: missing dates or ``to_date < from_date``.
        """
        start = parse_date("from_date", from_date)
        end = parse_date("to_date", to_date)
        if end < start:
            raise InvalidArgumentError("to_date", end.isoformat(), "is before from_date")
        with session_scope(self._factory) as session:
            rows = LedgerSelector(session).cashbook(
                start, end, self.config.ledger.accounts.cash_account_codes
            )
        return [cashbook_row_dict(r) for r in rows]
