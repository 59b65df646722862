"""
``agri-ledger`` command line.

Prints reports as JSON for the configured (or given) database.

Usage:
    agri-ledger init-db
    agri-ledger ageing --as-of 2024-03-31 [--buyer ID] [--project ID] [--detail]
    agri-ledger balances --as-of 2024-03-31 [--project ID]
    agri-ledger cashbook --from 2024-01-01 --to 2024-03-31
    agri-ledger --database-url sqlite:///farm.db balances --as-of 2024-03-31
"""

import argparse
import json
import sys
from collections.abc import Sequence

from sqlalchemy import select

from agri_config import AppConfig, load_config
from agri_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from agri_kernel.domain.accounts import LedgerAccounts
from agri_kernel.exceptions import AgriLedgerError
from agri_kernel.logging_config import configure_logging, get_logger
from agri_kernel.models.account import DEFAULT_NORMAL_BALANCE, Account, AccountType
from agri_kernel.services.sequence_service import SequenceService
from agri_services.reports import ReportFacade
from agri_services.settlements import error_payload

logger = get_logger("cli")


def chart_of_accounts(accounts: LedgerAccounts) -> list[tuple[str, str, AccountType]]:
    """(code, name, type) for every account the ledger posts to."""
    chart = [
        (accounts.receivable, "Trade receivables", AccountType.ASSET),
        (accounts.revenue, "Sales revenue", AccountType.REVENUE),
        (accounts.cash, "Cash in hand", AccountType.ASSET),
        (accounts.bank, "Bank", AccountType.ASSET),
        (accounts.distribution, "Profit distribution", AccountType.EQUITY),
        (accounts.default_payable, "Party payables", AccountType.LIABILITY),
    ]
    chart.extend(
        (code, f"Payable to {role.lower()}s", AccountType.LIABILITY)
        for role, code in accounts.role_payables
    )
    chart.extend(
        (code, f"Cash account {code}", AccountType.ASSET) for code in accounts.cash_account_codes
    )
    seen: set[str] = set()
    unique = []
    for code, name, account_type in chart:
        if code not in seen:
            seen.add(code)
            unique.append((code, name, account_type))
    return unique


def seed_accounts(config: AppConfig) -> list[str]:
    """Insert missing chart-of-accounts rows and counters.  Returns the codes created."""
    created = []
    with session_scope(get_session_factory()) as session:
        SequenceService(session).initialize_sequences()
        existing = set(session.execute(select(Account.code)).scalars())
        for code, name, account_type in chart_of_accounts(config.ledger.accounts):
            if code in existing:
                continue
            normal = DEFAULT_NORMAL_BALANCE[account_type]
            session.add(Account(
                code=code,
                name=name,
                account_type=account_type.value,
                normal_balance=normal.value,
            ))
            created.append(code)
    return created


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agri-ledger", description="Agri ledger reports")
    parser.add_argument("--config", help="YAML override file (default: $AGRI_LEDGER_CONFIG)")
    parser.add_argument("--database-url", help="SQLAlchemy URL (overrides configuration)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables and seed the chart of accounts")

    ageing = sub.add_parser("ageing", help="Receivable ageing as of a date")
    ageing.add_argument("--as-of", required=True)
    ageing.add_argument("--buyer")
    ageing.add_argument("--project")
    ageing.add_argument("--currency")
    ageing.add_argument("--detail", action="store_true", help="One row per open invoice")

    balances = sub.add_parser("balances", help="Account balances as of a date")
    balances.add_argument("--as-of", required=True)
    balances.add_argument("--project")

    cashbook = sub.add_parser("cashbook", help="Cash movements in a date range")
    cashbook.add_argument("--from", dest="from_date", required=True)
    cashbook.add_argument("--to", dest="to_date", required=True)
    return parser


def run(args: argparse.Namespace, config: AppConfig):
    if args.command == "init-db":
        create_tables()
        return {"tables": "ok", "accounts_created": seed_accounts(config)}

    facade = ReportFacade(get_session_factory(), config)
    if args.command == "ageing":
        if args.detail:
            return facade.ageing_detail(args.as_of, args.buyer, args.project, args.currency)
        return facade.ageing(args.as_of, args.buyer, args.project, args.currency)
    if args.command == "balances":
        return facade.balances(args.as_of, args.project)
    return facade.cashbook(args.from_date, args.to_date)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as exc:
        print(f"agri-ledger: configuration error: {exc}", file=sys.stderr)
        return 2

    configure_logging(level=config.logging.level)
    db = config.database
    init_engine_from_url(
        args.database_url or db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        isolation_level=db.isolation_level,
    )

    try:
        result = run(args, config)
    except AgriLedgerError as exc:
        logger.warning("cli_command_failed", extra={"command": args.command, "code": exc.code})
        print(json.dumps({"error": error_payload(exc)}, indent=2), file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
