"""
Pytest fixtures for the agri ledger test suite.

Provides:
- In-memory SQLite sessions (one fresh database per test)
- File-backed SQLite session factories for facade and concurrency tests
- A seeded chart of accounts, parties and a project
- Deterministic clock
- Structured log capture
"""

import json
import logging
from collections.abc import Generator
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from agri_kernel.db.engine import build_engine, create_tables, session_scope
from agri_kernel.db.immutability import register_immutability_listeners
from agri_kernel.domain.accounts import LedgerAccounts
from agri_kernel.domain.clock import DeterministicClock
from agri_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from agri_kernel.models.account import DEFAULT_NORMAL_BALANCE, Account, AccountType
from agri_kernel.models.party import Party, PartyType, Project
from agri_kernel.services.invoice_service import InvoiceService
from agri_kernel.services.ledger_store import LedgerStore
from agri_kernel.services.payment_service import PaymentService
from agri_kernel.services.period_service import PeriodService
from agri_kernel.services.settlement_service import SettlementService
from agri_kernel.services.share_rule_service import ShareLineInput, ShareRuleService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

FIXED_NOW = datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)

CHART = [
    ("AR", "Trade receivables", AccountType.ASSET),
    ("SALES_REVENUE", "Sales revenue", AccountType.REVENUE),
    ("CASH", "Cash in hand", AccountType.ASSET),
    ("BANK", "Bank", AccountType.ASSET),
    ("PROFIT_DISTRIBUTION", "Profit distribution", AccountType.EQUITY),
    ("PARTY_PAYABLE", "Party payables", AccountType.LIABILITY),
    ("PAYABLE_LANDLORD", "Payable to landlords", AccountType.LIABILITY),
    ("PAYABLE_GROWER", "Payable to growers", AccountType.LIABILITY),
    ("PAYABLE_PARTNER", "Payable to partners", AccountType.LIABILITY),
]


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for locks"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture agri_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, settlement_service):
            settlement_service.post(...)
            logs = captured_logs()
            assert any(r["message"] == "settlement_posted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("agri_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


def seed_chart(session: Session) -> dict[str, Account]:
    accounts = {}
    for code, name, account_type in CHART:
        account = Account(
            code=code,
            name=name,
            account_type=account_type.value,
            normal_balance=DEFAULT_NORMAL_BALANCE[account_type].value,
            created_by_id=TEST_ACTOR_ID,
        )
        session.add(account)
        accounts[code] = account
    session.flush()
    return accounts


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    eng = build_engine("sqlite://")
    create_tables(eng)
    register_immutability_listeners()
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    sess = factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def file_session_factory(tmp_path) -> Generator[sessionmaker[Session], None, None]:
    """
    Session factory over a file-backed SQLite database.

    Every session gets its own connection, so commits made by one are
    visible to the next -- the setting facade and thread tests need.
    """
    eng = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    create_tables(eng)
    register_immutability_listeners()
    yield sessionmaker(bind=eng, expire_on_commit=False)
    eng.dispose()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def ledger_accounts() -> LedgerAccounts:
    return LedgerAccounts()


@pytest.fixture
def chart(session) -> dict[str, Account]:
    return seed_chart(session)


@pytest.fixture
def parties(session) -> dict[str, Party]:
    """Two buyers and three share recipients."""
    people = {
        "mill": Party(name="Acme Mills", party_type=PartyType.BUYER.value),
        "coop": Party(name="Valley Co-op", party_type=PartyType.BUYER.value),
        "landlord": Party(name="Hill Estate", party_type=PartyType.LANDLORD.value),
        "grower": Party(name="J. Tenant", party_type=PartyType.GROWER.value),
        "partner": Party(name="Seed Partner", party_type=PartyType.PARTNER.value),
    }
    session.add_all(people.values())
    session.flush()
    return people


@pytest.fixture
def project(session) -> Project:
    p = Project(code="WHEAT-24", name="Winter wheat 2024")
    session.add(p)
    session.flush()
    return p


@pytest.fixture
def ledger_store(session, deterministic_clock, chart) -> LedgerStore:
    return LedgerStore(session, deterministic_clock, TEST_ACTOR_ID)


@pytest.fixture
def invoice_service(session, deterministic_clock, ledger_accounts, chart) -> InvoiceService:
    return InvoiceService(session, deterministic_clock, ledger_accounts, TEST_ACTOR_ID)


@pytest.fixture
def payment_service(session, deterministic_clock, ledger_accounts, chart) -> PaymentService:
    return PaymentService(session, deterministic_clock, ledger_accounts, TEST_ACTOR_ID)


@pytest.fixture
def period_service(session, deterministic_clock) -> PeriodService:
    return PeriodService(session, deterministic_clock)


@pytest.fixture
def share_rule_service(session, deterministic_clock) -> ShareRuleService:
    return ShareRuleService(session, deterministic_clock)


@pytest.fixture
def settlement_service(session, deterministic_clock, ledger_accounts, chart) -> SettlementService:
    return SettlementService(session, deterministic_clock, ledger_accounts, TEST_ACTOR_ID)


@pytest.fixture
def landlord_grower_rule(share_rule_service, parties):
    """Landlord 60% (primary), grower 40%."""
    return share_rule_service.create_rule(
        name="Wheat crop share",
        effective_from=date(2024, 1, 1),
        lines=[
            ShareLineInput(parties["landlord"].id, "LANDLORD", Decimal("60"), is_primary=True),
            ShareLineInput(parties["grower"].id, "GROWER", Decimal("40")),
        ],
    )


@pytest.fixture
def posted_invoice(invoice_service, parties):
    """Factory: create and post an invoice in one call."""

    def _post(amount_minor, posting_date, buyer="mill", currency="GBP", project_id=None, **kw):
        invoice = invoice_service.create(
            buyer_party_id=parties[buyer].id,
            amount_minor=amount_minor,
            currency=currency,
            invoice_date=posting_date,
            project_id=project_id,
            **kw,
        )
        return invoice_service.post(invoice.id, posting_date=posting_date)

    return _post


@pytest.fixture
def seeded_ledger(file_session_factory, deterministic_clock):
    """
    Committed, file-backed ledger for facade and command tests.

    - Acme Mills: 1000.00 invoiced 2024-01-15 on project WHEAT-24
    - Valley Co-op: 250.00 invoiced 2024-03-20, 100.00 received in cash
      2024-03-25 and applied
    - Landlord 60% (primary) / grower 40% share rule
    """
    accounts = LedgerAccounts()
    with session_scope(file_session_factory) as session:
        seed_chart(session)
        people = {
            "mill": Party(name="Acme Mills", party_type=PartyType.BUYER.value),
            "coop": Party(name="Valley Co-op", party_type=PartyType.BUYER.value),
            "landlord": Party(name="Hill Estate", party_type=PartyType.LANDLORD.value),
            "grower": Party(name="J. Tenant", party_type=PartyType.GROWER.value),
        }
        session.add_all(people.values())
        wheat = Project(code="WHEAT-24", name="Winter wheat 2024")
        session.add(wheat)
        session.flush()

        rule = ShareRuleService(session, deterministic_clock).create_rule(
            name="Wheat crop share",
            effective_from=date(2024, 1, 1),
            lines=[
                ShareLineInput(people["landlord"].id, "LANDLORD", Decimal("60"), is_primary=True),
                ShareLineInput(people["grower"].id, "GROWER", Decimal("40")),
            ],
        )

        invoices = InvoiceService(session, deterministic_clock, accounts, TEST_ACTOR_ID)
        mill_invoice = invoices.create(
            buyer_party_id=people["mill"].id,
            amount_minor=100000,
            currency="GBP",
            invoice_date=date(2024, 1, 15),
            project_id=wheat.id,
        )
        invoices.post(mill_invoice.id)
        coop_invoice = invoices.create(
            buyer_party_id=people["coop"].id,
            amount_minor=25000,
            currency="GBP",
            invoice_date=date(2024, 3, 20),
        )
        invoices.post(coop_invoice.id)

        payments = PaymentService(session, deterministic_clock, accounts, TEST_ACTOR_ID)
        receipt = payments.create(
            party_id=people["coop"].id,
            direction="IN",
            amount_minor=10000,
            currency="GBP",
            payment_date=date(2024, 3, 25),
            reference="RCPT-001",
        )
        payments.post(receipt.id)
        payments.apply(receipt.id, invoice_id=coop_invoice.id)

    return SimpleNamespace(
        factory=file_session_factory,
        party_ids={key: party.id for key, party in people.items()},
        project_id=wheat.id,
        rule_id=rule.id,
        mill_invoice_id=mill_invoice.id,
        coop_invoice_id=coop_invoice.id,
    )
