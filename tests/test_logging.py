"""
Structured logging as the ledger uses it.

Covers:
- Integrity alerts reach ``agri_kernel.alerts`` at CRITICAL with the
  imbalance, and nothing else does
- SettlementCommands binds settlement_id onto every record of a command,
  including the ledger writes inside it, and unbinds on failure
- ENGINE_TRACE payloads from the allocation and ageing engines
- Typed ledger errors rendered as exc_* fields
- configure_logging installs exactly one handler per configuration
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from agri_engines.ageing import AgeingClassifier, OpenItem
from agri_engines.allocation import AllocationEngine, ShareTarget
from agri_engines.tracer import compute_input_fingerprint
from agri_kernel.exceptions import (
    BusyError,
    ClosedPeriodError,
    InconsistentLedgerError,
    NotPostedError,
)
from agri_kernel.logging_config import (
    ALERT_LOGGER,
    ENGINE_TRACE,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_alert_logger,
    get_logger,
    reset_logging,
)
from agri_kernel.services.ledger_store import PostingLine
from agri_kernel.utils.locking import KeyedLockRegistry
from agri_services import SettlementCommands


def _json_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _records(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


def _traces(captured_logs, engine_name):
    return [
        r for r in captured_logs()
        if r["message"] == ENGINE_TRACE and r["engine_name"] == engine_name
    ]


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class TestAlertPath:
    """Unbalanced posting sets page the operator; routine writes do not."""

    @pytest.fixture
    def alert_stream(self):
        handler, stream = _json_handler()
        alerts = logging.getLogger(ALERT_LOGGER)
        alerts.addHandler(handler)
        yield stream
        alerts.removeHandler(handler)

    def test_alert_logger_is_under_kernel_root(self):
        assert get_alert_logger().name == "agri_kernel.alerts"
        assert get_alert_logger() is get_logger("alerts")

    def test_only_imbalance_reaches_alerts(self, ledger_store, alert_stream):
        ledger_store.post_journal(
            posting_date=date(2024, 2, 1),
            lines=[
                PostingLine.debit("CASH", 500, "GBP"),
                PostingLine.credit("SALES_REVENUE", 500, "GBP"),
            ],
        )
        assert _records(alert_stream) == []

        with pytest.raises(InconsistentLedgerError):
            ledger_store.post_journal(
                posting_date=date(2024, 2, 1),
                lines=[
                    PostingLine.debit("CASH", 500, "GBP"),
                    PostingLine.credit("SALES_REVENUE", 400, "GBP"),
                    PostingLine.debit("CASH", 300, "EUR"),
                ],
            )

        [alert] = _records(alert_stream)
        assert alert["level"] == "CRITICAL"
        assert alert["message"] == "ledger_inconsistency_detected"
        assert alert["source_type"] == "JOURNAL"
        assert alert["imbalances"] == {"GBP": 100, "EUR": 300}


# ---------------------------------------------------------------------------
# Bound context
# ---------------------------------------------------------------------------


class TestSettlementCommandContext:
    """Every record written by a settlement command carries its id."""

    @pytest.fixture
    def commands(self, seeded_ledger, deterministic_clock):
        return SettlementCommands(
            seeded_ledger.factory,
            clock=deterministic_clock,
            locks=KeyedLockRegistry(entity_type="Settlement"),
        )

    def test_post_records_carry_settlement_id(self, commands, seeded_ledger, captured_logs):
        created = commands.create({"share_rule_id": str(seeded_ledger.rule_id), "basis": "10.00"})

        commands.post(created["id"], "2024-03-31")

        records = captured_logs()
        [written] = [r for r in records if r["message"] == "posting_group_written"
                     and r["source_type"] == "SETTLEMENT"]
        [committed] = [r for r in records if r["message"] == "settlement_post_committed"]
        assert written["settlement_id"] == created["id"]
        assert committed["settlement_id"] == created["id"]
        assert committed["settlement_no"] == created["settlement_no"]
        assert LogContext.get_all() == {}

    def test_context_unbound_after_failed_command(self, commands, seeded_ledger):
        created = commands.create({"share_rule_id": str(seeded_ledger.rule_id), "basis": "10.00"})

        with pytest.raises(NotPostedError):
            commands.reverse(created["id"], "2024-03-31")

        assert LogContext.get_all() == {}

    def test_nested_bind_restores_outer_fields(self):
        with LogContext.bind(actor_id="clerk-1"):
            with LogContext.bind(settlement_id="stl-1", source_type="SETTLEMENT"):
                assert LogContext.get_all() == {
                    "actor_id": "clerk-1",
                    "settlement_id": "stl-1",
                    "source_type": "SETTLEMENT",
                }
            assert LogContext.get_all() == {"actor_id": "clerk-1"}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="invoice_no"):
            with LogContext.bind(invoice_no="INV-1"):
                pass

    def test_uuid_values_stored_as_text(self):
        sid = uuid4()
        LogContext.set(settlement_id=sid, source_id=None)
        assert LogContext.get_all() == {"settlement_id": str(sid)}


# ---------------------------------------------------------------------------
# ENGINE_TRACE
# ---------------------------------------------------------------------------


class TestEngineTrace:
    """One trace per engine call, with a fingerprint of the traced inputs."""

    def test_allocation_trace_payload(self, captured_logs):
        AllocationEngine().allocate_shares(
            basis_minor=100001,
            currency="GBP",
            targets=[
                ShareTarget("landlord", "LANDLORD", Decimal("60"), is_primary=True),
                ShareTarget("grower", "GROWER", Decimal("40")),
            ],
        )

        [trace] = _traces(captured_logs, "allocation")
        assert trace["logger"] == "agri_kernel.engines.tracer"
        assert trace["trace_type"] == ENGINE_TRACE
        assert trace["engine_version"] == "1.0"
        assert trace["function"] == "AllocationEngine.allocate_shares"
        assert trace["input_fingerprint"] == compute_input_fingerprint(
            ("basis_minor", "currency"), {"basis_minor": 100001, "currency": "GBP"}
        )
        assert trace["duration_ms"] >= 0

    def test_fingerprint_tracks_traced_inputs_only(self, captured_logs):
        engine = AllocationEngine()
        for pct in ("60", "70"):
            engine.allocate_shares(
                basis_minor=500,
                currency="GBP",
                targets=[
                    ShareTarget("landlord", "LANDLORD", Decimal(pct), is_primary=True),
                    ShareTarget("grower", "GROWER", Decimal("100") - Decimal(pct)),
                ],
            )
        engine.allocate_shares(
            basis_minor=501,
            currency="GBP",
            targets=[ShareTarget("grower", "GROWER", Decimal("100"))],
        )

        prints = [t["input_fingerprint"] for t in _traces(captured_logs, "allocation")]
        assert prints[0] == prints[1]
        assert prints[2] != prints[0]

    def test_ageing_trace_uses_cutoff(self, captured_logs):
        AgeingClassifier().build_report(
            cutoff=date(2024, 3, 31),
            items=[
                OpenItem(
                    document_id=uuid4(),
                    buyer_party_id=uuid4(),
                    posting_date=date(2024, 1, 15),
                    open_minor=100000,
                    currency="GBP",
                )
            ],
        )

        [trace] = _traces(captured_logs, "ageing")
        assert trace["input_fingerprint"] == compute_input_fingerprint(
            ("cutoff",), {"cutoff": date(2024, 3, 31)}
        )


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Records render as one JSON object each."""

    def _emit(self, level, message, **kwargs):
        handler, stream = _json_handler()
        logger = get_logger("tests.formatter")
        logger.addHandler(handler)
        try:
            logger.log(level, message, **kwargs)
        finally:
            logger.removeHandler(handler)
        return _records(stream)[0]

    def test_ledger_values_serialized(self):
        group_id = uuid4()
        record = self._emit(logging.INFO, "posting_group_written", extra={
            "group_id": group_id,
            "posting_date": date(2024, 3, 31),
            "percentage": Decimal("60.0000"),
            "debits_by_currency": {"GBP": 100000},
        })

        assert record["logger"] == "agri_kernel.tests.formatter"
        assert record["group_id"] == str(group_id)
        assert record["posting_date"] == "2024-03-31"
        assert record["percentage"] == "60.0000"
        assert record["debits_by_currency"] == {"GBP": 100000}

    def test_bound_context_wins_over_extra(self):
        with LogContext.bind(settlement_id="bound"):
            record = self._emit(logging.INFO, "settlement_posted", extra={"settlement_id": "extra"})
        assert record["settlement_id"] == "bound"

    def test_busy_error_fields(self):
        try:
            raise BusyError("Settlement", "stl-1", timeout_seconds=5.0)
        except BusyError:
            record = self._emit(logging.WARNING, "settlement_busy", exc_info=True)

        assert record["exc_code"] == "BUSY"
        assert record["exc_type"] == "BusyError"
        assert record["exc_entity_id"] == "stl-1"
        assert record["exc_timeout_seconds"] == 5.0
        assert "traceback" in record

    def test_closed_period_error_fields(self):
        try:
            raise ClosedPeriodError("2024-03", "2024-03-31")
        except ClosedPeriodError:
            record = self._emit(logging.WARNING, "post_rejected", exc_info=True)

        assert record["exc_code"] == "CLOSED_PERIOD"
        assert record["exc_period_code"] == "2024-03"
        assert record["exc_posting_date"] == "2024-03-31"

    def test_reserved_extra_key_refused_by_stdlib(self):
        with pytest.raises(KeyError):
            get_logger("tests.formatter").warning("share_rule_created", extra={"name": "Wheat"})


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """First call wins until reset."""

    @pytest.fixture(autouse=True)
    def _fresh_configuration(self):
        reset_logging()
        yield
        reset_logging()
        configure_logging(level=logging.DEBUG)

    def test_second_call_is_ignored(self):
        h1, _ = _json_handler()
        h2, _ = _json_handler()

        configure_logging(handler=h1)
        configure_logging(handler=h2)

        handlers = logging.getLogger("agri_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers

    def test_level_name_from_config(self):
        handler, stream = _json_handler()
        configure_logging(level="warning", handler=handler)

        get_logger("services.ledger_store").info("posting_group_written")
        get_logger("services.period").warning("period_closed_violation")

        assert [r["message"] for r in _records(stream)] == ["period_closed_violation"]

    def test_reset_removes_handler(self):
        handler, _ = _json_handler()
        configure_logging(handler=handler)

        reset_logging()

        assert handler not in logging.getLogger("agri_kernel").handlers
