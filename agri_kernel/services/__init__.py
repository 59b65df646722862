"""Kernel services: every write to the agri ledger goes through these."""

from agri_kernel.services.base import BaseService
from agri_kernel.services.invoice_service import InvoiceService
from agri_kernel.services.ledger_store import (
    AllocationEntry,
    LedgerStore,
    PostingLine,
)
from agri_kernel.services.payment_service import PaymentService
from agri_kernel.services.period_service import PeriodService
from agri_kernel.services.sequence_service import SequenceCounter, SequenceService
from agri_kernel.services.settlement_service import SettlementPreview, SettlementService
from agri_kernel.services.share_rule_service import ShareLineInput, ShareRuleService

__all__ = [
    "BaseService",
    "InvoiceService",
    "AllocationEntry",
    "LedgerStore",
    "PostingLine",
    "PaymentService",
    "PeriodService",
    "SequenceCounter",
    "SequenceService",
    "SettlementPreview",
    "SettlementService",
    "ShareLineInput",
    "ShareRuleService",
]
