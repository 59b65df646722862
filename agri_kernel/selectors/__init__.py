"""Read-only query selectors for the agri ledger kernel."""

from agri_kernel.selectors.base import BaseSelector
from agri_kernel.selectors.ledger_selector import (
    AccountBalanceRow,
    CashbookRow,
    CurrencyTotals,
    GroupImbalance,
    LedgerSelector,
)
from agri_kernel.selectors.receivable_selector import ReceivableSelector

__all__ = [
    "BaseSelector",
    "AccountBalanceRow",
    "CashbookRow",
    "CurrencyTotals",
    "GroupImbalance",
    "LedgerSelector",
    "ReceivableSelector",
]
