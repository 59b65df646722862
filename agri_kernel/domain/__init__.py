"""Pure domain values: money in minor units, currencies, clocks."""

from agri_kernel.domain.accounts import LedgerAccounts
from agri_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from agri_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from agri_kernel.domain.values import format_minor, from_minor, to_minor

__all__ = [
    "LedgerAccounts",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CurrencyInfo",
    "CurrencyRegistry",
    "format_minor",
    "from_minor",
    "to_minor",
]
