"""
agri_services -- caller-facing surface of the agri ledger.

Responsibility:
    Report queries (ageing, balances, cashbook), settlement commands and
    the ``agri-ledger`` CLI.  Every call opens its own session and
    transaction and returns plain, JSON-ready dicts.

Architecture position:
    Outermost layer.  May import agri_kernel, agri_engines and
    agri_config.  Nothing imports from here.
"""

from agri_services.reports import ReportFacade
from agri_services.settlements import (
    SettlementCommands,
    error_payload,
    settlement_document,
)

__all__ = [
    "ReportFacade",
    "SettlementCommands",
    "error_payload",
    "settlement_document",
]
