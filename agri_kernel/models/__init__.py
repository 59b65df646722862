"""Domain models for the agri ledger kernel."""

from agri_kernel.models.account import (
    DEFAULT_NORMAL_BALANCE,
    Account,
    AccountType,
    NormalBalance,
)
from agri_kernel.models.invoice import (
    ApplicationStatus,
    DocumentStatus,
    Invoice,
    Payment,
    PaymentApplication,
    PaymentDirection,
    PaymentMethod,
)
from agri_kernel.models.party import Party, PartyType, Project
from agri_kernel.models.period import AccountingPeriod, PeriodStatus
from agri_kernel.models.posting import (
    AllocationRow,
    LedgerPosting,
    PostingGroup,
    SourceType,
)
from agri_kernel.models.settlement import (
    Settlement,
    SettlementLine,
    SettlementStatus,
    ShareRole,
    ShareRule,
    ShareRuleAppliesTo,
    ShareRuleBasis,
    ShareRuleLine,
)

__all__ = [
    "DEFAULT_NORMAL_BALANCE",
    "Account",
    "AccountType",
    "NormalBalance",
    "ApplicationStatus",
    "DocumentStatus",
    "Invoice",
    "Payment",
    "PaymentApplication",
    "PaymentDirection",
    "PaymentMethod",
    "Party",
    "PartyType",
    "Project",
    "AccountingPeriod",
    "PeriodStatus",
    "AllocationRow",
    "LedgerPosting",
    "PostingGroup",
    "SourceType",
    "Settlement",
    "SettlementLine",
    "SettlementStatus",
    "ShareRole",
    "ShareRule",
    "ShareRuleAppliesTo",
    "ShareRuleBasis",
    "ShareRuleLine",
]
