"""
Account roles -- which chart-of-accounts codes each posting uses.

Responsibility:
    Maps the accounting roles used by invoice, payment and settlement
    postings to concrete account codes.  Built from configuration by
    agri_config; services receive it by constructor injection.

Architecture position:
    Kernel > Domain -- pure, zero I/O.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class LedgerAccounts:
    """
    Account codes by role.

    Guarantees:
        - payable_for(role) always returns a code, falling back to
          default_payable for roles without a dedicated account.
    """

    receivable: str = "AR"
    revenue: str = "SALES_REVENUE"
    cash: str = "CASH"
    bank: str = "BANK"
    distribution: str = "PROFIT_DISTRIBUTION"
    default_payable: str = "PARTY_PAYABLE"
    role_payables: tuple[tuple[str, str], ...] = (
        ("LANDLORD", "PAYABLE_LANDLORD"),
        ("GROWER", "PAYABLE_GROWER"),
        ("PARTNER", "PAYABLE_PARTNER"),
    )
    # Accounts whose movements make up the cashbook
    cash_account_codes: tuple[str, ...] = field(default=("CASH",))

    def payable_for(self, role: str) -> str:
        return dict(self.role_payables).get(role, self.default_payable)

    def settlement_account(self, method: str) -> str:
        """Cash or bank account for a payment method."""
        return self.bank if method == "BANK" else self.cash
