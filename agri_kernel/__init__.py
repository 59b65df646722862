"""
Agri Ledger Kernel

An append-only, double-entry ledger for farm operations with:
- Balanced posting groups in integer minor units
- Receivable ageing and account balances derived from postings
- Share-rule settlements with immutable rule snapshots
- Reversal by negation, never by deletion
"""

__version__ = "0.1.0"
