"""
Agri ledger configuration schema.

Frozen dataclasses that the loader parses YAML into.  Every section has
defaults, so an empty override file yields a runnable configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from agri_kernel.domain.accounts import LedgerAccounts


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings passed to agri_kernel.db.init_engine_from_url."""

    url: str = "sqlite:///agri_ledger.db"
    echo: bool = False
    isolation_level: str | None = "REPEATABLE READ"
    pool_size: int = 10
    max_overflow: int = 10
    pool_timeout: int = 30


@dataclass(frozen=True)
class LedgerConfig:
    default_currency: str = "GBP"
    accounts: LedgerAccounts = field(default_factory=LedgerAccounts)


@dataclass(frozen=True)
class SettlementConfig:
    lock_timeout_seconds: float = 5.0
    number_prefix: str = "STL"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    """Complete runtime configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source: str | None = None  # path of the override file, if any
