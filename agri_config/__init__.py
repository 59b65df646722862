"""
agri_config -- runtime configuration for the agri ledger.

Responsibility:
    The single way to obtain configuration: ``load_config()`` returns a
    frozen ``AppConfig`` built from the packaged defaults, an optional
    YAML override file and environment overrides.

Architecture position:
    Sits above ``agri_kernel`` and below ``agri_services``.  The kernel
    never imports from ``agri_config``; services receive the parts they
    need (LedgerAccounts, lock timeout) by constructor injection.
"""

from agri_config.loader import CONFIG_ENV_VAR, DATABASE_URL_ENV_VAR, load_config
from agri_config.schema import (
    AppConfig,
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
    SettlementConfig,
)

__all__ = [
    "CONFIG_ENV_VAR",
    "DATABASE_URL_ENV_VAR",
    "load_config",
    "AppConfig",
    "DatabaseConfig",
    "LedgerConfig",
    "LoggingConfig",
    "SettlementConfig",
]
