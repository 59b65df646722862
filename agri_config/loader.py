"""
Configuration Loader (``agri_config.loader``).

Responsibility
--------------
Loads the packaged ``defaults.yaml``, merges an optional override file
and environment overrides on top, and parses the result into the frozen
dataclasses of ``agri_config.schema``.

Invariants enforced
-------------------
* Unknown keys and malformed values raise ``ValueError`` naming the key;
  nothing is silently ignored.
* Every parsed object is a frozen dataclass from ``schema.py``.

Failure modes
-------------
* Missing override file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad value  -> ``ValueError``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from agri_config.schema import (
    AppConfig,
    DatabaseConfig,
    LedgerConfig,
    LoggingConfig,
    SettlementConfig,
)
from agri_kernel.domain.accounts import LedgerAccounts
from agri_kernel.domain.currency import CurrencyRegistry
from agri_kernel.models.settlement import ShareRole

CONFIG_ENV_VAR = "AGRI_LEDGER_CONFIG"
DATABASE_URL_ENV_VAR = "DATABASE_URL"

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_ISOLATION_LEVELS = frozenset({
    "READ COMMITTED",
    "REPEATABLE READ",
    "SERIALIZABLE",
    "AUTOCOMMIT",
})
_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``; lists are replaced."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _section(data: Mapping[str, Any], name: str, allowed: set[str]) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, Mapping):
        raise ValueError(f"{name}: must be a mapping")
    unknown = set(section) - allowed
    if unknown:
        raise ValueError(f"{name}: unknown keys {sorted(unknown)}")
    return dict(section)


def _positive_int(name: str, value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValueError(f"{name}: must be a positive integer, got {value!r}")
    return value


def parse_database(data: Mapping[str, Any]) -> DatabaseConfig:
    d = _section(data, "database", {
        "url", "echo", "isolation_level", "pool_size", "max_overflow", "pool_timeout",
    })
    defaults = DatabaseConfig()
    url = d.get("url", defaults.url)
    if not isinstance(url, str) or "://" not in url:
        raise ValueError(f"database.url: not a database URL: {url!r}")
    isolation = d.get("isolation_level", defaults.isolation_level)
    if isolation is not None and str(isolation).upper() not in _ISOLATION_LEVELS:
        raise ValueError(f"database.isolation_level: unsupported {isolation!r}")
    return DatabaseConfig(
        url=url,
        echo=bool(d.get("echo", defaults.echo)),
        isolation_level=str(isolation).upper() if isolation is not None else None,
        pool_size=_positive_int("database.pool_size", d.get("pool_size", defaults.pool_size)),
        max_overflow=int(d.get("max_overflow", defaults.max_overflow)),
        pool_timeout=_positive_int(
            "database.pool_timeout", d.get("pool_timeout", defaults.pool_timeout)
        ),
    )


def parse_accounts(data: Mapping[str, Any]) -> LedgerAccounts:
    allowed = {
        "receivable", "revenue", "cash", "bank", "distribution",
        "default_payable", "role_payables", "cash_account_codes",
    }
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"ledger.accounts: unknown keys {sorted(unknown)}")

    defaults = LedgerAccounts()
    codes: dict[str, str] = {}
    for key in ("receivable", "revenue", "cash", "bank", "distribution", "default_payable"):
        value = data.get(key, getattr(defaults, key))
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"ledger.accounts.{key}: must be a non-empty account code")
        codes[key] = value.strip()

    role_payables = data.get("role_payables", dict(defaults.role_payables))
    if not isinstance(role_payables, Mapping):
        raise ValueError("ledger.accounts.role_payables: must be a mapping of role to code")
    for role in role_payables:
        if role not in ShareRole.__members__:
            raise ValueError(f"ledger.accounts.role_payables: unknown role {role!r}")

    cash_codes = data.get("cash_account_codes", list(defaults.cash_account_codes))
    if not isinstance(cash_codes, list) or not all(isinstance(c, str) for c in cash_codes):
        raise ValueError("ledger.accounts.cash_account_codes: must be a list of account codes")

    return LedgerAccounts(
        **codes,
        role_payables=tuple(sorted((str(r), str(c)) for r, c in role_payables.items())),
        cash_account_codes=tuple(cash_codes),
    )


def parse_ledger(data: Mapping[str, Any]) -> LedgerConfig:
    d = _section(data, "ledger", {"default_currency", "accounts"})
    currency = d.get("default_currency", LedgerConfig().default_currency)
    try:
        currency = CurrencyRegistry.validate(currency)
    except ValueError as e:
        raise ValueError(f"ledger.default_currency: {e}") from e
    accounts = d.get("accounts") or {}
    if not isinstance(accounts, Mapping):
        raise ValueError("ledger.accounts: must be a mapping")
    return LedgerConfig(default_currency=currency, accounts=parse_accounts(accounts))


def parse_settlement(data: Mapping[str, Any]) -> SettlementConfig:
    d = _section(data, "settlement", {"lock_timeout_seconds", "number_prefix"})
    defaults = SettlementConfig()
    timeout = d.get("lock_timeout_seconds", defaults.lock_timeout_seconds)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValueError(f"settlement.lock_timeout_seconds: must be > 0, got {timeout!r}")
    prefix = d.get("number_prefix", defaults.number_prefix)
    if not isinstance(prefix, str) or not prefix.isalnum():
        raise ValueError(f"settlement.number_prefix: must be alphanumeric, got {prefix!r}")
    return SettlementConfig(lock_timeout_seconds=float(timeout), number_prefix=prefix)


def parse_logging(data: Mapping[str, Any]) -> LoggingConfig:
    d = _section(data, "logging", {"level"})
    level = str(d.get("level", LoggingConfig().level)).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level: unknown level {level!r}")
    return LoggingConfig(level=level)


def parse_config(data: Mapping[str, Any], source: str | None = None) -> AppConfig:
    """Parse a merged configuration mapping into an AppConfig."""
    unknown = set(data) - {"database", "ledger", "settlement", "logging"}
    if unknown:
        raise ValueError(f"unknown configuration sections {sorted(unknown)}")
    return AppConfig(
        database=parse_database(data),
        ledger=parse_ledger(data),
        settlement=parse_settlement(data),
        logging=parse_logging(data),
        source=source,
    )


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """
    Build the runtime configuration.

    Order of precedence (last wins): packaged defaults, the override file
    (``path`` or $AGRI_LEDGER_CONFIG), $DATABASE_URL.
    """
    env = os.environ if environ is None else environ
    data = load_yaml_file(DEFAULTS_PATH)

    override_path = path or env.get(CONFIG_ENV_VAR)
    if override_path:
        data = deep_merge(data, load_yaml_file(Path(override_path)))

    if env.get(DATABASE_URL_ENV_VAR):
        data = deep_merge(data, {"database": {"url": env[DATABASE_URL_ENV_VAR]}})

    config = parse_config(data, source=str(override_path) if override_path else None)
    logging.getLogger("agri_kernel.config").info(
        "config_loaded",
        extra={
            "source": config.source or "defaults",
            "dialect": config.database.url.split(":", 1)[0],
            "default_currency": config.ledger.default_currency,
        },
    )
    return config
