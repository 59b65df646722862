"""
Module: agri_kernel.logging_config
Responsibility: One JSON line per record for every logger under ``agri_kernel``.
Architecture position: Kernel infrastructure.  Imported by every layer;
    imports nothing from the project.

Conventions:
    - The message is a snake_case event name (``posting_group_written``);
      details travel in ``extra``.
    - ``extra`` keys must not shadow LogRecord attributes (``name``,
      ``module``, ``msg`` ...); the stdlib raises KeyError for those.
      Qualify instead: ``rule_name``, ``account_code``.
    - Ledger integrity failures go to ``agri_kernel.alerts`` at CRITICAL.
    - Every pure engine call emits one ``ENGINE_TRACE`` record on
      ``agri_kernel.engines.tracer``.
    - Fields bound with ``LogContext`` (settlement_id, actor_id ...) are
      copied onto every record written while they are bound.
"""

__all__ = [
    "ALERT_LOGGER",
    "ENGINE_TRACE",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "get_alert_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

ROOT_LOGGER = "agri_kernel"
ALERT_LOGGER = f"{ROOT_LOGGER}.alerts"
ENGINE_TRACE = "ENGINE_TRACE"


# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------


class LogContext:
    """
    Fields merged into every record written in the current context.

    Backed by one ContextVar, so each thread and asyncio task sees its own
    fields.  Only the names in ``FIELDS`` are accepted.
    """

    FIELDS: tuple[str, ...] = (
        "correlation_id",
        "actor_id",
        "settlement_id",
        "source_type",
        "source_id",
    )

    _fields: ContextVar[dict[str, str] | None] = ContextVar(
        "agri_log_context", default=None
    )

    @classmethod
    def _merged(cls, fields: dict[str, Any]) -> dict[str, str]:
        unknown = sorted(set(fields) - set(cls.FIELDS))
        if unknown:
            raise ValueError(f"Unknown log context field(s): {', '.join(unknown)}")
        merged = dict(cls._fields.get() or {})
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Add fields to the current context.  None values are ignored."""
        cls._fields.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(cls._fields.get() or {})

    @classmethod
    def clear(cls) -> None:
        cls._fields.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """
        Bind fields for the duration of a ``with`` block.

        The previous context is restored on exit, including on error.
        """
        token = cls._fields.set(cls._merged(fields))
        try:
            yield cls
        finally:
            cls._fields.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord carries; anything else on a record came from extra.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """exc_* fields for a logged exception, including typed error attributes."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for key, val in vars(exc).items():
        if not key.startswith("_") and key not in ("args", "code"):
            fields[f"exc_{key}"] = val
    return fields


class StructuredFormatter(logging.Formatter):
    """
    Render a record as one JSON object.

    Key order: ts, level, logger, message, bound context, extra fields,
    exception fields.  A bound context field wins over an extra of the
    same name.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, val in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, val)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """``get_logger("services.ledger_store")`` -> ``agri_kernel.services.ledger_store``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def get_alert_logger() -> logging.Logger:
    """Operator alerts: unbalanced posting sets and other integrity failures."""
    return logging.getLogger(ALERT_LOGGER)


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to ``agri_kernel`` and stop propagation.

    Only the first call in a process takes effect; ``reset_logging``
    re-arms it.  ``level`` accepts a name from the ``logging.level``
    config key.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root.addHandler(h)


def reset_logging() -> None:
    """Drop handlers installed by ``configure_logging``.  Test use only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(ROOT_LOGGER)
    for h in list(root.handlers):
        root.removeHandler(h)
    root.setLevel(logging.WARNING)
