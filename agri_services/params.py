"""Parsing of caller-supplied parameters into kernel types."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from agri_kernel.domain.values import to_minor
from agri_kernel.exceptions import InvalidArgumentError


def parse_date(name: str, value: Any, *, required: bool = True) -> date | None:
    """
    Accept a ``date`` or an ISO ``YYYY-MM-DD`` string.

    Raises:
        InvalidArgumentError: missing (when required) or not a calendar date.
    """
    if value is None or value == "":
        if required:
            raise InvalidArgumentError(name, value, "is required")
        return None
    if isinstance(value, datetime):
        raise InvalidArgumentError(name, value, "expected a date, not a datetime")
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidArgumentError(name, value, "expected an ISO date string")
    try:
        return date.fromisoformat(value.strip())
    except ValueError as e:
        raise InvalidArgumentError(name, value, str(e)) from e


def parse_uuid(name: str, value: Any, *, required: bool = True) -> UUID | None:
    if value is None or value == "":
        if required:
            raise InvalidArgumentError(name, value, "is required")
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as e:
        raise InvalidArgumentError(name, value, "is not a UUID") from e


def parse_amount_minor(name: str, value: Any, currency: str) -> int:
    """Display amount (``"1000.00"``) to minor units."""
    if isinstance(value, bool) or value is None:
        raise InvalidArgumentError(name, value, "expected a decimal amount")
    try:
        return to_minor(value, currency)
    except ValueError as e:
        raise InvalidArgumentError(name, value, str(e)) from e
