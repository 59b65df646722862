"""
Money conversions -- integer minor units to and from display amounts.

Responsibility:
    All ledger arithmetic happens on integer minor units (pence, cents);
    the Decimal display amount exists only at the parameter-parsing and
    reporting boundary.  These helpers are the only conversions.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - to_minor returns an int and never accepts a float.
    - Conversion uses the currency's ISO 4217 decimal places.

Failure modes:
    - ValueError when a display amount has more decimals than the currency
      allows (e.g. "10.005" GBP) or the currency is unknown.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from agri_kernel.domain.currency import CurrencyRegistry


def to_minor(amount: Decimal | str | int, currency: str) -> int:
    """
    Convert a display amount to integer minor units.

    Raises:
        ValueError: If the amount is not a number or has more decimal places
            than the currency supports.
    """
    if isinstance(amount, float):
        raise ValueError(f"Float amounts are not accepted: {amount!r}")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")

    places = CurrencyRegistry.get_decimal_places(currency)
    scaled = value.scaleb(places)
    if scaled != scaled.to_integral_value():
        raise ValueError(
            f"Amount {amount!r} has more than {places} decimal places for {currency}"
        )
    return int(scaled)


def from_minor(minor: int, currency: str) -> Decimal:
    """Convert minor units back to a display Decimal with the currency's places."""
    places = CurrencyRegistry.get_decimal_places(currency)
    return Decimal(minor).scaleb(-places).quantize(Decimal(1).scaleb(-places))


def format_minor(minor: int, currency: str) -> str:
    """Format minor units as a fixed-point string, e.g. 100000 GBP -> '1000.00'."""
    return str(from_minor(minor, currency))
