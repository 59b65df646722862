"""
Unit tests for minor-unit conversions.

Verifies:
- Display amounts convert exactly to integer minor units
- Currency precision is enforced (2, 0 and 3 decimal places)
- Float amounts are refused
- Formatting is fixed-point with the currency's places
"""

from decimal import Decimal

import pytest

import agri_kernel.domain as domain
from agri_kernel.domain.values import format_minor, from_minor, to_minor


class TestToMinor:
    """Tests for to_minor."""

    @pytest.mark.parametrize(
        "amount,currency,expected",
        [
            ("1000.00", "GBP", 100000),
            ("1000", "GBP", 100000),
            (Decimal("0.01"), "GBP", 1),
            ("-12.5", "USD", -1250),
            ("1500", "JPY", 1500),
            ("1.234", "KWD", 1234),
        ],
    )
    def test_exact_conversion(self, amount, currency, expected):
        assert to_minor(amount, currency) == expected

    def test_returns_int(self):
        assert type(to_minor("10.10", "GBP")) is int

    @pytest.mark.parametrize("amount,currency", [("10.001", "GBP"), ("1.5", "JPY")])
    def test_too_many_places(self, amount, currency):
        with pytest.raises(ValueError, match="decimal places"):
            to_minor(amount, currency)

    def test_float_refused(self):
        with pytest.raises(ValueError, match="Float"):
            to_minor(10.1, "GBP")

    @pytest.mark.parametrize("amount", ["ten", "NaN", "Infinity"])
    def test_not_a_number(self, amount):
        with pytest.raises(ValueError):
            to_minor(amount, "GBP")

    def test_unknown_currency(self):
        with pytest.raises(ValueError):
            to_minor("1", "XXZ")


class TestFormatMinor:
    """Tests for from_minor / format_minor."""

    def test_fixed_point(self):
        assert format_minor(100000, "GBP") == "1000.00"
        assert format_minor(0, "GBP") == "0.00"
        assert format_minor(-100000, "GBP") == "-1000.00"
        assert format_minor(5, "JPY") == "5"
        assert format_minor(1234, "KWD") == "1.234"

    def test_from_minor_quantized(self):
        assert from_minor(1, "GBP") == Decimal("0.01")
        assert from_minor(1, "GBP").as_tuple().exponent == -2


def test_domain_exports_conversions_only():
    """Minor-unit helpers are the package's money API; there is no Money object."""
    assert {"format_minor", "from_minor", "to_minor"} <= set(domain.__all__)
    assert not hasattr(domain, "Money")
