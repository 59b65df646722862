"""Currency -- ISO 4217 registry and minor-unit precision."""

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str


class CurrencyRegistry:
    """Registry of ISO 4217 currencies with decimal places."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "PKR": CurrencyInfo("PKR", 2, "Pakistani Rupee"),
        "INR": CurrencyInfo("INR", 2, "Indian Rupee"),
        "BDT": CurrencyInfo("BDT", 2, "Bangladeshi Taka"),
        "KES": CurrencyInfo("KES", 2, "Kenyan Shilling"),
        "NGN": CurrencyInfo("NGN", 2, "Nigerian Naira"),
        "ZAR": CurrencyInfo("ZAR", 2, "South African Rand"),
        "AUD": CurrencyInfo("AUD", 2, "Australian Dollar"),
        "NZD": CurrencyInfo("NZD", 2, "New Zealand Dollar"),
        "CAD": CurrencyInfo("CAD", 2, "Canadian Dollar"),
        "CHF": CurrencyInfo("CHF", 2, "Swiss Franc"),
        "AED": CurrencyInfo("AED", 2, "UAE Dirham"),
        "BRL": CurrencyInfo("BRL", 2, "Brazilian Real"),
        # Zero decimal currencies
        "JPY": CurrencyInfo("JPY", 0, "Japanese Yen"),
        "KRW": CurrencyInfo("KRW", 0, "South Korean Won"),
        "UGX": CurrencyInfo("UGX", 0, "Ugandan Shilling"),
        "RWF": CurrencyInfo("RWF", 0, "Rwandan Franc"),
        "XOF": CurrencyInfo("XOF", 0, "West African CFA Franc"),
        "VND": CurrencyInfo("VND", 0, "Vietnamese Dong"),
        # Three decimal currencies
        "BHD": CurrencyInfo("BHD", 3, "Bahraini Dinar"),
        "KWD": CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
        "OMR": CurrencyInfo("OMR", 3, "Omani Rial"),
        "JOD": CurrencyInfo("JOD", 3, "Jordanian Dinar"),
        "TND": CurrencyInfo("TND", 3, "Tunisian Dinar"),
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        """Check if a currency code is known."""
        if not code or not isinstance(code, str):
            return False
        return code.upper().strip() in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        """Get currency information by code."""
        if not code or not isinstance(code, str):
            return None
        return cls._CURRENCIES.get(code.upper().strip())

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        """Get decimal places for a currency."""
        info = cls.get_info(code)
        if info is None:
            raise ValueError(f"Invalid ISO 4217 currency code: {code!r}")
        return info.decimal_places

    @classmethod
    def validate(cls, code: str) -> str:
        """Validate and normalize a currency code."""
        if not code or not isinstance(code, str):
            raise ValueError(f"Invalid currency code: {code!r}")

        normalized = code.upper().strip()

        if len(normalized) != 3:
            raise ValueError(f"Currency code must be 3 characters: {code!r}")

        if normalized not in cls._CURRENCIES:
            raise ValueError(f"Invalid ISO 4217 currency code: {code!r}")

        return normalized
