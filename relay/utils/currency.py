"""
Amount Normalization

Stripe reports amounts in the currency's smallest unit. Zero-decimal
currencies have no minor unit, so their amounts are already major units.
"""

from decimal import Decimal
from typing import Any, Optional

ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF",
        "CLP",
        "DJF",
        "GNF",
        "JPY",
        "KMF",
        "KRW",
        "MGA",
        "PYG",
        "RWF",
        "UGX",
        "VND",
        "VUV",
        "XAF",
        "XOF",
        "XPF",
    }
)


def is_zero_decimal(currency: Optional[str]) -> bool:
    """Check if a currency code has no minor unit (case-insensitive)"""
    return bool(currency) and currency.strip().upper() in ZERO_DECIMAL_CURRENCIES


def normalize_amount(amount_minor: Any, currency: Optional[str]) -> Optional[Decimal]:
    """
    Convert a minor-unit amount into major units.

    Args:
        amount_minor: Integer amount in the currency's smallest unit
        currency: Three-letter ISO currency code

    Returns:
        Decimal amount in major units, or None when no amount is known.
        None means "omit the value", not zero.
    """
    if isinstance(amount_minor, bool) or not isinstance(amount_minor, int):
        return None

    if is_zero_decimal(currency):
        return Decimal(amount_minor)

    return Decimal(amount_minor) / Decimal(100)
