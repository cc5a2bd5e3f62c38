"""
Shared money helpers for bank alert amounts.

Handles the formats Indian bank alerts use:
- Western grouping: 1,234.56
- Indian grouping: 1,23,456.78
- Missing decimals: 1234 → 1234

Amounts follow one sign convention everywhere: expense amounts are positive,
income amounts are negative, and the transaction type always agrees with the sign.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional
import re

_CURRENCY_PREFIX = re.compile(r'^(?:rs\.?|inr\.?|₹)\s*', re.IGNORECASE)
_CENT = Decimal('0.01')

CURRENCY_SYMBOLS = {
    'INR': '₹',
    'USD': '$',
    'EUR': '€',
    'GBP': '£',
}


def parse_money(amount_str: str) -> Optional[Decimal]:
    """
    Parse an amount string with grouping separators.

    Args:
        amount_str: String containing amount (e.g., "Rs. 1,23,456.78", "5,000")

    Returns:
        Decimal amount or None if parsing fails

    Examples:
        >>> parse_money("1,23,456.78")
        Decimal('123456.78')
        >>> parse_money("Rs.70.00")
        Decimal('70.00')
    """
    if not amount_str or not isinstance(amount_str, str):
        return None

    cleaned = _CURRENCY_PREFIX.sub('', amount_str.strip())
    cleaned = cleaned.replace(',', '').replace(' ', '')

    if not cleaned:
        return None

    try:
        return Decimal(cleaned)
    except (InvalidOperation, ValueError):
        return None


def apply_sign(amount: Decimal, txn_type: str) -> Decimal:
    """Return the amount signed for its type: income negative, expense positive."""
    magnitude = abs(amount)
    return -magnitude if txn_type == 'income' else magnitude


def amount_key(amount: Optional[Decimal]) -> str:
    """
    Canonical string for an amount, used in fingerprints and correction signatures.

    "250", "250.0" and "250.00" all map to "250.00".
    """
    if amount is None:
        return 'none'
    return format(Decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP), 'f')


def format_money(amount: Optional[Decimal], currency: str = 'INR') -> str:
    """
    Format Decimal amount as money string for notifications.

    Examples:
        >>> format_money(Decimal('1234.5'))
        '₹1,234.50'
    """
    if amount is None:
        return 'N/A'

    symbol = CURRENCY_SYMBOLS.get(currency.upper(), currency)
    quantized = abs(Decimal(amount)).quantize(_CENT, rounding=ROUND_HALF_UP)
    return f"{symbol}{quantized:,}"
