"""
Currency and Amount Module

Handles ISO 4217 currency codes, amount coercion and Decimal rounding for
financial calculations. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from enum import Enum
from typing import Any
import re


CENT = Decimal('0.01')
ZERO = Decimal('0')


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    INR = ("INR", 2)  # Indian Rupee, 2 decimal places
    USD = ("USD", 2)  # US Dollar, 2 decimal places
    EUR = ("EUR", 2)  # Euro, 2 decimal places
    GBP = ("GBP", 2)  # British Pound, 2 decimal places
    AED = ("AED", 2)  # UAE Dirham, 2 decimal places
    JPY = ("JPY", 0)  # Japanese Yen, 0 decimal places

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its ISO code"""
        try:
            return cls[code.strip().upper()]
        except KeyError:
            raise ValueError(f"Unsupported currency code: {code}")


def round_money(value: Decimal, places: int = 2) -> Decimal:
    """Round half-up to the given number of decimal places"""
    return value.quantize(Decimal('0.1') ** places, rounding=ROUND_HALF_UP)


def round_to_currency(value: Decimal, currency: Currency) -> Decimal:
    """
    Validate and round decimal to currency precision

    Args:
        value: Decimal to round
        currency: Currency defining precision

    Returns:
        Properly rounded Decimal
    """
    return round_money(value, currency.precision)


def to_decimal(value: Any) -> Decimal:
    """
    Coerce a stored amount to Decimal

    Accepts Decimal, int, numeric strings (with currency symbols or thousands
    separators) and floats (through their string form).

    Raises:
        ValueError: If the value is absent or not numeric
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Amount {value!r} is not numeric")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        result = decimal_from_string(value)
    else:
        raise ValueError(f"Amount {value!r} is not numeric")

    if not result.is_finite():
        raise ValueError(f"Amount {value!r} is not a finite number")
    return result


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    # Both comma and dot: comma is the thousands separator
    if ',' in clean_value and '.' in clean_value:
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value:
        parts = clean_value.split(',')
        if len(parts) == 2 and len(parts[1]) <= 2:
            # Single comma followed by cents: decimal separator
            clean_value = clean_value.replace(',', '.')
        else:
            # Thousands (or Indian lakh) grouping
            clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")
