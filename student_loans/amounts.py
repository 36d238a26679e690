"""
Monetary Amount Module

Parsing and rounding of loan balances and payment amounts. Amounts are
single-currency and held as Decimal; NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any, Optional
import re

# Set global decimal context for financial precision
getcontext().prec = 28

ZERO = Decimal('0')

CURRENCY_PREFIX = re.compile(r'^[$£€]\s*')


def decimal_from_value(value: Any) -> Optional[Decimal]:
    """
    Convert a request or storage value to Decimal.

    Accepts Decimal, int, float (through its string form) and strings with
    surrounding whitespace or a leading currency symbol. Returns None for
    anything that is not a finite number, including booleans.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        clean_value = CURRENCY_PREFIX.sub('', value.strip())
        if not clean_value:
            return None
        try:
            result = Decimal(clean_value)
        except InvalidOperation:
            return None
    else:
        return None

    if not result.is_finite():
        return None
    return result


def quantize_amount(value: Decimal, precision: int = 2) -> Decimal:
    """
    Round a Decimal to the amount precision

    Args:
        value: Decimal to round
        precision: Number of decimal places

    Returns:
        Properly rounded Decimal
    """
    return value.quantize(Decimal('0.1') ** precision, rounding=ROUND_HALF_UP)


def format_amount(value: Decimal, precision: int = 2) -> str:
    """Format an amount for storage and JSON responses"""
    return str(quantize_amount(value, precision))
