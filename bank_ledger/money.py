"""
Monetary Amount Module

Parsing and validation of monetary amounts. Single-currency ledger: amounts
are plain Decimal values at cent precision. NEVER uses float.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Any

from .errors import InvalidAmountError

# Set global decimal context for financial precision
getcontext().prec = 28

AMOUNT_PRECISION = 2
AMOUNT_QUANTUM = Decimal('0.1') ** AMOUNT_PRECISION
ZERO = Decimal('0.00')
MAX_INTEGER_DIGITS = getcontext().prec - AMOUNT_PRECISION


def quantize(value: Decimal) -> Decimal:
    """
    Round to ledger precision

    Raises:
        InvalidAmountError: If the value has more integer digits than the
            decimal context can hold at cent precision
    """
    try:
        return value.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmountError(
            f"Amount {value} exceeds {MAX_INTEGER_DIGITS} integer digits", value
        )


def parse_amount(value: Any) -> Decimal:
    """
    Convert an incoming amount to a Decimal at ledger precision

    Args:
        value: Decimal, int or numeric string

    Returns:
        Quantized Decimal

    Raises:
        InvalidAmountError: If the value is a float, not numeric, not finite,
            or carries more precision than the ledger stores
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmountError("Amount must be a decimal string or Decimal, not float", value)

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, str) and value.strip():
        try:
            amount = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidAmountError(f"Cannot convert '{value}' to an amount", value)
    else:
        raise InvalidAmountError("Amount is required", value)

    if not amount.is_finite():
        raise InvalidAmountError("Amount must be a finite number", value)

    rounded = quantize(amount)
    if rounded != amount:
        raise InvalidAmountError(
            f"Amount {value} has more than {AMOUNT_PRECISION} decimal places", value
        )
    return rounded


def require_positive(amount: Decimal, operation: str) -> Decimal:
    """Reject amounts <= 0 before any state mutation"""
    if amount <= ZERO:
        raise InvalidAmountError(f"{operation} amount must be greater than zero", amount)
    return amount


def format_amount(amount: Decimal) -> str:
    """Format for display and serialization"""
    return f"{quantize(amount):.{AMOUNT_PRECISION}f}"
