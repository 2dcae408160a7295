"""
Module: ledger_kernel.db.types
Responsibility: Money representation for the ledger.  Centralizes rounding,
    coercion and the integer minor-unit column type so that every model and
    service uses identical arithmetic.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - round_money() is the ONLY sanctioned rounding function (ROUND_HALF_UP
      to cents).
    - No floats.  to_money() rejects float input; amounts enter the system as
      Decimal, int or numeric strings.
    - Amounts are persisted as integer cents (MinorUnits).  A value carrying
      sub-cent precision is rejected at bind time rather than silently
      rounded.

Failure modes:
    - TypeError on float input to to_money().
    - ValueError on sub-cent amounts passed to to_minor_units().
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0.00")
CENT = Decimal("0.01")

_MINOR_FACTOR = Decimal(10) ** MONEY_DECIMAL_PLACES


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    This is the ONLY sanctioned rounding function for financial values.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_money(value: Decimal | int | str) -> Decimal:
    """
    Coerce an external amount into a cents-precision Decimal.

    Raises:
        TypeError: If value is a float (binary floats are never accepted).
        ValueError: If value is not numeric.
    """
    if isinstance(value, float):
        raise TypeError(f"Float amounts are not accepted: {value!r}")
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return round_money(amount)


def is_cents_exact(value: Decimal) -> bool:
    """True when value has no precision below one cent."""
    return value == value.quantize(CENT)


def to_minor_units(value: Decimal | int) -> int:
    """
    Convert a major-unit amount to integer cents.

    Raises:
        ValueError: If the amount carries sub-cent precision.
    """
    amount = Decimal(value)
    if not is_cents_exact(amount):
        raise ValueError(f"Amount has sub-cent precision: {value}")
    return int(amount * _MINOR_FACTOR)


def from_minor_units(value: int) -> Decimal:
    """Convert integer cents back to a 2dp Decimal."""
    return (Decimal(value) / _MINOR_FACTOR).quantize(CENT)


class MinorUnits(TypeDecorator):
    """
    Decimal amount stored as a BIGINT count of cents.

    Contract:
        Bind: Decimal -> int cents (sub-cent values raise ValueError).
        Result: int cents -> Decimal with exactly two places.
    """

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError(f"Float amounts are not accepted: {value!r}")
        return to_minor_units(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return from_minor_units(value)
