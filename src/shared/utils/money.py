from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
# Largest amount accepted on input
MAX_AMOUNT = Decimal("999999999999.99")


def to_decimal(value: Union[Decimal, float, int, str, None]) -> Decimal:
    """
    Convert a raw amount (API string, float, int) to Decimal without rounding.

    Floats go through str() so that 10.125 stays 10.125 instead of its
    binary approximation. Empty values are treated as zero.
    """
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid monetary amount: {value!r}") from exc


def round_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """
    Round monetary value to 2 decimal places, half away from zero.

    This is the only rounding rule used for money. Every intermediate step of
    a line or document computation goes through it.

    Examples:
        >>> round_money(10.125)
        Decimal('10.13')
        >>> round_money(10.124)
        Decimal('10.12')
        >>> round_money("-10.125")
        Decimal('-10.13')
    """
    if not isinstance(value, Decimal):
        value = to_decimal(value)
    try:
        # ROUND_HALF_UP on Decimal rounds away from zero for negatives too
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Monetary amount out of range: {value!r}") from exc


def sum_money(values) -> Decimal:
    """Sum already-rounded amounts and round the result."""
    return round_money(sum(values, Decimal("0")))
