"""
Module: ledger_kernel.db.types
Responsibility: Decimal coercion and the single sanctioned rounding helper
    for reported money figures.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    engines and services.

Invariants enforced:
    - No floats: every amount is a Decimal.
    - round_money() is the ONLY rounding function for reported averages;
      running sums (COGS, totals) are kept unrounded.
"""

from decimal import ROUND_HALF_UP, Decimal

DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_decimal(value: Decimal | int | str | None) -> Decimal:
    """
    Coerce an int, str or Decimal amount to Decimal; None becomes zero.

    Raises:
        decimal.InvalidOperation: If a string is not numeric.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    Example:
        round_money(Decimal("106.6666")) -> Decimal("106.67")
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)
