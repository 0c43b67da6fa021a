"""Conversions between major-unit decimals and integer minor units."""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

MINOR_UNITS_PER_MAJOR = 100
_MINOR_EXPONENT = Decimal("0.01")


def to_minor(amount: Union[Decimal, int, str]) -> int:
    """
    Convert a major-unit amount (e.g. 12.50 GHS) to minor units (1250 pesewas).

    Raises:
        ValueError: If the amount is not a finite number or carries
            precision below one minor unit.
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    if value != value.quantize(_MINOR_EXPONENT):
        raise ValueError("Amount cannot be more precise than one minor unit")
    return int(value * MINOR_UNITS_PER_MAJOR)


def to_major(amount_minor: int) -> Decimal:
    """Convert minor units back to a two-decimal major-unit amount."""
    return (Decimal(amount_minor) / MINOR_UNITS_PER_MAJOR).quantize(_MINOR_EXPONENT)


def round_half_up(value: Decimal) -> int:
    """Round a fractional minor-unit amount to the nearest whole unit, half-up."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
