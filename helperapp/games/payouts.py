"""Fixed-point payout arithmetic.

Multipliers are carried as integer hundredths (``1.25`` -> ``125``). Every
multiplication truncates toward zero back to hundredths, and payouts are
floored to whole smallest-currency units, so identical roll sequences always
produce identical payouts regardless of platform float behaviour.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Union

HUNDREDTHS = 100
ONE = HUNDREDTHS

Number = Union[int, float, str, Decimal]


def to_hundredths(value: Number) -> int:
    """Convert a configured multiplier to integer hundredths, truncating."""

    try:
        quantized = (Decimal(str(value)) * HUNDREDTHS).to_integral_value(
            rounding=ROUND_DOWN
        )
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"invalid multiplier {value!r}") from exc
    if quantized < 0:
        raise ValueError(f"multiplier must not be negative: {value!r}")
    return int(quantized)


def apply_factor(multiplier: int, factor: int) -> int:
    """Multiply two hundredths values, truncating the result to hundredths."""

    return (multiplier * factor) // HUNDREDTHS


def scale(amount: int, multiplier: int) -> int:
    """Return ``floor(amount * multiplier)`` for a hundredths multiplier."""

    return (amount * multiplier) // HUNDREDTHS


def format_multiplier(multiplier: int) -> str:
    return f"x{multiplier // HUNDREDTHS}.{multiplier % HUNDREDTHS:02d}"


__all__ = [
    "HUNDREDTHS",
    "ONE",
    "apply_factor",
    "format_multiplier",
    "scale",
    "to_hundredths",
]
