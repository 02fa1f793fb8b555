"""
Minor-unit money helpers.

Amounts are integers in minor currency units (kobo, cents). Rates are
Decimals. Fractional results round half-up to the nearest minor unit.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

RATE_QUANTUM = Decimal("0.000001")


def to_rate(value) -> Decimal:
    """Coerce a rate (str, int, float, Decimal) without float drift."""
    if isinstance(value, bool):
        raise ValueError("rate must be a number")
    if isinstance(value, Decimal):
        rate = value
    else:
        try:
            rate = Decimal(str(value))
        except (InvalidOperation, TypeError):
            raise ValueError(f"rate must be a number, got {value!r}")
    if not rate.is_finite():
        raise ValueError("rate must be finite")
    return rate.quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_rate(amount: int, rate) -> int:
    """round_half_up(amount * rate)"""
    return round_half_up(Decimal(amount) * to_rate(rate))


def is_minor_amount(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
