"""
Money helpers.

Authoritative amounts are integer cents. Percentages (tax, markup) are
Decimals with two places. Derived amounts round half-up to the nearest cent.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

HUNDRED = Decimal("100")
TWO_PLACES = Decimal("0.01")

# Maximum unit amount: 9,999,999.99 (999,999,999 cents)
MAX_UNIT_CENTS = 999_999_999


def to_percent(value) -> Decimal:
    """
    Coerce a percent value (int, str, Decimal) to a 2-place Decimal.

    Floats go through str() so 12.5 becomes Decimal("12.50"), not its
    binary expansion. Raises ValueError for junk or negative values.
    """
    if value is None:
        return Decimal("0.00")
    if isinstance(value, bool):
        raise ValueError("percent must be a number")
    try:
        pct = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError("percent must be a number")
    if not pct.is_finite():
        raise ValueError("percent must be a number")
    if pct < 0:
        raise ValueError("percent cannot be negative")
    return pct.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def percent_of(cents: int, pct) -> int:
    """cents * pct / 100, rounded half-up to a whole cent."""
    amount = Decimal(cents) * Decimal(pct) / HUNDRED
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_markup(cost_cents: int, markup_pct) -> int:
    return cost_cents + percent_of(cost_cents, markup_pct)


def is_valid_cents(value, *, allow_zero: bool = True) -> bool:
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    if value < 0 or value > MAX_UNIT_CENTS:
        return False
    return allow_zero or value > 0


def to_cents(amount) -> int:
    """Major-unit amount ("12.5", 12.5, Decimal) to integer cents, half-up."""
    if isinstance(amount, bool):
        raise ValueError("amount must be a number")
    try:
        value = Decimal(str(amount)) if isinstance(amount, float) else Decimal(str(amount).strip())
    except (InvalidOperation, TypeError):
        raise ValueError(f"invalid amount {amount!r}")
    if not value.is_finite():
        raise ValueError(f"invalid amount {amount!r}")
    return int((value * HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
