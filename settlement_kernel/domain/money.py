"""
Money primitives -- fixed-scale Decimal arithmetic.

All monetary values in the kernel are ``Decimal`` with exactly two places.
Percentages keep up to six places.  Binary floating point is rejected at the
boundary so rounding drift cannot accumulate across installments.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
PERCENT_PLACES = Decimal("0.000001")

# Tolerance used by the ledger invariant check
ONE_CENT_TOLERANCE = CENT


def _coerce(value: Decimal | str | int, what: str) -> Decimal:
    if isinstance(value, (bool, float)):
        raise TypeError(f"{what} must be Decimal, str or int, got {type(value).__name__}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"Invalid {what}: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Invalid {what}: {value!r}")
    return result


def to_money(value: Decimal | str | int) -> Decimal:
    """Coerce to a 2-place Decimal, rounding half-up."""
    return _coerce(value, "amount").quantize(CENT, rounding=ROUND_HALF_UP)


def to_percent(value: Decimal | str | int) -> Decimal:
    """Coerce a percentage (``2`` means 2%) to a Decimal with 6 places."""
    return _coerce(value, "percentage").quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def floor_money(value: Decimal) -> Decimal:
    """Truncate toward zero at the cent. Only used on non-negative values."""
    return value.quantize(CENT, rounding=ROUND_DOWN)


def percent_of(base: Decimal, pct: Decimal) -> Decimal:
    """``base * pct / 100`` rounded to the cent."""
    return round_money(base * pct / HUNDRED)
