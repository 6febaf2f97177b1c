from decimal import Decimal, ROUND_HALF_UP

CENTS = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """Coerce an int, str or float into a Decimal without binary drift.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not
    Decimal("0.1000000000000000055511151231257827...").
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Boolean is not a monetary amount")
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def qround(value) -> Decimal:
    """Round half-up to two decimals (matches JavaScript Math.round on cents)."""
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_cents(value) -> int:
    return int(qround(value) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENTS)
