"""Decimal money helpers. Local amounts carry two fractional digits."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from household.errors import InvalidInput

CENTS = Decimal("0.01")
MILLIUNITS_PER_UNIT = 1000


def to_money(value, field_name: str = "amount") -> Decimal:
    """Parse *value* as a two-decimal amount; more precision is rejected."""
    if value is None or isinstance(value, bool):
        raise InvalidInput(f"{field_name} is required")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidInput(f"{field_name} is not a number: {value!r}") from e
    if not amount.is_finite():
        raise InvalidInput(f"{field_name} must be finite")
    if amount != amount.quantize(CENTS):
        raise InvalidInput(f"{field_name} has more than two decimal places: {value!r}")
    return amount.quantize(CENTS)


def from_storage(value) -> Decimal:
    """Normalize a stored NUMERIC (float from SQLite, Decimal from PostgreSQL)."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_milliunits(amount: Decimal) -> int:
    """round(amount * 1000) as an integer, half away from zero."""
    return int((amount * MILLIUNITS_PER_UNIT).quantize(Decimal(1), rounding=ROUND_HALF_UP))
