# utils/money.py
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """
    Coerce a float/int/str/Decimal into a 2 dp Decimal.
    Floats go through str() so 42.5 becomes exactly 42.50.
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Not a monetary amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Any) -> int:
    """Dollars → cents. 42.50 → 4250."""
    return int((to_money(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(cents: int) -> Decimal:
    """Cents → dollars. 4250 → 42.50."""
    return (Decimal(int(cents)) / 100).quantize(CENT)


def format_amount(amount: Any) -> str:
    """Plain 2 dp rendering used in SMS bodies, e.g. '1,250.00'."""
    return f"{to_money(amount):,.2f}"
