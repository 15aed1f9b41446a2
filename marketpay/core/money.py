"""Fixed-point money helpers. Amounts are Decimal with two places, never float."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")


def to_money(value: Decimal | str | int) -> Decimal:
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


def to_minor_units(amount: Decimal) -> int:
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(minor: int) -> Decimal:
    return to_money(Decimal(int(minor)) / 100)


def format_amount(amount: Decimal) -> str:
    """Provider wire format: "129.99"."""
    return f"{to_money(amount):.2f}"
