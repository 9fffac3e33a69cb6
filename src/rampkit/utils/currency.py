"""Currency and amount helpers.

Amounts travel as decimal strings. Arithmetic goes through Decimal only.
"""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
MAX_DISPLAY_PLACES = 7


def to_cents(amount: str | Decimal) -> int:
    """Convert a decimal amount to integer cents. ``"10.50"`` -> ``1050``."""
    value = Decimal(str(amount)) if amount not in ("", None) else Decimal("0")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int | str | None) -> str:
    """Convert integer cents to a 2-place decimal string. ``1050`` -> ``"10.50"``."""
    value = Decimal(str(cents or 0)) / 100
    return str(value.quantize(CENT, rounding=ROUND_HALF_UP))


def display_currency(currency: str | None) -> str:
    """Strip the issuer from a ``CODE:ISSUER`` asset string."""
    if not currency:
        return ""
    return currency.split(":")[0]


def format_amount(value: str) -> str:
    """Format to at most 7 decimal places, trimming trailing zeros."""
    quantized = Decimal(value).quantize(
        Decimal(1).scaleb(-MAX_DISPLAY_PLACES), rounding=ROUND_HALF_UP
    )
    text = format(quantized.normalize(), "f")
    return text


def decimal_places(value: str) -> int:
    """Number of digits after the decimal point in a decimal string."""
    exponent = Decimal(value).as_tuple().exponent
    return -exponent if isinstance(exponent, int) and exponent < 0 else 0


def sum_amounts(amounts: list[str], places: int = 2) -> str:
    """Sum decimal strings and quantize to ``places`` digits."""
    total = sum((Decimal(a or "0") for a in amounts), Decimal("0"))
    return str(total.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))
