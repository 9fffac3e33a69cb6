"""Quote helpers shared by ramp flows."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from rampkit.anchors.models import Quote
from rampkit.utils.currency import decimal_places
from rampkit.utils.time import parse_timestamp


def calculate_expires_in(expires_at: str, now: Optional[datetime] = None) -> str:
    """Human readable time left on a quote: ``"2m 5s"``, ``"42s"`` or ``"Expired"``."""
    now = now or datetime.now(timezone.utc)
    diff = (parse_timestamp(expires_at) - now).total_seconds()

    if diff <= 0:
        return "Expired"

    minutes = int(diff // 60)
    seconds = int(diff % 60)

    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def quote_is_consistent(quote: Quote) -> bool:
    """Check ``to_amount`` against ``from_amount * exchange_rate`` within the fee.

    The fee may have been deducted on either side, so the gap between the gross
    conversion and ``to_amount`` must not exceed the fee plus one unit of the
    least precise amount.
    """
    from_amount = Decimal(quote.from_amount)
    to_amount = Decimal(quote.to_amount)
    rate = Decimal(quote.exchange_rate)
    fee = Decimal(quote.fee or "0")

    places = min(decimal_places(quote.from_amount), decimal_places(quote.to_amount))
    tolerance = Decimal(1).scaleb(-places)

    gross = from_amount * rate
    return abs(gross - to_amount) <= max(fee, fee * rate) + tolerance
