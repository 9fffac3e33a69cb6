"""Timestamp helpers."""

from datetime import datetime, timezone


def utcnow_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp into an aware datetime.

    Accepts a trailing ``Z`` and treats naive values as UTC.
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def from_epoch_millis(value: int | float | str) -> str:
    """Convert epoch milliseconds (or an ISO string) to ISO 8601."""
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return parse_timestamp(value).isoformat()
    return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc).isoformat()
