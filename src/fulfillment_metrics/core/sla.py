"""
SLA calculator.

Derives an order's required ship date from its allocation timestamp and
decides whether a shipment met it.

Rules:
- Allocated before the 8:00 AM Eastern cutoff ships the same day, otherwise
  the next day.
- Weekends roll forward to Monday. Holidays are not skipped here.
- The deadline is 4:00 PM Eastern on the ship day.

Cutoff and deadline hours come from the DST status of the evaluation time
("now"), not of the order's own date.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Tuple

from fulfillment_metrics.config.constants import (
    CUTOFF_HOUR_UTC_DST,
    CUTOFF_HOUR_UTC_STANDARD,
    SHIP_HOUR_UTC_DST,
    SHIP_HOUR_UTC_STANDARD,
)
from fulfillment_metrics.core.business_calendar import (
    eastern_date,
    is_dst,
    is_weekend,
    utc_now,
)
from fulfillment_metrics.models.order import Order

# Epoch values above this are milliseconds
EPOCH_MILLIS_THRESHOLD = 10 ** 11


class InvalidTimestampError(ValueError):
    """Raised when a stored timestamp cannot be interpreted."""


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Interpret a stored timestamp as an aware UTC datetime.

    Accepts ISO-8601 strings (naive strings are UTC), datetimes (naive
    values are UTC), epoch seconds or milliseconds, and serialized
    Firestore timestamps ({"seconds": .., "nanos": ..} or the
    underscore-prefixed variant).

    Returns:
        Aware UTC datetime, or None when value is empty

    Raises:
        InvalidTimestampError: If value is present but cannot be parsed
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise InvalidTimestampError(f"Unparsable timestamp: {value!r}") from e
        return parse_timestamp(parsed)

    if isinstance(value, bool):
        raise InvalidTimestampError(f"Unparsable timestamp: {value!r}")

    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) > EPOCH_MILLIS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise InvalidTimestampError(f"Timestamp out of range: {value!r}") from e

    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanos", value.get("_nanoseconds", 0)) or 0
        if isinstance(seconds, (int, float)) and not isinstance(seconds, bool):
            return parse_timestamp(seconds + nanos / 1e9)

    raise InvalidTimestampError(f"Unsupported timestamp type: {type(value).__name__}")


def deadline_hours(now: Optional[datetime] = None) -> Tuple[int, int]:
    """
    UTC cutoff hour and ship-by hour for the evaluation time.

    Returns:
        (cutoff_hour_utc, ship_hour_utc)
    """
    if is_dst(now or utc_now()):
        return CUTOFF_HOUR_UTC_DST, SHIP_HOUR_UTC_DST
    return CUTOFF_HOUR_UTC_STANDARD, SHIP_HOUR_UTC_STANDARD


def required_ship_date(order: Order, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Required ship date/time for an order.

    Args:
        order: Order with an allocation timestamp
        now: Evaluation time used for the DST decision (defaults to current time)

    Returns:
        Aware UTC datetime at the ship-by hour, or None if not allocated

    Raises:
        InvalidTimestampError: If allocated_at is malformed
    """
    allocated = parse_timestamp(order.allocated_at)
    if allocated is None:
        return None

    cutoff_hour, ship_hour = deadline_hours(now)
    cutoff = allocated.replace(hour=cutoff_hour, minute=0, second=0, microsecond=0)

    ship_day = allocated.date()
    if allocated >= cutoff:
        ship_day += timedelta(days=1)

    while is_weekend(ship_day):
        ship_day += timedelta(days=1)

    return datetime.combine(ship_day, time(hour=ship_hour), tzinfo=timezone.utc)


def required_ship_day(order: Order, now: Optional[datetime] = None) -> Optional[date]:
    """Eastern calendar date of the required ship date."""
    required = required_ship_date(order, now)
    if required is None:
        return None
    return eastern_date(required)


def sla_met(shipped_at: Any, order: Optional[Order], now: Optional[datetime] = None) -> bool:
    """
    Whether an order shipped on or before its required ship date.

    Comparison is by Eastern calendar date; time of day is ignored.

    Raises:
        InvalidTimestampError: If shipped_at or allocated_at is malformed
    """
    if not shipped_at or order is None:
        return False

    shipped = parse_timestamp(shipped_at)
    required = required_ship_date(order, now)
    if shipped is None or required is None:
        return False

    return eastern_date(shipped) <= eastern_date(required)
