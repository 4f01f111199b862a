import math
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def start_of_day(value: datetime) -> datetime:
    """Truncate to midnight, keeping the timezone of ``value``."""
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives (Python's round() is banker's rounding)."""
    return int(math.floor(value + 0.5))


def ensure_aware(value: datetime) -> datetime:
    """Naive datetimes are treated as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
