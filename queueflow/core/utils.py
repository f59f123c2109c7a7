from datetime import datetime, timedelta, timezone
from typing import Optional


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Ensure datetimes are naive UTC
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def add_minutes(value: datetime, minutes: float) -> datetime:
    return value + timedelta(minutes=minutes)
