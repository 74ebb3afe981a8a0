from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from app.core.config import settings


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def to_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """
    Engine datetimes are naive resource-local wall clock.
    Aware values (e.g. timestamptz rows from Supabase) are converted, not reinterpreted.
    """
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(local_tz()).replace(tzinfo=None)


def local_now() -> datetime:
    return datetime.now(local_tz()).replace(tzinfo=None)
