"""
Wall-clock source for the sync engine.

Every timestamp the engine produces (cursor advances, retention cutoffs,
summary windows, token expiry) goes through a Clock so that a pass can be
replayed deterministically. All values are timezone-aware UTC.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


class Clock:
    """System UTC clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


system_clock = Clock()


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def floor_hour(value: datetime) -> datetime:
    return ensure_utc(value).replace(minute=0, second=0, microsecond=0)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value else None
