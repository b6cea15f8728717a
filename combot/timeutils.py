"""Timezone-aware time utilities for pending-action expiry."""

import datetime
from typing import Optional
from zoneinfo import ZoneInfo
from .config import TIMEZONE


def now() -> datetime.datetime:
    """Get current timezone-aware datetime."""
    return datetime.datetime.now(ZoneInfo(TIMEZONE))


def now_timestamp() -> int:
    """Get the current unix timestamp."""
    return int(now().timestamp())


def timestamp_from_minutes(minutes: int) -> int:
    """Get timestamp N minutes from now."""
    future = now() + datetime.timedelta(minutes=minutes)
    return int(future.timestamp())


def is_expired(expires_at: Optional[int], current: Optional[int] = None) -> bool:
    """Check whether an optional expiry timestamp has passed."""
    if expires_at is None:
        return False
    if current is None:
        current = now_timestamp()
    return expires_at <= current
