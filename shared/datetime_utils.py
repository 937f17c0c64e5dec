"""
Framework-agnostic date/time helpers.

All timestamps handled by the service are timezone-aware UTC. MongoDB hands
back naive datetimes unless the client is created with ``tz_aware=True``,
so anything read from a store goes through ensure_utc().
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def seconds_until(target: datetime, now: datetime) -> int:
    """Whole seconds from *now* until *target*, rounded up, never negative."""
    remaining = (target - now).total_seconds()
    if remaining <= 0:
        return 0
    return math.ceil(remaining)
