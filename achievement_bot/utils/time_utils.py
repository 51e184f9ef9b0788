"""
Time helpers for sync watermarks and challenge periods.

All timestamps handled by the core are timezone-aware UTC. SQLite hands
DateTime columns back as naive values, so anything read from the database
goes through ensure_utc() before it is compared.
"""

from datetime import datetime, timezone
from typing import Optional, Tuple

import pytz


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_ra_timestamp(raw: str) -> datetime:
    """
    Parse a RetroAchievements timestamp.

    The web API reports UTC as "YYYY-MM-DD HH:MM:SS"; client libraries
    send ISO-8601 with or without an offset or a trailing "Z".

    Raises:
        ValueError: If the string is not a recognised timestamp
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError(f"Invalid timestamp: {raw!r}")
    text = raw.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return ensure_utc(datetime.fromisoformat(text.replace(' ', 'T', 1)))


def current_period(timezone_name: str = 'UTC', now: Optional[datetime] = None) -> Tuple[int, int]:
    """Get the (month, year) challenge period for the given timezone."""
    tz = pytz.timezone(timezone_name)
    moment = ensure_utc(now) if now is not None else utcnow()
    local = moment.astimezone(tz)
    return local.month, local.year
