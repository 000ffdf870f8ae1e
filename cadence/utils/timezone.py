"""
Timezone helpers for scheduling.
Stored timestamps are UTC; SQLite hands them back naive, PostgreSQL aware.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

FALLBACK_TIMEZONE = "America/Chicago"


def as_utc(dt: Any) -> Optional[datetime]:
    """Normalize a datetime to aware UTC. Non-datetimes become None."""
    if not isinstance(dt, datetime):
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_zoneinfo(timezone_str: Optional[str] = None) -> ZoneInfo:
    """Get ZoneInfo object, falling back to the default send timezone if unknown."""
    if timezone_str:
        try:
            return ZoneInfo(timezone_str)
        except (KeyError, ValueError):
            logger.warning("Invalid timezone '%s', falling back to %s", timezone_str, FALLBACK_TIMEZONE)
    return ZoneInfo(FALLBACK_TIMEZONE)
