"""
Date helpers. All timestamps are stored in UTC.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def from_epoch_seconds(value: Any) -> Optional[datetime]:
    """
    Convert a provider timestamp (epoch seconds, as int or string) to UTC.
    Returns None for missing or unparseable values.
    """
    if value is None or value == "":
        return None
    try:
        return datetime.fromtimestamp(int(float(value)), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning(f"Ignoring invalid epoch timestamp: {value!r}")
        return None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
