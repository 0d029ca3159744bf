# sheetsync/utils/timeutils.py
import logging
from datetime import datetime, timezone, timedelta
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Earliest instant a client can represent, used as the "full sync" horizon
EPOCH_TIME_LOWEST_MILLISECONDS = -8640000000000000
# 1900-01-01T00:00:00Z, used for log rows whose timestamp cannot be read
EPOCH_TIME_1900_01_01_MILLISECONDS = -2208988800000

_EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Current time as a naive UTC datetime with millisecond precision"""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def _parse_iso(text: str) -> datetime:
    text = text.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Convert a cell or wire value to a naive UTC datetime.
    Accepts datetimes, ISO-8601 strings and epoch milliseconds.
    Returns None for blanks and anything that cannot be parsed.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, (int, float)):
        try:
            return _EPOCH + timedelta(milliseconds=value)
        except OverflowError:
            return None
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            return _parse_iso(value)
        except ValueError:
            return None
    return None


def to_epoch_millis(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Convert a cell or wire value to epoch milliseconds, or `default` when it cannot be read"""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        # Numeric strings are epoch milliseconds
        try:
            return int(stripped)
        except ValueError:
            pass
    parsed = to_datetime(value)
    if parsed is None:
        return default
    delta = parsed - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 1000 + delta.microseconds // 1000


def to_iso(value: Any) -> Optional[str]:
    """Format a timestamp the way clients expect it: 2024-01-31T12:00:00.000Z"""
    parsed = to_datetime(value)
    if parsed is None:
        return None
    return parsed.strftime("%Y-%m-%dT%H:%M:%S.") + f"{parsed.microsecond // 1000:03d}Z"
