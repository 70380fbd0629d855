"""
Date and Time utilities

The cache stores Unix seconds; the API reports ISO8601 UTC strings with
millisecond precision and a ``Z`` suffix.
"""
from datetime import datetime, timezone
import time


def now_unix() -> int:
    """Current time in whole Unix seconds"""
    return int(time.time())


def unix_to_iso8601(seconds: int | float) -> str:
    """
    Render Unix seconds as an ISO8601 UTC timestamp

    Args:
        seconds: Unix timestamp

    Returns:
        Timestamp like '2026-02-14T11:00:00.000Z'
    """
    return datetime_to_iso8601(datetime.fromtimestamp(seconds, tz=timezone.utc))


def datetime_to_iso8601(value: datetime) -> str:
    """
    Render a datetime as an ISO8601 UTC timestamp

    Naive datetimes are treated as UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
