"""
Time source helpers.

All session arithmetic is done in epoch milliseconds. Anything that needs
"now" takes a clock callable so tests can substitute a fake one.
"""

import math
import time
from datetime import datetime, timezone

MS_PER_MINUTE = 60 * 1000
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR


def wall_clock_ms():
    """Current wall-clock time in epoch milliseconds."""
    return time.time() * 1000


def local_hour():
    """Current local hour of day (0-23)."""
    return time.localtime().tm_hour


def parse_timestamp(value):
    """Parse an ISO 8601 string into epoch ms. Returns None if unparseable.

    Naive timestamps are read as UTC.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    ms = dt.timestamp() * 1000
    if math.isnan(ms):
        return None
    return ms


def format_timestamp(ms):
    """Format epoch ms as an ISO 8601 UTC string (None passes through)."""
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()
