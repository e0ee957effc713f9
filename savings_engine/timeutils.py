"""
Time helpers shared by the engine.

All instants are integer milliseconds since the Unix epoch (UTC).
Month labels are "yyyy-MM" strings computed in UTC.
"""

import re
import time
from datetime import datetime, timezone
from typing import Callable, Optional

# Returns "now" in epoch milliseconds. Injected everywhere time matters.
Clock = Callable[[], int]

MILLIS_PER_HOUR = 3_600_000

_MONTH_LABEL_RE = re.compile(r"^\s*(\d{4})-(\d{1,2})\s*$")


def now_millis() -> int:
    """Wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def month_label_for(millis: int) -> str:
    """Month label ("yyyy-MM", UTC) for an instant."""
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).strftime("%Y-%m")


def current_month_label(clock: Clock = now_millis) -> str:
    return month_label_for(clock())


def normalize_month_label(label: str) -> Optional[str]:
    """
    Normalize a month label to "yyyy-MM".

    Accepts a missing zero pad ("2025-1") and surrounding whitespace.
    Returns None when the label cannot be interpreted.
    """
    if not isinstance(label, str):
        return None
    match = _MONTH_LABEL_RE.match(label)
    if not match:
        return None
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        return None
    return f"{year:04d}-{month:02d}"


def month_sort_key(label: str) -> str:
    """Sort key that places malformed labels before every valid one."""
    return normalize_month_label(label) or ""
