"""
Date and time helpers.

The domain stores every timestamp as epoch milliseconds (``int``). These
helpers convert between that representation and ``datetime``/ISO strings at
the edges (API responses, provider payloads, legacy documents).
"""

import time
from datetime import datetime, timezone
from typing import Any, Optional

MILLIS_PER_SECOND = 1000
MILLIS_PER_MINUTE = 60 * MILLIS_PER_SECOND


def now_millis() -> int:
    """Current UTC time in epoch milliseconds."""
    return int(time.time() * MILLIS_PER_SECOND)


def from_millis(value: int) -> datetime:
    """Epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value / MILLIS_PER_SECOND, tz=timezone.utc)


def isoformat_millis(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    return from_millis(value).isoformat()


def to_millis(value: Any) -> Optional[int]:
    """Best-effort conversion of a stored timestamp to epoch milliseconds.

    Accepts ints/floats (already millis), datetimes (naive values are taken
    as UTC, matching what MongoDB returns) and ISO-8601 strings. Anything
    else yields None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * MILLIS_PER_SECOND)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return to_millis(parsed)
    return None
