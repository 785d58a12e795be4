"""
Network-time helpers.

Upstream nodes report the same timestamp field in microseconds on some builds
and milliseconds on others. Values are classified by magnitude and always
normalized to integer milliseconds.
"""

import math
from datetime import datetime, timezone
from typing import Any, Optional


# Anything above this is microseconds (~year 3554 in milliseconds).
MICROS_THRESHOLD = 50_000_000_000_000


def to_millis(value: Any) -> Optional[int]:
    """
    Normalize a timestamp to integer milliseconds since the epoch.

    Accepts ints, floats, numeric strings (micro- or milliseconds) and
    ISO-8601 strings. Returns None for anything else.
    """
    if isinstance(value, bool) or value is None:
        return None

    if isinstance(value, (int, float)):
        return _classify(value)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if _looks_like_iso(text):
            return _parse_iso(text)
        try:
            return _classify(float(text))
        except ValueError:
            return None

    return None


def millis_to_iso(ms: Optional[int]) -> Optional[str]:
    """Render milliseconds as ISO-8601 UTC with a trailing Z."""
    if ms is None:
        return None
    try:
        dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _classify(number: float) -> Optional[int]:
    if not math.isfinite(number) or number < 0:
        return None
    if number > MICROS_THRESHOLD:
        return int(number // 1000)
    return int(number)


def _looks_like_iso(text: str) -> bool:
    return len(text) >= 10 and text[4] == "-" and text[7] == "-"


def _parse_iso(text: str) -> Optional[int]:
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return round(dt.timestamp() * 1000)
