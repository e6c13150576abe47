"""
Permissive value coercion for payloads crossing the network boundary.

The EduGame API is not fully trusted: numbers may arrive as strings, be
missing, negative or NaN. These helpers never raise; they fall back to a
default the same way the web client does with ``Number(x) || default``.
Integers are kept exact, however large.
"""

import math
from datetime import datetime, timezone
from typing import Any, Optional, Union


def _to_number(value: Any) -> Optional[Union[int, float]]:
    """Convert to an int or a finite float, or None if that is not possible."""
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except (ValueError, OverflowError):
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def to_int(value: Any, default: int = 0) -> int:
    """Floor a numeric value to int; zero and unparsable values give default."""
    number = _to_number(value)
    if not number:
        return default
    if isinstance(number, int):
        return number
    return math.floor(number)


def to_non_negative_int(value: Any, default: int = 0) -> int:
    """Coerce to an int >= 0, falling back to default for negatives."""
    number = to_int(value, default)
    return number if number >= 0 else default


def to_positive_int(value: Any, default: int = 1) -> int:
    """Coerce to an int >= 1, falling back to default otherwise."""
    number = to_int(value, default)
    return number if number >= 1 else default


def to_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(value)
    return text if text else default


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()
