"""Shared parsing helpers used by the evaluators.

parse_datetime:  ISO strings / dates → naive local datetime (None on bad input)
to_number:       numeric coercion (None on bad input)
is_empty_value:  None, "" and [] are empty
"""
from datetime import date, datetime


def parse_datetime(value):
    """Parse an ISO date or timestamp into a naive local datetime.

    Returns None for empty/invalid input. Aware timestamps are converted to
    local time first so that date-level comparisons use the local calendar.
    Supports:
    - YYYY-MM-DD
    - YYYY-MM-DDTHH:MM:SS[.fff][Z|±HH:MM]
    - date / datetime objects
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is not None:
        try:
            parsed = parsed.astimezone().replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None
    return parsed


def to_number(value):
    """Coerce a value to float. Returns None when it does not parse."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def is_empty_value(value) -> bool:
    return value is None or value == "" or (isinstance(value, list) and len(value) == 0)
