from datetime import datetime, UTC, date
from typing import Any, Optional, Union


def parse_datetime(dt_str: Union[str, datetime, date]) -> datetime:
    """Parse a datetime string into a datetime object.

    Args:
        dt_str: Datetime string, date or datetime object

    Returns:
        Parsed datetime object with UTC timezone

    Raises:
        ValueError: If the datetime string cannot be parsed
    """
    if isinstance(dt_str, datetime):
        if dt_str.tzinfo is None:
            return dt_str.replace(tzinfo=UTC)
        return dt_str.astimezone(UTC)

    if isinstance(dt_str, date):
        return datetime(dt_str.year, dt_str.month, dt_str.day, tzinfo=UTC)

    value = dt_str.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"

    try:
        # Try ISO format first
        return parse_datetime(datetime.fromisoformat(value))
    except ValueError:
        # Try other common formats
        formats = [
            "%Y-%m-%d %H:%M:%S",
            "%Y/%m/%d %H:%M:%S",
            "%Y/%m/%d",
            "%d/%m/%Y"
        ]
        for fmt in formats:
            try:
                return datetime.strptime(value, fmt).replace(tzinfo=UTC)
            except ValueError:
                continue

        raise ValueError(f"Could not parse datetime string: {dt_str}")


def coerce_datetime(value: Any) -> Optional[datetime]:
    """Best-effort conversion of an item field to a datetime.

    Epoch numbers are taken as seconds, or milliseconds when they are too
    large to be seconds. Returns None for anything unparseable.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, (str, datetime, date)):
        try:
            return parse_datetime(value)
        except ValueError:
            return None
    return None


def parse_int(value: Any) -> Optional[int]:
    """Parse an integer from a header or query value, None if not numeric."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        try:
            return int(float(str(value).strip()))
        except (ValueError, OverflowError):
            return None
