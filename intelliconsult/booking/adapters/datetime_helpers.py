import datetime as dt
import re
from zoneinfo import ZoneInfo

from loguru import logger

_LABEL_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])\s*$")


def time_to_slot_label(time: dt.time) -> str:
    """Convert ``time(9, 0)`` → ``09:00 AM``, the label clients book by.

    Unlike a free-form clock display the hour keeps its leading zero so labels
    sort and compare consistently.
    """
    hour = time.hour % 12 or 12
    period = "AM" if time.hour < 12 else "PM"
    return f"{hour:02d}:{time.strftime('%M')} {period}"


def parse_slot_time(value: str) -> dt.time:
    """Parse ``"10:00 AM"``, ``"9:30 pm"`` or a 24-hour ``"14:30"`` into a time.

    Raises:
        ValueError: If the value is in neither format.
    """
    match = _LABEL_PATTERN.match(value)
    if not match:
        return dt.time.fromisoformat(value.strip())

    hour, minute, period = int(match.group(1)), int(match.group(2)), match.group(3).upper()
    if not 1 <= hour <= 12 or minute > 59:
        raise ValueError(f"Invalid slot label: '{value}'")
    hour = hour % 12 + (12 if period == "PM" else 0)
    return dt.time(hour, minute)


def resolve_timezone(name: str) -> dt.tzinfo:
    """Resolve a timezone name, falling back to UTC if invalid."""
    try:
        return ZoneInfo(name)
    except Exception:
        logger.warning("Invalid clinic timezone '{}'; defaulting to UTC", name)
        return dt.timezone.utc
