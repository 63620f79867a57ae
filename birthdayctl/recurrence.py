"""Annual trigger instants for anniversary jobs.

Everything here is a pure function of its arguments; callers pass "now" in.
"""
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ValidationError

SEND_HOUR = 9


def is_leap_year(year: int) -> bool:
    return (year % 4 == 0 and year % 100 != 0) or year % 400 == 0


def resolve_timezone(name: str) -> ZoneInfo:
    if not name or not name.strip():
        raise ValidationError("Timezone is required")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # names like "America" resolve to a tzdata directory and raise IsADirectoryError
        raise ValidationError(f"Invalid timezone: {name}")


def occurrence_in_year(month: int, day: int, tz: ZoneInfo, year: int, hour: int = SEND_HOUR) -> datetime:
    """Local `hour`:00 on month/day of `year`, with Feb 29 falling back to Feb 28 in common years."""
    if month == 2 and day == 29 and not is_leap_year(year):
        day = 28
    return datetime(year, month, day, hour, tzinfo=tz)


def next_occurrence(month: int, day: int, tz_name: str, from_instant: datetime, hour: int = SEND_HOUR) -> datetime:
    """
    First instant strictly after `from_instant` that is `hour`:00 local time in
    `tz_name` on the anchor month/day. Returned in UTC.
    """
    # Validates the anchor; 2000 is a leap year so Feb 29 is accepted.
    try:
        datetime(2000, month, day)
    except ValueError:
        raise ValidationError(f"Invalid anniversary: month={month} day={day}")
    tz = resolve_timezone(tz_name)
    if from_instant.tzinfo is None:
        from_instant = from_instant.replace(tzinfo=timezone.utc)

    year = from_instant.astimezone(tz).year
    candidate = occurrence_in_year(month, day, tz, year, hour)
    while candidate <= from_instant:
        year += 1
        candidate = occurrence_in_year(month, day, tz, year, hour)
    return candidate.astimezone(timezone.utc)
