# backend/booking_engine/services/slots/timemath.py
"""
Time helpers shared by the store, the calculator and the reservation flow.

Times are "HH:MM" strings, slots are minutes since midnight, dates are
ISO "YYYY-MM-DD" strings on the wire and in storage.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from ...core.errors import ValidationError

TIME_RE = re.compile(r"^(\d{2}):(\d{2})$")
TS_FORMAT = "%Y-%m-%d %H:%M:%S"

DURATION_HOURS = "hours"
DURATION_OVERNIGHTS = "overnights"


@dataclass(frozen=True)
class DaySpan:
    """Slot range [start_minute, end_minute) on one calendar date."""
    date: str
    start_minute: int
    end_minute: int


def time_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight. "24:00" is accepted as end of day."""
    match = TIME_RE.match(value or "")
    if not match:
        raise ValidationError(f"Time must be in HH:MM format, got {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if minutes > 59 or hours > 24 or (hours == 24 and minutes != 0):
        raise ValidationError(f"Time out of range: {value!r}")
    return hours * 60 + minutes


def minutes_to_time(minutes: int) -> str:
    """Convert minutes since midnight to zero-padded "HH:MM". No wrapping."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"Date must be in YYYY-MM-DD format, got {value!r}")


def date_range(start, end) -> list[str]:
    """
    Dates in [start, end], inclusive, as ISO strings. Empty when end < start.

    Args:
        start: Start date (date or ISO string)
        end: End date (date or ISO string)
    """
    date_start = parse_date(start)
    date_end = parse_date(end)

    dates = []
    current = date_start
    while current <= date_end:
        dates.append(current.isoformat())
        current += timedelta(days=1)

    return dates


def overnight_end_date(start, nights: int) -> str:
    """End date of an overnight booking: start + nights days."""
    return (parse_date(start) + timedelta(days=nights)).isoformat()


def end_date_for(start, duration_type: str, duration_value: int) -> str:
    if duration_type == DURATION_OVERNIGHTS:
        return overnight_end_date(start, duration_value)
    return parse_date(start).isoformat()


def round_up_to_step(minutes: int, step: int) -> int:
    return -(-minutes // step) * step


def booking_day_spans(
    start_date,
    start_minute: int,
    end_minute: int,
    duration_type: str,
    duration_value: int,
) -> list[DaySpan]:
    """
    Split a booking into per-day slot ranges.

    Hourly: one span start→end on the start date.
    Overnight: first day start→24:00, middle days 00:00→24:00,
    last day 00:00→end.
    """
    day_end = 24 * 60
    first = parse_date(start_date).isoformat()

    if duration_type != DURATION_OVERNIGHTS or duration_value <= 0:
        if end_minute <= start_minute:
            raise ValidationError(
                f"End time {minutes_to_time(end_minute)} must be after start time {minutes_to_time(start_minute)}"
            )
        return [DaySpan(first, start_minute, end_minute)]

    dates = date_range(first, overnight_end_date(first, duration_value))
    spans = [DaySpan(dates[0], start_minute, day_end)]
    for middle in dates[1:-1]:
        spans.append(DaySpan(middle, 0, day_end))
    if end_minute > 0:
        spans.append(DaySpan(dates[-1], 0, end_minute))
    return spans


def format_ts(dt: datetime) -> str:
    return dt.strftime(TS_FORMAT)


def parse_ts(value) -> datetime:
    if isinstance(value, datetime):
        return value
    text_value = str(value).replace("T", " ").replace("Z", "")
    return datetime.strptime(text_value[:19], TS_FORMAT)
