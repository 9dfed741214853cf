# backend/booking_engine/services/slots/calculator.py
"""
Level 1: Opening window of an experience for a date.

Produces:
  BaseWindow(open_minute, close_minute, earliest_start_minute)

Contains:
✓ experience_open_dates (specific date beats interval rule)
✓ experience_blocked_dates
✓ booking_foresight_hours (earliest start pushed to now + foresight)

Does NOT contain:
✗ Slot quantities (checked at Level 2)
✗ Reservations (checked at Level 2)
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from sqlalchemy.orm import Session

from ...core.errors import NoOpeningHours
from .config import BookingConfig, get_booking_config
from .timemath import parse_date, round_up_to_step, time_to_minutes


@dataclass(frozen=True)
class BaseWindow:
    open_minute: int
    close_minute: int
    earliest_start_minute: int


def resolve_opening_hours(db: Session, experience_id: int, target_date) -> tuple[int, int]:
    """
    Opening hours for a date as (open_minute, close_minute).

    A specific-date entry takes precedence over an interval covering the date.

    Raises:
        NoOpeningHours: neither exists.
    """
    date_str = parse_date(target_date).isoformat()

    row = _get_specific_open_date(db, experience_id, date_str)
    if row is None:
        row = _get_interval_open_date(db, experience_id, date_str)
    if row is None:
        raise NoOpeningHours(f"No opening hours found for experience {experience_id} on {date_str}")

    return time_to_minutes(row.open_time), time_to_minutes(row.close_time)


def earliest_start_minute(
    open_minute: int,
    target_date: date,
    foresight_hours: int,
    now: datetime,
    config: BookingConfig,
) -> int:
    """
    Earliest offerable start on target_date, in minutes since its midnight.

    now + foresight is rounded up to the slot grid. A deadline on a later
    day gives a value >= 1440 (nothing offerable); an earlier day has no effect.
    """
    deadline = now + timedelta(hours=foresight_hours)
    midnight = datetime.combine(target_date, time.min)
    offset = math.ceil((deadline - midnight).total_seconds() / 60)

    if offset <= open_minute:
        return open_minute

    return round_up_to_step(offset, config.slot_step_minutes)


def calculate_base_window(
    db: Session,
    experience_id: int,
    target_date,
    config: BookingConfig | None = None,
    now: datetime | None = None,
) -> BaseWindow | None:
    """
    Opening window for an experience on a date.

    Returns:
        BaseWindow, or None when the date is blocked.
    """
    config = config or get_booking_config()
    now = now or datetime.now()
    target = parse_date(target_date)

    # Step 1: Blocked dates close the day entirely
    if _get_blocked_dates(db, experience_id, target.isoformat()):
        return None

    # Step 2: Opening hours
    open_minute, close_minute = resolve_opening_hours(db, experience_id, target)

    # Step 3: Booking foresight
    experience = _get_experience(db, experience_id)
    foresight = (experience.booking_foresight_hours or 0) if experience else 0
    earliest = earliest_start_minute(open_minute, target, foresight, now, config)

    return BaseWindow(open_minute, close_minute, earliest)


# ── Helpers ──────────────────────────────────────────────────────────────


def _get_experience(db: Session, experience_id: int):
    from ...models.generated import Experiences
    return db.get(Experiences, experience_id)


def _get_specific_open_date(db: Session, experience_id: int, date_str: str):
    from ...models.generated import ExperienceOpenDates

    return (
        db.query(ExperienceOpenDates)
        .filter(
            ExperienceOpenDates.experience_id == experience_id,
            ExperienceOpenDates.type == "specific",
            ExperienceOpenDates.specific_date == date_str,
        )
        .first()
    )


def _get_interval_open_date(db: Session, experience_id: int, date_str: str):
    from ...models.generated import ExperienceOpenDates

    return (
        db.query(ExperienceOpenDates)
        .filter(
            ExperienceOpenDates.experience_id == experience_id,
            ExperienceOpenDates.type == "interval",
            ExperienceOpenDates.start_date <= date_str,
            ExperienceOpenDates.end_date >= date_str,
        )
        .order_by(ExperienceOpenDates.id)
        .first()
    )


def _get_blocked_dates(db: Session, experience_id: int, date_str: str) -> list:
    from ...models.generated import ExperienceBlockedDates

    return (
        db.query(ExperienceBlockedDates)
        .filter(
            ExperienceBlockedDates.experience_id == experience_id,
            ExperienceBlockedDates.start_date <= date_str,
            ExperienceBlockedDates.end_date >= date_str,
        )
        .all()
    )
