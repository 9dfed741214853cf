# backend/booking_engine/services/slots/availability.py
"""
Level 2: Offerable start times for a resource selection.

Scans candidate start minutes on the 15 minute grid and keeps a start
only if every affected slot of every tracked resource still has room:

    booked(slot) + requested <= capacity

Takes into account:
- Opening window and foresight (Level 1)
- Committed slot quantities, which already include every pending hold
- The caller's own hold (excludeReservationId) is replayed and taken out
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from sqlalchemy.orm import Session

from ...core.errors import NoOpeningHours, ValidationError
from .calculator import calculate_base_window, resolve_opening_hours
from .config import BookingConfig, get_booking_config
from .resources import ResourceRef, ResourceSelection, record_selections, record_spans, resolve_selections
from .store import SlotStore
from .timemath import (
    DURATION_HOURS,
    DURATION_OVERNIGHTS,
    DaySpan,
    booking_day_spans,
    date_range,
    minutes_to_time,
    overnight_end_date,
    parse_date,
    round_up_to_step,
)

logger = logging.getLogger(__name__)


@dataclass
class AvailabilityRequest:
    date: str
    duration_type: str
    duration_value: int
    experience_id: int
    products: list[dict] = field(default_factory=list)
    addons: list[dict] = field(default_factory=list)
    exclude_reservation_id: str | None = None


def calculate_availability(
    db: Session,
    request: AvailabilityRequest,
    config: BookingConfig | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """
    Calculate offerable {startTime, endTime} windows for a date.

    Returns:
        Chronological list, empty when nothing fits.

    Raises:
        NoOpeningHours: no opening hours for the date.
        ResourceNotFound: unknown product/addon.
        ValidationError: bad duration.
    """
    config = config or get_booking_config()
    now = now or datetime.now()
    step = config.slot_step_minutes
    target = parse_date(request.date).isoformat()

    _validate_duration(request.duration_type, request.duration_value)
    overnight = request.duration_type == DURATION_OVERNIGHTS

    # Step 1-2: Opening window with foresight
    window = calculate_base_window(db, request.experience_id, target, config, now)
    if window is None:
        return []

    selections = resolve_selections(db, request.products, request.addons)
    tracked = [s for s in selections if s.resource.tracks_availability]

    # Step 3: Dates the booking could touch
    if overnight:
        dates = date_range(target, overnight_end_date(target, request.duration_value))
        end_minute = _last_day_close(db, request.experience_id, dates[-1], window.close_minute)
        last_start = window.close_minute - step
    else:
        dates = [target]
        duration_minutes = request.duration_value * 60
        last_start = window.close_minute - duration_minutes

    # Step 4: Booked view per resource
    store = SlotStore(db, config)
    booked: dict[ResourceRef, dict[str, dict[int, int]]] = {
        s.resource: store.read_rows(s.resource, dates) for s in tracked
    }
    if request.exclude_reservation_id:
        _exclude_reservation(db, request.exclude_reservation_id, booked, config)

    # Step 5-6: Candidate starts
    first_start = round_up_to_step(window.earliest_start_minute, step)
    available_times = []

    for start in range(first_start, last_start + 1, step):
        if overnight:
            spans = booking_day_spans(target, start, end_minute, DURATION_OVERNIGHTS, request.duration_value)
            end = end_minute
        else:
            end = start + duration_minutes
            spans = [DaySpan(target, start, end)]

        if all(_fits(booked[s.resource], s, spans, step) for s in tracked):
            available_times.append({
                "startTime": minutes_to_time(start),
                "endTime": minutes_to_time(end),
            })

    return available_times


# ── Slot checks ──────────────────────────────────────────────────────────


def _fits(
    rows: dict[str, dict[int, int]],
    selection: ResourceSelection,
    spans: list[DaySpan],
    step: int,
) -> bool:
    capacity = selection.resource.capacity
    for span in spans:
        row = rows.get(span.date, {})
        for minute in range(span.start_minute, span.end_minute, step):
            if row.get(minute, 0) + selection.quantity > capacity:
                return False
    return True


def _exclude_reservation(
    db: Session,
    booking_number: str,
    booked: dict[ResourceRef, dict[str, dict[int, int]]],
    config: BookingConfig,
) -> None:
    """Take the caller's own pending hold out of the booked view."""
    reservation = _get_active_reservation(db, booking_number)
    if reservation is None:
        logger.info(f"excludeReservationId {booking_number} has no active hold, nothing to exclude")
        return

    spans = record_spans(db, reservation)
    by_key = {(r.resource_type, r.resource_id): r for r in booked}

    for selection in record_selections(db, reservation):
        resource = by_key.get((selection.resource.resource_type, selection.resource.resource_id))
        if resource is None:
            continue
        rows = booked[resource]
        for span in spans:
            if span.date not in rows:
                continue
            row = rows[span.date]
            for minute in range(span.start_minute, span.end_minute, config.slot_step_minutes):
                row[minute] = max(0, row.get(minute, 0) - selection.quantity)


def _validate_duration(duration_type: str, duration_value: int) -> None:
    if duration_type not in (DURATION_HOURS, DURATION_OVERNIGHTS):
        raise ValidationError(f"durationType must be 'hours' or 'overnights', got {duration_type!r}")
    if duration_value is None or duration_value < 1:
        raise ValidationError("durationValue must be a positive integer")


def _last_day_close(db: Session, experience_id: int, last_date: str, fallback: int) -> int:
    """Closing minute of the last day of an overnight stay."""
    try:
        _, close_minute = resolve_opening_hours(db, experience_id, last_date)
    except NoOpeningHours:
        return fallback
    return close_minute


# ── Database helpers ─────────────────────────────────────────────────────


def _get_active_reservation(db: Session, booking_number: str):
    from ...models.generated import PendingBookings

    return (
        db.query(PendingBookings)
        .filter(
            PendingBookings.booking_number == booking_number,
            PendingBookings.availability_reserved == 1,
        )
        .first()
    )
