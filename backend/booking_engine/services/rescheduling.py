# backend/booking_engine/services/rescheduling.py
"""
Moving a confirmed booking to another date/time.

Only bookings with a booking guarantee can be moved, and only while the
current start is at least `reschedule_min_notice_hours` away. The old span
is released before the new one is taken; if the new span does not fit,
the old span is restored and the booking is left unchanged.
"""

import json
import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ..core.errors import BookingNotFound, Unauthorized
from ..models.generated import Bookings
from .compensation import Compensations
from .events import emit_event
from .reservations import apply_selections
from .slots.config import BookingConfig, get_booking_config
from .slots.resources import get_duration, get_experience, record_selections, record_spans
from .slots.store import MODE_ADD, MODE_SUBTRACT, SlotStore
from .slots.timemath import end_date_for, format_ts, parse_date, parse_ts, time_to_minutes

logger = logging.getLogger(__name__)


def booking_to_dict(booking: Bookings) -> dict:
    return {
        "id": booking.id,
        "bookingNumber": booking.booking_number,
        "status": booking.status,
        "experienceId": booking.experience_id,
        "startLocationId": booking.start_location_id,
        "durationId": booking.duration_id,
        "startDate": booking.start_date,
        "endDate": booking.end_date,
        "startTime": booking.start_time,
        "endTime": booking.end_time,
        "products": json.loads(booking.products or "[]"),
        "addons": json.loads(booking.addons or "[]"),
        "hasBookingGuarantee": bool(booking.has_booking_guarantee),
        "createdAt": parse_ts(booking.created_at).isoformat(),
        "updatedAt": parse_ts(booking.updated_at).isoformat(),
    }


class BookingRescheduler:
    def __init__(self, db: Session, config: BookingConfig | None = None):
        self.db = db
        self.config = config or get_booking_config()
        self.store = SlotStore(db, self.config)

    def get_reschedulable(self, booking_id: int) -> dict:
        """Booking details plus what the date picker needs to offer new times."""
        booking = self._get_booking(booking_id)
        duration = get_duration(self.db, booking.duration_id)
        experience = get_experience(self.db, booking.experience_id)

        return {
            **booking_to_dict(booking),
            "durationType": duration.duration_type,
            "durationValue": duration.duration_value,
            "bookingForesightHours": experience.booking_foresight_hours or 0,
        }

    def reschedule(
        self,
        booking_id: int,
        new_date: str,
        new_start_time: str,
        new_end_time: str,
        now: datetime | None = None,
    ) -> dict:
        """
        Move a booking to new_date new_start_time-new_end_time.

        Raises:
            BookingNotFound: no such booking.
            Unauthorized: no booking guarantee, or too close to the current start.
            CapacityExceeded: the new span does not fit (old span restored).
        """
        now = now or datetime.now()
        new_date = parse_date(new_date).isoformat()
        time_to_minutes(new_start_time)
        time_to_minutes(new_end_time)

        booking = self._get_booking(booking_id)
        if not booking.has_booking_guarantee:
            raise Unauthorized(f"Booking {booking.booking_number} has no booking guarantee")

        current_start = datetime.combine(
            parse_date(booking.start_date),
            datetime.min.time(),
        ) + timedelta(minutes=time_to_minutes(booking.start_time))
        notice = timedelta(hours=self.config.reschedule_min_notice_hours)
        if current_start - now < notice:
            raise Unauthorized(
                f"Booking {booking.booking_number} starts in less than "
                f"{self.config.reschedule_min_notice_hours} hours and can no longer be moved"
            )

        duration = get_duration(self.db, booking.duration_id)
        selections = record_selections(self.db, booking)
        old_spans = record_spans(self.db, booking)
        new_spans = record_spans(self.db, booking, new_start_time, new_end_time, new_date)

        old = {
            "date": booking.start_date,
            "startTime": booking.start_time,
            "endTime": booking.end_time,
        }

        compensations = Compensations(f"reschedule {booking.booking_number}")
        try:
            apply_selections(self.store, selections, old_spans, MODE_SUBTRACT, compensations)
            apply_selections(self.store, selections, new_spans, MODE_ADD, compensations)

            booking.start_date = new_date
            booking.end_date = end_date_for(new_date, duration.duration_type, duration.duration_value)
            booking.start_time = new_start_time
            booking.end_time = new_end_time
            booking.updated_at = format_ts(now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            compensations.rollback()
            raise

        logger.info(
            f"Booking {booking.booking_number} rescheduled "
            f"{old['date']} {old['startTime']}-{old['endTime']} → "
            f"{new_date} {new_start_time}-{new_end_time}"
        )
        emit_event("booking_rescheduled", {
            "booking_number": booking.booking_number,
            "booking_id": booking.id,
        })
        return booking_to_dict(booking)

    def _get_booking(self, booking_id: int) -> Bookings:
        booking = self.db.get(Bookings, booking_id)
        if not booking:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return booking
