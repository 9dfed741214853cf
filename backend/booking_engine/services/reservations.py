# backend/booking_engine/services/reservations.py
"""
Reservation holds: reserve-then-confirm-or-expire.

Lifecycle of a pending_bookings row:
    Pending (availability_reserved=1)
      ├─ retime / extend-group  → Pending
      ├─ commit(session)        → Committed (availability_reserved=0, Bookings row created)
      └─ cancel / expire        → deleted, slots released

Slots are written when the hold is created, so a pending row always has
its quantities in availability_slots. Writes across several slot rows are
undone through Compensations when a later step fails.
"""

import json
import logging
import secrets
import string
import time
import uuid
from datetime import datetime, timedelta
from functools import partial

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import ObjectDeletedError

from ..core.errors import (
    Expired,
    GroupNotFound,
    ReservationNotFound,
    Unauthorized,
    ValidationError,
)
from ..models.generated import Bookings, PendingBookings
from .compensation import Compensations
from .events import emit_event
from .slots.config import BookingConfig, get_booking_config
from .slots.resources import (
    ResourceSelection,
    get_duration,
    record_selections,
    record_spans,
    resolve_selections,
)
from .slots.store import MODE_ADD, MODE_SUBTRACT, SlotStore
from .slots.timemath import (
    DaySpan,
    booking_day_spans,
    end_date_for,
    format_ts,
    parse_date,
    parse_ts,
    time_to_minutes,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("experienceId", "startLocationId", "durationId", "startDate", "startTime", "endTime")

_GROUP_ALPHABET = string.ascii_lowercase + string.digits


def new_booking_number() -> str:
    return f"BK-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def new_group_id() -> str:
    suffix = "".join(secrets.choice(_GROUP_ALPHABET) for _ in range(9))
    return f"RG-{int(time.time() * 1000)}-{suffix}"


# ──────────────────────────────────────────────────────────────────────────────
# Slot helpers shared with the reaper and rescheduling
# ──────────────────────────────────────────────────────────────────────────────

def apply_selections(
    store: SlotStore,
    selections: list[ResourceSelection],
    spans: list[DaySpan],
    mode: str,
    compensations: Compensations | None = None,
) -> None:
    """
    Write every tracked selection over every span.

    With compensations, each completed write registers its inverse.
    """
    inverse = MODE_SUBTRACT if mode == MODE_ADD else MODE_ADD

    for selection in selections:
        if not selection.resource.tracks_availability:
            continue
        for span in spans:
            store.apply_span(selection.resource, span, selection.quantity, mode)
            if compensations is not None:
                compensations.push(
                    f"{inverse} {selection.quantity} on {selection.resource.table} {span.date} "
                    f"{span.start_minute}-{span.end_minute}",
                    partial(store.apply_span, selection.resource, span, selection.quantity, inverse),
                )


def release_reservation(
    db: Session,
    record: PendingBookings,
    config: BookingConfig | None = None,
    *conditions,
) -> bool:
    """
    Delete a pending row and give its slots back.

    The row is claimed with a conditional DELETE (same id, same reserved
    flag, same times, plus `conditions`) before any slot is touched, so two
    concurrent releases of one row subtract only once and a row retimed
    since it was loaded is left alone. Committed rows
    (availability_reserved=0) are deleted without touching slots: their
    quantities belong to the permanent booking.

    If a subtract fails, the spans already given back are taken again and
    the row is restored, so a later sweep can retry.

    Returns:
        False if the row was already gone or no longer matched.
    """
    try:
        values = {column.name: getattr(record, column.name) for column in PendingBookings.__table__.columns}
        selections = record_selections(db, record) if values["availability_reserved"] else []
        spans = record_spans(db, record) if values["availability_reserved"] else []
    except ObjectDeletedError:
        # Deleted by another release since it was loaded
        db.rollback()
        return False

    claimed = (
        db.query(PendingBookings)
        .filter(
            PendingBookings.id == values["id"],
            PendingBookings.availability_reserved == values["availability_reserved"],
            PendingBookings.start_time == values["start_time"],
            PendingBookings.end_time == values["end_time"],
            *conditions,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    if not claimed:
        return False

    compensations = Compensations(f"release {values['booking_number']}")
    compensations.push(f"restore row {values['booking_number']}", partial(_restore_row, db, values))
    try:
        apply_selections(SlotStore(db, config), selections, spans, MODE_SUBTRACT, compensations)
    except Exception:
        db.rollback()
        compensations.rollback()
        raise

    return True


def _restore_row(db: Session, values: dict) -> None:
    db.execute(insert(PendingBookings).values(**values))
    db.commit()


def reservation_to_dict(record: PendingBookings) -> dict:
    return {
        "bookingNumber": record.booking_number,
        "groupId": record.reservation_group_id,
        "sessionId": record.session_id,
        "experienceId": record.experience_id,
        "startLocationId": record.start_location_id,
        "durationId": record.duration_id,
        "startDate": record.start_date,
        "endDate": record.end_date,
        "startTime": record.start_time,
        "endTime": record.end_time,
        "products": json.loads(record.products or "[]"),
        "addons": json.loads(record.addons or "[]"),
        "availabilityReserved": bool(record.availability_reserved),
        "expiresAt": parse_ts(record.expires_at).isoformat(),
        "createdAt": parse_ts(record.created_at).isoformat() if record.created_at else None,
    }


class ReservationManager:
    """Creates, extends, retimes, commits and cancels reservation groups."""

    def __init__(self, db: Session, config: BookingConfig | None = None):
        self.db = db
        self.config = config or get_booking_config()
        self.store = SlotStore(db, self.config)

    # ── Create / extend ──────────────────────────────────────────────────

    def create(self, booking_data: dict, group_id: str | None = None, now: datetime | None = None) -> dict:
        """
        Reserve slots for one booking and open a new group.

        With group_id, the booking joins that group instead (see extend).

        Returns:
            {"groupId", "bookingNumber", "expiresAt"}
        """
        if group_id:
            return self.extend(group_id, booking_data, now)

        now = now or datetime.now()
        prepared = self._prepare(booking_data)
        group_id = new_group_id()
        expires_at = now + timedelta(minutes=self.config.hold_minutes(0))

        record = self._reserve(prepared, group_id, expires_at, now)

        logger.info(
            f"Reservation {record.booking_number} created in group {group_id}, "
            f"expires {format_ts(expires_at)}"
        )
        emit_event("reservation_created", {
            "booking_number": record.booking_number,
            "group_id": group_id,
        })
        return {
            "groupId": group_id,
            "bookingNumber": record.booking_number,
            "expiresAt": expires_at.isoformat(),
        }

    def extend(self, group_id: str, booking_data: dict, now: datetime | None = None) -> dict:
        """
        Add a sibling booking to an active group and push the group's expiry out.

        Raises:
            GroupNotFound: no active rows in the group.
            Expired: every row in the group has lapsed.
        """
        now = now or datetime.now()
        siblings = self._active_group_rows(group_id)
        if not siblings:
            raise GroupNotFound(f"Existing reservation group {group_id} not found or expired")
        if all(parse_ts(row.expires_at) <= now for row in siblings):
            raise Expired(f"Reservation group {group_id} has expired")

        prepared = self._prepare(booking_data)
        expires_at = now + timedelta(minutes=self.config.hold_minutes(len(siblings)))

        record = self._reserve(prepared, group_id, expires_at, now)

        for row in siblings:
            row.expires_at = format_ts(expires_at)
        self.db.commit()

        logger.info(
            f"Reservation {record.booking_number} added to group {group_id} "
            f"({len(siblings) + 1} bookings), expires {format_ts(expires_at)}"
        )
        emit_event("reservation_extended", {
            "booking_number": record.booking_number,
            "group_id": group_id,
        })
        return {
            "groupId": group_id,
            "bookingNumber": record.booking_number,
            "expiresAt": expires_at.isoformat(),
        }

    # ── Retime ───────────────────────────────────────────────────────────

    def retime(
        self,
        group_id: str,
        booking_number: str,
        new_start_time: str,
        new_end_time: str,
        now: datetime | None = None,
    ) -> dict:
        """
        Move a pending reservation to new times on the same dates.

        Old span is released first, then the new span is taken. If taking the
        new span fails, the old span is restored before the error is raised.
        """
        now = now or datetime.now()
        time_to_minutes(new_start_time)
        time_to_minutes(new_end_time)

        record = self._get_active(group_id, booking_number)
        if parse_ts(record.expires_at) <= now:
            raise Expired(f"Reservation {booking_number} has expired")

        old_time = {"startTime": record.start_time, "endTime": record.end_time}
        new_time = {"startTime": new_start_time, "endTime": new_end_time}

        if old_time == new_time:
            logger.info(f"Reservation {booking_number}: no time change, skipping update")
            return {
                "groupId": group_id,
                "bookingNumber": booking_number,
                "expiresAt": parse_ts(record.expires_at).isoformat(),
                "oldTime": old_time,
                "newTime": new_time,
            }

        selections = record_selections(self.db, record)
        old_spans = record_spans(self.db, record)
        new_spans = record_spans(self.db, record, new_start_time, new_end_time)

        siblings = len(self._active_group_rows(group_id)) - 1
        expires_at = now + timedelta(minutes=self.config.hold_minutes(siblings))

        compensations = Compensations(f"retime {booking_number}")
        try:
            apply_selections(self.store, selections, old_spans, MODE_SUBTRACT, compensations)
            apply_selections(self.store, selections, new_spans, MODE_ADD, compensations)

            record.start_time = new_start_time
            record.end_time = new_end_time
            record.expires_at = format_ts(expires_at)
            self.db.commit()
        except Exception:
            self.db.rollback()
            compensations.rollback()
            raise

        logger.info(
            f"Reservation {booking_number} retimed "
            f"{old_time['startTime']}-{old_time['endTime']} → {new_start_time}-{new_end_time}"
        )
        emit_event("reservation_retimed", {
            "booking_number": booking_number,
            "group_id": group_id,
        })
        return {
            "groupId": group_id,
            "bookingNumber": booking_number,
            "expiresAt": expires_at.isoformat(),
            "oldTime": old_time,
            "newTime": new_time,
        }

    # ── Checkout session ─────────────────────────────────────────────────

    def attach_session(self, group_id: str, session_id: str, contact: dict | None = None) -> int:
        """
        Bind a payment session to every active row of the group.

        Rows with a session are protected from the expiry sweep and from cancel.

        Returns:
            Number of rows updated.
        """
        if not session_id:
            raise ValidationError("sessionId is required")

        rows = self._active_group_rows(group_id)
        if not rows:
            raise GroupNotFound(f"No pending bookings found for reservation group {group_id}")

        for row in rows:
            row.session_id = session_id
            if contact:
                data = json.loads(row.booking_data or "{}")
                data.update({k: v for k, v in contact.items() if v is not None})
                row.booking_data = json.dumps(data)
        self.db.commit()

        logger.info(f"Session {session_id} attached to group {group_id} ({len(rows)} bookings)")
        return len(rows)

    def commit(self, session_id: str, now: datetime | None = None, _retry: bool = True) -> dict:
        """
        Turn the holds of a paid session into permanent bookings.

        Idempotent: rows already committed are reported, not booked again.
        Slots are not touched; the held quantities become the booking's.
        """
        now = now or datetime.now()
        rows = (
            self.db.query(PendingBookings)
            .filter(PendingBookings.session_id == session_id)
            .order_by(PendingBookings.id)
            .all()
        )
        if not rows:
            # Committed rows are swept after retention; the bookings remain
            booked = (
                self.db.query(Bookings.booking_number)
                .filter(Bookings.session_id == session_id)
                .order_by(Bookings.id)
                .all()
            )
            if not booked:
                raise ReservationNotFound(f"No reservations found for session {session_id}")
            logger.info(f"Session {session_id} already committed, nothing to do")
            return {
                "sessionId": session_id,
                "committed": [],
                "alreadyCommitted": [number for (number,) in booked],
            }

        committed: list[str] = []
        already: list[str] = []

        for row in rows:
            if not row.availability_reserved:
                already.append(row.booking_number)
                continue
            self.db.add(_booking_from_reservation(row, now))
            row.availability_reserved = 0
            committed.append(row.booking_number)

        try:
            self.db.commit()
        except IntegrityError:
            # Another delivery of the same webhook committed first
            self.db.rollback()
            if not _retry:
                raise
            logger.info(f"Session {session_id}: concurrent commit detected, re-reading")
            return self.commit(session_id, now, _retry=False)

        for booking_number in committed:
            logger.info(f"Reservation {booking_number} committed for session {session_id}")
            emit_event("booking_committed", {
                "booking_number": booking_number,
                "session_id": session_id,
            })
        if already and not committed:
            logger.info(f"Session {session_id} already committed, nothing to do")

        return {
            "sessionId": session_id,
            "committed": committed,
            "alreadyCommitted": already,
        }

    # ── Cancel ───────────────────────────────────────────────────────────

    def cancel(
        self,
        booking_number: str | None = None,
        group_id: str | None = None,
        session_id: str | None = None,
    ) -> list[str]:
        """
        Release pending holds selected by exactly one key.

        Holds selected by session_id are always in payment, so that selector
        is always refused; the payment-failure webhook releases them instead.

        Raises:
            Unauthorized: a selected row is already in payment (has a session).
        """
        selectors = [v for v in (booking_number, group_id, session_id) if v]
        if len(selectors) != 1:
            raise ValidationError("Exactly one of bookingNumber, groupId, sessionId is required")
        if session_id:
            raise Unauthorized(f"Reservations of session {session_id} are in payment and cannot be cancelled")

        query = self.db.query(PendingBookings).filter(PendingBookings.availability_reserved == 1)
        if booking_number:
            query = query.filter(PendingBookings.booking_number == booking_number)
        else:
            query = query.filter(PendingBookings.reservation_group_id == group_id)
        rows = query.all()

        if not rows:
            raise ReservationNotFound(f"Reservation {selectors[0]} not found")
        if any(row.session_id for row in rows):
            raise Unauthorized("Reservation is in payment and cannot be cancelled")

        cancelled = []
        for number, row in [(row.booking_number, row) for row in rows]:
            if not release_reservation(self.db, row, self.config, PendingBookings.session_id.is_(None)):
                logger.info(f"Reservation {number} changed or was released concurrently, skipping")
                continue
            cancelled.append(number)
            logger.info(f"Reservation {number} cancelled")
            emit_event("reservation_cancelled", {"booking_number": number})

        return cancelled

    # ── Queries ──────────────────────────────────────────────────────────

    def get_group(self, group_id: str) -> list[dict]:
        rows = (
            self.db.query(PendingBookings)
            .filter(PendingBookings.reservation_group_id == group_id)
            .order_by(PendingBookings.id)
            .all()
        )
        if not rows:
            raise GroupNotFound(f"Reservation group {group_id} not found")
        return [reservation_to_dict(row) for row in rows]

    # ── Internals ────────────────────────────────────────────────────────

    def _prepare(self, booking_data: dict) -> dict:
        """Validate booking data and resolve everything needed to reserve it."""
        if not booking_data:
            raise ValidationError("Missing booking data")

        missing = [name for name in REQUIRED_FIELDS if not booking_data.get(name)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        start_date = parse_date(booking_data["startDate"]).isoformat()
        start_minute = time_to_minutes(booking_data["startTime"])
        end_minute = time_to_minutes(booking_data["endTime"])

        duration = get_duration(self.db, int(booking_data["durationId"]))
        products = booking_data.get("products") if isinstance(booking_data.get("products"), list) else []
        addons = booking_data.get("addons") if isinstance(booking_data.get("addons"), list) else []

        return {
            "data": booking_data,
            "start_date": start_date,
            "end_date": end_date_for(start_date, duration.duration_type, duration.duration_value),
            "products": products,
            "addons": addons,
            "selections": resolve_selections(self.db, products, addons),
            "spans": booking_day_spans(
                start_date, start_minute, end_minute,
                duration.duration_type, duration.duration_value,
            ),
        }

    def _reserve(self, prepared: dict, group_id: str, expires_at: datetime, now: datetime) -> PendingBookings:
        """Take the slots, then insert the row; undo the slots if anything fails."""
        data = prepared["data"]
        booking_number = new_booking_number()
        compensations = Compensations(f"reserve {booking_number}")

        try:
            apply_selections(self.store, prepared["selections"], prepared["spans"], MODE_ADD, compensations)

            record = PendingBookings(
                booking_number=booking_number,
                reservation_group_id=group_id,
                session_id=None,
                experience_id=int(data["experienceId"]),
                start_location_id=int(data["startLocationId"]),
                duration_id=int(data["durationId"]),
                start_date=prepared["start_date"],
                end_date=prepared["end_date"],
                start_time=data["startTime"],
                end_time=data["endTime"],
                products=json.dumps(prepared["products"]),
                addons=json.dumps(prepared["addons"]),
                booking_data=json.dumps(data),
                availability_reserved=1,
                expires_at=format_ts(expires_at),
                created_at=format_ts(now),
            )
            self.db.add(record)
            self.db.commit()
        except Exception:
            self.db.rollback()
            compensations.rollback()
            raise

        return record

    def _active_group_rows(self, group_id: str) -> list[PendingBookings]:
        return (
            self.db.query(PendingBookings)
            .filter(
                PendingBookings.reservation_group_id == group_id,
                PendingBookings.availability_reserved == 1,
            )
            .order_by(PendingBookings.id)
            .all()
        )

    def _get_active(self, group_id: str, booking_number: str) -> PendingBookings:
        record = (
            self.db.query(PendingBookings)
            .filter(
                PendingBookings.reservation_group_id == group_id,
                PendingBookings.booking_number == booking_number,
                PendingBookings.availability_reserved == 1,
            )
            .first()
        )
        if not record:
            raise ReservationNotFound(f"Booking {booking_number} not found or expired")
        return record


def _booking_from_reservation(row: PendingBookings, now: datetime) -> Bookings:
    data = json.loads(row.booking_data or "{}")
    return Bookings(
        booking_number=row.booking_number,
        reservation_group_id=row.reservation_group_id,
        session_id=row.session_id,
        experience_id=row.experience_id,
        start_location_id=row.start_location_id,
        duration_id=row.duration_id,
        start_date=row.start_date,
        end_date=row.end_date,
        start_time=row.start_time,
        end_time=row.end_time,
        products=row.products,
        addons=row.addons,
        booking_data=row.booking_data,
        has_booking_guarantee=1 if data.get("hasBookingGuarantee") else 0,
        status="confirmed",
        created_at=format_ts(now),
        updated_at=format_ts(now),
    )
