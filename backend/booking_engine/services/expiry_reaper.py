"""
Expired reservation reaper.

Periodically releases holds that were never paid for, and drops committed
reservation rows once their audit retention has passed.

Candidates:
  (a) availability_reserved=1, expires_at < now, session_id IS NULL,
      created_at < now - cleanup_grace_minutes   → slots released, row deleted
  (b) availability_reserved=0, created_at < now - committed_retention_minutes
                                               → row deleted, slots untouched
      (the permanent booking owns those quantities)

Each candidate is processed on its own; one failure does not stop the sweep.

Runs as an asyncio task in backend lifespan.
Uses synchronous DB (via asyncio.to_thread).
"""

import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ..config import settings
from ..core.errors import ValidationError
from ..database import SessionLocal
from ..models.generated import PendingBookings
from .events import emit_event
from .reservations import release_reservation
from .slots.config import BookingConfig, get_booking_config
from .slots.timemath import format_ts, parse_ts

logger = logging.getLogger(__name__)


class ExpiryReaper:
    def __init__(self, db: Session, config: BookingConfig | None = None):
        self.db = db
        self.config = config or get_booking_config()

    def select_candidates(self, now: datetime) -> list[tuple[PendingBookings, tuple]]:
        """Rows to sweep, each with the conditions its claim must still satisfy."""
        now_str = format_ts(now)
        grace_cutoff = format_ts(now - timedelta(minutes=self.config.cleanup_grace_minutes))
        retention_cutoff = format_ts(now - timedelta(minutes=self.config.committed_retention_minutes))

        expired_conditions = (
            PendingBookings.session_id.is_(None),
            PendingBookings.expires_at < now_str,
        )
        expired = (
            self.db.query(PendingBookings)
            .filter(
                PendingBookings.availability_reserved == 1,
                PendingBookings.created_at < grace_cutoff,
                *expired_conditions,
            )
            .order_by(PendingBookings.id)
            .all()
        )

        processed = (
            self.db.query(PendingBookings)
            .filter(
                PendingBookings.availability_reserved == 0,
                PendingBookings.created_at < retention_cutoff,
            )
            .order_by(PendingBookings.id)
            .all()
        )

        return [(row, expired_conditions) for row in expired] + [(row, ()) for row in processed]

    def sweep(self, now: datetime | None = None) -> dict:
        """Full sweep, as run by the scheduler."""
        now = now or datetime.now()
        candidates = self.select_candidates(now)
        if candidates:
            logger.info(f"Found {len(candidates)} expired reservations to clean up")
        return self._process(candidates)

    def release(
        self,
        booking_number: str | None = None,
        session_id: str | None = None,
        group_id: str | None = None,
    ) -> dict:
        """
        Release specific pending holds immediately (browser closed, payment failed).

        Rows with a session are included: the caller names them explicitly.
        """
        selectors = [v for v in (booking_number, session_id, group_id) if v]
        if len(selectors) != 1:
            raise ValidationError("Exactly one of bookingNumber, sessionId, groupId is required")

        query = self.db.query(PendingBookings).filter(PendingBookings.availability_reserved == 1)
        if booking_number:
            query = query.filter(PendingBookings.booking_number == booking_number)
        elif session_id:
            query = query.filter(PendingBookings.session_id == session_id)
        else:
            query = query.filter(PendingBookings.reservation_group_id == group_id)

        return self._process([(row, ()) for row in query.order_by(PendingBookings.id).all()])

    def status(self, now: datetime | None = None) -> dict:
        """Read-only view of all pending rows."""
        now = now or datetime.now()
        rows = (
            self.db.query(PendingBookings)
            .order_by(PendingBookings.created_at.desc())
            .all()
        )
        bookings = []
        expired_count = 0
        for row in rows:
            is_expired = bool(row.availability_reserved) and parse_ts(row.expires_at) < now
            expired_count += is_expired
            bookings.append({
                "bookingNumber": row.booking_number,
                "sessionId": row.session_id,
                "expiresAt": parse_ts(row.expires_at).isoformat(),
                "availabilityReserved": bool(row.availability_reserved),
                "createdAt": parse_ts(row.created_at).isoformat(),
                "isExpired": is_expired,
                "hasSessionId": bool(row.session_id),
            })

        return {
            "timestamp": now.isoformat(),
            "totalPendingBookings": len(rows),
            "expiredBookings": expired_count,
            "bookings": bookings,
        }

    def _process(self, candidates: list[tuple[PendingBookings, tuple]]) -> dict:
        results = []

        # Read before the first commit expires the loaded rows
        snapshot = [
            (row.booking_number, bool(row.availability_reserved), row, conditions)
            for row, conditions in candidates
        ]

        for booking_number, reserved, row, conditions in snapshot:
            try:
                released = release_reservation(self.db, row, self.config, *conditions)
            except Exception as e:
                self.db.rollback()
                logger.exception(f"Error cleaning up booking {booking_number}")
                results.append({
                    "bookingNumber": booking_number,
                    "success": False,
                    "error": str(e),
                })
                continue

            if not released:
                logger.info(f"Booking {booking_number} changed or was released concurrently, skipping")
                continue

            logger.info(f"Successfully cleaned up booking: {booking_number}")
            results.append({"bookingNumber": booking_number, "success": True})
            if reserved:
                emit_event("reservation_expired", {"booking_number": booking_number})

        succeeded = sum(1 for r in results if r["success"])
        return {
            "cleanedUp": succeeded,
            "failed": len(results) - succeeded,
            "results": results,
        }


async def expiry_reaper_loop() -> None:
    """
    Periodic loop that sweeps expired reservations.
    """
    logger.info("expiry_reaper_loop started")

    try:
        while True:
            try:
                await asyncio.to_thread(_sweep_once)
            except asyncio.CancelledError:
                logger.info("expiry_reaper_loop cancelled")
                raise
            except Exception:
                logger.exception("expiry_reaper_loop error")

            await asyncio.sleep(settings.reaper_interval_seconds)
    except asyncio.CancelledError:
        pass


def _sweep_once() -> None:
    """One sweep with its own session (synchronous)."""
    db = SessionLocal()
    try:
        result = ExpiryReaper(db).sweep()
        if result["results"]:
            logger.info(
                f"Reaper sweep: cleaned_up={result['cleanedUp']} failed={result['failed']}"
            )
    finally:
        db.close()
