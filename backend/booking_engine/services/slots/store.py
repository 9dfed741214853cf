# backend/booking_engine/services/slots/store.py
"""
Slot row storage.

One row per (resource_type, resource_id, date) in `availability_slots`.
Value: JSON object {"<minute>": committed quantity} for minutes 0..1425.
Absent minute = 0.

Writes are optimistic compare-and-swap on the row's `version` column:
    UPDATE ... SET slots=?, version=version+1 WHERE id=? AND version=?
A concurrent writer makes rowcount == 0 and the read-validate-write
cycle is retried against the fresh row.
"""

import json
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...core.errors import CapacityExceeded, UpstreamFailure, ValidationError
from ...models.generated import AvailabilitySlots
from .config import BookingConfig, get_booking_config
from .resources import ResourceRef
from .timemath import DaySpan, parse_date

logger = logging.getLogger(__name__)

MODE_ADD = "add"
MODE_SUBTRACT = "subtract"


class SlotStore:
    """Per-resource, per-date slot quantities."""

    def __init__(self, db: Session, config: BookingConfig | None = None):
        self.db = db
        self.config = config or get_booking_config()

    def _key(self, resource: ResourceRef, dt) -> tuple:
        return (
            AvailabilitySlots.resource_type == resource.resource_type,
            AvailabilitySlots.resource_id == resource.resource_id,
            AvailabilitySlots.date == parse_date(dt).isoformat(),
        )

    # ── Row lifecycle ────────────────────────────────────────────────────

    def ensure_row_exists(self, resource: ResourceRef, dt) -> None:
        """Insert an empty row for the date; a concurrent insert of the same key is ignored."""
        values = {
            "resource_type": resource.resource_type,
            "resource_id": resource.resource_id,
            "date": parse_date(dt).isoformat(),
            "slots": "{}",
            "version": 0,
        }
        dialect = self.db.get_bind().dialect.name

        if dialect in ("sqlite", "postgresql"):
            if dialect == "sqlite":
                from sqlalchemy.dialects.sqlite import insert
            else:
                from sqlalchemy.dialects.postgresql import insert
            stmt = insert(AvailabilitySlots).values(**values).on_conflict_do_nothing(
                index_elements=["resource_type", "resource_id", "date"]
            )
            self.db.execute(stmt)
            self.db.commit()
            return

        try:
            self.db.execute(AvailabilitySlots.__table__.insert().values(**values))
            self.db.commit()
        except IntegrityError:
            self.db.rollback()

    # ── Read ─────────────────────────────────────────────────────────────

    def read_row(self, resource: ResourceRef, dt) -> dict[int, int]:
        """
        Get committed quantities for a date.

        Returns:
            Dict minute → quantity. Missing row or missing minute means 0.
        """
        raw = self.db.execute(
            select(AvailabilitySlots.slots).where(*self._key(resource, dt))
        ).scalar_one_or_none()
        return self._decode(raw, resource, parse_date(dt).isoformat())

    def read_rows(self, resource: ResourceRef, dates: list[str]) -> dict[str, dict[int, int]]:
        """Batch read of several dates; dates without a row map to {}."""
        if not dates:
            return {}

        iso_dates = [parse_date(d).isoformat() for d in dates]
        rows = self.db.execute(
            select(AvailabilitySlots.date, AvailabilitySlots.slots).where(
                AvailabilitySlots.resource_type == resource.resource_type,
                AvailabilitySlots.resource_id == resource.resource_id,
                AvailabilitySlots.date.in_(iso_dates),
            )
        ).all()

        result = {d: {} for d in iso_dates}
        for row_date, raw in rows:
            result[row_date] = self._decode(raw, resource, row_date)
        return result

    def read_grid(self, resource: ResourceRef, dt) -> list[int]:
        """All slots of the day in order (debug view)."""
        row = self.read_row(resource, dt)
        return [row.get(minute, 0) for minute in self.config.slot_minutes()]

    # ── Write ────────────────────────────────────────────────────────────

    def apply_delta(
        self,
        resource: ResourceRef,
        dt,
        start_minute: int,
        end_minute: int,
        delta: int,
        capacity: int,
        mode: str = MODE_ADD,
    ) -> None:
        """
        Add or subtract `delta` units on every slot in [start_minute, end_minute).

        add: fails as a whole with CapacityExceeded if any slot would pass capacity.
        subtract: floors at zero, never fails on capacity.
        """
        if mode not in (MODE_ADD, MODE_SUBTRACT):
            raise ValidationError(f"Unknown mode {mode!r}")
        if delta < 0:
            raise ValidationError("delta must be >= 0")
        self._validate_range(start_minute, end_minute)
        if start_minute == end_minute or delta == 0:
            return

        date_str = parse_date(dt).isoformat()
        step = self.config.slot_step_minutes
        self.ensure_row_exists(resource, date_str)

        for attempt in range(1, self.config.cas_max_retries + 1):
            row = self.db.execute(
                select(
                    AvailabilitySlots.id,
                    AvailabilitySlots.slots,
                    AvailabilitySlots.version,
                ).where(*self._key(resource, date_str))
            ).one()
            current = self._decode(row.slots, resource, date_str)

            for minute in range(start_minute, end_minute, step):
                value = current.get(minute, 0)
                if mode == MODE_ADD:
                    new_value = value + delta
                    if new_value > capacity:
                        self.db.rollback()
                        raise CapacityExceeded(resource.table, date_str)
                else:
                    new_value = max(0, value - delta)
                current[minute] = new_value

            result = self.db.execute(
                update(AvailabilitySlots)
                .where(
                    AvailabilitySlots.id == row.id,
                    AvailabilitySlots.version == row.version,
                )
                .values(slots=self._encode(current), version=row.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self.db.commit()
                return

            self.db.rollback()
            logger.warning(
                f"Slot row contention on {resource.table} {date_str} "
                f"(attempt {attempt}/{self.config.cas_max_retries})"
            )

        raise UpstreamFailure(
            f"Could not update {resource.table} on {date_str}: concurrent updates"
        )

    def apply_span(self, resource: ResourceRef, span: DaySpan, quantity: int, mode: str) -> None:
        """apply_delta over one DaySpan using the resource's capacity."""
        self.apply_delta(
            resource,
            span.date,
            span.start_minute,
            span.end_minute,
            quantity,
            resource.capacity,
            mode,
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    def _validate_range(self, start_minute: int, end_minute: int) -> None:
        step = self.config.slot_step_minutes
        if start_minute % step or end_minute % step:
            raise ValidationError(f"Slot range {start_minute}-{end_minute} is not on the {step} minute grid")
        if not 0 <= start_minute <= end_minute <= self.config.day_minutes:
            raise ValidationError(f"Slot range {start_minute}-{end_minute} is outside the day")

    @staticmethod
    def _encode(slots: dict[int, int]) -> str:
        return json.dumps({str(minute): qty for minute, qty in sorted(slots.items())})

    @staticmethod
    def _decode(raw: str | None, resource: ResourceRef, date_str: str) -> dict[int, int]:
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Corrupt slot row for {resource.table} {date_str}, treating as empty")
            return {}

        slots: dict[int, int] = {}
        for key, value in data.items():
            if value is None:
                continue
            qty = int(value)
            if qty < 0:
                # Negative values are never written; a legacy row is read as free
                logger.warning(
                    f"Negative slot value {qty} at {key} for {resource.table} {date_str}, reading as 0"
                )
                qty = 0
            slots[int(key)] = qty
        return slots
