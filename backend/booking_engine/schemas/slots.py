# backend/booking_engine/schemas/slots.py
"""
Pydantic schemas for the slot grid debug view.
"""

from datetime import date
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class SlotInfo(BaseModel):
    """Booked quantity of a single slot."""
    time: str  # "HH:MM"
    booked: int

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class SlotsGridResponse(BaseModel):
    """Raw slot row (for debugging/admin)."""
    resource_type: str
    resource_id: int
    date: date
    capacity: int
    slot_step_minutes: int = Field(description="Grid step in minutes (always 15)")
    slots: list[SlotInfo] = Field(description="96 entries, 00:00 to 23:45")

    model_config = {"alias_generator": to_camel, "populate_by_name": True}
