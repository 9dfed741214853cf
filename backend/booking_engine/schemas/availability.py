# backend/booking_engine/schemas/availability.py
"""
Pydantic schemas for the availability check.
"""

from datetime import date
from typing import Optional
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class ProductSelection(BaseModel):
    product_id: int
    quantity: int

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class AddonSelection(BaseModel):
    addon_id: int
    quantity: int

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class AvailabilityCheckRequest(BaseModel):
    """Offerable start times for one experience, duration and resource selection."""
    date: date
    duration_type: str  # "hours" | "overnights"
    duration_value: int
    experience_id: int
    products: list[ProductSelection] = []
    addons: list[AddonSelection] = []
    exclude_reservation_id: Optional[str] = None

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class TimeWindow(BaseModel):
    start_time: str  # "HH:MM"
    end_time: str

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class AvailabilityCheckResponse(BaseModel):
    available_times: list[TimeWindow]

    model_config = {"alias_generator": to_camel, "populate_by_name": True}
