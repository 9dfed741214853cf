# backend/booking_engine/schemas/bookings.py

from datetime import date
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class BookingRead(BaseModel):
    id: int
    booking_number: str
    status: str

    experience_id: int
    start_location_id: int
    duration_id: int

    start_date: str
    end_date: str
    start_time: str
    end_time: str

    products: list[dict] = []
    addons: list[dict] = []
    has_booking_guarantee: bool

    created_at: str
    updated_at: str

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class ReschedulableBooking(BookingRead):
    duration_type: str
    duration_value: int
    booking_foresight_hours: int = 0


class BookingReschedule(BaseModel):
    new_date: date
    new_start_time: str
    new_end_time: str

    model_config = {"alias_generator": to_camel, "populate_by_name": True}
