# backend/booking_engine/schemas/reservations.py
"""
Pydantic schemas for reservation holds, payment webhooks and cleanup.

Wire format is camelCase; snake_case field names are accepted too.
"""

from typing import Literal, Optional
from pydantic import BaseModel
from pydantic.alias_generators import to_camel

CAMEL = {"alias_generator": to_camel, "populate_by_name": True}


class BookingData(BaseModel):
    """
    Booking details from the checkout form.

    Required fields are checked by the reservation service so that a
    missing field is reported as a 400 naming every absent field.
    Unknown keys (contact details, flags) are kept as-is.
    """
    experience_id: Optional[int] = None
    start_location_id: Optional[int] = None
    duration_id: Optional[int] = None
    start_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    products: list[dict] = []
    addons: list[dict] = []

    model_config = {**CAMEL, "extra": "allow"}


class ReservationCreate(BaseModel):
    group_id: Optional[str] = None
    booking_data: BookingData

    model_config = CAMEL


class ReservationCreated(BaseModel):
    group_id: str
    booking_number: str
    expires_at: str

    model_config = CAMEL


class TimeRange(BaseModel):
    start_time: str
    end_time: str

    model_config = CAMEL


class ReservationRetime(BaseModel):
    group_id: str
    booking_number: str
    new_start_time: str
    new_end_time: str
    booking_data: Optional[dict] = None

    model_config = CAMEL


class ReservationRetimed(BaseModel):
    group_id: str
    booking_number: str
    expires_at: str
    old_time: TimeRange
    new_time: TimeRange

    model_config = CAMEL


class ReservationRead(BaseModel):
    booking_number: str
    group_id: Optional[str] = None
    session_id: Optional[str] = None
    experience_id: int
    start_location_id: int
    duration_id: int
    start_date: str
    end_date: str
    start_time: str
    end_time: str
    products: list[dict] = []
    addons: list[dict] = []
    availability_reserved: bool
    expires_at: str
    created_at: Optional[str] = None

    model_config = CAMEL


class SessionAttach(BaseModel):
    session_id: str
    contact: Optional[dict] = None

    model_config = CAMEL


class SessionAttached(BaseModel):
    group_id: str
    session_id: str
    updated: int

    model_config = CAMEL


class ReservationCancel(BaseModel):
    booking_number: Optional[str] = None
    group_id: Optional[str] = None
    session_id: Optional[str] = None

    model_config = CAMEL


class ReservationCancelled(BaseModel):
    cancelled: int
    booking_numbers: list[str]

    model_config = CAMEL


class PaymentWebhook(BaseModel):
    session_id: str
    status: Literal["succeeded", "failed"]

    model_config = CAMEL


class CleanupRequest(BaseModel):
    booking_number: Optional[str] = None
    session_id: Optional[str] = None
    group_id: Optional[str] = None

    model_config = CAMEL


class CleanupItem(BaseModel):
    booking_number: str
    success: bool
    error: Optional[str] = None

    model_config = CAMEL


class CleanupResult(BaseModel):
    cleaned_up: int
    failed: int
    results: list[CleanupItem]

    model_config = CAMEL
