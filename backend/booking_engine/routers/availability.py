# backend/booking_engine/routers/availability.py
"""
Availability API endpoint.

POST /availability/check - offerable start times for a date and selection
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.availability import AvailabilityCheckRequest, AvailabilityCheckResponse
from ..services.slots import AvailabilityRequest, calculate_availability, get_booking_config


router = APIRouter(prefix="/availability", tags=["availability"])


@router.post("/check", response_model=AvailabilityCheckResponse)
def check_availability(data: AvailabilityCheckRequest, db: Session = Depends(get_db)):
    request = AvailabilityRequest(
        date=data.date.isoformat(),
        duration_type=data.duration_type,
        duration_value=data.duration_value,
        experience_id=data.experience_id,
        products=[p.model_dump(by_alias=True) for p in data.products],
        addons=[a.model_dump(by_alias=True) for a in data.addons],
        exclude_reservation_id=data.exclude_reservation_id,
    )
    available_times = calculate_availability(db, request, get_booking_config())
    return {"availableTimes": available_times}
