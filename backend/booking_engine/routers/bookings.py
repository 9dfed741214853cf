# backend/booking_engine/routers/bookings.py
# Bookings are created only by committing a paid reservation: POST/PATCH/DELETE = 405

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.bookings import BookingReschedule, BookingRead, ReschedulableBooking
from ..services.rescheduling import BookingRescheduler

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get("/{id}", response_model=ReschedulableBooking)
def get_booking(id: int, db: Session = Depends(get_db)):
    return BookingRescheduler(db).get_reschedulable(id)


@router.post("/{id}/reschedule", response_model=BookingRead)
def reschedule_booking(id: int, data: BookingReschedule, db: Session = Depends(get_db)):
    return BookingRescheduler(db).reschedule(
        id,
        data.new_date.isoformat(),
        data.new_start_time,
        data.new_end_time,
    )


@router.patch("/{id}")
def patch_not_allowed():
    raise HTTPException(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        detail="Method not allowed",
    )


@router.delete("/{id}")
def delete_not_allowed():
    raise HTTPException(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        detail="Method not allowed",
    )
