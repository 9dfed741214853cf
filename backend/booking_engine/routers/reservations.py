# backend/booking_engine/routers/reservations.py
"""
Reservation hold endpoints.

POST /reservations                          - reserve (new group or extend one)
POST /reservations/retime                   - move a hold to new times
GET  /reservations/groups/{group_id}        - rows of a group
POST /reservations/groups/{group_id}/session - bind a checkout session
POST /reservations/cancel                   - release holds not yet in payment
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.reservations import (
    ReservationCancel,
    ReservationCancelled,
    ReservationCreate,
    ReservationCreated,
    ReservationRead,
    ReservationRetime,
    ReservationRetimed,
    SessionAttach,
    SessionAttached,
)
from ..services.reservations import ReservationManager


router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.post("", response_model=ReservationCreated, status_code=status.HTTP_201_CREATED)
def create_reservation(data: ReservationCreate, db: Session = Depends(get_db)):
    booking_data = data.booking_data.model_dump(by_alias=True, exclude_none=True)
    return ReservationManager(db).create(booking_data, group_id=data.group_id)


@router.post("/retime", response_model=ReservationRetimed)
def retime_reservation(data: ReservationRetime, db: Session = Depends(get_db)):
    return ReservationManager(db).retime(
        data.group_id,
        data.booking_number,
        data.new_start_time,
        data.new_end_time,
    )


@router.get("/groups/{group_id}", response_model=list[ReservationRead])
def get_reservation_group(group_id: str, db: Session = Depends(get_db)):
    return ReservationManager(db).get_group(group_id)


@router.post("/groups/{group_id}/session", response_model=SessionAttached)
def attach_session(group_id: str, data: SessionAttach, db: Session = Depends(get_db)):
    updated = ReservationManager(db).attach_session(group_id, data.session_id, data.contact)
    return {"groupId": group_id, "sessionId": data.session_id, "updated": updated}


@router.post("/cancel", response_model=ReservationCancelled)
def cancel_reservation(data: ReservationCancel, db: Session = Depends(get_db)):
    cancelled = ReservationManager(db).cancel(
        booking_number=data.booking_number,
        group_id=data.group_id,
        session_id=data.session_id,
    )
    return {"cancelled": len(cancelled), "bookingNumbers": cancelled}
