# backend/booking_engine/routers/cleanup.py
"""
Expired reservation cleanup.

POST /cleanup-expired               - targeted release ({bookingNumber} / {sessionId} / {groupId})
                                      or a full sweep with an empty body
GET  /cleanup-expired               - full sweep (external scheduler)
GET  /cleanup-expired?action=status - read-only status of pending rows
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..schemas.reservations import CleanupRequest, CleanupResult
from ..services.expiry_reaper import ExpiryReaper


router = APIRouter(prefix="/cleanup-expired", tags=["cleanup"])


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    if not settings.cron_secret:
        return
    if authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("", response_model=CleanupResult)
def cleanup_expired(data: Optional[CleanupRequest] = None, db: Session = Depends(get_db)):
    reaper = ExpiryReaper(db)
    if data and (data.booking_number or data.session_id or data.group_id):
        return reaper.release(
            booking_number=data.booking_number,
            session_id=data.session_id,
            group_id=data.group_id,
        )
    return reaper.sweep()


@router.get("", dependencies=[Depends(verify_cron_secret)])
def scheduled_cleanup(action: Optional[str] = None, db: Session = Depends(get_db)):
    reaper = ExpiryReaper(db)
    if action == "status":
        return reaper.status()
    return reaper.sweep()
