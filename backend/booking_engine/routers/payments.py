# backend/booking_engine/routers/payments.py
"""
Payment provider webhook.

succeeded → holds of the session become bookings (idempotent)
failed    → holds of the session are released
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.reservations import PaymentWebhook
from ..services.expiry_reaper import ExpiryReaper
from ..services.reservations import ReservationManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook")
def payment_webhook(data: PaymentWebhook, db: Session = Depends(get_db)):
    logger.info(f"Payment webhook: session={data.session_id} status={data.status}")

    if data.status == "succeeded":
        return ReservationManager(db).commit(data.session_id)

    return ExpiryReaper(db).release(session_id=data.session_id)
