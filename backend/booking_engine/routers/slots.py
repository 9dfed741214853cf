# backend/booking_engine/routers/slots.py
"""
Slots API endpoints.

GET /slots/grid - booked quantity per 15 minute slot for one resource and day (admin/debug)
"""

from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.errors import ValidationError
from ..database import get_db
from ..schemas.slots import SlotsGridResponse
from ..services.slots import ADDON, PRODUCT, SlotStore, get_booking_config
from ..services.slots.resources import get_addon_ref, get_product_ref
from ..services.slots.timemath import minutes_to_time


router = APIRouter(prefix="/slots", tags=["slots"])


@router.get("/grid", response_model=SlotsGridResponse)
def get_slots_grid(
    resource_type: str = Query(..., alias="resourceType"),
    resource_id: int = Query(..., alias="resourceId"),
    target_date: date = Query(..., alias="date"),
    db: Session = Depends(get_db),
):
    """Get the stored slot row for a resource and date (admin/debug endpoint)."""
    if resource_type == PRODUCT:
        resource = get_product_ref(db, resource_id)
    elif resource_type == ADDON:
        resource = get_addon_ref(db, resource_id)
    else:
        raise ValidationError(f"resourceType must be '{PRODUCT}' or '{ADDON}'")

    config = get_booking_config()
    store = SlotStore(db, config)
    grid = store.read_grid(resource, target_date.isoformat())

    return SlotsGridResponse(
        resource_type=resource.resource_type,
        resource_id=resource.resource_id,
        date=target_date,
        capacity=resource.capacity,
        slot_step_minutes=config.slot_step_minutes,
        slots=[
            {"time": minutes_to_time(minute), "booked": booked}
            for minute, booked in zip(config.slot_minutes(), grid)
        ],
    )
