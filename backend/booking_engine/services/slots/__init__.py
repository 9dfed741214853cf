# backend/booking_engine/services/slots/__init__.py
"""
Slots calculation module.

Level 1: Opening window per experience and date (foresight applied)
Level 2: Offerable start times for a resource selection (calculated on-the-fly
         from the stored slot rows)
"""

from .config import BookingConfig, get_booking_config
from .calculator import BaseWindow, calculate_base_window
from .store import MODE_ADD, MODE_SUBTRACT, SlotStore
from .resources import ADDON, PRODUCT, ResourceRef, ResourceSelection
from .availability import AvailabilityRequest, calculate_availability

__all__ = [
    "BookingConfig",
    "get_booking_config",
    "BaseWindow",
    "calculate_base_window",
    "MODE_ADD",
    "MODE_SUBTRACT",
    "SlotStore",
    "ADDON",
    "PRODUCT",
    "ResourceRef",
    "ResourceSelection",
    "AvailabilityRequest",
    "calculate_availability",
]
