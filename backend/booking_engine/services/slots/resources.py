# backend/booking_engine/services/slots/resources.py
"""
Catalog lookups: bookable resources (products, addons), durations, experiences.
"""

import json
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ...core.errors import NotFound, ResourceNotFound, ValidationError
from .timemath import booking_day_spans, time_to_minutes

PRODUCT = "product"
ADDON = "addon"


@dataclass(frozen=True)
class ResourceRef:
    """A bookable item with finite concurrent capacity."""
    resource_type: str
    resource_id: int
    capacity: int
    tracks_availability: bool = True

    @property
    def table(self) -> str:
        """Label used in logs and error messages."""
        return f"availability_{self.resource_type}_{self.resource_id}"


@dataclass(frozen=True)
class ResourceSelection:
    resource: ResourceRef
    quantity: int


def resolve_selections(
    db: Session,
    products: list[dict] | None,
    addons: list[dict] | None,
) -> list[ResourceSelection]:
    """
    Resolve {"productId", "quantity"} / {"addonId", "quantity"} entries
    against the catalog. Entries with quantity <= 0 are dropped; repeated
    entries for one resource are summed into a single selection.
    """
    totals: dict[ResourceRef, int] = {}

    for item in products or []:
        product_id = _item_id(item, "productId")
        quantity = _item_quantity(item)
        if quantity <= 0:
            continue
        ref = get_product_ref(db, product_id)
        totals[ref] = totals.get(ref, 0) + quantity

    for item in addons or []:
        addon_id = _item_id(item, "addonId")
        quantity = _item_quantity(item)
        if quantity <= 0:
            continue
        ref = get_addon_ref(db, addon_id)
        totals[ref] = totals.get(ref, 0) + quantity

    return [ResourceSelection(ref, quantity) for ref, quantity in totals.items()]


def get_product_ref(db: Session, product_id: int) -> ResourceRef:
    from ...models.generated import Products

    product = db.get(Products, product_id)
    if not product:
        raise ResourceNotFound(f"Product {product_id} not found")
    return ResourceRef(PRODUCT, product.id, product.total_quantity, True)


def get_addon_ref(db: Session, addon_id: int) -> ResourceRef:
    from ...models.generated import Addons

    addon = db.get(Addons, addon_id)
    if not addon:
        raise ResourceNotFound(f"Addon {addon_id} not found")
    return ResourceRef(ADDON, addon.id, addon.total_quantity, bool(addon.track_availability))


def get_duration(db: Session, duration_id: int):
    from ...models.generated import Durations

    duration = db.get(Durations, duration_id)
    if not duration:
        raise NotFound(f"Duration {duration_id} not found")
    return duration


def get_experience(db: Session, experience_id: int):
    from ...models.generated import Experiences

    experience = db.get(Experiences, experience_id)
    if not experience:
        raise NotFound(f"Experience {experience_id} not found")
    return experience


# ── Helpers ──────────────────────────────────────────────────────────────


def _item_id(item: dict, key: str) -> int:
    value = item.get(key, item.get("id"))
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {key}: {value!r}")


def _item_quantity(item: dict) -> int:
    try:
        return int(item.get("quantity") or 0)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid quantity: {item.get('quantity')!r}")


# ── Stored reservation / booking rows ────────────────────────────────────


def record_selections(db: Session, record) -> list[ResourceSelection]:
    """Resolve the products/addons JSON of a PendingBookings or Bookings row."""
    return resolve_selections(db, _json_list(record.products), _json_list(record.addons))


def record_spans(
    db: Session,
    record,
    start_time: str | None = None,
    end_time: str | None = None,
    start_date: str | None = None,
):
    """
    Per-day slot spans of a stored row, optionally with replacement date/times.
    """
    duration = get_duration(db, record.duration_id)
    return booking_day_spans(
        start_date or record.start_date,
        time_to_minutes(start_time or record.start_time),
        time_to_minutes(end_time or record.end_time),
        duration.duration_type,
        duration.duration_value,
    )


def _json_list(raw) -> list[dict]:
    if not raw:
        return []
    if isinstance(raw, list):
        return raw
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError(f"Corrupt resource list: {raw!r}")
    return value if isinstance(value, list) else []
