"""
backend/booking_engine/services/events.py

Event emitter: pushes reservation/booking lifecycle events to a Redis queue
for downstream consumers (confirmation mail, dashboards).

Queue:
- events:p2p: reservation_created, reservation_extended, reservation_retimed,
  reservation_cancelled, reservation_expired, booking_committed, booking_rescheduled
"""

import json
import time
import logging

from ..redis_client import redis_client

logger = logging.getLogger(__name__)

EVENTS_QUEUE = "events:p2p"


def emit_event(event_type: str, payload: dict) -> None:
    """
    Emit a lifecycle event.

    Pushed to Redis list `events:p2p`. A Redis failure is logged and does
    not affect the operation that produced the event.
    """
    event = {
        "type": event_type,
        **payload,
        "ts": int(time.time()),
    }
    try:
        redis_client.rpush(EVENTS_QUEUE, json.dumps(event))
        logger.info(f"Event emitted: {event_type} → {EVENTS_QUEUE}")
    except Exception as e:
        logger.error(f"Failed to emit event {event_type}: {e}")
