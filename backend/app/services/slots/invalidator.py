# backend/app/services/slots/invalidator.py
"""
Change publishing for spot availability.

Triggers:
✓ Booking inserted/updated/deleted → publish for its spot
✓ Availability block inserted/updated/deleted → publish for its spot
✓ Manual notify (admin endpoint)

Publishing happens after commit; rolled back changes publish nothing.
"""

import json
import logging
import time
import weakref
from itertools import chain

from redis import Redis
from sqlalchemy import event
from sqlalchemy.orm import Session, sessionmaker

from .feed import spot_channel

logger = logging.getLogger(__name__)

PENDING_SPOTS_KEY = "slots_changed_spots"

_installed: "weakref.WeakSet[sessionmaker]" = weakref.WeakSet()


def notify_spot_changed(redis: Redis, spot_id: int, reason: str = "manual") -> int:
    """
    Publish a change notification for a spot.

    Returns:
        Number of subscribers that received it (0 if Redis is unreachable)
    """
    payload = json.dumps({"spot_id": spot_id, "reason": reason, "ts": int(time.time())})
    try:
        receivers = redis.publish(spot_channel(spot_id), payload)
    except Exception as e:
        logger.error(f"Failed to publish change for spot {spot_id}: {e}")
        return 0
    logger.info(f"Change published: spot={spot_id} reason={reason} → {receivers} subscriber(s)")
    return receivers


def _tracked_spot_ids(session: Session) -> set[int]:
    from ...models.generated import Bookings, ParkingAvailability

    spot_ids = set()
    for obj in chain(session.new, session.dirty, session.deleted):
        if isinstance(obj, (Bookings, ParkingAvailability)) and obj.spot_id is not None:
            spot_ids.add(obj.spot_id)
    return spot_ids


def install_change_publishers(session_factory: sessionmaker, redis: Redis) -> None:
    """
    Publish a change for every spot whose bookings/blocks a committed
    session touched. Installing twice on one factory is a no-op.
    """
    if session_factory in _installed:
        return
    _installed.add(session_factory)

    @event.listens_for(session_factory, "after_flush")
    def _collect(session, flush_context):
        # new/dirty/deleted still reflect the flushed state here
        spot_ids = _tracked_spot_ids(session)
        if spot_ids:
            session.info.setdefault(PENDING_SPOTS_KEY, set()).update(spot_ids)

    @event.listens_for(session_factory, "after_commit")
    def _publish(session):
        for spot_id in sorted(session.info.pop(PENDING_SPOTS_KEY, ())):
            notify_spot_changed(redis, spot_id, reason="booking_change")

    @event.listens_for(session_factory, "after_rollback")
    def _discard(session):
        session.info.pop(PENDING_SPOTS_KEY, None)
