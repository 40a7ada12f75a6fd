# backend/app/services/slots/store.py
"""
Booking store: read-only access to bookings, blocks and spots.

The availability engine only reads snapshots. Timestamps are stored as
naive UTC and returned as aware UTC datetimes.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from sqlalchemy.orm import Session

from .intervals import (
    CLOSING_BLOCK_STATUSES,
    HELD_STATUSES,
    OCCUPYING_STATUSES,
    AvailabilityBlock,
    BlockStatus,
    BookingInterval,
    BookingStatus,
    BookingType,
)
from .pricing import SpotRates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpotInfo:
    id: int
    name: str
    total_slots: int
    rates: SpotRates
    open_time: Optional[str] = None
    close_time: Optional[str] = None
    is_24_hours: bool = False

    @property
    def opening_hours(self) -> tuple[str, str]:
        """Local ("HH:MM", "HH:MM") opening interval; whole day when unknown."""
        if self.is_24_hours or not self.open_time or not self.close_time:
            return "00:00", "24:00"
        return self.open_time, self.close_time


class BookingStore(Protocol):
    def fetch_intervals(self, spot_id: int, start: datetime, end: datetime) -> list[BookingInterval]: ...

    def fetch_blocks(self, spot_id: int, start: datetime, end: datetime) -> list[AvailabilityBlock]: ...


def _to_db(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlBookingStore:
    """BookingStore over the SQLAlchemy session factory."""

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        if session_factory is None:
            from ...database import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory

    # ── Bookings ─────────────────────────────────────────────────────────

    def fetch_intervals(
        self,
        spot_id: int,
        start: datetime,
        end: datetime,
    ) -> list[BookingInterval]:
        """Occupying bookings overlapping [start, end)."""
        return self._query_bookings(spot_id, start, end, OCCUPYING_STATUSES)

    def fetch_user_intervals(
        self,
        spot_id: int,
        user_id: int,
        start: datetime,
        end: datetime,
    ) -> list[BookingInterval]:
        """Bookings the user already holds (pending included) overlapping [start, end)."""
        return self._query_bookings(spot_id, start, end, HELD_STATUSES, user_id=user_id)

    def _query_bookings(
        self,
        spot_id: int,
        start: datetime,
        end: datetime,
        statuses: frozenset[BookingStatus],
        user_id: int | None = None,
    ) -> list[BookingInterval]:
        from ...models.generated import Bookings

        db = self.session_factory()
        try:
            query = db.query(Bookings).filter(
                Bookings.spot_id == spot_id,
                Bookings.status.in_([s.value for s in statuses]),
                Bookings.start_time < _to_db(end),
                Bookings.end_time > _to_db(start),
            )
            if user_id is not None:
                query = query.filter(Bookings.user_id == user_id)
            rows = query.order_by(Bookings.start_time).all()

            intervals = []
            for row in rows:
                try:
                    intervals.append(BookingInterval(
                        id=row.id,
                        spot_id=row.spot_id,
                        start=_from_db(row.start_time),
                        end=_from_db(row.end_time),
                        status=BookingStatus(row.status),
                        booking_type=BookingType(row.booking_type or BookingType.HOURLY.value),
                    ))
                except ValueError as e:
                    logger.warning(f"Skipping malformed booking {row.id}: {e}")
            return intervals
        finally:
            db.close()

    # ── Blocks ───────────────────────────────────────────────────────────

    def fetch_blocks(
        self,
        spot_id: int,
        start: datetime,
        end: datetime,
    ) -> list[AvailabilityBlock]:
        """Blocked/maintenance periods overlapping [start, end)."""
        from ...models.generated import ParkingAvailability

        db = self.session_factory()
        try:
            rows = (
                db.query(ParkingAvailability)
                .filter(
                    ParkingAvailability.spot_id == spot_id,
                    ParkingAvailability.status.in_([s.value for s in CLOSING_BLOCK_STATUSES]),
                    ParkingAvailability.start_time < _to_db(end),
                    ParkingAvailability.end_time > _to_db(start),
                )
                .all()
            )

            blocks = []
            for row in rows:
                try:
                    blocks.append(AvailabilityBlock(
                        id=row.id,
                        spot_id=row.spot_id,
                        start=_from_db(row.start_time),
                        end=_from_db(row.end_time),
                        status=BlockStatus(row.status),
                        slots_affected=row.slots_affected or 1,
                    ))
                except ValueError as e:
                    logger.warning(f"Skipping malformed availability block {row.id}: {e}")
            return blocks
        finally:
            db.close()

    # ── Spots ────────────────────────────────────────────────────────────

    def get_spot(self, spot_id: int) -> Optional[SpotInfo]:
        from ...models.generated import ParkingSpots

        db = self.session_factory()
        try:
            spot = (
                db.query(ParkingSpots)
                .filter(ParkingSpots.id == spot_id, ParkingSpots.is_active == 1)
                .first()
            )
            if not spot:
                return None
            return SpotInfo(
                id=spot.id,
                name=spot.name,
                total_slots=max(1, spot.total_slots or 1),
                rates=SpotRates(
                    hourly=spot.price or 0.0,
                    daily=spot.daily_price,
                    monthly=spot.monthly_price,
                ),
                open_time=spot.open_time,
                close_time=spot.close_time,
                is_24_hours=bool(spot.is_24_hours),
            )
        finally:
            db.close()
