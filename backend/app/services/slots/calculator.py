# backend/app/services/slots/calculator.py
"""
Availability calculation.

Pure counting over booking intervals and availability blocks:

✓ Exact slot: occupying bookings overlapping the slot, plus blocked units
✓ Rolling lookahead: worst occupancy over sampled checkpoints
✓ Day window: daily/monthly bookings covering the day, hourly bookings starting on it

One occupying booking takes one slot unit. A block takes slots_affected units.
booked_slots is always total_slots - available_slots.

compute_availability() wraps a store query and returns Ok/Err instead of
raising, so callers choose the fallback explicitly.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Generic, Iterable, TypeVar

from .config import AvailabilityConfig, get_availability_config
from .intervals import (
    AvailabilityBlock,
    BookingInterval,
    BookingType,
    occupies_at,
    overlaps,
)
from .windows import AvailabilityWindow, DayWindow, ExactSlot, RollingLookahead

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AvailabilityResult:
    available_slots: int
    booked_slots: int
    loading: bool = False

    @classmethod
    def optimistic(cls, total_slots: int) -> "AvailabilityResult":
        """Everything free. Used when the real answer is unknown."""
        return cls(available_slots=total_slots, booked_slots=0, loading=False)

    @classmethod
    def from_used(cls, total_slots: int, used: int) -> "AvailabilityResult":
        available = max(0, total_slots - used)
        return cls(available_slots=available, booked_slots=total_slots - available)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: Exception


Result = Ok[AvailabilityResult] | Err


# ── Exact slot ───────────────────────────────────────────────────────────


def count_exact_slot(
    window: ExactSlot,
    intervals: Iterable[BookingInterval],
    blocks: Iterable[AvailabilityBlock] = (),
) -> AvailabilityResult:
    booked = sum(1 for i in intervals if i.occupies and overlaps(i, window))
    blocked = sum(b.slots_affected for b in blocks if b.closes and overlaps(b, window))
    return AvailabilityResult.from_used(window.total_slots, booked + blocked)


# ── Rolling lookahead ────────────────────────────────────────────────────


def rolling_checkpoints(
    window: RollingLookahead,
    intervals: Iterable[BookingInterval],
    blocks: Iterable[AvailabilityBlock] = (),
    checkpoint_count: int = 5,
) -> list[datetime]:
    """
    Instants at which occupancy is sampled.

    Evenly spaced points from start to end (both included), plus every
    booking/block start strictly inside the window. Occupancy can only rise
    at a start, so the maximum over these points is the true worst case.
    """
    step = window.horizon / (checkpoint_count - 1)
    points = {window.start + step * i for i in range(checkpoint_count)}
    for span in (*intervals, *blocks):
        if window.start < span.start < window.end:
            points.add(span.start)
    return sorted(points)


def occupancy_at(
    t: datetime,
    intervals: Iterable[BookingInterval],
    blocks: Iterable[AvailabilityBlock] = (),
) -> int:
    booked = sum(1 for i in intervals if i.occupies and occupies_at(i, t))
    blocked = sum(b.slots_affected for b in blocks if b.closes and occupies_at(b, t))
    return booked + blocked


def count_rolling(
    window: RollingLookahead,
    intervals: Iterable[BookingInterval],
    blocks: Iterable[AvailabilityBlock] = (),
    config: AvailabilityConfig | None = None,
) -> AvailabilityResult:
    config = config or get_availability_config()

    relevant = [i for i in intervals if i.occupies and overlaps(i, window)]
    closing = [b for b in blocks if b.closes and overlaps(b, window)]

    checkpoints = rolling_checkpoints(window, relevant, closing, config.checkpoint_count)
    peak = max(occupancy_at(t, relevant, closing) for t in checkpoints)
    return AvailabilityResult.from_used(window.total_slots, peak)


# ── Day window (daily / monthly) ─────────────────────────────────────────


def _local_day(value: datetime, tz: tzinfo) -> date:
    return value.astimezone(tz).date()


def _day_usage(
    window: DayWindow,
    intervals: Iterable[BookingInterval],
    blocks: Iterable[AvailabilityBlock],
) -> int:
    used = 0
    for interval in intervals:
        if not interval.occupies:
            continue
        if interval.booking_type == BookingType.HOURLY:
            # Hourly bookings hold one unit on the day they start
            if _local_day(interval.start, window.tz) == window.day:
                used += 1
        elif overlaps(interval, window):
            used += 1
    used += sum(b.slots_affected for b in blocks if b.closes and overlaps(b, window))
    return used


def count_day(
    window: DayWindow,
    intervals: Iterable[BookingInterval],
    blocks: Iterable[AvailabilityBlock] = (),
) -> AvailabilityResult:
    return AvailabilityResult.from_used(window.total_slots, _day_usage(window, intervals, blocks))


def calendar(
    spot_id: int,
    total_slots: int,
    days: Iterable[date],
    intervals: Iterable[BookingInterval],
    blocks: Iterable[AvailabilityBlock] = (),
    booking_type: BookingType = BookingType.DAILY,
    tz: tzinfo | None = None,
) -> dict[date, AvailabilityResult]:
    """Day-by-day availability for a date range (monthly booking view)."""
    tz = tz or get_availability_config().tzinfo
    intervals = list(intervals)
    blocks = list(blocks)
    result = {}
    for day in days:
        window = DayWindow(spot_id, total_slots, day, booking_type, tz)
        result[day] = count_day(window, intervals, blocks)
    return result


def date_range(start: date, end: date) -> list[date]:
    """Dates in [start, end] (inclusive)."""
    if start > end:
        start, end = end, start
    return [start + timedelta(days=n) for n in range((end - start).days + 1)]


def range_bounds(start: date, end: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """UTC bounds covering local days start..end."""
    lower = datetime.combine(start, time.min, tzinfo=tz)
    upper = datetime.combine(end + timedelta(days=1), time.min, tzinfo=tz)
    return lower.astimezone(timezone.utc), upper.astimezone(timezone.utc)


# ── Dispatch ─────────────────────────────────────────────────────────────


def calculate(
    window: AvailabilityWindow,
    intervals: Iterable[BookingInterval],
    blocks: Iterable[AvailabilityBlock] = (),
    config: AvailabilityConfig | None = None,
) -> AvailabilityResult:
    """Count availability for any window kind."""
    if isinstance(window, RollingLookahead):
        return count_rolling(window, intervals, blocks, config)
    if isinstance(window, ExactSlot):
        return count_exact_slot(window, intervals, blocks)
    if isinstance(window, DayWindow):
        return count_day(window, intervals, blocks)
    raise TypeError(f"unsupported window type: {type(window).__name__}")


# ── Store queries ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Snapshot:
    """Bookings and blocks of one spot overlapping a time range."""
    intervals: list[BookingInterval]
    blocks: list[AvailabilityBlock]


def _fetch(store, spot_id: int, start: datetime, end: datetime) -> Snapshot:
    start = start.astimezone(timezone.utc)
    end = end.astimezone(timezone.utc)
    return Snapshot(
        intervals=list(store.fetch_intervals(spot_id, start, end)),
        blocks=list(store.fetch_blocks(spot_id, start, end)),
    )


async def fetch_snapshot(
    store,
    spot_id: int,
    start: datetime,
    end: datetime,
    timeout: float | None = None,
) -> Ok[Snapshot] | Err:
    """
    Read bookings and blocks for [start, end) in a worker thread.

    Never raises for store failures: any error (including a timeout)
    comes back as Err.

    Args:
        store: BookingStore (synchronous)
        timeout: Optional limit in seconds for the store round-trip
    """
    try:
        snapshot = await asyncio.wait_for(
            asyncio.to_thread(_fetch, store, spot_id, start, end),
            timeout=timeout,
        )
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning(f"Booking store query failed for spot {spot_id}: {e!r}")
        return Err(e)
    return Ok(snapshot)


async def compute_availability(
    store,
    window: AvailabilityWindow,
    config: AvailabilityConfig | None = None,
    timeout: float | None = None,
) -> Result:
    """Query the booking store and count availability for window."""
    snapshot = await fetch_snapshot(store, window.spot_id, window.start, window.end, timeout)
    if isinstance(snapshot, Err):
        return snapshot
    return Ok(calculate(window, snapshot.value.intervals, snapshot.value.blocks, config))


def resolve(result: Result, total_slots: int) -> AvailabilityResult:
    """Map a Result to a displayable value; errors fail open."""
    if isinstance(result, Ok):
        return result.value
    return AvailabilityResult.optimistic(total_slots)
