# backend/app/routers/slots.py
"""
Slots API endpoints.

GET  /slots/{spot_id}/availability - Free slots over the rolling lookahead (spot card)
GET  /slots/{spot_id}/hourly       - Hourly booking grid for a day
GET  /slots/{spot_id}/calendar     - Daily/monthly calendar
POST /slots/{spot_id}/notify       - Publish a change for the spot (admin)
WS   /slots/{spot_id}/live         - Live availability stream
"""

import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from redis import Redis
from starlette.requests import HTTPConnection

from ..redis_client import redis_client
from ..schemas.slots import (
    DayAvailabilityStatus,
    HourlySlotStatus,
    HourlySlotsResponse,
    NotifyResponse,
    SlotAvailabilityResponse,
    SlotsCalendarResponse,
)
from ..services.slots import (
    AvailabilityBinding,
    AvailabilityConfig,
    AvailabilityResult,
    BookingType,
    ChangeFeedMultiplexer,
    DayWindow,
    InvalidWindowError,
    RollingLookahead,
    SpotInfo,
    SqlBookingStore,
    compute_availability,
    get_availability_config,
    hourly_slot,
    notify_spot_changed,
    overlaps,
    resolve,
)
from ..services.slots.binding import utc_now
from ..services.slots.calculator import (
    Err,
    calendar,
    count_exact_slot,
    date_range,
    fetch_snapshot,
    range_bounds,
)
from ..services.slots.config import minutes_to_time_str, time_str_to_minutes
from ..services.slots.eligibility import evaluate_day, evaluate_hourly_slot

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/slots", tags=["slots"])


# ── Dependencies ─────────────────────────────────────────────────────────


def get_store(conn: HTTPConnection) -> SqlBookingStore:
    return conn.app.state.store


def get_multiplexer(conn: HTTPConnection) -> ChangeFeedMultiplexer:
    return conn.app.state.multiplexer


def get_config() -> AvailabilityConfig:
    return get_availability_config()


def get_clock() -> Callable[[], datetime]:
    return utc_now


def get_redis() -> Redis:
    return redis_client


async def _load_spot(store: SqlBookingStore, spot_id: int) -> SpotInfo:
    spot = await asyncio.to_thread(store.get_spot, spot_id)
    if not spot:
        raise HTTPException(status_code=404, detail="Parking spot not found")
    return spot


async def _held_intervals(store: SqlBookingStore, spot_id: int, user_id: int | None, start, end) -> list:
    """
    Bookings the requesting user already holds (pending included).

    Only this user's holds mark a slot as booked. Other drivers' pending
    bookings do not: capacity counts confirmed/active bookings only, so a
    pending hold by someone else leaves the slot bookable until confirmed.
    Unknown (store error) counts as none.
    """
    if user_id is None:
        return []
    try:
        return await asyncio.to_thread(store.fetch_user_intervals, spot_id, user_id, start, end)
    except Exception as e:
        logger.warning(f"Could not load bookings of user {user_id} for spot {spot_id}: {e!r}")
        return []


def hourly_starts(open_time: str, close_time: str, step_minutes: int) -> list[str]:
    """Slot start times "HH:MM" such that the whole slot fits in opening hours."""
    start_min = time_str_to_minutes(open_time)
    end_min = time_str_to_minutes(close_time)
    if end_min <= start_min:
        # Closes after midnight: the grid stops at midnight
        end_min = 24 * 60

    starts = []
    t = start_min
    while t + step_minutes <= end_min:
        starts.append(minutes_to_time_str(t))
        t += step_minutes
    return starts


# ── Rolling lookahead ────────────────────────────────────────────────────


@router.get("/{spot_id}/availability", response_model=SlotAvailabilityResponse)
async def get_spot_availability(
    spot_id: int,
    horizon_minutes: int | None = Query(None, ge=1, le=24 * 60),
    store: SqlBookingStore = Depends(get_store),
    config: AvailabilityConfig = Depends(get_config),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Worst-case free slots from now over the lookahead horizon."""
    spot = await _load_spot(store, spot_id)
    horizon = timedelta(minutes=horizon_minutes) if horizon_minutes else config.lookahead

    window = RollingLookahead(spot_id, spot.total_slots, clock(), horizon)
    value = resolve(await compute_availability(store, window, config), spot.total_slots)

    return SlotAvailabilityResponse(
        spot_id=spot_id,
        total_slots=spot.total_slots,
        available_slots=value.available_slots,
        booked_slots=value.booked_slots,
        loading=value.loading,
        window_start=window.start,
        window_end=window.end,
    )


# ── Hourly grid ──────────────────────────────────────────────────────────


@router.get("/{spot_id}/hourly", response_model=HourlySlotsResponse)
async def get_hourly_slots(
    spot_id: int,
    target_date: date = Query(..., alias="date"),
    user_id: int | None = None,
    store: SqlBookingStore = Depends(get_store),
    config: AvailabilityConfig = Depends(get_config),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Hourly slots of a day with availability, eligibility and prorated price."""
    now = clock()
    today = now.astimezone(config.tzinfo).date()

    if target_date < today:
        raise HTTPException(status_code=400, detail="Date cannot be in the past")
    if target_date > today + timedelta(days=config.horizon_days):
        raise HTTPException(status_code=400, detail=f"Date cannot be more than {config.horizon_days} days ahead")

    spot = await _load_spot(store, spot_id)
    open_time, close_time = spot.opening_hours

    try:
        windows = [
            hourly_slot(spot_id, spot.total_slots, target_date, start, config.tzinfo, config.slot_duration)
            for start in hourly_starts(open_time, close_time, config.slot_duration_minutes)
        ]
    except (InvalidWindowError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    day_start, day_end = range_bounds(target_date, target_date, config.tzinfo)
    snapshot = await fetch_snapshot(store, spot_id, day_start, day_end)
    held = await _held_intervals(store, spot_id, user_id, day_start, day_end)

    slots = []
    for window in windows:
        if isinstance(snapshot, Err):
            value = AvailabilityResult.optimistic(spot.total_slots)
        else:
            value = count_exact_slot(window, snapshot.value.intervals, snapshot.value.blocks)

        decision = evaluate_hourly_slot(
            window.slot_end,
            now,
            value,
            spot.total_slots,
            blocked=any(overlaps(h, window) for h in held),
            base_price=spot.rates.hourly,
            config=config,
        )
        slots.append(HourlySlotStatus(
            time=window.slot_start.astimezone(config.tzinfo).strftime("%H:%M"),
            start=window.slot_start,
            end=window.slot_end,
            available_slots=value.available_slots,
            booked_slots=value.booked_slots,
            status=decision.status,
            clickable=decision.clickable,
            remaining_minutes=decision.remaining_minutes,
            price=decision.price,
        ))

    return HourlySlotsResponse(
        spot_id=spot_id,
        date=target_date,
        total_slots=spot.total_slots,
        base_price=spot.rates.hourly,
        opening_hours=(open_time, close_time),
        slots=slots,
        min_remaining_minutes=config.min_remaining_minutes,
        full_price_minutes=config.full_price_minutes,
    )


# ── Daily / monthly calendar ─────────────────────────────────────────────


@router.get("/{spot_id}/calendar", response_model=SlotsCalendarResponse)
async def get_slots_calendar(
    spot_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
    booking_type: BookingType = BookingType.DAILY,
    user_id: int | None = None,
    store: SqlBookingStore = Depends(get_store),
    config: AvailabilityConfig = Depends(get_config),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Per-day availability for daily/monthly bookings."""
    if booking_type == BookingType.HOURLY:
        raise HTTPException(status_code=400, detail="Use /hourly for hourly bookings")

    now = clock()
    today = now.astimezone(config.tzinfo).date()
    if start_date is None:
        start_date = today
    if end_date is None:
        end_date = start_date + timedelta(days=config.horizon_days)

    if start_date < today:
        start_date = today
    if end_date > today + timedelta(days=config.horizon_days):
        end_date = today + timedelta(days=config.horizon_days)
    if end_date < start_date:
        end_date = start_date

    spot = await _load_spot(store, spot_id)
    days = date_range(start_date, end_date)
    range_start, range_end = range_bounds(start_date, end_date, config.tzinfo)

    snapshot = await fetch_snapshot(store, spot_id, range_start, range_end)
    held = await _held_intervals(store, spot_id, user_id, range_start, range_end)

    if isinstance(snapshot, Err):
        values = {day: AvailabilityResult.optimistic(spot.total_slots) for day in days}
    else:
        values = calendar(
            spot_id,
            spot.total_slots,
            days,
            snapshot.value.intervals,
            snapshot.value.blocks,
            booking_type,
            config.tzinfo,
        )

    rate = spot.rates.daily_rate if booking_type == BookingType.DAILY else spot.rates.monthly_rate

    result = []
    for day in days:
        window = DayWindow(spot_id, spot.total_slots, day, booking_type, config.tzinfo)
        value = values[day]
        decision = evaluate_day(
            day,
            now,
            value,
            spot.total_slots,
            blocked=any(overlaps(h, window) for h in held),
            config=config,
        )
        result.append(DayAvailabilityStatus(
            date=day,
            available_slots=value.available_slots,
            booked_slots=value.booked_slots,
            status=decision.status,
            clickable=decision.clickable,
        ))

    return SlotsCalendarResponse(
        spot_id=spot_id,
        booking_type=booking_type,
        start_date=start_date,
        end_date=end_date,
        total_slots=spot.total_slots,
        days=result,
        rate=rate,
        horizon_days=config.horizon_days,
        daily_cutoff_hour=config.daily_cutoff_hour,
    )


# ── Change notification ──────────────────────────────────────────────────


@router.post("/{spot_id}/notify", response_model=NotifyResponse)
def notify_spot(
    spot_id: int,
    redis: Redis = Depends(get_redis),
):
    """Manually publish a change for a spot (admin endpoint)."""
    receivers = notify_spot_changed(redis, spot_id, reason="manual")
    return NotifyResponse(spot_id=spot_id, receivers=receivers)


# ── Live stream ──────────────────────────────────────────────────────────


def _live_window(
    spot: SpotInfo,
    config: AvailabilityConfig,
    now: datetime,
    target_date: date | None,
    time_slot: str | None,
    booking_type: BookingType,
):
    if target_date is None:
        return RollingLookahead(spot.id, spot.total_slots, now, config.lookahead)
    if booking_type != BookingType.HOURLY:
        return DayWindow(spot.id, spot.total_slots, target_date, booking_type, config.tzinfo)
    if not time_slot:
        raise InvalidWindowError("hourly live view needs time")
    return hourly_slot(spot.id, spot.total_slots, target_date, time_slot, config.tzinfo, config.slot_duration)


@router.websocket("/{spot_id}/live")
async def live_availability(
    websocket: WebSocket,
    spot_id: int,
    target_date: date | None = Query(None, alias="date"),
    time_slot: str | None = Query(None, alias="time"),
    booking_type: BookingType = BookingType.HOURLY,
    store: SqlBookingStore = Depends(get_store),
    multiplexer: ChangeFeedMultiplexer = Depends(get_multiplexer),
    config: AvailabilityConfig = Depends(get_config),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Stream availability for a window; a message is sent after every change.

    No date → rolling lookahead. date+time → hourly slot.
    date+booking_type=daily|monthly → that day.
    Client may send "refresh" to force a re-query.
    """
    spot = await asyncio.to_thread(store.get_spot, spot_id)
    if not spot:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    try:
        window = _live_window(spot, config, clock(), target_date, time_slot, booking_type)
    except InvalidWindowError as e:
        logger.info(f"Rejected live view for spot {spot_id}: {e}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    async def push(value: AvailabilityResult) -> None:
        await websocket.send_json({
            "spot_id": spot_id,
            "key": str(window.key),
            "total_slots": spot.total_slots,
            "available_slots": value.available_slots,
            "booked_slots": value.booked_slots,
            "loading": value.loading,
        })

    binding = AvailabilityBinding(multiplexer, store, config=config, clock=clock, on_update=push)
    try:
        await binding.bind(window)
        while True:
            message = await websocket.receive_text()
            if message.strip() == "refresh":
                await binding.refresh()
    except WebSocketDisconnect:
        logger.debug(f"Live view closed for {window.key}")
    finally:
        await binding.close()
