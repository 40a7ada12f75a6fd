from datetime import date, timedelta

import pytest

from app.services.slots import AvailabilityConfig, AvailabilityResult, BookingType, SlotStatus, evaluate_slot
from app.services.slots.eligibility import capacity_status, evaluate_day, evaluate_hourly_slot, is_day_past

from conftest import utc

CONFIG = AvailabilityConfig()
SLOT_END = utc(2025, 3, 10, 4)


def hourly(now, available=3, total=5, **kwargs):
    return evaluate_hourly_slot(
        SLOT_END, now, AvailabilityResult(available, total - available), total, config=CONFIG, **kwargs
    )


def test_fifteen_minutes_left_is_too_late_even_with_free_slots():
    decision = hourly(SLOT_END - timedelta(minutes=15), available=5)

    assert decision.status == SlotStatus.TOO_LATE_TO_BOOK
    assert not decision.clickable
    assert decision.price is None


@pytest.mark.parametrize("minutes_after_end", [0, 1, 90])
def test_ended_slot_is_past(minutes_after_end):
    decision = hourly(SLOT_END + timedelta(minutes=minutes_after_end), available=5)

    assert decision.status == SlotStatus.PAST


def test_loading_wins_over_everything():
    loading = AvailabilityResult(5, 0, loading=True)

    decision = evaluate_hourly_slot(SLOT_END, SLOT_END + timedelta(hours=1), loading, 5, config=CONFIG)

    assert decision.status == SlotStatus.LOADING


def test_booked_by_user_is_not_clickable():
    decision = hourly(SLOT_END - timedelta(hours=2), available=5, blocked=True, base_price=40)

    assert decision.status == SlotStatus.BOOKED
    assert decision.price is None


@pytest.mark.parametrize(
    "available,total,expected",
    [
        (0, 5, SlotStatus.FULL),
        (2, 5, SlotStatus.LIMITED),
        (3, 5, SlotStatus.AVAILABLE),
        (1, 1, SlotStatus.AVAILABLE),
        (1, 2, SlotStatus.AVAILABLE),
        (1, 4, SlotStatus.LIMITED),
    ],
)
def test_capacity_status(available, total, expected):
    assert capacity_status(available, total) == expected


def test_only_available_and_limited_are_clickable():
    assert {s for s in SlotStatus if s.clickable} == {SlotStatus.AVAILABLE, SlotStatus.LIMITED}


def test_price_is_prorated_for_bookable_slot():
    decision = hourly(SLOT_END - timedelta(minutes=45), available=5, base_price=40)

    assert decision.status == SlotStatus.AVAILABLE
    assert decision.remaining_minutes == 45
    assert decision.price == pytest.approx(30)


def test_remaining_minutes_are_floored():
    decision = hourly(SLOT_END - timedelta(minutes=29, seconds=59), available=5)

    assert decision.remaining_minutes == 29
    assert decision.status == SlotStatus.TOO_LATE_TO_BOOK


def test_full_slot_has_no_price():
    decision = hourly(SLOT_END - timedelta(hours=3), available=0, base_price=40)

    assert decision.status == SlotStatus.FULL
    assert decision.price is None


# ── Daily / monthly ──────────────────────────────────────────────────────


def test_day_before_today_is_past():
    assert is_day_past(date(2025, 3, 9), utc(2025, 3, 10, 1), CONFIG)


def test_today_closes_at_local_noon():
    # 04:59 UTC is 11:59 in Bangkok, 05:00 UTC is noon
    assert not is_day_past(date(2025, 3, 10), utc(2025, 3, 10, 4, 59), CONFIG)
    assert is_day_past(date(2025, 3, 10), utc(2025, 3, 10, 5), CONFIG)
    assert not is_day_past(date(2025, 3, 11), utc(2025, 3, 10, 5), CONFIG)


def test_evaluate_day_statuses():
    now = utc(2025, 3, 10, 5)
    free = AvailabilityResult(2, 0)

    assert evaluate_day(date(2025, 3, 10), now, free, 2, config=CONFIG).status == SlotStatus.PAST
    assert evaluate_day(date(2025, 3, 11), now, free, 2, config=CONFIG, blocked=True).status == SlotStatus.BOOKED

    decision = evaluate_day(date(2025, 3, 11), now, free, 2, config=CONFIG, base_price=300)
    assert decision.status == SlotStatus.AVAILABLE
    assert decision.price == 300


def test_evaluate_slot_dispatches_by_booking_type():
    now = utc(2025, 3, 10, 1)
    free = AvailabilityResult(2, 0)

    hourly_decision = evaluate_slot(
        BookingType.HOURLY, now=now, availability=free, total_slots=2, slot_end=SLOT_END, config=CONFIG
    )
    monthly_decision = evaluate_slot(
        BookingType.MONTHLY, now=now, availability=free, total_slots=2, day=date(2025, 3, 12), config=CONFIG
    )

    assert hourly_decision.status == SlotStatus.AVAILABLE
    assert monthly_decision.status == SlotStatus.AVAILABLE
    with pytest.raises(ValueError):
        evaluate_slot(BookingType.DAILY, now=now, availability=free, total_slots=2, config=CONFIG)
