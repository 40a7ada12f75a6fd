# backend/app/services/slots/eligibility.py
"""
Slot eligibility.

Decides, for one slot at instant `now`, whether it can still be booked.
Checks run in a fixed order and the first match wins:

  loading → past → tooLateToBook → booked → full → limited → available

Only `available` and `limited` slots accept a booking.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from math import ceil
from typing import Optional

from .calculator import AvailabilityResult
from .config import AvailabilityConfig, get_availability_config
from .intervals import BookingType
from .pricing import prorated_price, remaining_minutes


class SlotStatus(str, Enum):
    LOADING = "loading"
    PAST = "past"
    TOO_LATE_TO_BOOK = "tooLateToBook"
    BOOKED = "booked"
    FULL = "full"
    LIMITED = "limited"
    AVAILABLE = "available"

    @property
    def clickable(self) -> bool:
        return self in (SlotStatus.AVAILABLE, SlotStatus.LIMITED)


@dataclass(frozen=True)
class EligibilityDecision:
    status: SlotStatus
    price: Optional[float] = None
    remaining_minutes: Optional[int] = None

    @property
    def clickable(self) -> bool:
        return self.status.clickable


def capacity_status(available_slots: int, total_slots: int) -> SlotStatus:
    """full / limited / available from the numeric count alone."""
    if available_slots <= 0:
        return SlotStatus.FULL
    if available_slots < ceil(total_slots / 2):
        return SlotStatus.LIMITED
    return SlotStatus.AVAILABLE


def is_day_past(day: date, now: datetime, config: AvailabilityConfig | None = None) -> bool:
    """Daily/monthly: past days, and today after the cutoff hour, are closed."""
    config = config or get_availability_config()
    local_now = now.astimezone(config.tzinfo)
    today = local_now.date()
    if day < today:
        return True
    return day == today and local_now.hour >= config.daily_cutoff_hour


def evaluate_hourly_slot(
    slot_end: datetime,
    now: datetime,
    availability: AvailabilityResult,
    total_slots: int,
    *,
    blocked: bool = False,
    base_price: Optional[float] = None,
    config: AvailabilityConfig | None = None,
) -> EligibilityDecision:
    config = config or get_availability_config()
    minutes_left = remaining_minutes(slot_end, now)

    if availability.loading:
        return EligibilityDecision(SlotStatus.LOADING, remaining_minutes=minutes_left)
    if slot_end <= now:
        return EligibilityDecision(SlotStatus.PAST, remaining_minutes=minutes_left)
    if minutes_left < config.min_remaining_minutes:
        return EligibilityDecision(SlotStatus.TOO_LATE_TO_BOOK, remaining_minutes=minutes_left)
    if blocked:
        return EligibilityDecision(SlotStatus.BOOKED, remaining_minutes=minutes_left)

    status = capacity_status(availability.available_slots, total_slots)
    price = None
    if status.clickable and base_price is not None:
        price = prorated_price(base_price, minutes_left, config)
    return EligibilityDecision(status, price=price, remaining_minutes=minutes_left)


def evaluate_day(
    day: date,
    now: datetime,
    availability: AvailabilityResult,
    total_slots: int,
    *,
    blocked: bool = False,
    base_price: Optional[float] = None,
    config: AvailabilityConfig | None = None,
) -> EligibilityDecision:
    config = config or get_availability_config()

    if availability.loading:
        return EligibilityDecision(SlotStatus.LOADING)
    if is_day_past(day, now, config):
        return EligibilityDecision(SlotStatus.PAST)
    if blocked:
        return EligibilityDecision(SlotStatus.BOOKED)

    status = capacity_status(availability.available_slots, total_slots)
    price = base_price if status.clickable else None
    return EligibilityDecision(status, price=price)


def evaluate_slot(
    booking_type: BookingType,
    *,
    now: datetime,
    availability: AvailabilityResult,
    total_slots: int,
    slot_end: Optional[datetime] = None,
    day: Optional[date] = None,
    blocked: bool = False,
    base_price: Optional[float] = None,
    config: AvailabilityConfig | None = None,
) -> EligibilityDecision:
    """Evaluate a slot of any booking type (hourly needs slot_end, others need day)."""
    if booking_type == BookingType.HOURLY:
        if slot_end is None:
            raise ValueError("hourly slots need slot_end")
        return evaluate_hourly_slot(
            slot_end, now, availability, total_slots,
            blocked=blocked, base_price=base_price, config=config,
        )
    if day is None:
        raise ValueError(f"{booking_type.value} slots need day")
    return evaluate_day(
        day, now, availability, total_slots,
        blocked=blocked, base_price=base_price, config=config,
    )
