# backend/app/services/slots/pricing.py
"""
Slot pricing.

Hourly slots are prorated by the time left until the slot ends:
  remaining >= 60 min → base price
  30..59 min          → half price + proportional share of the other half
  < 30 min            → not bookable

Daily/monthly rates fall back to hourly × 24 and daily × 30.
"""

from dataclasses import dataclass
from datetime import datetime
from math import ceil, floor
from typing import Optional

from .config import AvailabilityConfig, get_availability_config

HOURS_PER_DAY = 24
DAYS_PER_MONTH = 30
MAX_MONTHS = 12


def remaining_minutes(slot_end: datetime, now: datetime) -> int:
    """Whole minutes from now until slot_end (floored; may be negative)."""
    return floor((slot_end - now).total_seconds() / 60)


def prorated_price(
    base_price: float,
    minutes_left: int,
    config: AvailabilityConfig | None = None,
) -> Optional[float]:
    """
    Price for an hourly slot with minutes_left until it ends.

    Returns None when the slot can no longer be booked.
    """
    config = config or get_availability_config()

    if minutes_left >= config.full_price_minutes:
        return base_price
    if minutes_left < config.min_remaining_minutes:
        return None

    floor_price = config.prorate_floor_ratio * base_price
    span = config.full_price_minutes - config.min_remaining_minutes
    top_up = (minutes_left - config.min_remaining_minutes) / span * (base_price - floor_price)
    return max(floor_price, floor_price + top_up)


@dataclass(frozen=True)
class SpotRates:
    hourly: float
    daily: Optional[float] = None
    monthly: Optional[float] = None

    def __post_init__(self):
        if self.hourly < 0:
            raise ValueError(f"hourly rate must not be negative, got {self.hourly}")

    @property
    def daily_rate(self) -> float:
        if self.daily:
            return self.daily
        return self.hourly * HOURS_PER_DAY

    @property
    def monthly_rate(self) -> float:
        if self.monthly:
            return self.monthly
        return self.daily_rate * DAYS_PER_MONTH


def quote_hourly(
    rates: SpotRates,
    slot_ends: list[datetime],
    now: datetime,
    config: AvailabilityConfig | None = None,
) -> int:
    """
    Total for a set of hourly slots, rounded up to whole currency units.

    Raises:
        ValueError: a slot has less than the minimum remaining time
    """
    config = config or get_availability_config()

    total = 0.0
    for slot_end in slot_ends:
        price = prorated_price(rates.hourly, remaining_minutes(slot_end, now), config)
        if price is None:
            raise ValueError(f"slot ending {slot_end.isoformat()} is too late to book")
        total += price
    return ceil(total)


def quote_daily(rates: SpotRates, days: int) -> float:
    if days < 1:
        raise ValueError(f"days must be at least 1, got {days}")
    return rates.daily_rate * days


def quote_monthly(rates: SpotRates, months: int) -> float:
    if not 1 <= months <= MAX_MONTHS:
        raise ValueError(f"months must be in 1..{MAX_MONTHS}, got {months}")
    return rates.monthly_rate * months
