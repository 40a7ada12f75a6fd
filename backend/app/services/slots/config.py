# backend/app/services/slots/config.py
"""
Availability policy configuration.
"""

from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class AvailabilityConfig:
    """
    Policy constants for availability, eligibility and proration.

    Attributes:
        lookahead_minutes: Rolling lookahead horizon used by spot cards
        checkpoint_count: Evenly spaced samples across the lookahead (incl. both ends)
        slot_duration_minutes: Length of one hourly booking slot
        min_remaining_minutes: Below this, an hourly slot is too late to book
        full_price_minutes: At or above this remaining time, full price applies
        prorate_floor_ratio: Share of base price charged at min_remaining_minutes
        daily_cutoff_hour: Same-day daily/monthly bookings close at this local hour
        debounce_ms: Delay that coalesces bursts of change notifications
        feed_retry_attempts: Re-open attempts for a failed change feed subscription
        feed_retry_delay_seconds: Delay between re-open attempts
        horizon_days: How many days ahead the calendar reaches
        timezone: Local timezone of the spots (IANA name)
    """
    lookahead_minutes: int = 120
    checkpoint_count: int = 5
    slot_duration_minutes: int = 60
    min_remaining_minutes: int = 30
    full_price_minutes: int = 60
    prorate_floor_ratio: float = 0.5
    daily_cutoff_hour: int = 12
    debounce_ms: int = 100
    feed_retry_attempts: int = 3
    feed_retry_delay_seconds: float = 2.0
    horizon_days: int = 60
    timezone: str = "Asia/Bangkok"

    def __post_init__(self):
        """Validate configuration."""
        if self.lookahead_minutes <= 0:
            raise ValueError(f"lookahead_minutes must be positive, got {self.lookahead_minutes}")
        if self.checkpoint_count < 2:
            raise ValueError(f"checkpoint_count must be at least 2, got {self.checkpoint_count}")
        if not 0 < self.min_remaining_minutes <= self.full_price_minutes:
            raise ValueError(
                "min_remaining_minutes must be positive and not exceed full_price_minutes, "
                f"got {self.min_remaining_minutes}/{self.full_price_minutes}"
            )
        if not 0 < self.prorate_floor_ratio <= 1:
            raise ValueError(f"prorate_floor_ratio must be in (0, 1], got {self.prorate_floor_ratio}")
        if not 0 <= self.daily_cutoff_hour <= 24:
            raise ValueError(f"daily_cutoff_hour must be in 0..24, got {self.daily_cutoff_hour}")
        if self.debounce_ms < 0:
            raise ValueError(f"debounce_ms must not be negative, got {self.debounce_ms}")
        ZoneInfo(self.timezone)

    @property
    def lookahead(self) -> timedelta:
        return timedelta(minutes=self.lookahead_minutes)

    @property
    def slot_duration(self) -> timedelta:
        return timedelta(minutes=self.slot_duration_minutes)

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def time_str_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight ("24:00" → 1440)."""
    hour, minute = value.split(":")
    return int(hour) * 60 + int(minute)


def minutes_to_time_str(minutes: int) -> str:
    """Convert minutes since midnight to "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


@lru_cache
def get_availability_config() -> AvailabilityConfig:
    """
    Get availability configuration (singleton).

    Only the timezone comes from settings; policy values are code defaults.
    """
    from ...config import settings
    return AvailabilityConfig(timezone=settings.local_timezone)
