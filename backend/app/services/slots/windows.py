# backend/app/services/slots/windows.py
"""
Availability windows.

Three kinds of question a consumer can ask about a spot:

- RollingLookahead: "how many slots are free from now over the next N minutes"
  (spot cards). Anchored at now, re-anchored on every query.
- ExactSlot: "how many slots are free in this fixed slot" (hourly grid).
- DayWindow: "how many slots are free on this local day" (daily/monthly).

Each window knows its SubscriptionKey: consumers with equal keys share
one change feed connection.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional

from .config import get_availability_config
from .errors import InvalidWindowError
from .intervals import BookingType


@dataclass(frozen=True)
class SubscriptionKey:
    spot_id: int
    descriptor: str

    def __str__(self) -> str:
        return f"slot_availability:{self.spot_id}:{self.descriptor}"


def _check_capacity(total_slots: int) -> None:
    if total_slots < 1:
        raise InvalidWindowError(f"total_slots must be at least 1, got {total_slots}")


def _check_aware(*values: datetime) -> None:
    for value in values:
        if value.tzinfo is None:
            raise InvalidWindowError(f"window bound must be timezone-aware: {value.isoformat()}")


def _utc_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class RollingLookahead:
    spot_id: int
    total_slots: int
    start: datetime
    horizon: timedelta = timedelta(hours=2)

    def __post_init__(self):
        _check_capacity(self.total_slots)
        _check_aware(self.start)
        if self.horizon <= timedelta(0):
            raise InvalidWindowError(f"horizon must be positive, got {self.horizon}")

    @property
    def end(self) -> datetime:
        return self.start + self.horizon

    @property
    def key(self) -> SubscriptionKey:
        minutes = int(self.horizon.total_seconds() // 60)
        return SubscriptionKey(self.spot_id, f"rolling:{minutes}m")

    def at(self, now: datetime) -> "RollingLookahead":
        return replace(self, start=now)


@dataclass(frozen=True)
class ExactSlot:
    spot_id: int
    total_slots: int
    slot_start: datetime
    slot_end: datetime

    def __post_init__(self):
        _check_capacity(self.total_slots)
        _check_aware(self.slot_start, self.slot_end)
        if self.slot_start >= self.slot_end:
            raise InvalidWindowError(
                f"slot_start must precede slot_end: {self.slot_start.isoformat()} >= {self.slot_end.isoformat()}"
            )

    @property
    def start(self) -> datetime:
        return self.slot_start

    @property
    def end(self) -> datetime:
        return self.slot_end

    @property
    def key(self) -> SubscriptionKey:
        return SubscriptionKey(
            self.spot_id, f"slot:{_utc_iso(self.slot_start)}|{_utc_iso(self.slot_end)}"
        )

    def at(self, now: datetime) -> "ExactSlot":
        return self


@dataclass(frozen=True)
class DayWindow:
    spot_id: int
    total_slots: int
    day: date
    booking_type: BookingType = BookingType.DAILY
    tz: Optional[tzinfo] = None  # defaults to the configured local timezone

    def __post_init__(self):
        _check_capacity(self.total_slots)
        if self.booking_type == BookingType.HOURLY:
            raise InvalidWindowError("day windows are for daily or monthly bookings")
        if self.tz is None:
            object.__setattr__(self, "tz", get_availability_config().tzinfo)

    @property
    def start(self) -> datetime:
        return datetime.combine(self.day, time.min, tzinfo=self.tz)

    @property
    def end(self) -> datetime:
        return datetime.combine(self.day + timedelta(days=1), time.min, tzinfo=self.tz)

    @property
    def key(self) -> SubscriptionKey:
        return SubscriptionKey(self.spot_id, f"day:{self.day.isoformat()}|{self.booking_type.value}")

    def at(self, now: datetime) -> "DayWindow":
        return self


AvailabilityWindow = RollingLookahead | ExactSlot | DayWindow


def hourly_slot(
    spot_id: int,
    total_slots: int,
    day: date,
    start_time: str,
    tz: tzinfo,
    duration: timedelta = timedelta(hours=1),
) -> ExactSlot:
    """Build an ExactSlot from a local date and "HH:MM" start time."""
    try:
        hour, minute = (int(part) for part in start_time.split(":"))
        local_start = datetime.combine(day, time(hour, minute), tzinfo=tz)
    except ValueError as e:
        raise InvalidWindowError(f"invalid slot start time {start_time!r}") from e
    slot_start = local_start.astimezone(timezone.utc)
    return ExactSlot(spot_id, total_slots, slot_start, slot_start + duration)
