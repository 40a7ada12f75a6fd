# backend/app/services/slots/intervals.py
"""
Booking intervals and availability blocks.

All instants are timezone-aware UTC datetimes. Intervals are half-open:
[start, end). A booking ending at 10:00 does not conflict with one
starting at 10:00.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingType(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    MONTHLY = "monthly"


class BlockStatus(str, Enum):
    AVAILABLE = "available"
    BLOCKED = "blocked"
    MAINTENANCE = "maintenance"


# Only these statuses take a slot away from other drivers
OCCUPYING_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.ACTIVE})

# Statuses that mean "this user already holds the slot"
HELD_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.ACTIVE})

CLOSING_BLOCK_STATUSES = frozenset({BlockStatus.BLOCKED, BlockStatus.MAINTENANCE})


class Span(Protocol):
    start: datetime
    end: datetime


def _check_span(start: datetime, end: datetime) -> None:
    if start.tzinfo is None or end.tzinfo is None:
        raise ValueError("interval bounds must be timezone-aware")
    if start >= end:
        raise ValueError(f"interval start must precede end: {start.isoformat()} >= {end.isoformat()}")


@dataclass(frozen=True)
class BookingInterval:
    """Read-only snapshot of one booking."""
    id: int
    spot_id: int
    start: datetime
    end: datetime
    status: BookingStatus
    booking_type: BookingType = BookingType.HOURLY

    def __post_init__(self):
        _check_span(self.start, self.end)

    @property
    def occupies(self) -> bool:
        return self.status in OCCUPYING_STATUSES


@dataclass(frozen=True)
class AvailabilityBlock:
    """Owner-declared closure of part of a spot's capacity."""
    id: int
    spot_id: int
    start: datetime
    end: datetime
    status: BlockStatus = BlockStatus.BLOCKED
    slots_affected: int = 1

    def __post_init__(self):
        _check_span(self.start, self.end)
        if self.slots_affected < 1:
            raise ValueError(f"slots_affected must be at least 1, got {self.slots_affected}")

    @property
    def closes(self) -> bool:
        return self.status in CLOSING_BLOCK_STATUSES


def overlaps(a: Span, b: Span) -> bool:
    """Half-open overlap: touching endpoints do not count."""
    return a.start < b.end and b.start < a.end


def occupies_at(span: Span, t: datetime) -> bool:
    """Whether span covers instant t (start inclusive, end exclusive)."""
    return span.start <= t < span.end
