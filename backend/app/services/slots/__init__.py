# backend/app/services/slots/__init__.py
"""
Slot availability engine.

Calculator: counts free slots for a window from bookings and blocks
Eligibility: decides whether a slot can still be booked, and its price
Multiplexer: shares one change feed connection per (spot, window) key
Binding: keeps a live availability value for one consumer
"""

from .config import AvailabilityConfig, get_availability_config
from .intervals import (
    AvailabilityBlock,
    BookingInterval,
    BookingStatus,
    BookingType,
    overlaps,
)
from .windows import DayWindow, ExactSlot, RollingLookahead, SubscriptionKey, hourly_slot
from .calculator import AvailabilityResult, Err, Ok, calculate, compute_availability, resolve
from .eligibility import EligibilityDecision, SlotStatus, evaluate_slot
from .pricing import SpotRates, prorated_price
from .store import SpotInfo, SqlBookingStore
from .feed import RedisChangeFeed
from .multiplexer import ChangeFeedMultiplexer, SubscriptionHandle
from .binding import AvailabilityBinding
from .invalidator import install_change_publishers, notify_spot_changed
from .errors import FeedUnavailableError, InvalidWindowError

__all__ = [
    "AvailabilityConfig",
    "get_availability_config",
    "AvailabilityBlock",
    "BookingInterval",
    "BookingStatus",
    "BookingType",
    "overlaps",
    "DayWindow",
    "ExactSlot",
    "RollingLookahead",
    "SubscriptionKey",
    "hourly_slot",
    "AvailabilityResult",
    "Err",
    "Ok",
    "calculate",
    "compute_availability",
    "resolve",
    "EligibilityDecision",
    "SlotStatus",
    "evaluate_slot",
    "SpotRates",
    "prorated_price",
    "SpotInfo",
    "SqlBookingStore",
    "RedisChangeFeed",
    "ChangeFeedMultiplexer",
    "SubscriptionHandle",
    "AvailabilityBinding",
    "install_change_publishers",
    "notify_spot_changed",
    "FeedUnavailableError",
    "InvalidWindowError",
]
