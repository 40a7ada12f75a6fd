# backend/app/schemas/slots.py
"""
Pydantic schemas for slots API.
"""

from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field

from ..services.slots import BookingType, SlotStatus


class SlotAvailabilityResponse(BaseModel):
    """Live availability numbers for a spot (card preview / single slot)."""
    spot_id: int
    total_slots: int
    available_slots: int
    booked_slots: int
    loading: bool = False

    # Rolling window bounds (UTC)
    window_start: datetime
    window_end: datetime

    model_config = {"from_attributes": True}


class HourlySlotStatus(BaseModel):
    """One hourly slot of the booking grid."""
    time: str  # "HH:MM", local
    start: datetime
    end: datetime
    available_slots: int
    booked_slots: int
    status: SlotStatus
    clickable: bool
    remaining_minutes: Optional[int] = None
    price: Optional[float] = Field(default=None, description="Prorated price, only for bookable slots")

    model_config = {"from_attributes": True}


class HourlySlotsResponse(BaseModel):
    """Hourly booking grid for a day."""
    spot_id: int
    date: date
    total_slots: int
    base_price: float
    opening_hours: tuple[str, str]
    slots: list[HourlySlotStatus]

    # Metadata
    min_remaining_minutes: int
    full_price_minutes: int

    model_config = {"from_attributes": True}


class DayAvailabilityStatus(BaseModel):
    """Availability of a single day in the calendar."""
    date: date
    available_slots: int
    booked_slots: int
    status: SlotStatus
    clickable: bool

    model_config = {"from_attributes": True}


class SlotsCalendarResponse(BaseModel):
    """Daily/monthly calendar for a spot."""
    spot_id: int
    booking_type: BookingType
    start_date: date
    end_date: date
    total_slots: int
    days: list[DayAvailabilityStatus]

    # Metadata
    rate: float = Field(description="Daily or monthly rate, after fallbacks")
    horizon_days: int
    daily_cutoff_hour: int

    model_config = {"from_attributes": True}


class NotifyResponse(BaseModel):
    spot_id: int
    receivers: int

    model_config = {"from_attributes": True}
