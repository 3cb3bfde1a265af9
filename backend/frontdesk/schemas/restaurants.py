"""Restaurant setup and availability schemas."""

from datetime import datetime, time
from typing import List, Optional

from pydantic import BaseModel, Field


class RestaurantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9][a-z0-9-]*$")
    # Falls back to DEFAULT_SLOT_DURATION_MINUTES when omitted
    time_slot_duration_minutes: Optional[int] = Field(None, ge=5, le=120)


class RestaurantResponse(BaseModel):
    id: int
    name: str
    slug: str
    time_slot_duration_minutes: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class OperatingHoursItem(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday")
    opening_time: time
    closing_time: time
    is_closed: bool = False


class OperatingHoursUpdate(BaseModel):
    days: List[OperatingHoursItem]


class OperatingHoursResponse(OperatingHoursItem):
    id: int

    model_config = {"from_attributes": True}


class TimeSlotResponse(BaseModel):
    time: time
    total_capacity: int
    booked_capacity: int
    available_capacity: int
    waiting_count: int
    available: bool

    model_config = {"from_attributes": True}


class SlotAvailabilityResponse(BaseModel):
    total_capacity: int
    booked_capacity: int
    available_capacity: int
    waiting_count: int

    model_config = {"from_attributes": True}
