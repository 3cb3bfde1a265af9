"""Booking and waiting-list schemas."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Literal, Optional

from pydantic import BaseModel, Field

from frontdesk.models.reservations import AssignmentMethod, BookingStatus, WaitingListStatus
from frontdesk.models.restaurant import TableStatus
from frontdesk.schemas.tables import TableResponse


# Bookings

class BookingCreate(BaseModel):
    """Staff booking form."""
    restaurant_id: int
    customer_id: int
    booking_date: date
    booking_time: time
    party_size: int = Field(..., ge=1, le=100)
    table_id: Optional[int] = None
    is_walk_in: bool = False
    notes: Optional[str] = None


class BookingResponse(BaseModel):
    id: int
    restaurant_id: int
    table_id: Optional[int] = None
    customer_id: int
    waiting_list_entry_id: Optional[int] = None
    booking_date: date
    booking_time: time
    party_size: int
    status: BookingStatus
    is_walk_in: bool
    assignment_method: Optional[AssignmentMethod] = None
    was_on_waitlist: bool
    notes: Optional[str] = None
    version: int
    seated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class AssignTableRequest(BaseModel):
    table_id: int


class TransitionResponse(BaseModel):
    booking: BookingResponse
    changed: bool
    table_status: Optional[TableStatus] = None
    promoted_booking: Optional[BookingResponse] = None

    model_config = {"from_attributes": True}


class ReleaseResponse(BaseModel):
    table: TableResponse
    promoted_booking: Optional[BookingResponse] = None

    model_config = {"from_attributes": True}


# Waiting list

class WaitingListEntryResponse(BaseModel):
    id: int
    restaurant_id: int
    customer_id: int
    requested_date: date
    requested_time: time
    party_size: int
    status: WaitingListStatus
    priority_order: int
    notes: Optional[str] = None
    version: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PromoteNextRequest(BaseModel):
    booking_date: date
    booking_time: time


class PromoteNextResponse(BaseModel):
    promoted: bool
    booking: Optional[BookingResponse] = None


# Public booking page

class CustomerInfo(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., min_length=3, max_length=50)
    email: Optional[str] = Field(None, max_length=255)


class BookingRequest(BaseModel):
    customer: CustomerInfo
    booking_date: date
    booking_time: time
    party_size: int = Field(..., ge=1, le=20)
    notes: Optional[str] = Field(None, max_length=1000)


class BookingRequestResponse(BaseModel):
    outcome: Literal["confirmed", "waitlisted"]
    booking: Optional[BookingResponse] = None
    entry: Optional[WaitingListEntryResponse] = None

    model_config = {"from_attributes": True}
