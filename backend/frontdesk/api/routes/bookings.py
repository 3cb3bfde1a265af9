"""Booking commands: create, status transitions and manual table assignment."""

from fastapi import APIRouter

from frontdesk.db.session import DbSession
from frontdesk.schemas.reservations import (
    AssignTableRequest,
    BookingCreate,
    BookingResponse,
    BookingStatusUpdate,
    TransitionResponse,
)
from frontdesk.services.allocation_engine import AllocationEngine
from frontdesk.services.booking_intake import BookingIntake

router = APIRouter()


@router.post("/", response_model=BookingResponse, status_code=201)
def create_booking(db: DbSession, body: BookingCreate):
    """Staff booking form. Walk-ins are seated immediately."""
    intake = BookingIntake(AllocationEngine(db))
    return intake.create_booking(
        restaurant_id=body.restaurant_id,
        customer_id=body.customer_id,
        booking_date=body.booking_date,
        booking_time=body.booking_time,
        party_size=body.party_size,
        table_id=body.table_id,
        is_walk_in=body.is_walk_in,
        notes=body.notes,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(db: DbSession, booking_id: int):
    return AllocationEngine(db).get_booking(booking_id)


@router.post("/{booking_id}/status", response_model=TransitionResponse)
def transition_booking(db: DbSession, booking_id: int, body: BookingStatusUpdate):
    """Move a booking through its lifecycle.

    Repeating the current status is accepted and reported with changed=false.
    """
    result = AllocationEngine(db).transition_booking(booking_id, body.status)
    return TransitionResponse.model_validate(result)


@router.post("/{booking_id}/assign-table", response_model=BookingResponse)
def assign_table(db: DbSession, booking_id: int, body: AssignTableRequest):
    """Staff override: put the booking on a specific table."""
    return AllocationEngine(db).assign_table(booking_id, body.table_id)
