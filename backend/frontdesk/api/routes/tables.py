"""Table administration, release and walk-in seating."""

from typing import List

from fastapi import APIRouter, Response

from frontdesk.db.session import DbSession
from frontdesk.schemas.reservations import BookingResponse, ReleaseResponse
from frontdesk.schemas.tables import (
    TableBulkCreate,
    TableCreate,
    TableResponse,
    TableStatusUpdate,
    TableUpdate,
    WalkInRequest,
)
from frontdesk.services.allocation_engine import AllocationEngine
from frontdesk.services.booking_intake import BookingIntake
from frontdesk.services.table_admin import TableAdmin

router = APIRouter()


@router.post("/", response_model=TableResponse, status_code=201)
def create_table(db: DbSession, body: TableCreate):
    return TableAdmin(AllocationEngine(db)).create_table(
        restaurant_id=body.restaurant_id,
        table_number=body.table_number,
        capacity=body.capacity,
        location_notes=body.location_notes,
    )


@router.post("/bulk", response_model=List[TableResponse], status_code=201)
def bulk_create_tables(db: DbSession, body: TableBulkCreate):
    """Create tables numbered 1..count with the same capacity."""
    return TableAdmin(AllocationEngine(db)).bulk_create_tables(
        body.restaurant_id, body.count, body.capacity
    )


@router.get("/{table_id}", response_model=TableResponse)
def get_table(db: DbSession, table_id: int):
    return AllocationEngine(db).get_table(table_id)


@router.put("/{table_id}", response_model=TableResponse)
def update_table(db: DbSession, table_id: int, body: TableUpdate):
    return TableAdmin(AllocationEngine(db)).update_table(
        table_id,
        table_number=body.table_number,
        capacity=body.capacity,
        location_notes=body.location_notes,
    )


@router.delete("/{table_id}", status_code=204)
def delete_table(db: DbSession, table_id: int):
    TableAdmin(AllocationEngine(db)).delete_table(table_id)
    return Response(status_code=204)


@router.put("/{table_id}/status", response_model=TableResponse)
def set_table_status(db: DbSession, table_id: int, body: TableStatusUpdate):
    """Staff status override; "available" releases the table to the waiting list."""
    return TableAdmin(AllocationEngine(db)).set_table_status(table_id, body.status)


@router.post("/{table_id}/release", response_model=ReleaseResponse)
def release_table(db: DbSession, table_id: int):
    """Free the table and offer it to the first waiting party of the current slot."""
    return ReleaseResponse.model_validate(AllocationEngine(db).release_table(table_id))


@router.post("/{table_id}/walk-in", response_model=BookingResponse, status_code=201)
def seat_walk_in(db: DbSession, table_id: int, body: WalkInRequest):
    intake = BookingIntake(AllocationEngine(db))
    return intake.seat_walk_in(table_id, body.party_size, notes=body.notes)
