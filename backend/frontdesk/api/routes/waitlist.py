"""Waiting-list commands."""

from fastapi import APIRouter

from frontdesk.db.session import DbSession
from frontdesk.schemas.reservations import BookingResponse, WaitingListEntryResponse
from frontdesk.services.allocation_engine import AllocationEngine

router = APIRouter()


@router.get("/{entry_id}", response_model=WaitingListEntryResponse)
def get_entry(db: DbSession, entry_id: int):
    return AllocationEngine(db).get_entry(entry_id)


@router.post("/{entry_id}/promote", response_model=BookingResponse, status_code=201)
def promote_entry(db: DbSession, entry_id: int):
    """Seat a waiting party now; fails with 409 when no table fits."""
    return AllocationEngine(db).promote_from_waiting_list(entry_id)


@router.post("/{entry_id}/cancel", response_model=WaitingListEntryResponse)
def cancel_entry(db: DbSession, entry_id: int):
    return AllocationEngine(db).cancel_waiting_list_entry(entry_id)
