"""Allocation errors.

Every error carries the HTTP status and a short machine-readable code used
by the exception handler registered in ``frontdesk.main``.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class AllocationError(Exception):
    """Base class for every error raised by the allocation engine."""

    status_code = 400
    code = "allocation_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(AllocationError):
    status_code = 404
    code = "not_found"
    resource = "Resource"

    def __init__(self, resource_id):
        self.resource_id = resource_id
        super().__init__(f"{self.resource} {resource_id} not found")


class BookingNotFoundError(NotFoundError):
    code = "booking_not_found"
    resource = "Booking"


class TableNotFoundError(NotFoundError):
    code = "table_not_found"
    resource = "Table"


class WaitingListEntryNotFoundError(NotFoundError):
    code = "waiting_list_entry_not_found"
    resource = "Waiting list entry"


class RestaurantNotFoundError(NotFoundError):
    code = "restaurant_not_found"
    resource = "Restaurant"


class CustomerNotFoundError(NotFoundError):
    code = "customer_not_found"
    resource = "Customer"


class InvalidTransitionError(AllocationError):
    """Raised when a status change is not allowed by the state machine."""

    status_code = 409
    code = "invalid_transition"

    def __init__(self, entity: str, from_status: str, to_status: str):
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot move {entity} from '{from_status}' to '{to_status}'")


class NoAvailableTableError(AllocationError):
    """Raised when an explicit promotion finds no table for the party."""

    status_code = 409
    code = "no_available_table"

    def __init__(self, party_size: int, slot: Optional[str] = None):
        self.party_size = party_size
        self.slot = slot
        where = f" at {slot}" if slot else ""
        super().__init__(f"No available table for a party of {party_size}{where}")


class TableConflictError(AllocationError):
    """Raised when another confirmed or seated booking holds the table for the slot."""

    status_code = 409
    code = "table_conflict"

    def __init__(self, table_id: int, conflicting_booking_id: int):
        self.table_id = table_id
        self.conflicting_booking_id = conflicting_booking_id
        super().__init__(
            f"Table {table_id} is already held by booking {conflicting_booking_id} for this slot"
        )


class TableInUseError(AllocationError):
    status_code = 409
    code = "table_in_use"

    def __init__(self, table_id: int):
        self.table_id = table_id
        super().__init__(f"Table {table_id} is referenced by an active booking")


class DuplicateTableError(AllocationError):
    status_code = 409
    code = "duplicate_table"

    def __init__(self, table_number: str):
        self.table_number = table_number
        super().__init__(f"Table number '{table_number}' already exists")


class DuplicateSlugError(AllocationError):
    status_code = 409
    code = "duplicate_slug"

    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"Slug '{slug}' is already taken")


class InvalidBookingRequestError(AllocationError):
    """Raised for misaligned slots, closed days and times outside opening hours."""

    status_code = 422
    code = "invalid_booking_request"


class StoreUnavailableError(AllocationError):
    """Transient store failure. Earlier steps may already be committed; clients resync."""

    status_code = 503
    code = "store_unavailable"


@contextmanager
def store_guard(db: Session) -> Iterator[None]:
    """Translate transient database failures into StoreUnavailableError.

    The session is rolled back so it stays usable; rows committed by earlier
    steps of the same operation are left as they are.
    """
    try:
        yield
    except OperationalError as exc:
        db.rollback()
        logger.error("Store unavailable: %s", exc)
        raise StoreUnavailableError("The booking store is temporarily unavailable") from exc
