"""Booking state machine and booking-to-table status mapping.

Pure lookup tables; nothing here touches the database.
"""

from typing import Dict, FrozenSet, Iterable, Optional

from frontdesk.models.reservations import BookingStatus, WaitingListStatus
from frontdesk.models.restaurant import TableStatus

TERMINAL_BOOKING_STATUSES: FrozenSet[BookingStatus] = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.NO_SHOW,
})

ACTIVE_BOOKING_STATUSES: FrozenSet[BookingStatus] = frozenset(
    s for s in BookingStatus if s not in TERMINAL_BOOKING_STATUSES
)

# Statuses that hold a table against other bookings in the same slot
HOLDING_BOOKING_STATUSES: FrozenSet[BookingStatus] = frozenset({
    BookingStatus.CONFIRMED,
    BookingStatus.SEATED,
})

VALID_BOOKING_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({
        BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW,
    }),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.SEATED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW,
    }),
    BookingStatus.SEATED: frozenset({
        BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW,
    }),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

# Table status implied by a single booking; None means the booking does not hold it
TABLE_STATUS_FOR_BOOKING: Dict[BookingStatus, Optional[TableStatus]] = {
    BookingStatus.PENDING: TableStatus.RESERVED,
    BookingStatus.CONFIRMED: TableStatus.RESERVED,
    BookingStatus.SEATED: TableStatus.OCCUPIED,
    BookingStatus.COMPLETED: None,
    BookingStatus.CANCELLED: None,
    BookingStatus.NO_SHOW: None,
}

_TABLE_STATUS_PRECEDENCE = {
    TableStatus.OCCUPIED: 2,
    TableStatus.RESERVED: 1,
}

WAITING_LIST_CANCELLABLE: FrozenSet[WaitingListStatus] = frozenset({
    WaitingListStatus.WAITING,
    WaitingListStatus.NOTIFIED,
    WaitingListStatus.CONFIRMED,
})


def is_terminal(status: BookingStatus) -> bool:
    return BookingStatus(status) in TERMINAL_BOOKING_STATUSES


def can_transition(from_status: BookingStatus, to_status: BookingStatus) -> bool:
    return BookingStatus(to_status) in VALID_BOOKING_TRANSITIONS[BookingStatus(from_status)]


def derive_table_status(
    booking_statuses: Iterable[BookingStatus],
    current: Optional[TableStatus] = None,
) -> TableStatus:
    """Table status from the statuses of the bookings referencing it.

    Occupied wins over reserved, reserved over available.  With no active
    booking left a table under maintenance stays under maintenance.
    """
    best: Optional[TableStatus] = None
    for status in booking_statuses:
        implied = TABLE_STATUS_FOR_BOOKING[BookingStatus(status)]
        if implied is None:
            continue
        if best is None or _TABLE_STATUS_PRECEDENCE[implied] > _TABLE_STATUS_PRECEDENCE[best]:
            best = implied
    if best is not None:
        return best
    if current == TableStatus.MAINTENANCE:
        return TableStatus.MAINTENANCE
    return TableStatus.AVAILABLE


def status_value(status) -> str:
    """Plain string value of a status enum member (or of an already-plain string)."""
    return getattr(status, "value", status)
