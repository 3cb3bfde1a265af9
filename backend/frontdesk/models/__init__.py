"""SQLAlchemy models."""

from frontdesk.models.restaurant import Restaurant, RestaurantTable, OperatingHours, TableStatus
from frontdesk.models.customer import Customer, WALK_IN_CUSTOMER_NAME
from frontdesk.models.reservations import (
    Booking,
    WaitingListEntry,
    BookingStatus,
    WaitingListStatus,
    AssignmentMethod,
)
from frontdesk.models.order_session import OrderSession

__all__ = [
    "Restaurant",
    "RestaurantTable",
    "OperatingHours",
    "TableStatus",
    "Customer",
    "WALK_IN_CUSTOMER_NAME",
    "Booking",
    "WaitingListEntry",
    "BookingStatus",
    "WaitingListStatus",
    "AssignmentMethod",
    "OrderSession",
]
