"""Booking intake: public booking page, staff booking form and walk-ins."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import func, select

from frontdesk.core.metrics import metrics
from frontdesk.models.customer import WALK_IN_CUSTOMER_NAME, Customer
from frontdesk.models.reservations import (
    AssignmentMethod,
    Booking,
    BookingStatus,
    WaitingListEntry,
    WaitingListStatus,
)
from frontdesk.models.restaurant import OperatingHours, Restaurant, TableStatus
from frontdesk.services.allocation_engine import AllocationEngine, local_now, utcnow
from frontdesk.services.capacity_matcher import find_available_tables, is_slot_aligned, weekday_index
from frontdesk.services.errors import (
    CustomerNotFoundError,
    InvalidBookingRequestError,
    TableConflictError,
    TableNotFoundError,
    store_guard,
)
from frontdesk.services.status_rules import status_value

logger = logging.getLogger(__name__)


@dataclass
class CustomerDetails:
    name: str
    phone: str
    email: Optional[str] = None


@dataclass
class IntakeResult:
    outcome: str  # "confirmed" or "waitlisted"
    booking: Optional[Booking] = None
    entry: Optional[WaitingListEntry] = None


class BookingIntake:
    """Creates bookings and waiting-list entries on top of the allocation engine."""

    def __init__(self, engine: AllocationEngine):
        self.engine = engine
        self.db = engine.db

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check_aligned(self, restaurant: Restaurant, booking_time: time) -> None:
        slot = restaurant.time_slot_duration_minutes
        if not is_slot_aligned(booking_time, slot):
            raise InvalidBookingRequestError(
                f"{booking_time.strftime('%H:%M:%S')} is not on a {slot}-minute slot boundary"
            )

    def _check_open(self, restaurant: Restaurant, booking_date: date, booking_time: time) -> None:
        hours = self.db.scalar(
            select(OperatingHours).where(
                OperatingHours.restaurant_id == restaurant.id,
                OperatingHours.day_of_week == weekday_index(booking_date),
            )
        )
        if hours is None or hours.is_closed:
            raise InvalidBookingRequestError(f"{restaurant.name} is closed on {booking_date.isoformat()}")
        if not hours.opening_time <= booking_time < hours.closing_time:
            raise InvalidBookingRequestError(
                f"{booking_time.strftime('%H:%M')} is outside opening hours "
                f"({hours.opening_time.strftime('%H:%M')}-{hours.closing_time.strftime('%H:%M')})"
            )

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def find_or_create_customer(self, details: CustomerDetails) -> Customer:
        customer = self.db.scalars(
            select(Customer).where(Customer.phone == details.phone).order_by(Customer.id)
        ).first()
        if customer is None:
            customer = Customer(name=details.name, phone=details.phone, email=details.email)
            self.db.add(customer)
        else:
            customer.name = details.name or customer.name
            if details.email:
                customer.email = details.email
        self.db.commit()
        return customer

    def _walk_in_customer(self) -> Customer:
        customer = Customer(name=WALK_IN_CUSTOMER_NAME)
        self.db.add(customer)
        self.db.commit()
        return customer

    # ------------------------------------------------------------------
    # Public booking page
    # ------------------------------------------------------------------

    def request_booking(
        self,
        restaurant_id: int,
        customer: CustomerDetails,
        booking_date: date,
        booking_time: time,
        party_size: int,
        notes: Optional[str] = None,
    ) -> IntakeResult:
        """Book the smallest fitting table, or join the waiting list for the slot."""
        with store_guard(self.db):
            restaurant = self.engine.get_restaurant(restaurant_id)
            self._check_aligned(restaurant, booking_time)
            if datetime.combine(booking_date, booking_time) < local_now():
                raise InvalidBookingRequestError("Cannot book a time in the past")
            self._check_open(restaurant, booking_date, booking_time)

            guest = self.find_or_create_customer(customer)
            matches = find_available_tables(self.db, restaurant.id, booking_date, booking_time, party_size)
            if matches:
                match = matches[0]
                booking = Booking(
                    restaurant_id=restaurant.id,
                    table_id=match.table_id,
                    customer_id=guest.id,
                    booking_date=booking_date,
                    booking_time=booking_time,
                    party_size=party_size,
                    status=BookingStatus.CONFIRMED,
                    assignment_method=AssignmentMethod.AUTO,
                    notes=notes,
                )
                self.db.add(booking)
                self.db.commit()
                metrics.record_transition(BookingStatus.CONFIRMED.value)
                self.engine.recompute_table_status(self.engine.get_table(match.table_id))
                logger.info(
                    "Booking %s confirmed on table %s for party of %s at %s %s",
                    booking.id, match.table_number, party_size, booking_date, booking_time,
                )
                return IntakeResult(outcome="confirmed", booking=booking)

            highest = self.db.scalar(
                select(func.max(WaitingListEntry.priority_order)).where(
                    WaitingListEntry.restaurant_id == restaurant.id,
                    WaitingListEntry.requested_date == booking_date,
                    WaitingListEntry.requested_time == booking_time,
                )
            )
            entry = WaitingListEntry(
                restaurant_id=restaurant.id,
                customer_id=guest.id,
                requested_date=booking_date,
                requested_time=booking_time,
                party_size=party_size,
                status=WaitingListStatus.WAITING,
                priority_order=(highest or 0) + 1,
                notes=notes,
            )
            self.db.add(entry)
            self.db.commit()
            logger.info(
                "No table for party of %s at %s %s; waiting list entry %s (priority %s)",
                party_size, booking_date, booking_time, entry.id, entry.priority_order,
            )
            return IntakeResult(outcome="waitlisted", entry=entry)

    # ------------------------------------------------------------------
    # Staff
    # ------------------------------------------------------------------

    def create_booking(
        self,
        restaurant_id: int,
        customer_id: int,
        booking_date: date,
        booking_time: time,
        party_size: int,
        table_id: Optional[int] = None,
        is_walk_in: bool = False,
        notes: Optional[str] = None,
    ) -> Booking:
        """Staff booking form.

        A regular booking starts pending, optionally already on a table.  A
        walk-in needs a table and is seated straight away.
        """
        with store_guard(self.db):
            restaurant = self.engine.get_restaurant(restaurant_id)
            self._check_aligned(restaurant, booking_time)
            if self.db.get(Customer, customer_id) is None:
                raise CustomerNotFoundError(customer_id)

            table = None
            if table_id is not None:
                table = self.engine.get_table(table_id)
                if table.restaurant_id != restaurant.id:
                    raise TableNotFoundError(table_id)
            elif is_walk_in:
                raise InvalidBookingRequestError("A walk-in must be seated at a table")

            if is_walk_in:
                conflict = self.engine.find_conflict(table.id, booking_date, booking_time)
                if conflict is not None:
                    raise TableConflictError(table.id, conflict.id)

            booking = Booking(
                restaurant_id=restaurant.id,
                table_id=table.id if table is not None else None,
                customer_id=customer_id,
                booking_date=booking_date,
                booking_time=booking_time,
                party_size=party_size,
                status=BookingStatus.SEATED if is_walk_in else BookingStatus.PENDING,
                is_walk_in=is_walk_in,
                assignment_method=AssignmentMethod.MANUAL if table is not None else None,
                notes=notes,
                seated_at=utcnow() if is_walk_in else None,
            )
            self.db.add(booking)
            self.db.commit()
            metrics.record_transition(status_value(booking.status))
            logger.info("Booking %s created (%s)", booking.id, status_value(booking.status))

            if table is not None:
                self.engine.recompute_table_status(table)
            if is_walk_in:
                self.engine.hooks.on_seated(booking, table)
                self.db.commit()
            return booking

    def seat_walk_in(self, table_id: int, party_size: int, notes: Optional[str] = None) -> Booking:
        """Seat an anonymous walk-in party at a table for the current slot."""
        with store_guard(self.db):
            table = self.engine.get_table(table_id)
            if table.status == TableStatus.OCCUPIED:
                raise InvalidBookingRequestError(f"Table {table.table_number} is already occupied")
            service_date, service_time = self.engine.current_slot(table.restaurant_id)
            customer = self._walk_in_customer()
            return self.create_booking(
                restaurant_id=table.restaurant_id,
                customer_id=customer.id,
                booking_date=service_date,
                booking_time=service_time,
                party_size=party_size,
                table_id=table.id,
                is_walk_in=True,
                notes=notes,
            )
