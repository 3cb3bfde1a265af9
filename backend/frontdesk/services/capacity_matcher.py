"""Capacity matching and time-slot availability.

Answers "which tables can seat this party in this slot" and summarises
how full each slot of a service day is.  Read-only; the allocation engine
is the only caller that acts on the answers.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, List

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from frontdesk.models.reservations import Booking, WaitingListEntry, WaitingListStatus
from frontdesk.models.restaurant import OperatingHours, Restaurant, RestaurantTable, TableStatus
from frontdesk.services.errors import RestaurantNotFoundError, store_guard
from frontdesk.services.status_rules import HOLDING_BOOKING_STATUSES

logger = logging.getLogger(__name__)


@dataclass
class AvailableTable:
    table_id: int
    table_number: str
    capacity: int


@dataclass
class SlotAvailability:
    total_capacity: int
    booked_capacity: int
    available_capacity: int
    waiting_count: int


@dataclass
class TimeSlot:
    time: time
    total_capacity: int
    booked_capacity: int
    available_capacity: int
    waiting_count: int
    available: bool


def weekday_index(day: date) -> int:
    """Weekday with 0 = Sunday, as stored in operating hours."""
    return (day.weekday() + 1) % 7


def is_slot_aligned(value: time, slot_minutes: int) -> bool:
    """True when *value* falls exactly on a slot boundary."""
    if value.second or value.microsecond:
        return False
    return (value.hour * 60 + value.minute) % slot_minutes == 0


def floor_to_slot(value: time, slot_minutes: int) -> time:
    minutes = value.hour * 60 + value.minute
    minutes -= minutes % slot_minutes
    return time(minutes // 60, minutes % 60)


def find_available_tables(
    db: Session,
    restaurant_id: int,
    booking_date: date,
    booking_time: time,
    party_size: int,
) -> List[AvailableTable]:
    """Tables that can seat *party_size* at the given slot.

    A table qualifies when its status is available, its capacity covers the
    party and no confirmed or seated booking holds it for the exact same
    date and time.  Smallest tables come first, ties broken by table number.
    """
    held = (
        select(Booking.id)
        .where(
            and_(
                Booking.table_id == RestaurantTable.id,
                Booking.restaurant_id == restaurant_id,
                Booking.booking_date == booking_date,
                Booking.booking_time == booking_time,
                Booking.status.in_(HOLDING_BOOKING_STATUSES),
            )
        )
        .exists()
    )
    stmt = (
        select(RestaurantTable.id, RestaurantTable.table_number, RestaurantTable.capacity)
        .where(
            RestaurantTable.restaurant_id == restaurant_id,
            RestaurantTable.status == TableStatus.AVAILABLE,
            RestaurantTable.capacity >= party_size,
            ~held,
        )
        .order_by(RestaurantTable.capacity, RestaurantTable.table_number)
    )
    with store_guard(db):
        rows = db.execute(stmt).all()
    return [AvailableTable(table_id=r.id, table_number=r.table_number, capacity=r.capacity) for r in rows]


def _total_capacity(db: Session, restaurant_id: int) -> int:
    return db.scalar(
        select(func.coalesce(func.sum(RestaurantTable.capacity), 0)).where(
            RestaurantTable.restaurant_id == restaurant_id,
            RestaurantTable.status != TableStatus.MAINTENANCE,
        )
    ) or 0


def get_time_slot_availability(
    db: Session,
    restaurant_id: int,
    booking_date: date,
    booking_time: time,
) -> SlotAvailability:
    with store_guard(db):
        total = _total_capacity(db, restaurant_id)
        booked = db.scalar(
            select(func.coalesce(func.sum(Booking.party_size), 0)).where(
                Booking.restaurant_id == restaurant_id,
                Booking.booking_date == booking_date,
                Booking.booking_time == booking_time,
                Booking.status.in_(HOLDING_BOOKING_STATUSES),
            )
        ) or 0
        waiting = db.scalar(
            select(func.count(WaitingListEntry.id)).where(
                WaitingListEntry.restaurant_id == restaurant_id,
                WaitingListEntry.requested_date == booking_date,
                WaitingListEntry.requested_time == booking_time,
                WaitingListEntry.status == WaitingListStatus.WAITING,
            )
        ) or 0
    return SlotAvailability(
        total_capacity=total,
        booked_capacity=booked,
        available_capacity=max(0, total - booked),
        waiting_count=waiting,
    )


def generate_time_slots(db: Session, restaurant_id: int, service_date: date) -> List[TimeSlot]:
    """All bookable slots of a service day with their availability.

    Slots run from opening time (inclusive) to closing time (exclusive) in
    steps of the restaurant's slot duration.  Closed days and days without
    operating hours have no slots.
    """
    with store_guard(db):
        restaurant = db.get(Restaurant, restaurant_id)
        if restaurant is None:
            raise RestaurantNotFoundError(restaurant_id)

        hours = db.scalar(
            select(OperatingHours).where(
                OperatingHours.restaurant_id == restaurant_id,
                OperatingHours.day_of_week == weekday_index(service_date),
            )
        )
        if hours is None or hours.is_closed:
            return []

        total = _total_capacity(db, restaurant_id)
        booked_by_time: Dict[time, int] = dict(
            db.execute(
                select(Booking.booking_time, func.sum(Booking.party_size))
                .where(
                    Booking.restaurant_id == restaurant_id,
                    Booking.booking_date == service_date,
                    Booking.status.in_(HOLDING_BOOKING_STATUSES),
                )
                .group_by(Booking.booking_time)
            ).all()
        )
        waiting_by_time: Dict[time, int] = dict(
            db.execute(
                select(WaitingListEntry.requested_time, func.count(WaitingListEntry.id))
                .where(
                    WaitingListEntry.restaurant_id == restaurant_id,
                    WaitingListEntry.requested_date == service_date,
                    WaitingListEntry.status == WaitingListStatus.WAITING,
                )
                .group_by(WaitingListEntry.requested_time)
            ).all()
        )

    step = timedelta(minutes=restaurant.time_slot_duration_minutes)
    current = datetime.combine(service_date, hours.opening_time)
    closing = datetime.combine(service_date, hours.closing_time)
    slots: List[TimeSlot] = []
    while current < closing:
        slot_time = current.time()
        booked = booked_by_time.get(slot_time, 0)
        available = max(0, total - booked)
        slots.append(
            TimeSlot(
                time=slot_time,
                total_capacity=total,
                booked_capacity=booked,
                available_capacity=available,
                waiting_count=waiting_by_time.get(slot_time, 0),
                available=available > 0,
            )
        )
        current += step
    logger.debug("Generated %d slots for restaurant %s on %s", len(slots), restaurant_id, service_date)
    return slots
