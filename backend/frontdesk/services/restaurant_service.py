"""Restaurant setup and read models for the staff dashboard."""

import logging
from datetime import date, time
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from frontdesk.core.config import settings
from frontdesk.models.reservations import Booking, WaitingListEntry, WaitingListStatus
from frontdesk.models.restaurant import OperatingHours, Restaurant, RestaurantTable
from frontdesk.services.errors import (
    DuplicateSlugError,
    InvalidBookingRequestError,
    RestaurantNotFoundError,
    store_guard,
)

logger = logging.getLogger(__name__)


class RestaurantService:
    def __init__(self, db: Session):
        self.db = db

    def create_restaurant(
        self, name: str, slug: str, time_slot_duration_minutes: Optional[int] = None
    ) -> Restaurant:
        if time_slot_duration_minutes is None:
            time_slot_duration_minutes = settings.default_slot_duration_minutes
        minutes = time_slot_duration_minutes
        if minutes <= 0 or (60 % minutes != 0 and minutes % 60 != 0):
            raise InvalidBookingRequestError(
                f"Slot duration must divide an hour evenly, got {time_slot_duration_minutes}"
            )
        with store_guard(self.db):
            restaurant = Restaurant(
                name=name,
                slug=slug,
                time_slot_duration_minutes=time_slot_duration_minutes,
            )
            self.db.add(restaurant)
            try:
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                raise DuplicateSlugError(slug) from exc
            logger.info("Restaurant %s created (%s)", restaurant.id, slug)
            return restaurant

    def get_restaurant(self, restaurant_id: int) -> Restaurant:
        restaurant = self.db.get(Restaurant, restaurant_id)
        if restaurant is None:
            raise RestaurantNotFoundError(restaurant_id)
        return restaurant

    def get_by_slug(self, slug: str) -> Restaurant:
        restaurant = self.db.scalar(select(Restaurant).where(Restaurant.slug == slug))
        if restaurant is None:
            raise RestaurantNotFoundError(slug)
        return restaurant

    def set_operating_hours(self, restaurant_id: int, days: Iterable[dict]) -> List[OperatingHours]:
        """Upsert weekly hours; each item has day_of_week, opening_time, closing_time and is_closed."""
        with store_guard(self.db):
            self.get_restaurant(restaurant_id)
            existing = {
                h.day_of_week: h
                for h in self.db.scalars(
                    select(OperatingHours).where(OperatingHours.restaurant_id == restaurant_id)
                )
            }
            for day in days:
                opening: time = day["opening_time"]
                closing: time = day["closing_time"]
                is_closed = bool(day.get("is_closed", False))
                if not is_closed and closing <= opening:
                    raise InvalidBookingRequestError(
                        f"Closing time must be after opening time on day {day['day_of_week']}"
                    )
                hours = existing.get(day["day_of_week"])
                if hours is None:
                    hours = OperatingHours(restaurant_id=restaurant_id, day_of_week=day["day_of_week"])
                    self.db.add(hours)
                    existing[hours.day_of_week] = hours
                hours.opening_time = opening
                hours.closing_time = closing
                hours.is_closed = is_closed
            self.db.commit()
            return sorted(existing.values(), key=lambda h: h.day_of_week)

    def get_operating_hours(self, restaurant_id: int) -> List[OperatingHours]:
        self.get_restaurant(restaurant_id)
        return list(
            self.db.scalars(
                select(OperatingHours)
                .where(OperatingHours.restaurant_id == restaurant_id)
                .order_by(OperatingHours.day_of_week)
            )
        )

    def list_tables(self, restaurant_id: int) -> List[RestaurantTable]:
        with store_guard(self.db):
            self.get_restaurant(restaurant_id)
            return list(
                self.db.scalars(
                    select(RestaurantTable)
                    .where(RestaurantTable.restaurant_id == restaurant_id)
                    .order_by(RestaurantTable.table_number)
                )
            )

    def list_bookings(self, restaurant_id: int, service_date: date) -> List[Booking]:
        with store_guard(self.db):
            self.get_restaurant(restaurant_id)
            return list(
                self.db.scalars(
                    select(Booking)
                    .where(Booking.restaurant_id == restaurant_id, Booking.booking_date == service_date)
                    .order_by(Booking.booking_time, Booking.id)
                )
            )

    def list_waiting_list(
        self,
        restaurant_id: int,
        service_date: date,
        status: Optional[WaitingListStatus] = WaitingListStatus.WAITING,
    ) -> List[WaitingListEntry]:
        """A day's waiting list in service order: slot first, then priority."""
        with store_guard(self.db):
            self.get_restaurant(restaurant_id)
            stmt = select(WaitingListEntry).where(
                WaitingListEntry.restaurant_id == restaurant_id,
                WaitingListEntry.requested_date == service_date,
            )
            if status is not None:
                stmt = stmt.where(WaitingListEntry.status == status)
            return list(
                self.db.scalars(
                    stmt.order_by(
                        WaitingListEntry.requested_time,
                        WaitingListEntry.priority_order,
                        WaitingListEntry.id,
                    )
                )
            )
