"""Table administration: create, bulk create, edit, delete and status override."""

import logging
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from frontdesk.models.order_session import OrderSession
from frontdesk.models.reservations import Booking
from frontdesk.models.restaurant import RestaurantTable, TableStatus
from frontdesk.services.allocation_engine import AllocationEngine
from frontdesk.services.errors import DuplicateTableError, TableInUseError, store_guard
from frontdesk.services.status_rules import ACTIVE_BOOKING_STATUSES

logger = logging.getLogger(__name__)

MAX_BULK_TABLES = 50
MAX_TABLE_CAPACITY = 20


class TableAdmin:
    def __init__(self, engine: AllocationEngine):
        self.engine = engine
        self.db = engine.db

    def _number_taken(self, restaurant_id: int, table_number: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(RestaurantTable.id).where(
            RestaurantTable.restaurant_id == restaurant_id,
            RestaurantTable.table_number == table_number,
        )
        if exclude_id is not None:
            stmt = stmt.where(RestaurantTable.id != exclude_id)
        return self.db.scalar(stmt) is not None

    def _commit_unique(self, table_number: str) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateTableError(table_number) from exc

    def create_table(
        self,
        restaurant_id: int,
        table_number: str,
        capacity: int,
        location_notes: Optional[str] = None,
    ) -> RestaurantTable:
        with store_guard(self.db):
            self.engine.get_restaurant(restaurant_id)
            table_number = table_number.strip()
            if self._number_taken(restaurant_id, table_number):
                raise DuplicateTableError(table_number)
            table = RestaurantTable(
                restaurant_id=restaurant_id,
                table_number=table_number,
                capacity=capacity,
                location_notes=location_notes,
                status=TableStatus.AVAILABLE,
            )
            self.db.add(table)
            self._commit_unique(table_number)
            logger.info("Table %s created for restaurant %s (capacity %s)", table_number, restaurant_id, capacity)
            return table

    def bulk_create_tables(self, restaurant_id: int, count: int, capacity: int) -> List[RestaurantTable]:
        """Create tables numbered "1" to *count*, all with the same capacity."""
        if not 1 <= count <= MAX_BULK_TABLES:
            raise ValueError(f"count must be between 1 and {MAX_BULK_TABLES}, got {count}")
        if not 1 <= capacity <= MAX_TABLE_CAPACITY:
            raise ValueError(f"capacity must be between 1 and {MAX_TABLE_CAPACITY}, got {capacity}")
        with store_guard(self.db):
            self.engine.get_restaurant(restaurant_id)
            numbers = [str(i) for i in range(1, count + 1)]
            for number in numbers:
                if self._number_taken(restaurant_id, number):
                    raise DuplicateTableError(number)
            tables = [
                RestaurantTable(restaurant_id=restaurant_id, table_number=number, capacity=capacity)
                for number in numbers
            ]
            self.db.add_all(tables)
            self._commit_unique(numbers[0])
            logger.info("Created %d tables for restaurant %s", count, restaurant_id)
            return tables

    def update_table(
        self,
        table_id: int,
        table_number: Optional[str] = None,
        capacity: Optional[int] = None,
        location_notes: Optional[str] = None,
    ) -> RestaurantTable:
        with store_guard(self.db):
            table = self.engine.get_table(table_id)
            if table_number is not None:
                table_number = table_number.strip()
                if self._number_taken(table.restaurant_id, table_number, exclude_id=table.id):
                    raise DuplicateTableError(table_number)
                table.table_number = table_number
            if capacity is not None:
                table.capacity = capacity
            if location_notes is not None:
                table.location_notes = location_notes
            table.increment_version()
            self._commit_unique(table.table_number)
            return table

    def delete_table(self, table_id: int) -> None:
        with store_guard(self.db):
            table = self.engine.get_table(table_id)
            active = self.db.scalar(
                select(Booking.id).where(
                    Booking.table_id == table.id,
                    Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                )
            )
            if active is not None:
                raise TableInUseError(table.id)
            self.db.execute(delete(OrderSession).where(OrderSession.table_id == table.id))
            # Finished bookings keep their history without the table link
            for booking in self.db.scalars(select(Booking).where(Booking.table_id == table.id)):
                booking.table_id = None
            self.db.delete(table)
            self.db.commit()
            logger.info("Table %s deleted", table_id)

    def set_table_status(self, table_id: int, status) -> RestaurantTable:
        """Staff override of a table's status.

        Marking a table available goes through the release path so the
        waiting list gets its sweep; other statuses are written as given.
        """
        status = TableStatus(status)
        if status == TableStatus.AVAILABLE:
            return self.engine.release_table(table_id).table
        with store_guard(self.db):
            table = self.engine.get_table(table_id)
            if table.status != status:
                table.status = status
                table.increment_version()
                self.db.commit()
                logger.info("Table %s manually set to %s", table.id, status.value)
            return table
