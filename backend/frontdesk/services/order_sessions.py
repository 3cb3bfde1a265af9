"""Order-session side effects of seating and releasing tables."""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from frontdesk.models.order_session import OrderSession
from frontdesk.models.reservations import Booking
from frontdesk.models.restaurant import RestaurantTable

logger = logging.getLogger(__name__)


class OrderSessionHooks:
    """Opens an order session when a party is seated and closes it when the table frees up.

    The engine calls these hooks and commits afterwards; hooks only stage
    changes on the session.  Each hook checks persisted state first, so a
    retried call does not open a second session.
    """

    def __init__(self, db: Session):
        self.db = db

    def active_sessions(self, table_id: int) -> List[OrderSession]:
        return list(
            self.db.scalars(
                select(OrderSession).where(
                    OrderSession.table_id == table_id,
                    OrderSession.is_active.is_(True),
                )
            )
        )

    def on_seated(self, booking: Booking, table: RestaurantTable) -> Optional[OrderSession]:
        for session in self.active_sessions(table.id):
            if session.booking_id == booking.id:
                return session
        order_session = OrderSession(
            restaurant_id=booking.restaurant_id,
            table_id=table.id,
            booking_id=booking.id,
        )
        self.db.add(order_session)
        self.db.flush()
        logger.info("Opened order session %s for table %s (booking %s)", order_session.id, table.id, booking.id)
        return order_session

    def on_completed(self, booking: Booking, table: RestaurantTable) -> int:
        closed = 0
        for session in self.active_sessions(table.id):
            if session.booking_id in (booking.id, None):
                session.is_active = False
                closed += 1
        if closed:
            logger.info("Closed %d order session(s) for booking %s", closed, booking.id)
        return closed

    def on_table_released(self, table: RestaurantTable) -> int:
        sessions = self.active_sessions(table.id)
        for session in sessions:
            session.is_active = False
        if sessions:
            logger.info("Closed %d order session(s) on release of table %s", len(sessions), table.id)
        return len(sessions)
