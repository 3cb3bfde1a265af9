"""Order session opened when a party is seated."""

import secrets

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String

from frontdesk.db.base import Base, TimestampMixin


def new_session_token() -> str:
    return secrets.token_urlsafe(24)


class OrderSession(Base, TimestampMixin):
    """Links a seated table to the ordering subsystem."""
    __tablename__ = "order_sessions"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    table_id = Column(Integer, ForeignKey("restaurant_tables.id"), nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    session_token = Column(String(64), unique=True, nullable=False, default=new_session_token)
    is_active = Column(Boolean, default=True, nullable=False)
