"""Booking and waiting-list models."""

from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Column, Date, DateTime, ForeignKey, Index, Integer, Text, Time
from sqlalchemy.orm import relationship, validates

from frontdesk.db.base import Base, TimestampMixin, VersionMixin
from frontdesk.models.restaurant import enum_values
from frontdesk.models.validators import positive


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SEATED = "seated"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class WaitingListStatus(str, Enum):
    WAITING = "waiting"
    NOTIFIED = "notified"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class AssignmentMethod(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    WAITLIST = "waitlist"


class Booking(Base, TimestampMixin, VersionMixin):
    """A reservation or walk-in occupying one table for one time slot."""
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_slot", "restaurant_id", "booking_date", "booking_time"),
        Index("ix_bookings_table_date", "table_id", "booking_date"),
        CheckConstraint("party_size > 0", name="ck_bookings_party_size_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    table_id = Column(Integer, ForeignKey("restaurant_tables.id"), nullable=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    waiting_list_entry_id = Column(Integer, ForeignKey("waiting_list.id"), nullable=True, index=True)

    booking_date = Column(Date, nullable=False)
    booking_time = Column(Time, nullable=False)  # slot-aligned
    party_size = Column(Integer, nullable=False)

    status = Column(enum_values(BookingStatus), default=BookingStatus.PENDING, nullable=False)
    is_walk_in = Column(Boolean, default=False, nullable=False)
    assignment_method = Column(enum_values(AssignmentMethod), nullable=True)
    was_on_waitlist = Column(Boolean, default=False, nullable=False)
    notes = Column(Text, nullable=True)

    # Audit
    seated_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    table = relationship("RestaurantTable")
    customer = relationship("Customer")

    @validates("party_size")
    def _validate_party_size(self, key, value):
        return positive(key, value)

    def __repr__(self) -> str:
        return f"<Booking {self.id} {self.booking_date} {self.booking_time} {self.status}>"


class WaitingListEntry(Base, TimestampMixin, VersionMixin):
    """A party waiting for a table in a specific slot."""
    __tablename__ = "waiting_list"
    __table_args__ = (
        Index("ix_waiting_list_slot", "restaurant_id", "requested_date", "requested_time"),
        CheckConstraint("party_size > 0", name="ck_waiting_list_party_size_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)

    requested_date = Column(Date, nullable=False)
    requested_time = Column(Time, nullable=False)
    party_size = Column(Integer, nullable=False)

    status = Column(enum_values(WaitingListStatus), default=WaitingListStatus.WAITING, nullable=False)
    priority_order = Column(Integer, nullable=False, default=1)  # lower is served first
    notes = Column(Text, nullable=True)

    customer = relationship("Customer")

    @validates("party_size")
    def _validate_party_size(self, key, value):
        return positive(key, value)
