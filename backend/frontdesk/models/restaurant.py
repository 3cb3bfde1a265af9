"""Restaurant, dining table and operating hours models."""

from __future__ import annotations

from datetime import time
from enum import Enum
from typing import List, Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, Text, Time, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from frontdesk.core.config import settings
from frontdesk.db.base import Base, TimestampMixin, VersionMixin
from frontdesk.models.validators import day_of_week, positive


def enum_values(enum_cls):
    """Persist enum values ("available") rather than member names ("AVAILABLE")."""
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
    )


class TableStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


class Restaurant(Base, TimestampMixin):
    """A restaurant whose floor is managed by the allocation engine."""

    __tablename__ = "restaurants"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    time_slot_duration_minutes: Mapped[int] = mapped_column(
        Integer, default=lambda: settings.default_slot_duration_minutes, nullable=False
    )

    tables: Mapped[List["RestaurantTable"]] = relationship(
        back_populates="restaurant", order_by="RestaurantTable.table_number"
    )
    operating_hours: Mapped[List["OperatingHours"]] = relationship(
        back_populates="restaurant", cascade="all, delete-orphan"
    )

    @validates("time_slot_duration_minutes")
    def _validate_slot(self, key, value):
        return positive(key, value)


class RestaurantTable(Base, TimestampMixin, VersionMixin):
    """Physical dining table."""

    __tablename__ = "restaurant_tables"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "table_number", name="uq_restaurant_table_number"),
        CheckConstraint("capacity > 0", name="ck_restaurant_tables_capacity_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id"), nullable=False, index=True)
    table_number: Mapped[str] = mapped_column(String(20), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[TableStatus] = mapped_column(
        enum_values(TableStatus), default=TableStatus.AVAILABLE, nullable=False
    )
    location_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    restaurant: Mapped["Restaurant"] = relationship(back_populates="tables")

    @validates("capacity")
    def _validate_capacity(self, key, value):
        return positive(key, value)

    def __repr__(self) -> str:
        return f"<RestaurantTable {self.table_number} cap={self.capacity} {self.status}>"


class OperatingHours(Base):
    """Opening hours for one weekday (0 = Sunday)."""

    __tablename__ = "operating_hours"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "day_of_week", name="uq_operating_hours_day"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id"), nullable=False, index=True)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    opening_time: Mapped[time] = mapped_column(Time, nullable=False)
    closing_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    restaurant: Mapped["Restaurant"] = relationship(back_populates="operating_hours")

    @validates("day_of_week")
    def _validate_day(self, key, value):
        return day_of_week(key, value)
