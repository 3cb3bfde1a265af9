"""Pytest configuration and fixtures."""

import os

# Configure before anything imports frontdesk.core.config
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("TIMEZONE", "UTC")
os.environ.setdefault("WAITLIST_EXPIRY_ENABLED", "false")
os.environ.setdefault("STRICT_MANUAL_ASSIGNMENT", "false")

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from frontdesk.db.base import Base
from frontdesk.db.session import get_db, set_sqlite_pragma
from frontdesk.main import app
# Import all models to ensure they're registered with Base.metadata
from frontdesk.models import *
from frontdesk.services.allocation_engine import AllocationEngine
from frontdesk.services.booking_intake import BookingIntake
from frontdesk.services.change_notifier import notifier
from frontdesk.services.table_admin import TableAdmin

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

DINNER = time(19, 0)


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", set_sqlite_pragma)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    from frontdesk.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    global_limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture
def service_date() -> date:
    """A service day a week ahead, so bookings are never in the past."""
    return datetime.now(timezone.utc).date() + timedelta(days=7)


@pytest.fixture
def restaurant(db_session: Session) -> Restaurant:
    """A restaurant open 11:00-23:00 every day with 15-minute slots."""
    restaurant = Restaurant(name="Bistro Test", slug="bistro", time_slot_duration_minutes=15)
    db_session.add(restaurant)
    db_session.flush()
    for day in range(7):
        db_session.add(
            OperatingHours(
                restaurant_id=restaurant.id,
                day_of_week=day,
                opening_time=time(11, 0),
                closing_time=time(23, 0),
                is_closed=False,
            )
        )
    db_session.commit()
    db_session.refresh(restaurant)
    return restaurant


@pytest.fixture
def make_table(db_session: Session, restaurant: Restaurant) -> Callable[..., RestaurantTable]:
    def _make(table_number: str, capacity: int, status: TableStatus = TableStatus.AVAILABLE) -> RestaurantTable:
        table = RestaurantTable(
            restaurant_id=restaurant.id,
            table_number=table_number,
            capacity=capacity,
            status=status,
        )
        db_session.add(table)
        db_session.commit()
        db_session.refresh(table)
        return table
    return _make


@pytest.fixture
def tables(make_table) -> List[RestaurantTable]:
    """Table A seats 2, table B seats 4."""
    return [make_table("A", 2), make_table("B", 4)]


@pytest.fixture
def customer(db_session: Session) -> Customer:
    customer = Customer(name="Ada Guest", phone="+15550100", email="ada@example.com")
    db_session.add(customer)
    db_session.commit()
    db_session.refresh(customer)
    return customer


@pytest.fixture
def make_customer(db_session: Session) -> Callable[[str], Customer]:
    counter = {"n": 0}

    def _make(name: str = "Guest") -> Customer:
        counter["n"] += 1
        customer = Customer(name=f"{name} {counter['n']}", phone=f"+1555020{counter['n']}")
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture
def make_booking(db_session: Session, restaurant: Restaurant, customer: Customer, service_date: date):
    """Insert a booking row directly, without engine side effects."""
    def _make(
        table: Optional[RestaurantTable] = None,
        status: BookingStatus = BookingStatus.PENDING,
        party_size: int = 2,
        booking_date: Optional[date] = None,
        booking_time: time = DINNER,
        is_walk_in: bool = False,
    ) -> Booking:
        booking = Booking(
            restaurant_id=restaurant.id,
            table_id=table.id if table is not None else None,
            customer_id=customer.id,
            booking_date=booking_date or service_date,
            booking_time=booking_time,
            party_size=party_size,
            status=status,
            is_walk_in=is_walk_in,
            assignment_method=AssignmentMethod.MANUAL if table is not None else None,
        )
        db_session.add(booking)
        db_session.commit()
        db_session.refresh(booking)
        return booking
    return _make


@pytest.fixture
def make_entry(db_session: Session, restaurant: Restaurant, make_customer, service_date: date):
    """Insert a waiting-list entry directly."""
    def _make(
        priority: int,
        party_size: int = 2,
        status: WaitingListStatus = WaitingListStatus.WAITING,
        requested_date: Optional[date] = None,
        requested_time: time = DINNER,
        notes: Optional[str] = None,
    ) -> WaitingListEntry:
        entry = WaitingListEntry(
            restaurant_id=restaurant.id,
            customer_id=make_customer().id,
            requested_date=requested_date or service_date,
            requested_time=requested_time,
            party_size=party_size,
            status=status,
            priority_order=priority,
            notes=notes,
        )
        db_session.add(entry)
        db_session.commit()
        db_session.refresh(entry)
        return entry
    return _make


@pytest.fixture
def engine(db_session: Session) -> AllocationEngine:
    return AllocationEngine(db_session)


@pytest.fixture
def intake(engine: AllocationEngine) -> BookingIntake:
    return BookingIntake(engine)


@pytest.fixture
def table_admin(engine: AllocationEngine) -> TableAdmin:
    return TableAdmin(engine)


@pytest.fixture
def change_events() -> Generator[list, None, None]:
    """Collect every change event published while the test runs."""
    received = []
    unsubscribe = notifier.subscribe(received.append)
    yield received
    unsubscribe()
