"""Tests for the allocation engine: transitions, release, waitlist promotion and assignment."""

from datetime import datetime, time, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from frontdesk.core.metrics import metrics
from frontdesk.models.order_session import OrderSession
from frontdesk.models.reservations import (
    AssignmentMethod,
    Booking,
    BookingStatus,
    WaitingListStatus,
)
from frontdesk.models.restaurant import TableStatus
from frontdesk.services.allocation_engine import AllocationEngine
from frontdesk.services.booking_intake import CustomerDetails
from frontdesk.services.errors import (
    BookingNotFoundError,
    InvalidTransitionError,
    NoAvailableTableError,
    StoreUnavailableError,
    TableConflictError,
    WaitingListEntryNotFoundError,
)

DINNER = time(19, 0)


def _spy_promote_next(monkeypatch, engine):
    calls = []
    original = engine.promote_next

    def spy(*args, **kwargs):
        calls.append(args)
        return original(*args, **kwargs)

    monkeypatch.setattr(engine, "promote_next", spy)
    return calls


def _active_sessions(db_session, table_id):
    return db_session.query(OrderSession).filter_by(table_id=table_id, is_active=True).all()


def _fail_commit(monkeypatch, db_session, failing_call):
    """Make the *failing_call*-th commit on the session raise a transient store error."""
    original = db_session.commit
    calls = {"n": 0}

    def commit():
        calls["n"] += 1
        if calls["n"] == failing_call:
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
        return original()

    monkeypatch.setattr(db_session, "commit", commit)


class TestCancellationPromotesWaitlist:
    """A cancelled booking frees its table for the first waiting party."""

    def test_two_table_scenario(self, db_session, monkeypatch, restaurant, tables, intake, engine, service_date):
        """Fill both tables, waitlist a third party, then cancel the booking on the small table."""
        table_a, table_b = tables
        first = intake.request_booking(restaurant.id, CustomerDetails("Ann", "+1"), service_date, DINNER, 2)
        second = intake.request_booking(restaurant.id, CustomerDetails("Bob", "+2"), service_date, DINNER, 4)
        third = intake.request_booking(restaurant.id, CustomerDetails("Cat", "+3"), service_date, DINNER, 2)

        assert first.outcome == "confirmed" and first.booking.table_id == table_a.id
        assert second.outcome == "confirmed" and second.booking.table_id == table_b.id
        assert third.outcome == "waitlisted"
        assert third.entry.priority_order == 1
        db_session.refresh(table_a)
        assert table_a.status == TableStatus.RESERVED

        calls = _spy_promote_next(monkeypatch, engine)
        result = engine.transition_booking(first.booking.id, BookingStatus.CANCELLED)

        assert len(calls) == 1
        assert result.changed is True
        assert result.booking.cancelled_at is not None
        promoted = result.promoted_booking
        assert promoted is not None
        assert promoted.table_id == table_a.id
        assert promoted.customer_id == third.entry.customer_id
        assert promoted.status == BookingStatus.CONFIRMED
        assert promoted.assignment_method == AssignmentMethod.WAITLIST
        assert promoted.was_on_waitlist is True
        db_session.refresh(third.entry)
        assert third.entry.status == WaitingListStatus.NOTIFIED
        db_session.refresh(table_a)
        assert table_a.status == TableStatus.RESERVED
        assert result.table_status == TableStatus.RESERVED

    def test_no_waiting_party_leaves_table_available(self, db_session, tables, make_booking, engine):
        booking = make_booking(table=tables[0], status=BookingStatus.CONFIRMED)
        engine.recompute_table_status(tables[0])

        result = engine.transition_booking(booking.id, "cancelled")

        assert result.promoted_booking is None
        assert result.table_status == TableStatus.AVAILABLE
        db_session.refresh(tables[0])
        assert tables[0].status == TableStatus.AVAILABLE

    def test_other_active_booking_keeps_table_reserved(self, db_session, monkeypatch, tables, make_booking, make_entry, engine):
        """A later booking on the same table still reserves it."""
        booking = make_booking(table=tables[0], status=BookingStatus.CONFIRMED)
        make_booking(table=tables[0], status=BookingStatus.PENDING, booking_time=time(21, 0))
        make_entry(priority=1)
        calls = _spy_promote_next(monkeypatch, engine)

        result = engine.transition_booking(booking.id, BookingStatus.CANCELLED)

        assert result.table_status == TableStatus.RESERVED
        assert result.promoted_booking is None
        assert calls == []

    def test_booking_on_another_date_keeps_table_reserved(
        self, db_session, monkeypatch, tables, make_booking, make_entry, engine, service_date
    ):
        """A confirmed booking tomorrow still holds the table when today's pending one is cancelled."""
        table_a = tables[0]
        tomorrow = make_booking(table=table_a, status=BookingStatus.PENDING, booking_date=service_date + timedelta(days=1))
        engine.transition_booking(tomorrow.id, BookingStatus.CONFIRMED)
        today = make_booking(table=table_a, status=BookingStatus.PENDING)
        make_entry(priority=1)
        calls = _spy_promote_next(monkeypatch, engine)

        result = engine.transition_booking(today.id, BookingStatus.CANCELLED)

        assert result.table_status == TableStatus.RESERVED
        assert result.promoted_booking is None
        assert calls == []
        db_session.refresh(table_a)
        assert table_a.status == TableStatus.RESERVED

    def test_maintenance_table_stays_in_maintenance(self, db_session, monkeypatch, make_table, make_booking, make_entry, engine):
        table = make_table("M", 4, status=TableStatus.MAINTENANCE)
        booking = make_booking(table=table, status=BookingStatus.PENDING)
        make_entry(priority=1)
        calls = _spy_promote_next(monkeypatch, engine)

        result = engine.transition_booking(booking.id, BookingStatus.CANCELLED)

        assert result.table_status == TableStatus.MAINTENANCE
        assert calls == []
        db_session.refresh(table)
        assert table.status == TableStatus.MAINTENANCE


class TestTransitions:
    """Booking status transitions and their side effects."""

    def test_invalid_transition(self, make_booking, engine):
        booking = make_booking(status=BookingStatus.PENDING)
        with pytest.raises(InvalidTransitionError) as exc_info:
            engine.transition_booking(booking.id, BookingStatus.SEATED)
        assert exc_info.value.status_code == 409
        assert exc_info.value.from_status == "pending"

    def test_terminal_booking_cannot_move(self, make_booking, engine):
        booking = make_booking(status=BookingStatus.COMPLETED)
        with pytest.raises(InvalidTransitionError):
            engine.transition_booking(booking.id, BookingStatus.CONFIRMED)

    def test_unknown_booking(self, engine):
        with pytest.raises(BookingNotFoundError):
            engine.transition_booking(9999, BookingStatus.CONFIRMED)

    def test_unknown_status_value(self, make_booking, engine):
        booking = make_booking()
        with pytest.raises(ValueError):
            engine.transition_booking(booking.id, "teleported")

    def test_confirm_sets_table_reserved(self, db_session, tables, make_booking, engine):
        booking = make_booking(table=tables[1], status=BookingStatus.PENDING)
        result = engine.transition_booking(booking.id, BookingStatus.CONFIRMED)
        assert result.table_status == TableStatus.RESERVED
        assert result.booking.version == 2

    def test_confirm_conflicting_booking(self, db_session, tables, make_booking, engine):
        holder = make_booking(table=tables[0], status=BookingStatus.CONFIRMED)
        other = make_booking(table=tables[0], status=BookingStatus.PENDING)

        with pytest.raises(TableConflictError) as exc_info:
            engine.transition_booking(other.id, BookingStatus.CONFIRMED)

        assert exc_info.value.conflicting_booking_id == holder.id
        db_session.refresh(other)
        assert other.status == BookingStatus.PENDING

    def test_booking_without_table(self, make_booking, engine):
        booking = make_booking(status=BookingStatus.PENDING)
        result = engine.transition_booking(booking.id, BookingStatus.CONFIRMED)
        assert result.changed is True
        assert result.table_status is None

    def test_seating_opens_one_order_session(self, db_session, monkeypatch, tables, make_booking, engine):
        booking = make_booking(table=tables[0], status=BookingStatus.CONFIRMED)

        result = engine.transition_booking(booking.id, BookingStatus.SEATED)

        assert result.table_status == TableStatus.OCCUPIED
        assert result.booking.seated_at is not None
        sessions = _active_sessions(db_session, tables[0].id)
        assert len(sessions) == 1
        assert sessions[0].booking_id == booking.id

    def test_repeated_seating_is_a_no_op(self, db_session, monkeypatch, tables, make_booking, engine):
        """Retrying the same transition does not open a second session or sweep."""
        booking = make_booking(table=tables[0], status=BookingStatus.CONFIRMED)
        engine.transition_booking(booking.id, BookingStatus.SEATED)
        version = booking.version
        calls = _spy_promote_next(monkeypatch, engine)

        result = engine.transition_booking(booking.id, BookingStatus.SEATED)

        assert result.changed is False
        assert result.booking.version == version
        assert len(_active_sessions(db_session, tables[0].id)) == 1
        assert calls == []

    def test_completion_closes_session_and_frees_table(self, db_session, tables, make_booking, make_entry, engine):
        booking = make_booking(table=tables[0], status=BookingStatus.CONFIRMED)
        engine.transition_booking(booking.id, BookingStatus.SEATED)
        entry = make_entry(priority=1)

        result = engine.transition_booking(booking.id, BookingStatus.COMPLETED)

        assert result.booking.completed_at is not None
        assert _active_sessions(db_session, tables[0].id) == []
        assert result.promoted_booking is not None
        assert result.promoted_booking.table_id == tables[0].id
        db_session.refresh(entry)
        assert entry.status == WaitingListStatus.NOTIFIED

    def test_completed_walk_in_releases_table(self, db_session, tables, customer, intake, engine, service_date):
        walk_in = intake.create_booking(
            restaurant_id=tables[0].restaurant_id,
            customer_id=customer.id,
            booking_date=service_date,
            booking_time=DINNER,
            party_size=2,
            table_id=tables[0].id,
            is_walk_in=True,
        )
        db_session.refresh(tables[0])
        assert tables[0].status == TableStatus.OCCUPIED
        releases = metrics.table_releases

        result = engine.transition_booking(walk_in.id, BookingStatus.COMPLETED)

        assert result.table_status == TableStatus.AVAILABLE
        assert metrics.table_releases == releases + 1
        assert _active_sessions(db_session, tables[0].id) == []


class TestReleaseTable:
    """Explicit table release and its single waitlist sweep."""

    def test_release_completes_walk_in_and_sweeps_its_slot(self, db_session, tables, customer, intake, make_entry, engine, service_date):
        walk_in = intake.create_booking(
            restaurant_id=tables[0].restaurant_id,
            customer_id=customer.id,
            booking_date=service_date,
            booking_time=DINNER,
            party_size=2,
            table_id=tables[0].id,
            is_walk_in=True,
        )
        entry = make_entry(priority=1)

        result = engine.release_table(tables[0].id)

        db_session.refresh(walk_in)
        assert walk_in.status == BookingStatus.COMPLETED
        assert walk_in.completed_at is not None
        assert _active_sessions(db_session, tables[0].id) == []
        assert result.promoted_booking is not None
        assert result.promoted_booking.booking_time == DINNER
        db_session.refresh(entry)
        assert entry.status == WaitingListStatus.NOTIFIED
        assert result.table.status == TableStatus.RESERVED

    def test_release_without_walk_in_uses_current_slot(self, db_session, monkeypatch, restaurant, make_table, make_entry, engine, service_date):
        table = make_table("A", 2, status=TableStatus.OCCUPIED)
        entry = make_entry(priority=1)
        monkeypatch.setattr(
            "frontdesk.services.allocation_engine.local_now",
            lambda: datetime.combine(service_date, time(19, 7)),
        )

        result = engine.release_table(table.id)

        assert result.promoted_booking is not None
        assert result.promoted_booking.booking_time == DINNER
        db_session.refresh(entry)
        assert entry.status == WaitingListStatus.NOTIFIED

    def test_release_sweeps_exactly_once(self, db_session, tables, make_entry, engine, service_date):
        """Two free tables and two waiting parties: one release promotes one party."""
        first = make_entry(priority=1)
        second = make_entry(priority=2)

        result = engine.release_table(tables[0].id, service_date, DINNER)

        assert result.promoted_booking is not None
        db_session.refresh(first)
        db_session.refresh(second)
        assert first.status == WaitingListStatus.NOTIFIED
        assert second.status == WaitingListStatus.WAITING

    def test_priority_order_across_releases(self, db_session, make_table, make_entry, engine, service_date):
        table = make_table("A", 2)
        entries = {p: make_entry(priority=p) for p in (2, 3, 1)}

        promoted = []
        booking = engine.release_table(table.id, service_date, DINNER).promoted_booking
        while booking is not None:
            promoted.append(booking.customer_id)
            booking = engine.transition_booking(booking.id, BookingStatus.CANCELLED).promoted_booking

        assert promoted == [entries[1].customer_id, entries[2].customer_id, entries[3].customer_id]

    def test_releasing_a_free_table_is_a_no_op(self, db_session, monkeypatch, tables, make_entry, engine, service_date):
        """A retried release of a table that is already available neither sweeps nor counts."""
        entry = make_entry(priority=1)
        monkeypatch.setattr(
            "frontdesk.services.allocation_engine.local_now",
            lambda: datetime.combine(service_date, DINNER),
        )
        releases = metrics.table_releases
        calls = _spy_promote_next(monkeypatch, engine)

        result = engine.release_table(tables[0].id)

        assert result.promoted_booking is None
        assert result.table.status == TableStatus.AVAILABLE
        assert calls == []
        assert metrics.table_releases == releases
        db_session.refresh(entry)
        assert entry.status == WaitingListStatus.WAITING
        assert db_session.query(Booking).count() == 0

    def test_release_keeps_table_held_by_another_booking(self, db_session, make_table, make_booking, engine, service_date):
        table = make_table("A", 2, status=TableStatus.OCCUPIED)
        make_booking(table=table, status=BookingStatus.CONFIRMED, booking_time=time(21, 0))

        result = engine.release_table(table.id, service_date, DINNER)

        assert result.table.status == TableStatus.RESERVED

    def test_sweep_failure_is_absorbed(self, db_session, monkeypatch, tables, make_entry, engine, service_date):
        entry = make_entry(priority=1)
        failures = metrics.sweep_failures

        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr("frontdesk.services.allocation_engine.find_available_tables", broken)

        result = engine.release_table(tables[0].id, service_date, DINNER)

        assert result.promoted_booking is None
        assert metrics.sweep_failures == failures + 1
        db_session.refresh(tables[0])
        assert tables[0].status == TableStatus.AVAILABLE
        db_session.refresh(entry)
        assert entry.status == WaitingListStatus.WAITING


class TestPromoteNext:
    """Single-shot promotion of the first waiting party."""

    def test_skips_entries_no_longer_waiting(self, db_session, tables, make_entry, engine, service_date):
        make_entry(priority=1, status=WaitingListStatus.NOTIFIED)
        make_entry(priority=2, status=WaitingListStatus.CANCELLED)
        waiting = make_entry(priority=3)

        booking = engine.promote_next(tables[0].restaurant_id, service_date, DINNER)

        assert booking is not None
        assert booking.customer_id == waiting.customer_id

    def test_ties_resolved_by_entry_id(self, db_session, tables, make_entry, engine, service_date):
        earlier = make_entry(priority=1)
        make_entry(priority=1)
        booking = engine.promote_next(tables[0].restaurant_id, service_date, DINNER)
        assert booking.customer_id == earlier.customer_id

    def test_no_fitting_table_keeps_entry_waiting(self, db_session, tables, make_entry, engine, service_date):
        entry = make_entry(priority=1, party_size=6)
        misses = metrics.sweeps_without_match

        assert engine.promote_next(tables[0].restaurant_id, service_date, DINNER) is None

        db_session.refresh(entry)
        assert entry.status == WaitingListStatus.WAITING
        assert metrics.sweeps_without_match == misses + 1

    def test_other_slots_ignored(self, db_session, tables, make_entry, engine, service_date):
        make_entry(priority=1, requested_time=time(20, 0))
        assert engine.promote_next(tables[0].restaurant_id, service_date, DINNER) is None

    def test_notes_carried_to_booking(self, db_session, tables, make_entry, engine, service_date):
        make_entry(priority=1, notes="window seat")
        booking = engine.promote_next(tables[0].restaurant_id, service_date, DINNER)
        assert booking.notes == "window seat"


class TestExplicitPromotion:
    """Staff promotion of a specific waiting-list entry."""

    def test_promote_entry(self, db_session, tables, make_entry, engine):
        entry = make_entry(priority=2, party_size=3)

        booking = engine.promote_from_waiting_list(entry.id)

        assert booking.table_id == tables[1].id
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.assignment_method == AssignmentMethod.WAITLIST
        db_session.refresh(entry)
        assert entry.status == WaitingListStatus.CONFIRMED
        assert entry.version == 2
        db_session.refresh(tables[1])
        assert tables[1].status == TableStatus.RESERVED

    def test_unknown_entry(self, engine):
        with pytest.raises(WaitingListEntryNotFoundError):
            engine.promote_from_waiting_list(12345)

    def test_entry_not_waiting(self, tables, make_entry, engine):
        entry = make_entry(priority=1, status=WaitingListStatus.CANCELLED)
        with pytest.raises(InvalidTransitionError):
            engine.promote_from_waiting_list(entry.id)

    def test_no_table_for_party(self, db_session, tables, make_entry, engine):
        entry = make_entry(priority=1, party_size=8)
        with pytest.raises(NoAvailableTableError) as exc_info:
            engine.promote_from_waiting_list(entry.id)
        assert exc_info.value.party_size == 8
        db_session.refresh(entry)
        assert entry.status == WaitingListStatus.WAITING
        assert db_session.query(Booking).count() == 0



class TestPromotionRetries:
    """A promotion interrupted by a store failure never books the same entry twice."""

    def test_retry_after_failed_table_write(self, db_session, monkeypatch, tables, make_entry, engine):
        entry = make_entry(priority=1)
        _fail_commit(monkeypatch, db_session, failing_call=2)

        with pytest.raises(StoreUnavailableError):
            engine.promote_from_waiting_list(entry.id)
        booking = engine.promote_from_waiting_list(entry.id)

        bookings = db_session.query(Booking).filter_by(waiting_list_entry_id=entry.id).all()
        assert [b.id for b in bookings] == [booking.id]
        assert booking.status == BookingStatus.CONFIRMED
        db_session.refresh(entry)
        assert entry.status == WaitingListStatus.CONFIRMED
        assert entry.version == 2
        db_session.refresh(tables[0])
        assert tables[0].status == TableStatus.RESERVED

    def test_retry_after_failed_booking_write(self, db_session, monkeypatch, tables, make_entry, engine):
        entry = make_entry(priority=1)
        _fail_commit(monkeypatch, db_session, failing_call=1)

        with pytest.raises(StoreUnavailableError):
            engine.promote_from_waiting_list(entry.id)

        assert db_session.query(Booking).count() == 0
        db_session.refresh(entry)
        assert entry.status == WaitingListStatus.WAITING

        booking = engine.promote_from_waiting_list(entry.id)

        assert db_session.query(Booking).count() == 1
        assert booking.waiting_list_entry_id == entry.id
        db_session.refresh(tables[0])
        assert tables[0].status == TableStatus.RESERVED

    def test_failed_sweep_is_not_promoted_again(self, db_session, monkeypatch, make_table, make_entry, engine, service_date):
        table = make_table("A", 2)
        entry = make_entry(priority=1)
        _fail_commit(monkeypatch, db_session, failing_call=2)

        first = engine.release_table(table.id, service_date, DINNER)
        engine.release_table(table.id, service_date, DINNER)

        assert first.promoted_booking is None
        assert db_session.query(Booking).filter_by(waiting_list_entry_id=entry.id).count() == 1
        db_session.refresh(entry)
        assert entry.status == WaitingListStatus.NOTIFIED
        db_session.refresh(table)
        assert table.status == TableStatus.RESERVED

class TestWaitingListMaintenance:
    """Cancelling and expiring waiting-list entries."""

    @pytest.mark.parametrize("status", [
        WaitingListStatus.WAITING,
        WaitingListStatus.NOTIFIED,
        WaitingListStatus.CONFIRMED,
    ])
    def test_cancel(self, make_entry, engine, status):
        entry = make_entry(priority=1, status=status)
        cancelled = engine.cancel_waiting_list_entry(entry.id)
        assert cancelled.status == WaitingListStatus.CANCELLED

    def test_cancel_twice_is_a_no_op(self, make_entry, engine):
        entry = make_entry(priority=1)
        engine.cancel_waiting_list_entry(entry.id)
        version = entry.version
        assert engine.cancel_waiting_list_entry(entry.id).version == version

    def test_cannot_cancel_expired(self, make_entry, engine):
        entry = make_entry(priority=1, status=WaitingListStatus.EXPIRED)
        with pytest.raises(InvalidTransitionError):
            engine.cancel_waiting_list_entry(entry.id)

    def test_expire_stale_entries(self, db_session, make_entry, engine, service_date):
        stale = make_entry(priority=1, requested_time=time(18, 0))
        recent = make_entry(priority=1, requested_time=time(19, 45))
        notified = make_entry(priority=2, requested_time=time(18, 0), status=WaitingListStatus.NOTIFIED)

        expired = engine.expire_stale_entries(now=datetime.combine(service_date, time(20, 0)))

        assert expired == 1
        for entry in (stale, recent, notified):
            db_session.refresh(entry)
        assert stale.status == WaitingListStatus.EXPIRED
        assert recent.status == WaitingListStatus.WAITING
        assert notified.status == WaitingListStatus.NOTIFIED

    def test_expire_nothing(self, make_entry, engine, service_date):
        make_entry(priority=1)
        assert engine.expire_stale_entries(now=datetime.combine(service_date, time(12, 0))) == 0


class TestManualAssignment:
    """Staff override of a booking's table."""

    def test_assign_table(self, db_session, tables, make_booking, engine):
        booking = make_booking(status=BookingStatus.PENDING)

        assigned = engine.assign_table(booking.id, tables[1].id)

        assert assigned.table_id == tables[1].id
        assert assigned.assignment_method == AssignmentMethod.MANUAL
        assert assigned.version == 2
        db_session.refresh(tables[1])
        assert tables[1].status == TableStatus.RESERVED

    def test_no_capacity_check(self, tables, make_booking, engine):
        booking = make_booking(status=BookingStatus.CONFIRMED, party_size=6)
        assert engine.assign_table(booking.id, tables[0].id).table_id == tables[0].id

    def test_permissive_by_default(self, tables, make_booking, engine):
        make_booking(table=tables[0], status=BookingStatus.CONFIRMED)
        other = make_booking(status=BookingStatus.CONFIRMED)
        assert engine.assign_table(other.id, tables[0].id).table_id == tables[0].id

    def test_strict_mode_rejects_conflict(self, db_session, tables, make_booking):
        make_booking(table=tables[0], status=BookingStatus.CONFIRMED)
        other = make_booking(status=BookingStatus.CONFIRMED)
        strict = AllocationEngine(db_session, strict_manual_assignment=True)

        with pytest.raises(TableConflictError):
            strict.assign_table(other.id, tables[0].id)

        db_session.refresh(other)
        assert other.table_id is None

    def test_terminal_booking_rejected(self, tables, make_booking, engine):
        booking = make_booking(status=BookingStatus.CANCELLED)
        with pytest.raises(InvalidTransitionError):
            engine.assign_table(booking.id, tables[0].id)

    def test_previous_table_released(self, db_session, tables, make_booking, make_entry, engine):
        booking = make_booking(table=tables[0], status=BookingStatus.CONFIRMED)
        engine.recompute_table_status(tables[0])
        entry = make_entry(priority=1)

        engine.assign_table(booking.id, tables[1].id)

        db_session.refresh(entry)
        assert entry.status == WaitingListStatus.NOTIFIED
        promoted = db_session.query(Booking).filter_by(was_on_waitlist=True).one()
        assert promoted.table_id == tables[0].id
        db_session.refresh(tables[1])
        assert tables[1].status == TableStatus.RESERVED
