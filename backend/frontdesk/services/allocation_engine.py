"""Allocation engine.

The only component that chains writes across tables, bookings and the
waiting list.  Every public operation is a short unit of work on one
session; multi-row sequences are committed step by step in a fixed order
and every step checks persisted state before writing, so a caller can
retry an operation after a transient failure without doubling its effects.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from frontdesk.core.config import settings
from frontdesk.core.metrics import metrics
from frontdesk.models.reservations import (
    AssignmentMethod,
    Booking,
    BookingStatus,
    WaitingListEntry,
    WaitingListStatus,
)
from frontdesk.models.restaurant import Restaurant, RestaurantTable, TableStatus
from frontdesk.services.capacity_matcher import AvailableTable, find_available_tables, floor_to_slot
from frontdesk.services.errors import (
    AllocationError,
    BookingNotFoundError,
    InvalidTransitionError,
    NoAvailableTableError,
    RestaurantNotFoundError,
    TableConflictError,
    TableNotFoundError,
    WaitingListEntryNotFoundError,
    store_guard,
)
from frontdesk.services.order_sessions import OrderSessionHooks
from frontdesk.services.status_rules import (
    ACTIVE_BOOKING_STATUSES,
    HOLDING_BOOKING_STATUSES,
    WAITING_LIST_CANCELLABLE,
    can_transition,
    derive_table_status,
    is_terminal,
    status_value,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    """Current wall-clock time in the restaurant's timezone, without tzinfo."""
    return datetime.now(settings.app_timezone).replace(tzinfo=None)


@dataclass
class TransitionResult:
    booking: Booking
    changed: bool
    table_status: Optional[TableStatus] = None
    promoted_booking: Optional[Booking] = None


@dataclass
class ReleaseResult:
    table: RestaurantTable
    promoted_booking: Optional[Booking] = None


class AllocationEngine:
    """Booking transitions, table release, waitlist promotion and manual assignment."""

    def __init__(
        self,
        db: Session,
        hooks: Optional[OrderSessionHooks] = None,
        strict_manual_assignment: Optional[bool] = None,
    ):
        self.db = db
        self.hooks = hooks if hooks is not None else OrderSessionHooks(db)
        if strict_manual_assignment is None:
            strict_manual_assignment = settings.strict_manual_assignment
        self.strict_manual_assignment = strict_manual_assignment

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: int) -> Booking:
        booking = self.db.get(Booking, booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking

    def get_table(self, table_id: int) -> RestaurantTable:
        table = self.db.get(RestaurantTable, table_id)
        if table is None:
            raise TableNotFoundError(table_id)
        return table

    def get_entry(self, entry_id: int) -> WaitingListEntry:
        entry = self.db.get(WaitingListEntry, entry_id)
        if entry is None:
            raise WaitingListEntryNotFoundError(entry_id)
        return entry

    def get_restaurant(self, restaurant_id: int) -> Restaurant:
        restaurant = self.db.get(Restaurant, restaurant_id)
        if restaurant is None:
            raise RestaurantNotFoundError(restaurant_id)
        return restaurant

    def current_slot(self, restaurant_id: int) -> Tuple[date, time]:
        """The slot containing "now", floored to the restaurant's slot duration."""
        restaurant = self.get_restaurant(restaurant_id)
        now = local_now()
        return now.date(), floor_to_slot(now.time(), restaurant.time_slot_duration_minutes)

    def find_conflict(
        self,
        table_id: int,
        booking_date: date,
        booking_time: time,
        exclude_booking_id: Optional[int] = None,
    ) -> Optional[Booking]:
        """Another confirmed or seated booking holding the table for the same slot."""
        stmt = select(Booking).where(
            Booking.table_id == table_id,
            Booking.booking_date == booking_date,
            Booking.booking_time == booking_time,
            Booking.status.in_(HOLDING_BOOKING_STATUSES),
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        return self.db.scalars(stmt.order_by(Booking.id)).first()

    def _check_conflict(self, table_id: int, booking: Booking) -> None:
        conflict = self.find_conflict(table_id, booking.booking_date, booking.booking_time, booking.id)
        if conflict is not None:
            raise TableConflictError(table_id, conflict.id)

    # ------------------------------------------------------------------
    # Table status
    # ------------------------------------------------------------------

    def _write_table_status(self, table: RestaurantTable, status: TableStatus) -> bool:
        if table.status == status:
            return False
        previous = table.status
        table.status = status
        table.increment_version()
        self.db.commit()
        logger.info("Table %s: %s -> %s", table.id, status_value(previous), status.value)
        return True

    def recompute_table_status(self, table: RestaurantTable) -> TableStatus:
        """Derive the table's status from every non-terminal booking on it and persist it."""
        statuses = self.db.scalars(
            select(Booking.status).where(
                Booking.table_id == table.id,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            )
        ).all()
        status = derive_table_status(statuses, current=table.status)
        self._write_table_status(table, status)
        return status

    # ------------------------------------------------------------------
    # Booking transitions
    # ------------------------------------------------------------------

    def _stamp(self, booking: Booking, status: BookingStatus) -> None:
        booking.status = status
        now = utcnow()
        if status == BookingStatus.SEATED:
            booking.seated_at = now
        elif status == BookingStatus.COMPLETED:
            booking.completed_at = now
        elif status in (BookingStatus.CANCELLED, BookingStatus.NO_SHOW):
            booking.cancelled_at = now
        booking.increment_version()

    def transition_booking(self, booking_id: int, new_status) -> TransitionResult:
        """Move a booking to *new_status* and apply the side effects in order.

        1. persist the booking status and its audit timestamp
        2. recompute the linked table's status
        3. release the table (one waitlist sweep) when it became available
        4. a completed walk-in always releases its table

        Asking for the status the booking already has is a no-op.
        """
        new_status = BookingStatus(new_status)
        with store_guard(self.db):
            booking = self.get_booking(booking_id)
            current = BookingStatus(booking.status)
            if current == new_status:
                logger.info("Booking %s is already %s", booking.id, new_status.value)
                return TransitionResult(booking=booking, changed=False)
            if not can_transition(current, new_status):
                raise InvalidTransitionError("booking", current.value, new_status.value)
            if new_status in HOLDING_BOOKING_STATUSES and booking.table_id is not None:
                self._check_conflict(booking.table_id, booking)

            self._stamp(booking, new_status)
            self.db.commit()
            metrics.record_transition(new_status.value)
            logger.info("Booking %s: %s -> %s", booking.id, current.value, new_status.value)

            result = TransitionResult(booking=booking, changed=True)
            if booking.table_id is None:
                return result
            table = self.get_table(booking.table_id)

            result.table_status = self.recompute_table_status(table)

            if new_status == BookingStatus.SEATED:
                self.hooks.on_seated(booking, table)
                self.db.commit()
            elif new_status == BookingStatus.COMPLETED:
                self.hooks.on_completed(booking, table)
                self.db.commit()

            walk_in_done = booking.is_walk_in and new_status == BookingStatus.COMPLETED
            if result.table_status == TableStatus.AVAILABLE or walk_in_done:
                released = self.release_table(table.id, booking.booking_date, booking.booking_time)
                result.table_status = TableStatus(released.table.status)
                result.promoted_booking = released.promoted_booking
            return result

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def release_table(
        self,
        table_id: int,
        service_date: Optional[date] = None,
        service_time: Optional[time] = None,
    ) -> ReleaseResult:
        """Mark a table free and offer it to the waiting list exactly once.

        Seated walk-ins still on the table are completed and its order
        sessions closed.  The table becomes available unless another
        non-terminal booking still holds it; maintenance is cleared.  Without
        an explicit slot the sweep targets the slot of the walk-in just
        completed, else the current slot, and releasing a table that is
        already free with nothing to close is a no-op.
        """
        with store_guard(self.db):
            table = self.get_table(table_id)

            walk_ins = list(
                self.db.scalars(
                    select(Booking)
                    .where(
                        Booking.table_id == table.id,
                        Booking.status == BookingStatus.SEATED,
                        Booking.is_walk_in.is_(True),
                    )
                    .order_by(Booking.booking_date, Booking.booking_time)
                )
            )
            for walk_in in walk_ins:
                self._stamp(walk_in, BookingStatus.COMPLETED)
            if walk_ins:
                self.db.commit()
                for walk_in in walk_ins:
                    metrics.record_transition(BookingStatus.COMPLETED.value)
                    logger.info("Walk-in booking %s completed on release of table %s", walk_in.id, table.id)

            sessions_closed = self.hooks.on_table_released(table)
            if sessions_closed:
                self.db.commit()

            remaining = self.db.scalars(
                select(Booking.status).where(
                    Booking.table_id == table.id,
                    Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                )
            ).all()
            status_changed = self._write_table_status(table, derive_table_status(remaining))

            explicit_slot = service_date is not None and service_time is not None
            if not (explicit_slot or walk_ins or sessions_closed or status_changed):
                logger.info("Table %s is already free; nothing to release", table.id)
                return ReleaseResult(table=table)
            metrics.record_release()

            if not explicit_slot:
                if walk_ins:
                    service_date, service_time = walk_ins[-1].booking_date, walk_ins[-1].booking_time
                else:
                    service_date, service_time = self.current_slot(table.restaurant_id)
            logger.info("Table %s released; sweeping waitlist for %s %s", table.id, service_date, service_time)

        promoted = self._sweep(table.restaurant_id, service_date, service_time)
        return ReleaseResult(table=table, promoted_booking=promoted)

    # ------------------------------------------------------------------
    # Waitlist promotion
    # ------------------------------------------------------------------

    def _next_waiting_entry(self, restaurant_id: int, service_date: date, service_time: time) -> Optional[WaitingListEntry]:
        return self.db.scalars(
            select(WaitingListEntry)
            .where(
                WaitingListEntry.restaurant_id == restaurant_id,
                WaitingListEntry.requested_date == service_date,
                WaitingListEntry.requested_time == service_time,
                WaitingListEntry.status == WaitingListStatus.WAITING,
            )
            .order_by(WaitingListEntry.priority_order, WaitingListEntry.id)
        ).first()

    def booking_for_entry(self, entry: WaitingListEntry) -> Optional[Booking]:
        """The booking a promotion already created from *entry*, if any."""
        return self.db.scalars(
            select(Booking).where(Booking.waiting_list_entry_id == entry.id).order_by(Booking.id)
        ).first()

    def _book_from_entry(
        self,
        entry: WaitingListEntry,
        match: Optional[AvailableTable],
        entry_status: WaitingListStatus,
    ) -> Booking:
        booking = self.booking_for_entry(entry)
        if booking is None:
            booking = Booking(
                restaurant_id=entry.restaurant_id,
                table_id=match.table_id,
                customer_id=entry.customer_id,
                waiting_list_entry_id=entry.id,
                booking_date=entry.requested_date,
                booking_time=entry.requested_time,
                party_size=entry.party_size,
                status=BookingStatus.CONFIRMED,
                is_walk_in=False,
                assignment_method=AssignmentMethod.WAITLIST,
                was_on_waitlist=True,
                notes=entry.notes,
            )
            self.db.add(booking)

        # The booking and the entry status land in one commit
        if entry.status != entry_status:
            entry.status = entry_status
            entry.increment_version()
        self.db.commit()

        if booking.table_id is not None:
            self.recompute_table_status(self.get_table(booking.table_id))
        logger.info(
            "Waiting list entry %s (party of %s) promoted to booking %s on table %s",
            entry.id, entry.party_size, booking.id, booking.table_id,
        )
        return booking

    def promote_next(self, restaurant_id: int, service_date: date, service_time: time) -> Optional[Booking]:
        """Promote the first waiting party of the slot if a table fits it.

        At most one entry is promoted per call.  The entry becomes notified;
        without a matching table it stays waiting and None is returned.
        """
        with store_guard(self.db):
            entry = self._next_waiting_entry(restaurant_id, service_date, service_time)
            if entry is None:
                return None
            matches = find_available_tables(
                self.db, restaurant_id, service_date, service_time, entry.party_size
            )
            if not matches:
                metrics.record_sweep_miss()
                logger.info(
                    "No table for waiting party of %s at %s %s; entry %s keeps waiting",
                    entry.party_size, service_date, service_time, entry.id,
                )
                return None
            booking = self._book_from_entry(entry, matches[0], WaitingListStatus.NOTIFIED)
        metrics.record_promotion("sweep")
        return booking

    def _sweep(self, restaurant_id: int, service_date: date, service_time: time) -> Optional[Booking]:
        """Passive sweep after a release; failures are logged, never raised."""
        try:
            return self.promote_next(restaurant_id, service_date, service_time)
        except (AllocationError, SQLAlchemyError):
            self.db.rollback()
            metrics.record_sweep_failure()
            logger.warning(
                "Waitlist sweep for restaurant %s at %s %s failed",
                restaurant_id, service_date, service_time, exc_info=True,
            )
            return None

    def promote_from_waiting_list(self, entry_id: int) -> Booking:
        """Staff promotion of a specific entry; the entry becomes confirmed.

        A retry after a partial failure returns the booking already created
        for the entry instead of booking it twice.
        """
        with store_guard(self.db):
            entry = self.get_entry(entry_id)
            existing = self.booking_for_entry(entry)
            if existing is not None and entry.status in (WaitingListStatus.WAITING, WaitingListStatus.CONFIRMED):
                logger.info("Waiting list entry %s already promoted to booking %s", entry.id, existing.id)
                return self._book_from_entry(entry, None, WaitingListStatus.CONFIRMED)
            if entry.status != WaitingListStatus.WAITING:
                raise InvalidTransitionError(
                    "waiting list entry", status_value(entry.status), WaitingListStatus.CONFIRMED.value
                )
            matches = find_available_tables(
                self.db, entry.restaurant_id, entry.requested_date, entry.requested_time, entry.party_size
            )
            if not matches:
                raise NoAvailableTableError(
                    entry.party_size, f"{entry.requested_date} {entry.requested_time.strftime('%H:%M')}"
                )
            booking = self._book_from_entry(entry, matches[0], WaitingListStatus.CONFIRMED)
        metrics.record_promotion("explicit")
        return booking

    def cancel_waiting_list_entry(self, entry_id: int) -> WaitingListEntry:
        with store_guard(self.db):
            entry = self.get_entry(entry_id)
            if entry.status == WaitingListStatus.CANCELLED:
                return entry
            if entry.status not in WAITING_LIST_CANCELLABLE:
                raise InvalidTransitionError(
                    "waiting list entry", status_value(entry.status), WaitingListStatus.CANCELLED.value
                )
            entry.status = WaitingListStatus.CANCELLED
            entry.increment_version()
            self.db.commit()
            logger.info("Waiting list entry %s cancelled", entry.id)
            return entry

    def expire_stale_entries(self, now: Optional[datetime] = None) -> int:
        """Expire waiting entries whose slot is past the grace period. Returns the count."""
        now = now or local_now()
        cutoff = now - timedelta(minutes=settings.waitlist_expiry_grace_minutes)
        with store_guard(self.db):
            candidates = self.db.scalars(
                select(WaitingListEntry).where(
                    WaitingListEntry.status == WaitingListStatus.WAITING,
                    WaitingListEntry.requested_date <= cutoff.date(),
                )
            ).all()
            expired = 0
            for entry in candidates:
                if datetime.combine(entry.requested_date, entry.requested_time) < cutoff:
                    entry.status = WaitingListStatus.EXPIRED
                    entry.increment_version()
                    expired += 1
            if expired:
                self.db.commit()
                logger.info("Expired %d stale waiting list entries", expired)
        return expired

    # ------------------------------------------------------------------
    # Manual assignment
    # ------------------------------------------------------------------

    def assign_table(self, booking_id: int, table_id: int) -> Booking:
        """Staff override: put a booking on a table.

        No capacity check is made.  The conflict check only runs when strict
        manual assignment is configured.  A table the booking leaves is
        recomputed and released if nothing else holds it.
        """
        with store_guard(self.db):
            booking = self.get_booking(booking_id)
            table = self.get_table(table_id)
            if is_terminal(booking.status):
                raise InvalidTransitionError("booking", status_value(booking.status), "assigned")
            if self.strict_manual_assignment:
                self._check_conflict(table.id, booking)

            previous_table_id = booking.table_id
            if previous_table_id != table.id or booking.assignment_method != AssignmentMethod.MANUAL:
                booking.table_id = table.id
                booking.assignment_method = AssignmentMethod.MANUAL
                booking.increment_version()
                self.db.commit()
                logger.info("Booking %s manually assigned to table %s", booking.id, table.id)

            self.recompute_table_status(table)

            if previous_table_id is not None and previous_table_id != table.id:
                previous = self.get_table(previous_table_id)
                if self.recompute_table_status(previous) == TableStatus.AVAILABLE:
                    self.release_table(previous.id, booking.booking_date, booking.booking_time)
            return booking
