"""Row-change notifications for tables, bookings and waiting-list entries.

Changes are collected on ``after_flush`` and handed to subscribers only
after the transaction commits; a rollback discards them.  Delivery is
fire-and-forget: a failing subscriber is logged and skipped, never
propagated into the write that caused the event.  Clients treat every event
as a signal to resync, not as a patch.
"""

import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

TRACKED_TABLES = frozenset({"restaurant_tables", "bookings", "waiting_list"})

_PENDING_KEY = "frontdesk_pending_changes"


@dataclass
class ChangeEvent:
    table: str
    operation: str  # INSERT, UPDATE or DELETE
    record_id: int
    restaurant_id: Optional[int]
    version: Optional[int]
    timestamp: str

    def to_dict(self) -> dict:
        return asdict(self)


Subscriber = Callable[[ChangeEvent], None]


def _event_for(obj, operation: str) -> Optional[ChangeEvent]:
    table = getattr(obj, "__tablename__", None)
    if table not in TRACKED_TABLES:
        return None
    return ChangeEvent(
        table=table,
        operation=operation,
        record_id=obj.id,
        restaurant_id=getattr(obj, "restaurant_id", None),
        version=getattr(obj, "version", None),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


class ChangeNotifier:
    """Publishes committed row changes to in-process subscribers."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self._installed = False

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback*; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, events: List[ChangeEvent]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for change in events:
            for callback in subscribers:
                try:
                    callback(change)
                except Exception:
                    logger.exception(
                        "Change subscriber failed for %s %s #%s",
                        change.operation, change.table, change.record_id,
                    )

    # ------------------------------------------------------------------
    # Session wiring
    # ------------------------------------------------------------------

    def install(self, session_cls=Session) -> None:
        """Attach the collection hooks to every session of *session_cls*."""
        if self._installed:
            return
        event.listen(session_cls, "after_flush", self._collect)
        event.listen(session_cls, "after_commit", self._flush_to_subscribers)
        event.listen(session_cls, "after_rollback", self._discard)
        self._installed = True

    @staticmethod
    def _collect(session: Session, flush_context) -> None:
        pending: Dict[Tuple[str, int], ChangeEvent] = session.info.setdefault(_PENDING_KEY, {})
        candidates = (
            [(obj, "INSERT") for obj in session.new]
            + [(obj, "UPDATE") for obj in session.dirty if session.is_modified(obj)]
            + [(obj, "DELETE") for obj in session.deleted]
        )
        for obj, operation in candidates:
            change = _event_for(obj, operation)
            if change is None:
                continue
            key = (change.table, change.record_id)
            earlier = pending.get(key)
            # An insert followed by updates in one transaction is still an insert
            if earlier is not None and earlier.operation == "INSERT" and operation == "UPDATE":
                change.operation = "INSERT"
            pending[key] = change

    def _flush_to_subscribers(self, session: Session) -> None:
        pending = session.info.pop(_PENDING_KEY, None)
        if pending:
            self.publish(list(pending.values()))

    @staticmethod
    def _discard(session: Session) -> None:
        session.info.pop(_PENDING_KEY, None)


notifier = ChangeNotifier()
notifier.install()
