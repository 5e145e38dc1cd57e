"""
Local Store

Injectable wrapper around the local cache session. The ledger, the waitlist
matcher and the reconciler's merge step are the only writers, and each
mutation runs inside `writing()`, which holds the process-wide write lock
around check-then-write and commits (or rolls back) as one transaction.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.booking import Booking, BookingStatus
from ..models.waitlist import WaitlistEntry, WaitlistStatus

logger = logging.getLogger(__name__)

# One logical writer per process (API threadpool + scheduler jobs share it)
_write_lock = threading.RLock()


class BookingStore:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def writing(self):
        """Hold the write lock and commit the enclosed mutation atomically."""
        with _write_lock:
            try:
                yield self.db
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

    # ---------- bookings ----------

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self.db.query(Booking).filter(Booking.id == booking_id).first()

    def bookings_on(self, check_date: date, resource_id: Optional[int] = None) -> List[Booking]:
        query = self.db.query(Booking).filter(Booking.date == check_date)
        if resource_id is not None:
            query = query.filter(Booking.resource_id == resource_id)
        return query.order_by(Booking.resource_id, Booking.start_time).all()

    def active_bookings_on(self, check_date: date, resource_id: Optional[int] = None) -> List[Booking]:
        return [
            b for b in self.bookings_on(check_date, resource_id)
            if b.status != BookingStatus.CANCELLED.value
        ]

    def bookings_in_series(self, recurring_id: str) -> List[Booking]:
        return self.db.query(Booking).filter(
            Booking.recurring_id == recurring_id
        ).order_by(Booking.date).all()

    def all_bookings(self) -> List[Booking]:
        return self.db.query(Booking).all()

    def pending_bookings(self) -> List[Booking]:
        return self.db.query(Booking).filter(Booking.pending_sync == True).all()  # noqa: E712

    def add(self, record):
        self.db.add(record)
        self.db.flush()
        return record

    def delete(self, record):
        self.db.delete(record)
        self.db.flush()

    # ---------- waitlist ----------

    def get_entry(self, entry_id: str) -> Optional[WaitlistEntry]:
        return self.db.query(WaitlistEntry).filter(WaitlistEntry.id == entry_id).first()

    def waiting_entries_on(self, check_date: date) -> List[WaitlistEntry]:
        """Waiting entries for a date, oldest first."""
        return self.db.query(WaitlistEntry).filter(
            WaitlistEntry.date == check_date,
            WaitlistEntry.status == WaitlistStatus.WAITING.value
        ).order_by(WaitlistEntry.created_at, WaitlistEntry.id).all()

    def entries_on(self, check_date: date) -> List[WaitlistEntry]:
        return self.db.query(WaitlistEntry).filter(
            WaitlistEntry.date == check_date
        ).order_by(WaitlistEntry.created_at).all()

    def all_entries(self) -> List[WaitlistEntry]:
        return self.db.query(WaitlistEntry).all()

    def pending_entries(self) -> List[WaitlistEntry]:
        return self.db.query(WaitlistEntry).filter(WaitlistEntry.pending_sync == True).all()  # noqa: E712
