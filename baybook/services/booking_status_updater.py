"""
Booking Status Auto-Update Service

Housekeeping run by the scheduler every minute:
- confirmed/pending bookings whose start passed more than the grace period
  ago without a check-in become no-shows (through the ledger, so the change
  syncs like any other)
- notified waitlist entries past their hold window, and waiting entries for
  past dates, expire
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..config import settings
from ..models.booking import Booking, BookingStatus
from ..utils.logging_config import get_logger
from .booking_ledger import BookingLedger
from .factory import build_ledger
from .time_utils import parse_time_of_day

logger = get_logger(__name__)


class BookingStatusUpdater:
    """
    Marks overdue bookings as no-shows.

    Works on the venue-local wall clock, the same one bookings are made in.
    """

    def __init__(self, ledger: BookingLedger, grace_minutes: Optional[int] = None):
        self.ledger = ledger
        self.db = ledger.store.db
        self.grace_minutes = grace_minutes if grace_minutes is not None else settings.no_show_grace_minutes

    def get_no_show_candidates(self, now: Optional[datetime] = None) -> List[Booking]:
        """Pending/confirmed bookings whose start + grace is already behind us."""
        now = now or self.ledger.clock()
        cutoff = now - timedelta(minutes=self.grace_minutes)

        candidates = self.db.query(Booking).filter(
            Booking.status.in_([BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value]),
            Booking.date <= cutoff.date()
        ).all()

        overdue = []
        for booking in candidates:
            start = parse_time_of_day(booking.start_time)
            if start is None:
                continue
            starts_at = datetime.combine(booking.date, datetime.min.time()) + timedelta(minutes=start.minutes)
            if starts_at <= cutoff:
                overdue.append(booking)
        return overdue

    def auto_mark_no_shows(self, now: Optional[datetime] = None) -> Tuple[int, List[str]]:
        """
        Returns:
            Tuple of (count_updated, list_of_booking_ids)
        """
        updated_ids = []
        for booking in self.get_no_show_candidates(now):
            result = self.ledger.mark_no_show(booking.id)
            if result.success:
                updated_ids.append(booking.id)
                logger.info(
                    f"Auto no-show for booking {booking.id}: "
                    f"{booking.customer_name} ({booking.date} {booking.start_time})"
                )
            else:
                logger.warning(f"Could not mark booking {booking.id} as no-show: {result.error.message}")

        if updated_ids:
            logger.info(f"Marked {len(updated_ids)} bookings as no-show")
        return len(updated_ids), updated_ids


def run_status_updates(db: Session, push_callback: Optional[Callable[[], None]] = None) -> Dict:
    """Run all housekeeping updates in one session."""
    ledger = build_ledger(db, push_callback=push_callback)

    no_show_count, no_show_ids = BookingStatusUpdater(ledger).auto_mark_no_shows()
    expired_ids = ledger.waitlist.expire_stale() if ledger.waitlist is not None else []

    return {
        "no_shows": no_show_count,
        "no_show_ids": no_show_ids,
        "waitlist_expired": len(expired_ids),
    }
