"""
Waitlist Matcher

Holds requests for sold-out slots and re-offers freed capacity.

- add_entry: appended as waiting, no availability check
- on_slot_freed: FIFO scan of the date's waiting entries; the first entry
  whose preferred bay and start time are unset or match, and whose own
  duration fits the freed bay from that start, is notified.
  One entry per freed slot; re-offering after the hold window is left to
  expire_stale and the next freed slot.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from ..config import settings
from ..errors import ErrorCode, LedgerResult
from ..models.waitlist import WaitlistEntry, WaitlistStatus
from ..utils.clock import utcnow
from ..utils.logging_config import get_logger
from .availability import AvailabilityChecker
from .local_store import BookingStore
from .sync_outbox import enqueue_change
from .time_utils import normalize_time

logger = get_logger(__name__)


@dataclass
class FreedSlot:
    resource_id: int
    date: date
    start_time: str

    def to_dict(self) -> dict:
        return {
            "resource_id": self.resource_id,
            "date": self.date.isoformat(),
            "start_time": self.start_time,
        }


@dataclass
class WaitlistRequest:
    customer_name: str
    date: date
    duration_units: int = 1
    customer_id: Optional[str] = None
    contact: Optional[str] = None
    preferred_resource_id: Optional[int] = None
    preferred_start_time: Optional[str] = None


class WaitlistMatcher:
    def __init__(
        self,
        store: BookingStore,
        notifier=None,
        push_callback: Optional[Callable[[], None]] = None,
        checker: Optional[AvailabilityChecker] = None
    ):
        self.store = store
        self.notifier = notifier
        self.push_callback = push_callback
        # Without a checker only preferences are compared
        self.checker = checker

    def _push(self):
        if self.push_callback is None:
            return
        try:
            self.push_callback()
        except Exception as e:
            logger.warning(f"Eager push after waitlist change failed: {e}")

    def _next_created_at(self) -> datetime:
        # Strictly increasing creation times keep FIFO order stable
        now = utcnow()
        latest = self.store.db.query(WaitlistEntry.created_at).order_by(
            WaitlistEntry.created_at.desc()
        ).first()
        if latest and latest[0] and latest[0] >= now:
            return latest[0] + timedelta(microseconds=1)
        return now

    def add_entry(self, request: WaitlistRequest) -> LedgerResult:
        if not request.customer_name or not request.customer_name.strip():
            return LedgerResult.fail(ErrorCode.VALIDATION_ERROR, "Customer name is required")
        if not isinstance(request.date, date):
            return LedgerResult.fail(ErrorCode.VALIDATION_ERROR, "A valid date is required")
        if not request.duration_units or request.duration_units <= 0:
            return LedgerResult.fail(ErrorCode.VALIDATION_ERROR, "Duration must be positive")

        preferred_time = None
        if request.preferred_start_time:
            preferred_time = normalize_time(request.preferred_start_time)
            if preferred_time is None:
                return LedgerResult.fail(
                    ErrorCode.VALIDATION_ERROR,
                    f"Unparsable preferred start time: {request.preferred_start_time}",
                    field="preferred_start_time"
                )

        with self.store.writing() as db:
            created_at = self._next_created_at()
            entry = WaitlistEntry(
                customer_name=request.customer_name.strip(),
                customer_id=request.customer_id,
                contact=request.contact,
                date=request.date,
                preferred_resource_id=request.preferred_resource_id,
                preferred_start_time=preferred_time,
                duration_units=request.duration_units,
                status=WaitlistStatus.WAITING.value,
                created_at=created_at,
                updated_at=created_at,
                pending_sync=True,
            )
            self.store.add(entry)
            enqueue_change(db, entry)

        logger.info(f"Waitlist entry added: {entry.customer_name} for {entry.date}")
        self._push()
        return LedgerResult.ok(entry=entry)

    @staticmethod
    def _matches(entry: WaitlistEntry, slot: FreedSlot) -> bool:
        if entry.preferred_resource_id is not None and entry.preferred_resource_id != slot.resource_id:
            return False
        if entry.preferred_start_time and entry.preferred_start_time != slot.start_time:
            return False
        return True

    def _fits(self, entry: WaitlistEntry, slot: FreedSlot, bookings: list) -> bool:
        if self.checker is None:
            return True
        return self.checker.is_slot_free(
            slot.resource_id,
            slot.date,
            slot.start_time,
            entry.duration_units or 1,
            bookings
        )

    def on_slot_freed(self, resource_id: int, slot_date: date, start_time: str) -> Optional[WaitlistEntry]:
        """Notify the earliest matching waiting entry; returns it, or None."""
        slot = FreedSlot(resource_id=resource_id, date=slot_date, start_time=normalize_time(start_time) or start_time)

        with self.store.writing() as db:
            bookings = self.store.active_bookings_on(slot_date, resource_id)
            matched = None
            for entry in self.store.waiting_entries_on(slot_date):
                if self._matches(entry, slot) and self._fits(entry, slot, bookings):
                    matched = entry
                    break

            if matched is None:
                logger.debug(f"No waitlist match for bay {resource_id} on {slot_date} at {slot.start_time}")
                return None

            matched.status = WaitlistStatus.NOTIFIED.value
            matched.notified_at = utcnow()
            matched.matched_resource_id = slot.resource_id
            matched.matched_start_time = slot.start_time
            matched.touch()
            enqueue_change(db, matched)

        logger.waitlist_notified(matched.id, slot.resource_id, slot.start_time)

        if self.notifier is not None:
            try:
                self.notifier.notify(matched, slot)
            except Exception as e:
                logger.error(f"Notification dispatcher failed for entry {matched.id}: {e}")

        self._push()
        return matched

    def _transition(self, entry_id: str, allowed: set, new_status: str, **fields) -> LedgerResult:
        with self.store.writing() as db:
            entry = self.store.get_entry(entry_id)
            if entry is None:
                return LedgerResult.fail(ErrorCode.NOT_FOUND, f"Waitlist entry {entry_id} not found")
            if entry.status not in allowed:
                return LedgerResult.fail(
                    ErrorCode.INVALID_STATE,
                    f"Cannot move waitlist entry from {entry.status} to {new_status}",
                    current_status=entry.status
                )
            entry.status = new_status
            for name, value in fields.items():
                setattr(entry, name, value)
            entry.touch()
            enqueue_change(db, entry)

        self._push()
        return LedgerResult.ok(entry=entry)

    def mark_booked(self, entry_id: str, booking_id: str) -> LedgerResult:
        return self._transition(
            entry_id,
            {WaitlistStatus.WAITING.value, WaitlistStatus.NOTIFIED.value},
            WaitlistStatus.BOOKED.value,
            booking_id=booking_id
        )

    def expire(self, entry_id: str) -> LedgerResult:
        return self._transition(
            entry_id,
            {WaitlistStatus.WAITING.value, WaitlistStatus.NOTIFIED.value},
            WaitlistStatus.EXPIRED.value
        )

    def expire_stale(self, older_than: Optional[datetime] = None) -> List[str]:
        """
        Expire notified entries whose hold window has passed, and waiting
        entries for dates already in the past.
        """
        if older_than is None:
            older_than = utcnow() - timedelta(minutes=settings.waitlist_hold_minutes)
        today = utcnow().date()

        expired_ids = []
        with self.store.writing() as db:
            stale = db.query(WaitlistEntry).filter(
                ((WaitlistEntry.status == WaitlistStatus.NOTIFIED.value) & (WaitlistEntry.notified_at < older_than))
                | ((WaitlistEntry.status == WaitlistStatus.WAITING.value) & (WaitlistEntry.date < today))
            ).all()
            for entry in stale:
                entry.status = WaitlistStatus.EXPIRED.value
                entry.touch()
                enqueue_change(db, entry)
                expired_ids.append(entry.id)

        if expired_ids:
            logger.info(f"Expired {len(expired_ids)} stale waitlist entries")
            self._push()
        return expired_ids

    def entries_for_date(self, check_date: date) -> List[WaitlistEntry]:
        return self.store.entries_on(check_date)

    def get(self, entry_id: str) -> Optional[WaitlistEntry]:
        return self.store.get_entry(entry_id)
