"""
Booking Ledger

Owns the local booking collection. Every mutation goes through here so
updated_at, pending_sync and the outbox stay consistent:

    request -> validate -> availability check -> price -> local write + outbox row
            -> eager push (best-effort) -> on cancel, waitlist re-offer

State machine:
    pending/confirmed -> checked_in -> completed
    pending/confirmed -> no_show
    any non-terminal  -> cancelled
No transition leaves a terminal state. Operations return LedgerResult and
never raise for business failures.
"""

import calendar
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional

from ..config import settings as default_settings, Settings
from ..errors import ErrorCode, LedgerResult
from ..models.booking import Booking, BookingStatus, TERMINAL_STATUSES
from ..utils.clock import utcnow
from ..utils.logging_config import get_logger
from .availability import AvailabilityChecker
from .local_store import BookingStore
from .membership import get_tier
from .pricing_engine import PricingEngine
from .resource_catalog import ResourceCatalog
from .sync_outbox import enqueue_change
from .time_utils import format_time_of_day, parse_time_of_day

logger = get_logger(__name__)

SLOT_FIELDS = {"resource_id", "date", "start_time", "duration_units"}
PRICING_FIELDS = {"date", "start_time", "duration_units", "member_tier"}
UPDATABLE_FIELDS = SLOT_FIELDS | {
    "customer_name", "customer_id", "players", "member_tier",
    "notes", "is_prepaid", "payment_reference",
}

RECURRENCE_PATTERNS = ("weekly", "biweekly", "monthly")
MAX_OCCURRENCES = 52


@dataclass
class BookingRequest:
    customer_name: str
    resource_id: int
    date: date
    start_time: str
    duration_units: int
    customer_id: Optional[str] = None
    players: int = 1
    member_tier: Optional[str] = None
    is_prepaid: bool = False
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    source: str = "pos"
    # Client-generated id, so a terminal can create offline and retry safely
    booking_id: Optional[str] = None


@dataclass
class RecurringResult:
    recurring_id: str
    created: List[Booking] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class BookingLedger:
    def __init__(
        self,
        store: BookingStore,
        catalog: ResourceCatalog,
        checker: Optional[AvailabilityChecker] = None,
        pricing: Optional[PricingEngine] = None,
        membership=None,
        waitlist=None,
        push_callback: Optional[Callable[[], None]] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.store = store
        self.catalog = catalog
        self.config = config or catalog.config or default_settings
        self.pricing = pricing or PricingEngine(self.config)
        self.checker = checker or AvailabilityChecker(catalog, self.pricing)
        self.membership = membership
        self.waitlist = waitlist
        self.push_callback = push_callback
        # Venue-local wall clock, used for refund windows
        self.clock = clock

    # ---------- helpers ----------

    def _push(self):
        """Eager best-effort push; a failure only leaves pending_sync set."""
        if self.push_callback is None:
            return
        try:
            self.push_callback()
        except Exception as e:
            logger.warning(f"Eager push failed, will retry on next cycle: {e}")

    def _resolve_tier(self, customer_name: str, explicit: Optional[str]) -> Optional[str]:
        if explicit:
            tier = get_tier(explicit)
            if tier is None:
                logger.warning(f"Unknown member tier {explicit!r}, pricing as non-member")
            return tier.key if tier else None

        if self.membership is None:
            return None
        try:
            found = self.membership.find_active_membership(customer_name)
        except Exception as e:
            logger.warning(f"Membership lookup failed for {customer_name}: {e}")
            return None
        tier = get_tier(found)
        return tier.key if tier else None

    def _slot_unavailable(self, resource_id: int, check_date: date, start_time: str, duration_units: int) -> LedgerResult:
        start = parse_time_of_day(start_time)
        end_minute = start.minutes + duration_units * self.checker.unit_minutes
        reason = "overlap"
        if not self.checker.within_operating_hours(check_date, start.minutes, end_minute):
            reason = "outside_operating_hours"
        return LedgerResult.fail(
            ErrorCode.SLOT_UNAVAILABLE,
            f"Bay {resource_id} is not available on {check_date} at {start_time}",
            resource_id=resource_id,
            date=check_date.isoformat(),
            start_time=start_time,
            duration_units=duration_units,
            reason=reason
        )

    def _validate_slot(self, resource_id, check_date, start_time, duration_units, players) -> Optional[LedgerResult]:
        resource = self.catalog.get(resource_id) if resource_id is not None else None
        if resource is None:
            return LedgerResult.fail(ErrorCode.VALIDATION_ERROR, f"Unknown resource {resource_id}", field="resource_id")
        if not isinstance(check_date, date):
            return LedgerResult.fail(ErrorCode.VALIDATION_ERROR, "A valid date is required", field="date")
        if parse_time_of_day(start_time) is None:
            return LedgerResult.fail(ErrorCode.VALIDATION_ERROR, f"Unparsable start time: {start_time!r}", field="start_time")
        if not isinstance(duration_units, int) or duration_units <= 0:
            return LedgerResult.fail(ErrorCode.VALIDATION_ERROR, "Duration must be a positive number of units", field="duration_units")
        if duration_units > self.config.max_duration_units:
            return LedgerResult.fail(
                ErrorCode.VALIDATION_ERROR,
                f"Duration exceeds {self.config.max_duration_units} units",
                field="duration_units"
            )
        if players is None or players < 1 or players > resource.capacity:
            return LedgerResult.fail(
                ErrorCode.VALIDATION_ERROR,
                f"Party size must be between 1 and {resource.capacity} for {resource.label}",
                field="players"
            )
        return None

    def _apply_price(self, booking: Booking):
        price = self.pricing.compute_price(
            booking.duration_units, booking.date, booking.start_time, booking.member_tier
        )
        booking.base_price = price.base
        booking.peak_surcharge = price.peak_surcharge
        booking.member_discount = price.member_discount
        booking.price = price.final
        booking.is_peak = price.is_peak

    def _refund_for(self, booking: Booking) -> Decimal:
        """Full refund 24h+ ahead, partial 12h+ ahead, otherwise none. Prepaid only."""
        if not booking.is_prepaid or not booking.price:
            return Decimal("0.00")

        start = parse_time_of_day(booking.start_time)
        starts_at = datetime.combine(booking.date, datetime.min.time()) + timedelta(minutes=start.minutes)
        hours_ahead = (starts_at - self.clock()).total_seconds() / 3600
        price = Decimal(str(booking.price))

        if hours_ahead >= self.config.full_refund_hours:
            return price.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        if hours_ahead >= self.config.partial_refund_hours:
            refund = price * Decimal(self.config.partial_refund_percent) / 100
            return refund.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return Decimal("0.00")

    # ---------- create / update ----------

    def create(self, request: BookingRequest, recurring_id: Optional[str] = None) -> LedgerResult:
        if not request.customer_name or not request.customer_name.strip():
            return LedgerResult.fail(ErrorCode.VALIDATION_ERROR, "Customer name is required", field="customer_name")

        invalid = self._validate_slot(
            request.resource_id, request.date, request.start_time, request.duration_units, request.players
        )
        if invalid:
            return invalid

        start_time = format_time_of_day(parse_time_of_day(request.start_time))
        resource = self.catalog.get(request.resource_id)

        # Lookup may hit the network, keep it outside the write lock
        member_tier = self._resolve_tier(request.customer_name, request.member_tier)
        if resource.members_only and member_tier is None:
            return LedgerResult.fail(
                ErrorCode.VALIDATION_ERROR,
                f"{resource.label} is reserved for members",
                field="resource_id"
            )

        with self.store.writing() as db:
            if request.booking_id and self.store.get_booking(request.booking_id):
                return LedgerResult.fail(
                    ErrorCode.VALIDATION_ERROR,
                    f"Booking {request.booking_id} already exists",
                    field="booking_id"
                )

            existing = self.store.active_bookings_on(request.date, request.resource_id)
            if not self.checker.is_slot_free(
                request.resource_id, request.date, start_time, request.duration_units, existing
            ):
                return self._slot_unavailable(request.resource_id, request.date, start_time, request.duration_units)

            now = utcnow()
            booking = Booking(
                id=request.booking_id or str(uuid.uuid4()),
                resource_id=request.resource_id,
                date=request.date,
                start_time=start_time,
                duration_units=request.duration_units,
                customer_name=request.customer_name.strip(),
                customer_id=request.customer_id,
                players=request.players,
                member_tier=member_tier,
                status=BookingStatus.CONFIRMED.value,
                is_prepaid=request.is_prepaid,
                payment_reference=request.payment_reference,
                notes=request.notes,
                source=request.source,
                recurring_id=recurring_id,
                created_at=now,
                updated_at=now,
                pending_sync=True,
            )
            self._apply_price(booking)
            self.store.add(booking)
            enqueue_change(db, booking)

        logger.booking_created(booking.id, booking.customer_name, booking.resource_id, float(booking.price))
        self._push()
        return LedgerResult.ok(booking=booking)

    def update(self, booking_id: str, changes: Dict[str, Any]) -> LedgerResult:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            return LedgerResult.fail(
                ErrorCode.VALIDATION_ERROR,
                f"Fields cannot be updated: {', '.join(sorted(unknown))}",
                fields=sorted(unknown)
            )

        booking = self.store.get_booking(booking_id)
        if booking is None:
            return LedgerResult.fail(ErrorCode.NOT_FOUND, f"Booking {booking_id} not found")

        changes = dict(changes)
        if "customer_name" in changes:
            name = (changes["customer_name"] or "").strip()
            if not name:
                return LedgerResult.fail(ErrorCode.VALIDATION_ERROR, "Customer name is required", field="customer_name")
            changes["customer_name"] = name

        if "start_time" in changes:
            parsed = parse_time_of_day(changes["start_time"])
            if parsed is None:
                return LedgerResult.fail(
                    ErrorCode.VALIDATION_ERROR,
                    f"Unparsable start time: {changes['start_time']!r}",
                    field="start_time"
                )
            changes["start_time"] = format_time_of_day(parsed)

        if "member_tier" in changes:
            changes["member_tier"] = self._resolve_tier(booking.customer_name, changes["member_tier"]) \
                if changes["member_tier"] else None

        with self.store.writing() as db:
            booking = self.store.get_booking(booking_id)
            if booking is None:
                return LedgerResult.fail(ErrorCode.NOT_FOUND, f"Booking {booking_id} not found")
            if booking.is_terminal:
                return LedgerResult.fail(
                    ErrorCode.INVALID_STATE,
                    f"Booking is {booking.status} and can no longer be changed",
                    current_status=booking.status
                )

            changed = {k for k, v in changes.items() if getattr(booking, k) != v}
            if not changed:
                return LedgerResult.ok(booking=booking)

            target = {name: changes.get(name, getattr(booking, name)) for name in SLOT_FIELDS}
            players = changes.get("players", booking.players)

            if changed & (SLOT_FIELDS | {"players"}):
                invalid = self._validate_slot(
                    target["resource_id"], target["date"], target["start_time"], target["duration_units"], players
                )
                if invalid:
                    return invalid

            resource = self.catalog.get(target["resource_id"])
            tier = changes.get("member_tier", booking.member_tier)
            if resource.members_only and tier is None:
                return LedgerResult.fail(
                    ErrorCode.VALIDATION_ERROR,
                    f"{resource.label} is reserved for members",
                    field="resource_id"
                )

            if changed & SLOT_FIELDS:
                existing = self.store.active_bookings_on(target["date"], target["resource_id"])
                if not self.checker.is_slot_free(
                    target["resource_id"], target["date"], target["start_time"],
                    target["duration_units"], existing, exclude_booking_id=booking.id
                ):
                    return self._slot_unavailable(
                        target["resource_id"], target["date"], target["start_time"], target["duration_units"]
                    )

            for name in changed:
                setattr(booking, name, changes[name])

            # Prepaid bookings keep the price they were charged
            if changed & PRICING_FIELDS and not booking.is_prepaid:
                self._apply_price(booking)

            booking.touch()
            enqueue_change(db, booking)

        logger.info(f"Booking {booking_id} updated: {', '.join(sorted(changed))}")
        self._push()
        return LedgerResult.ok(booking=booking)

    # ---------- status transitions ----------

    def _change_status(self, booking_id: str, allowed: set, new_status: str, **fields) -> LedgerResult:
        with self.store.writing() as db:
            booking = self.store.get_booking(booking_id)
            if booking is None:
                return LedgerResult.fail(ErrorCode.NOT_FOUND, f"Booking {booking_id} not found")
            if booking.status not in allowed:
                return LedgerResult.fail(
                    ErrorCode.INVALID_STATE,
                    f"Cannot move booking from {booking.status} to {new_status}",
                    current_status=booking.status
                )

            old_status = booking.status
            booking.status = new_status
            for name, value in fields.items():
                setattr(booking, name, value)
            booking.touch()
            enqueue_change(db, booking)

        logger.booking_status_changed(booking_id, old_status, new_status)
        self._push()
        return LedgerResult.ok(booking=booking)

    def check_in(self, booking_id: str) -> LedgerResult:
        return self._change_status(
            booking_id,
            {BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value},
            BookingStatus.CHECKED_IN.value,
            checked_in_at=utcnow()
        )

    def check_out(self, booking_id: str) -> LedgerResult:
        return self._change_status(
            booking_id,
            {BookingStatus.CHECKED_IN.value},
            BookingStatus.COMPLETED.value,
            checked_out_at=utcnow()
        )

    def mark_no_show(self, booking_id: str) -> LedgerResult:
        return self._change_status(
            booking_id,
            {BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value},
            BookingStatus.NO_SHOW.value,
            no_show_at=utcnow()
        )

    def cancel(self, booking_id: str, reason: Optional[str] = None) -> LedgerResult:
        with self.store.writing() as db:
            booking = self.store.get_booking(booking_id)
            if booking is None:
                return LedgerResult.fail(ErrorCode.NOT_FOUND, f"Booking {booking_id} not found")
            if booking.status in TERMINAL_STATUSES:
                return LedgerResult.fail(
                    ErrorCode.INVALID_STATE,
                    f"Booking is already {booking.status}",
                    current_status=booking.status
                )

            old_status = booking.status
            booking.status = BookingStatus.CANCELLED.value
            booking.cancel_reason = reason
            booking.cancelled_at = utcnow()
            booking.refund_amount = self._refund_for(booking) if booking.is_prepaid else None
            booking.touch()
            enqueue_change(db, booking)
            freed = (booking.resource_id, booking.date, booking.start_time)

        logger.booking_status_changed(booking_id, old_status, BookingStatus.CANCELLED.value)

        if self.waitlist is not None:
            try:
                self.waitlist.on_slot_freed(*freed)
            except Exception as e:
                logger.error(f"Waitlist matching failed after cancelling {booking_id}: {e}")

        self._push()
        return LedgerResult.ok(booking=booking)

    def purge(self, booking_id: str) -> LedgerResult:
        """Administrative physical delete; only cancelled bookings qualify."""
        with self.store.writing():
            booking = self.store.get_booking(booking_id)
            if booking is None:
                return LedgerResult.fail(ErrorCode.NOT_FOUND, f"Booking {booking_id} not found")
            if booking.status != BookingStatus.CANCELLED.value:
                return LedgerResult.fail(
                    ErrorCode.INVALID_STATE,
                    "Only cancelled bookings can be purged",
                    current_status=booking.status
                )
            self.store.delete(booking)

        logger.warning(f"Booking {booking_id} purged from the local cache")
        return LedgerResult.ok()

    # ---------- recurring series ----------

    def _occurrence_dates(self, start: date, pattern: str, count: Optional[int], end_date: Optional[date]) -> List[date]:
        dates = []
        index = 0
        limit = min(count, MAX_OCCURRENCES) if count else MAX_OCCURRENCES
        while len(dates) < limit:
            if pattern == "weekly":
                current = start + timedelta(weeks=index)
            elif pattern == "biweekly":
                current = start + timedelta(weeks=2 * index)
            else:
                current = _add_months(start, index)
            if end_date and current > end_date:
                break
            dates.append(current)
            index += 1
        return dates

    def create_recurring(
        self,
        request: BookingRequest,
        pattern: str,
        count: Optional[int] = None,
        end_date: Optional[date] = None
    ) -> LedgerResult:
        """
        Create a weekly, biweekly or monthly series sharing one recurring_id.

        Unavailable occurrences are skipped and reported; the series succeeds
        when at least one occurrence was created.
        """
        if pattern not in RECURRENCE_PATTERNS:
            return LedgerResult.fail(
                ErrorCode.VALIDATION_ERROR,
                f"Pattern must be one of {', '.join(RECURRENCE_PATTERNS)}",
                field="pattern"
            )
        if not count and not end_date:
            return LedgerResult.fail(ErrorCode.VALIDATION_ERROR, "Either count or end_date is required")
        if count is not None and count <= 0:
            return LedgerResult.fail(ErrorCode.VALIDATION_ERROR, "Count must be positive", field="count")

        series = RecurringResult(recurring_id=str(uuid.uuid4()))
        for occurrence in self._occurrence_dates(request.date, pattern, count, end_date):
            occurrence_request = replace(request, date=occurrence, booking_id=None)
            result = self.create(occurrence_request, recurring_id=series.recurring_id)
            if result.success:
                series.created.append(result.booking)
            else:
                series.skipped.append({
                    "date": occurrence.isoformat(),
                    "code": result.error.code.value,
                    "reason": result.error.message,
                })

        if not series.created:
            return LedgerResult.fail(
                ErrorCode.SLOT_UNAVAILABLE,
                "No occurrence of the series could be booked",
                skipped=series.skipped
            )

        logger.info(
            f"Recurring series {series.recurring_id}: {len(series.created)} booked, "
            f"{len(series.skipped)} skipped"
        )
        return LedgerResult.ok(booking=series)

    def cancel_recurring_series(
        self,
        recurring_id: str,
        reason: Optional[str] = None,
        from_date: Optional[date] = None
    ) -> List[LedgerResult]:
        """Cancel every non-terminal occurrence on or after from_date (default today)."""
        from_date = from_date or self.clock().date()
        targets = [
            b.id for b in self.store.bookings_in_series(recurring_id)
            if b.date >= from_date and not b.is_terminal
        ]
        return [self.cancel(booking_id, reason) for booking_id in targets]

    # ---------- queries ----------

    def get(self, booking_id: str) -> Optional[Booking]:
        return self.store.get_booking(booking_id)

    def bookings_for_date(self, check_date: date, resource_id: Optional[int] = None) -> List[Booking]:
        return self.store.bookings_on(check_date, resource_id)

    def availability_for_date(self, check_date: date, duration_units: int = 1):
        return self.checker.find_free_slots_for_date(
            check_date, duration_units, self.store.active_bookings_on(check_date)
        )
