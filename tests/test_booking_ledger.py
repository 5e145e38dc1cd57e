"""
Tests for the Booking Ledger

Walks the front-desk flow on one bay:
- create, conflicting create, back-to-back create
- cancel hands the slot to the waitlist
- update re-checks availability without colliding with itself
- status machine and refund windows
- recurring series
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import MagicMock

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from baybook.errors import ErrorCode
from baybook.models.booking import BookingStatus
from baybook.models.sync_outbox import SyncOutbox
from baybook.models.waitlist import WaitlistStatus
from baybook.services.booking_ledger import BookingLedger, BookingRequest
from baybook.services.waitlist_matcher import WaitlistRequest

TUESDAY = date(2025, 6, 10)


def _request(start_time="10:00 AM", units=2, resource_id=3, **kwargs):
    return BookingRequest(
        customer_name=kwargs.pop("customer_name", "Alex Morgan"),
        resource_id=resource_id,
        date=kwargs.pop("day", TUESDAY),
        start_time=start_time,
        duration_units=units,
        **kwargs
    )


class TestCreateBooking:
    def test_create_prices_and_flags_for_sync(self, ledger, store):
        result = ledger.create(_request())

        assert result.success
        booking = result.booking
        assert booking.start_time == "10:00"
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.price == Decimal("80.00")
        assert booking.is_peak is False
        assert booking.pending_sync is True
        assert booking.remote_key is None
        assert store.get_booking(booking.id) is not None

    def test_create_writes_outbox_row(self, ledger, db):
        booking = ledger.create(_request()).booking
        events = db.query(SyncOutbox).filter(SyncOutbox.record_id == booking.id).all()
        assert len(events) == 1
        assert events[0].operation == "create"
        assert events[0].collection == "bookings"

    def test_overlapping_create_is_rejected(self, ledger):
        ledger.create(_request())
        result = ledger.create(_request("11:00 AM", 1, customer_name="Sam Lee"))

        assert not result.success
        assert result.error_code == ErrorCode.SLOT_UNAVAILABLE
        assert result.error.details["reason"] == "overlap"

    def test_back_to_back_create_succeeds(self, ledger):
        ledger.create(_request())
        result = ledger.create(_request("12:00 PM", 1, customer_name="Sam Lee"))
        assert result.success

    def test_no_two_active_bookings_overlap(self, ledger, store):
        for start, units in [("09:00", 2), ("10:00", 1), ("10:30", 1), ("11:00", 3), ("13:00", 1), ("13:30", 2)]:
            ledger.create(_request(start, units))

        spans = sorted(
            (int(b.start_time[:2]) * 60 + int(b.start_time[3:]), b.duration_units * 60)
            for b in store.active_bookings_on(TUESDAY, 3)
        )
        for (start_a, len_a), (start_b, _) in zip(spans, spans[1:]):
            assert start_a + len_a <= start_b

    def test_outside_operating_hours(self, ledger):
        result = ledger.create(_request("8:00 PM", 3))
        assert result.error_code == ErrorCode.SLOT_UNAVAILABLE
        assert result.error.details["reason"] == "outside_operating_hours"

    @pytest.mark.parametrize("kwargs", [
        {"start_time": "25:00"},
        {"units": 0},
        {"units": 20},
        {"resource_id": 42},
        {"customer_name": "   "},
        {"players": 9},
    ])
    def test_validation_errors(self, ledger, kwargs):
        result = ledger.create(_request(**kwargs))
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_client_generated_id_is_kept(self, ledger):
        result = ledger.create(_request(booking_id="terminal-2-0001"))
        assert result.booking.id == "terminal-2-0001"

        duplicate = ledger.create(_request("15:00", 1, booking_id="terminal-2-0001"))
        assert duplicate.error_code == ErrorCode.VALIDATION_ERROR

    def test_members_only_bay_requires_membership(self, ledger, membership):
        result = ledger.create(_request(resource_id=4, players=2))
        assert result.error_code == ErrorCode.VALIDATION_ERROR

        membership.set_membership("Alex Morgan", "par")
        result = ledger.create(_request(resource_id=4, players=2))
        assert result.success
        assert result.booking.member_tier == "par"
        assert result.booking.price == Decimal("40.00")

    def test_membership_lookup_failure_prices_as_non_member(self, store, catalog, config):
        directory = MagicMock()
        directory.find_active_membership.side_effect = RuntimeError("remote down")
        ledger = BookingLedger(store, catalog, membership=directory, config=config)

        result = ledger.create(_request())
        assert result.success
        assert result.booking.member_tier is None
        assert result.booking.price == Decimal("80.00")

    def test_push_callback_failure_does_not_fail_create(self, store, catalog, config):
        ledger = BookingLedger(store, catalog, config=config, push_callback=MagicMock(side_effect=RuntimeError("boom")))
        result = ledger.create(_request())
        assert result.success
        assert result.booking.pending_sync is True


class TestUpdateBooking:
    def test_extend_does_not_collide_with_itself(self, ledger):
        booking = ledger.create(_request()).booking
        result = ledger.update(booking.id, {"duration_units": 3})

        assert result.success
        assert result.booking.duration_units == 3
        assert result.booking.price == Decimal("110.00")

    def test_move_into_taken_slot_rejected(self, ledger):
        ledger.create(_request())
        other = ledger.create(_request("14:00", 1, customer_name="Sam Lee")).booking

        result = ledger.update(other.id, {"start_time": "11:00 AM"})
        assert result.error_code == ErrorCode.SLOT_UNAVAILABLE
        assert ledger.get(other.id).start_time == "14:00"

    def test_prepaid_booking_keeps_its_price(self, ledger):
        booking = ledger.create(_request(is_prepaid=True)).booking
        result = ledger.update(booking.id, {"start_time": "6:00 PM"})

        assert result.success
        assert result.booking.price == Decimal("80.00")

    def test_unknown_field_rejected(self, ledger):
        booking = ledger.create(_request()).booking
        result = ledger.update(booking.id, {"status": "completed"})
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_update_terminal_booking_rejected(self, ledger):
        booking = ledger.create(_request()).booking
        ledger.cancel(booking.id)
        result = ledger.update(booking.id, {"notes": "late"})
        assert result.error_code == ErrorCode.INVALID_STATE

    def test_update_missing_booking(self, ledger):
        assert ledger.update("nope", {"notes": "x"}).error_code == ErrorCode.NOT_FOUND

    def test_update_bumps_updated_at(self, ledger, db):
        booking = ledger.create(_request()).booking
        before = booking.updated_at
        ledger.update(booking.id, {"notes": "left-handed clubs"})
        assert ledger.get(booking.id).updated_at >= before
        assert db.query(SyncOutbox).filter(SyncOutbox.record_id == booking.id).count() == 2


class TestStatusMachine:
    def test_check_in_then_out(self, ledger):
        booking = ledger.create(_request()).booking

        checked_in = ledger.check_in(booking.id)
        assert checked_in.booking.status == BookingStatus.CHECKED_IN.value
        assert checked_in.booking.checked_in_at is not None

        completed = ledger.check_out(booking.id)
        assert completed.booking.status == BookingStatus.COMPLETED.value

    def test_check_out_requires_check_in(self, ledger):
        booking = ledger.create(_request()).booking
        assert ledger.check_out(booking.id).error_code == ErrorCode.INVALID_STATE

    def test_no_show(self, ledger):
        booking = ledger.create(_request()).booking
        result = ledger.mark_no_show(booking.id)
        assert result.booking.status == BookingStatus.NO_SHOW.value

    @pytest.mark.parametrize("finish", ["cancel", "mark_no_show"])
    def test_terminal_states_are_final(self, ledger, finish):
        booking = ledger.create(_request()).booking
        getattr(ledger, finish)(booking.id)

        assert ledger.check_in(booking.id).error_code == ErrorCode.INVALID_STATE
        assert ledger.cancel(booking.id).error_code == ErrorCode.INVALID_STATE
        assert ledger.mark_no_show(booking.id).error_code == ErrorCode.INVALID_STATE

    def test_missing_booking(self, ledger):
        assert ledger.check_in("missing").error_code == ErrorCode.NOT_FOUND


class TestCancel:
    def test_cancel_frees_slot_and_notifies_waitlist(self, ledger, waitlist, notifier):
        first = ledger.create(_request()).booking
        entry = waitlist.add_entry(WaitlistRequest(
            customer_name="Jo Park", date=TUESDAY, preferred_start_time="10:00 AM"
        )).entry

        result = ledger.cancel(first.id, "rain check")

        assert result.booking.status == BookingStatus.CANCELLED.value
        assert result.booking.cancel_reason == "rain check"
        assert waitlist.get(entry.id).status == WaitlistStatus.NOTIFIED.value
        assert notifier.sent[0][0] == entry.id
        assert ledger.create(_request(customer_name="Jo Park")).success

    def test_waitlist_entry_longer_than_freed_gap_keeps_waiting(self, ledger, waitlist, notifier):
        ten = ledger.create(_request("10:00", 1)).booking
        ledger.create(_request("11:00", 1, customer_name="Sam Lee"))
        long_entry = waitlist.add_entry(WaitlistRequest(
            customer_name="Jo Park", date=TUESDAY, preferred_start_time="10:00", duration_units=3
        )).entry
        short_entry = waitlist.add_entry(WaitlistRequest(
            customer_name="Kim Ito", date=TUESDAY, preferred_start_time="10:00"
        )).entry

        ledger.cancel(ten.id)

        assert waitlist.get(long_entry.id).status == WaitlistStatus.WAITING.value
        assert waitlist.get(short_entry.id).status == WaitlistStatus.NOTIFIED.value
        assert [sent[0] for sent in notifier.sent] == [short_entry.id]

    def test_refund_full_more_than_a_day_ahead(self, ledger):
        # Clock is 2025-06-09 09:00, booking starts 2025-06-10 10:00 (25h)
        booking = ledger.create(_request(is_prepaid=True)).booking
        assert ledger.cancel(booking.id).booking.refund_amount == Decimal("80.00")

    def test_refund_half_between_twelve_and_twenty_four_hours(self, ledger):
        booking = ledger.create(_request("18:00", 1, is_prepaid=True)).booking
        # 2025-06-10 18:00 peak: 45 + 10 = 55.00
        ledger.clock = lambda: datetime(2025, 6, 10, 2, 0)
        assert ledger.cancel(booking.id).booking.refund_amount == Decimal("27.50")

    def test_no_refund_close_to_start(self, ledger):
        booking = ledger.create(_request(is_prepaid=True)).booking
        ledger.clock = lambda: datetime(2025, 6, 10, 8, 0)
        assert ledger.cancel(booking.id).booking.refund_amount == Decimal("0.00")

    def test_unpaid_booking_has_no_refund(self, ledger):
        booking = ledger.create(_request()).booking
        assert ledger.cancel(booking.id).booking.refund_amount is None

    def test_purge_only_cancelled(self, ledger):
        booking = ledger.create(_request()).booking
        assert ledger.purge(booking.id).error_code == ErrorCode.INVALID_STATE

        ledger.cancel(booking.id)
        assert ledger.purge(booking.id).success
        assert ledger.get(booking.id) is None


class TestRecurring:
    def test_weekly_series_skips_taken_dates(self, ledger):
        ledger.create(_request(day=date(2025, 6, 17), customer_name="Sam Lee"))

        result = ledger.create_recurring(_request(), "weekly", count=4)

        assert result.success
        series = result.booking
        assert [b.date for b in series.created] == [date(2025, 6, 10), date(2025, 6, 24), date(2025, 7, 1)]
        assert series.skipped[0]["date"] == "2025-06-17"
        assert series.skipped[0]["code"] == "slot_unavailable"
        assert {b.recurring_id for b in series.created} == {series.recurring_id}

    def test_monthly_series_clamps_day(self, ledger):
        result = ledger.create_recurring(_request(day=date(2025, 1, 31)), "monthly", end_date=date(2025, 4, 30))
        assert [b.date for b in result.booking.created] == [
            date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30)
        ]

    def test_series_with_no_free_occurrence_fails(self, ledger):
        ledger.create(_request())
        result = ledger.create_recurring(_request(customer_name="Sam Lee"), "weekly", count=1)
        assert result.error_code == ErrorCode.SLOT_UNAVAILABLE

    def test_invalid_pattern(self, ledger):
        assert ledger.create_recurring(_request(), "daily", count=2).error_code == ErrorCode.VALIDATION_ERROR

    def test_cancel_series_from_date(self, ledger):
        series = ledger.create_recurring(_request(), "biweekly", count=3).booking

        results = ledger.cancel_recurring_series(series.recurring_id, "league over", from_date=date(2025, 6, 20))

        assert len(results) == 2
        assert ledger.get(series.created[0].id).status == BookingStatus.CONFIRMED.value
        assert all(r.booking.status == BookingStatus.CANCELLED.value for r in results)


class TestQueries:
    def test_availability_for_date(self, ledger):
        ledger.create(_request())
        slots = {s.start_time: s.available for s in ledger.availability_for_date(TUESDAY)[3]}
        assert slots["10:00"] is False
        assert slots["12:00"] is True

    def test_bookings_for_date(self, ledger):
        ledger.create(_request())
        ledger.create(_request(resource_id=1))
        assert len(ledger.bookings_for_date(TUESDAY)) == 2
        assert len(ledger.bookings_for_date(TUESDAY, 1)) == 1
