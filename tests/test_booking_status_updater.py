"""
Tests for the no-show housekeeping job
"""

import pytest
from datetime import date, datetime

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from baybook.models.booking import BookingStatus
from baybook.services.booking_ledger import BookingRequest
from baybook.services.booking_status_updater import BookingStatusUpdater

TUESDAY = date(2025, 6, 10)


def _create(ledger, start_time, resource_id=3):
    return ledger.create(BookingRequest("Alex Morgan", resource_id, TUESDAY, start_time, 1)).booking


class TestNoShows:
    def test_overdue_booking_marked_no_show(self, ledger):
        overdue = _create(ledger, "10:00")
        upcoming = _create(ledger, "11:00")
        updater = BookingStatusUpdater(ledger, grace_minutes=15)

        count, ids = updater.auto_mark_no_shows(now=datetime(2025, 6, 10, 10, 20))

        assert (count, ids) == (1, [overdue.id])
        assert ledger.get(overdue.id).status == BookingStatus.NO_SHOW.value
        assert ledger.get(overdue.id).pending_sync is True
        assert ledger.get(upcoming.id).status == BookingStatus.CONFIRMED.value

    def test_within_grace_period_is_left_alone(self, ledger):
        _create(ledger, "10:00")
        updater = BookingStatusUpdater(ledger, grace_minutes=15)
        assert updater.get_no_show_candidates(datetime(2025, 6, 10, 10, 10)) == []

    def test_checked_in_booking_is_never_a_no_show(self, ledger):
        booking = _create(ledger, "10:00")
        ledger.check_in(booking.id)
        updater = BookingStatusUpdater(ledger, grace_minutes=15)

        count, _ = updater.auto_mark_no_shows(now=datetime(2025, 6, 10, 12, 0))
        assert count == 0

    def test_earlier_days_are_included(self, ledger):
        booking = _create(ledger, "21:00")
        updater = BookingStatusUpdater(ledger, grace_minutes=15)
        candidates = updater.get_no_show_candidates(datetime(2025, 6, 11, 8, 0))
        assert [b.id for b in candidates] == [booking.id]
