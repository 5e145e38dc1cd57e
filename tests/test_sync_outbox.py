"""
Tests for the Sync Outbox

Covers the push path between the local cache and the remote store:
- create vs update by remote_key
- backoff schedule and the FAILED state
- duplicate events for one record collapse into one push
- a record edited while its push is in flight stays pending
"""

import pytest
from datetime import date, timedelta
from unittest.mock import MagicMock, patch

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from baybook.models.sync_outbox import SyncOutbox, OutboxStatus
from baybook.services.booking_ledger import BookingRequest
from baybook.services.remote_store_client import RemoteResponse
from baybook.services.sync_outbox import OutboxProcessor
from baybook.utils.clock import utcnow

TUESDAY = date(2025, 6, 10)


def _create(ledger, start_time="10:00", resource_id=3, **kwargs):
    result = ledger.create(BookingRequest(
        customer_name=kwargs.pop("customer_name", "Alex Morgan"),
        resource_id=resource_id,
        date=TUESDAY,
        start_time=start_time,
        duration_units=kwargs.pop("units", 1),
        **kwargs
    ))
    assert result.success
    return result.booking


def _events(db, record_id):
    return db.query(SyncOutbox).filter(SyncOutbox.record_id == record_id).order_by(SyncOutbox.created_at).all()


class TestPush:
    def test_first_push_creates_then_updates(self, ledger, store, remote, db):
        booking = _create(ledger)
        processor = OutboxProcessor(store, remote)

        result = processor.process_batch()
        assert result.pushed == 1
        assert booking.remote_key == "rk-1"
        assert booking.pending_sync is False
        assert remote.calls[0] == ("create", "bookings", booking.id)

        ledger.update(booking.id, {"notes": "bring gloves"})
        assert _events(db, booking.id)[-1].operation == "update"

        processor.process_batch()
        assert remote.calls[-1] == ("update", "bookings", "rk-1")
        assert remote.collections["bookings"]["rk-1"]["notes"] == "bring gloves"
        assert ledger.get(booking.id).pending_sync is False

    def test_payload_excludes_local_flags(self, ledger, store, remote):
        _create(ledger)
        OutboxProcessor(store, remote).process_batch()

        record = remote.collections["bookings"]["rk-1"]
        assert "pending_sync" not in record
        assert "remote_key" not in record
        assert record["date"] == "2025-06-10"
        assert record["price"] == 45.0

    def test_overlapping_events_collapse(self, ledger, store, remote, db):
        booking = _create(ledger)
        ledger.update(booking.id, {"notes": "first"})
        ledger.update(booking.id, {"notes": "second"})
        assert len(_events(db, booking.id)) == 3

        result = OutboxProcessor(store, remote).process_batch()

        assert result.pushed == 1
        assert [c[0] for c in remote.calls] == ["create"]
        statuses = [e.status for e in _events(db, booking.id)]
        assert statuses == [OutboxStatus.COMPLETED.value] * 3
        merged = [e for e in _events(db, booking.id) if e.last_error == "Merged with newer event"]
        assert len(merged) == 2

    def test_merging_commits_under_the_write_lock(self, ledger, store, remote, db):
        booking = _create(ledger)
        ledger.update(booking.id, {"notes": "first"})
        processor = OutboxProcessor(store, remote)

        with patch.object(store, "writing", wraps=store.writing) as writing:
            kept = processor.merge_overlapping_events(processor.get_pending_events())

        assert writing.call_count == 1
        assert len(kept) == 1
        db.rollback()
        statuses = sorted(e.status for e in _events(db, booking.id))
        assert statuses == [OutboxStatus.COMPLETED.value, OutboxStatus.PENDING.value]

    def test_change_during_push_stays_pending(self, ledger, store, db):
        booking = _create(ledger)

        def create_and_edit(collection, record):
            # A staff edit lands while the request is on the wire
            ledger.update(booking.id, {"notes": "edited mid-push"})
            return RemoteResponse(success=True, status_code=201, data={"key": "rk-9"})

        client = MagicMock()
        client.create.side_effect = create_and_edit
        processor = OutboxProcessor(store, client)

        event = processor.get_pending_events()[0]
        success, network_error = processor.process_event(event)

        assert success is True
        refreshed = ledger.get(booking.id)
        assert refreshed.remote_key == "rk-9"
        assert refreshed.pending_sync is True
        assert _events(db, booking.id)[-1].status == OutboxStatus.PENDING.value

    def test_purged_record_completes_event(self, ledger, store, remote, db):
        booking = _create(ledger)
        ledger.cancel(booking.id)
        ledger.purge(booking.id)

        result = OutboxProcessor(store, remote).process_batch()
        assert result.pushed == 1
        assert remote.calls == []
        assert all(e.status == OutboxStatus.COMPLETED.value for e in _events(db, booking.id))


class TestFailures:
    def test_rejection_moves_to_failed(self, ledger, store, remote, db):
        booking = _create(ledger)
        remote.reject_status = 422

        result = OutboxProcessor(store, remote).process_batch()

        assert result.failed == 1
        event = _events(db, booking.id)[0]
        assert event.status == OutboxStatus.FAILED.value
        assert ledger.get(booking.id).pending_sync is True

    def test_retry_failed_event(self, ledger, store, remote, db):
        booking = _create(ledger)
        remote.reject_status = 422
        processor = OutboxProcessor(store, remote)
        processor.process_batch()
        event = processor.get_failed_events()[0]

        assert processor.retry_failed_event(event.id) is True
        assert event.status == OutboxStatus.PENDING.value
        assert event.attempts == 0

        remote.reject_status = None
        assert processor.process_batch().pushed == 1
        assert ledger.get(booking.id).pending_sync is False

    def test_retry_only_failed_events(self, ledger, store, remote, db):
        booking = _create(ledger)
        event = _events(db, booking.id)[0]
        assert OutboxProcessor(store, remote).retry_failed_event(event.id) is False

    def test_server_errors_back_off_then_fail(self, ledger, store, db):
        booking = _create(ledger)
        client = MagicMock()
        client.create.return_value = RemoteResponse(
            success=False, status_code=503, error="Remote store unavailable", should_retry=True
        )
        processor = OutboxProcessor(store, client, max_backoff_minutes=30)
        event = _events(db, booking.id)[0]
        event.max_attempts = 3
        db.commit()

        delays = []
        for _ in range(2):
            before = utcnow()
            processor.process_event(event)
            assert event.status == OutboxStatus.RETRYING.value
            delays.append(round((event.next_attempt_at - before).total_seconds() / 60))
        assert delays == [1, 2]

        processor.process_event(event)
        assert event.status == OutboxStatus.FAILED.value

    def test_backoff_is_capped(self, ledger, store, db):
        booking = _create(ledger)
        processor = OutboxProcessor(store, MagicMock(), max_backoff_minutes=5)
        event = _events(db, booking.id)[0]
        event.attempts = 8
        before = utcnow()

        processor._handle_failure(event, "Remote store unavailable", retryable=True)

        assert event.status == OutboxStatus.RETRYING.value
        assert event.next_attempt_at - before <= timedelta(minutes=5, seconds=1)

    def test_network_errors_never_exhaust_attempts(self, ledger, store, remote, db):
        booking = _create(ledger)
        remote.offline = True
        processor = OutboxProcessor(store, remote)
        event = _events(db, booking.id)[0]
        event.max_attempts = 1
        db.commit()

        success, network_error = processor.process_event(event)

        assert (success, network_error) == (False, True)
        assert event.status == OutboxStatus.RETRYING.value

    def test_batch_stops_at_first_network_error(self, ledger, store, remote):
        _create(ledger, "10:00")
        _create(ledger, "12:00")
        _create(ledger, "14:00")
        remote.offline = True

        result = OutboxProcessor(store, remote).process_batch()

        assert result.network_error is True
        assert result.failed == 1
        assert result.skipped == 2
        assert len(remote.calls) == 1

    def test_release_backoff_makes_events_due(self, ledger, store, remote):
        _create(ledger)
        remote.offline = True
        processor = OutboxProcessor(store, remote)
        processor.process_batch()
        assert processor.get_pending_events() == []

        assert processor.release_backoff() == 1
        assert len(processor.get_pending_events()) == 1


class TestCoverage:
    def test_pending_record_without_event_is_enqueued(self, ledger, store, remote, db):
        booking = _create(ledger)
        db.query(SyncOutbox).delete()
        db.commit()

        processor = OutboxProcessor(store, remote)
        assert processor.ensure_coverage() == 1
        assert processor.ensure_coverage() == 0
        assert processor.process_batch().pushed == 1
        assert ledger.get(booking.id).remote_key is not None
