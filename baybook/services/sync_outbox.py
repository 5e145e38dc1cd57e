"""
Sync Outbox

Durable pending-change log between local mutations and the remote store.

- Ledger and waitlist mutations call enqueue_change() inside their own
  transaction, so the change and its outbox row commit together
- OutboxProcessor drains the log oldest first:
  - duplicate rows for the same record collapse into the newest one
  - create when the record has no remote_key, update otherwise
  - network errors and 5xx/429 back off exponentially (capped)
  - rejections (4xx) move the row to FAILED for an operator retry
- The network call happens outside the write lock; pending_sync is only
  cleared when the record did not change while the call was in flight
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from ..config import settings
from ..models.sync_outbox import (
    SyncOutbox,
    OutboxStatus,
    OutboxOperation,
    OPEN_OUTBOX_STATUSES
)
from ..utils.clock import utcnow
from ..utils.logging_config import get_logger
from .local_store import BookingStore
from .remote_store_client import RemoteStoreClient
from .sync_records import COLLECTIONS, collection_for, to_remote

logger = get_logger(__name__)


@dataclass
class PushResult:
    pushed: int = 0
    failed: int = 0
    skipped: int = 0
    network_error: bool = False
    errors: List[str] = field(default_factory=list)


def enqueue_change(db, record, operation: Optional[str] = None) -> SyncOutbox:
    """
    Append an outbox row for a local mutation.

    Does not commit: the caller's transaction owns the row.
    """
    if operation is None:
        operation = OutboxOperation.UPDATE.value if record.remote_key else OutboxOperation.CREATE.value

    event = SyncOutbox(
        collection=collection_for(record),
        record_id=record.id,
        operation=operation,
        status=OutboxStatus.PENDING.value,
        max_attempts=settings.sync_max_attempts,
        next_attempt_at=utcnow(),
        created_at=utcnow(),
    )
    db.add(event)
    return event


class OutboxProcessor:
    """
    Processes SyncOutbox rows against the remote store.

    Should be run by the reconciler's push step, never directly by callers.
    """

    def __init__(self, store: BookingStore, client: RemoteStoreClient, max_backoff_minutes: Optional[int] = None):
        self.store = store
        self.db = store.db
        self.client = client
        self.max_backoff_minutes = max_backoff_minutes or settings.sync_max_backoff_minutes

    def get_pending_events(self, limit: int = 50) -> List[SyncOutbox]:
        """
        Events ready for processing: PENDING or RETRYING with
        next_attempt_at <= now, oldest first.
        """
        now = utcnow()
        return self.db.query(SyncOutbox).filter(
            SyncOutbox.status.in_([
                OutboxStatus.PENDING.value,
                OutboxStatus.RETRYING.value
            ]),
            SyncOutbox.next_attempt_at <= now
        ).order_by(SyncOutbox.created_at).limit(limit).all()

    def get_failed_events(self, limit: int = 100) -> List[SyncOutbox]:
        """Get events that have permanently failed"""
        return self.db.query(SyncOutbox).filter(
            SyncOutbox.status == OutboxStatus.FAILED.value
        ).order_by(SyncOutbox.created_at.desc()).limit(limit).all()

    def retry_failed_event(self, event_id: str) -> bool:
        """Manually retry a failed event"""
        with self.store.writing():
            event = self.db.query(SyncOutbox).filter(SyncOutbox.id == event_id).first()
            if not event or event.status != OutboxStatus.FAILED.value:
                return False

            event.status = OutboxStatus.PENDING.value
            event.attempts = 0
            event.next_attempt_at = utcnow()
            event.last_error = None
        return True

    def release_backoff(self) -> int:
        """Make every RETRYING event due now (used on reconnect)."""
        with self.store.writing():
            count = self.db.query(SyncOutbox).filter(
                SyncOutbox.status == OutboxStatus.RETRYING.value
            ).update({SyncOutbox.next_attempt_at: utcnow()}, synchronize_session=False)
        return count

    def has_open_event(self, collection: str, record_id: str) -> bool:
        return self.db.query(SyncOutbox.id).filter(
            SyncOutbox.collection == collection,
            SyncOutbox.record_id == record_id,
            SyncOutbox.status.in_(list(OPEN_OUTBOX_STATUSES | {OutboxStatus.FAILED.value}))
        ).first() is not None

    def ensure_coverage(self) -> int:
        """
        Enqueue pending records that have no outbox row.

        Covers rows written before the outbox existed and rows whose event was
        lost. Records whose last event FAILED wait for an operator retry.
        """
        added = 0
        with self.store.writing():
            for record in self.store.pending_bookings() + self.store.pending_entries():
                if not self.has_open_event(collection_for(record), record.id):
                    enqueue_change(self.db, record)
                    added += 1
        if added:
            logger.info(f"Enqueued {added} pending records without outbox events")
        return added

    def merge_overlapping_events(self, events: List[SyncOutbox]) -> List[SyncOutbox]:
        """
        Collapse events for the same record.

        The payload is always read from the current row, so only one push per
        record is needed; the newest event is kept, older ones are completed.
        """
        groups: Dict[Tuple[str, str], SyncOutbox] = {}

        with self.store.writing():
            for event in events:
                key = (event.collection, event.record_id)
                existing = groups.get(key)
                if existing is None:
                    groups[key] = event
                    continue

                older, newer = (existing, event) if event.created_at >= existing.created_at else (event, existing)
                older.status = OutboxStatus.COMPLETED.value
                older.last_error = "Merged with newer event"
                older.completed_at = utcnow()
                groups[key] = newer

        return sorted(groups.values(), key=lambda e: e.created_at)

    def process_event(self, event: SyncOutbox) -> Tuple[bool, bool]:
        """
        Push one record.

        Returns (success, network_error).
        """
        model = COLLECTIONS.get(event.collection)

        # Snapshot under the lock
        with self.store.writing():
            record = self.db.query(model).filter(model.id == event.record_id).first() if model else None
            if record is None:
                event.status = OutboxStatus.COMPLETED.value
                event.completed_at = utcnow()
                event.last_error = "Record no longer exists locally"
                return True, False

            if not record.pending_sync and record.remote_key:
                event.status = OutboxStatus.COMPLETED.value
                event.completed_at = utcnow()
                return True, False

            payload = to_remote(record)
            remote_key = record.remote_key
            snapshot_updated_at = record.updated_at
            event.status = OutboxStatus.PROCESSING.value
            event.attempts += 1

        # Network call outside the lock
        try:
            if remote_key:
                response = self.client.update(event.collection, remote_key, payload)
            else:
                response = self.client.create(event.collection, payload)
        except Exception as e:
            logger.error(f"Unexpected error pushing {event.collection}/{event.record_id}: {e}")
            with self.store.writing():
                self._handle_failure(event, str(e), retryable=True)
            return False, False

        with self.store.writing():
            self.db.refresh(record)

            if not response.success:
                self._handle_failure(
                    event,
                    response.error or "Remote store rejected the change",
                    retryable=response.should_retry,
                    network_error=response.network_error
                )
                return False, response.network_error

            if not remote_key:
                assigned = response.assigned_key
                if not assigned:
                    self._handle_failure(event, "Create response carried no key", retryable=True)
                    return False, False
                record.remote_key = assigned

            if record.updated_at == snapshot_updated_at:
                record.pending_sync = False
            else:
                # Changed while in flight, the newer outbox row pushes it
                logger.info(f"{event.collection}/{record.id} changed during push, staying pending")

            event.status = OutboxStatus.COMPLETED.value
            event.completed_at = utcnow()
            event.last_error = None

        logger.record_pushed(event.collection, record.id, record.remote_key, event.operation)
        return True, False

    def _handle_failure(self, event: SyncOutbox, error: str, retryable: bool, network_error: bool = False):
        """Handle event processing failure with exponential backoff"""
        event.last_error = error[:1000]

        # Offline periods never exhaust the attempt budget
        exhausted = event.attempts >= event.max_attempts and not network_error
        if not retryable or exhausted:
            event.status = OutboxStatus.FAILED.value
            logger.push_failed(event.collection, event.record_id, event.attempts, error, final=True)
            return

        event.status = OutboxStatus.RETRYING.value
        # Exponential backoff: 1, 2, 4, 8, 16 minutes ... capped
        delay_minutes = min(2 ** max(event.attempts - 1, 0), self.max_backoff_minutes)
        event.next_attempt_at = utcnow() + timedelta(minutes=delay_minutes)
        logger.push_failed(event.collection, event.record_id, event.attempts, error, final=False)
        logger.debug(f"Event {event.id} will retry in {delay_minutes} minutes")

    def process_batch(self, limit: Optional[int] = None) -> PushResult:
        """
        Drain a batch of due events with dedup/merge.

        Stops at the first network error: the remaining events would fail the
        same way and keep their schedule for the next cycle.
        """
        result = PushResult()
        events = self.merge_overlapping_events(self.get_pending_events(limit or settings.sync_batch_size))

        for event in events:
            success, network_error = self.process_event(event)
            if success:
                result.pushed += 1
                continue

            result.failed += 1
            if event.last_error:
                result.errors.append(f"{event.collection}/{event.record_id}: {event.last_error}")
            if network_error:
                result.network_error = True
                result.skipped = len(events) - result.pushed - result.failed
                break

        return result
