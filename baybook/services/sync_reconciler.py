"""
Sync Reconciler

Keeps the local booking and waitlist collections eventually consistent with
the remote store without losing offline changes or double-submitting.

Merge is an explicit per-record decision (keyed by business id):

| local          | remote | decision           | result                          |
|----------------|--------|--------------------|---------------------------------|
| pending_sync   | any    | LOCAL_PENDING_WINS | local; only remote_key filled   |
| synced, newer  | older  | LOCAL_NEWER_KEPT   | local                           |
| synced, older  | newer  | REMOTE_NEWER_WINS  | remote copy, synced             |
| same stamp     | same   | IDENTICAL_NO_OP    | local                           |
| missing        | any    | REMOTE_ONLY_ADDED  | remote copy, synced             |
| any            | missing| LOCAL_ONLY_KEPT    | local                           |

Equal timestamps with differing content keep the local copy.

After a merge, two distinct active bookings overlapping on the same bay and
date are recorded as ReconciliationConflict rows for staff; neither booking
is cancelled.
"""

import enum
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from itertools import combinations
from typing import Dict, List, Mapping, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..errors import ErrorCode, LedgerResult
from ..models.booking import Booking, ACTIVE_STATUSES
from ..models.sync_outbox import SyncOutbox, OutboxStatus, ReconciliationConflict, ConflictStatus
from ..utils.clock import utcnow
from ..utils.logging_config import get_logger
from .availability import booking_interval, intervals_overlap
from .local_store import BookingStore
from .sync_outbox import OutboxProcessor, PushResult
from .sync_records import (
    BOOKINGS,
    COLLECTIONS,
    apply_dict,
    business_fields,
    from_remote,
    to_local_dict
)

logger = get_logger(__name__)


class MergeDecision(str, enum.Enum):
    LOCAL_PENDING_WINS = "local_pending_wins"
    REMOTE_NEWER_WINS = "remote_newer_wins"
    LOCAL_NEWER_KEPT = "local_newer_kept"
    IDENTICAL_NO_OP = "identical_no_op"
    REMOTE_ONLY_ADDED = "remote_only_added"
    LOCAL_ONLY_KEPT = "local_only_kept"


REMOTE_DECISIONS = {MergeDecision.REMOTE_NEWER_WINS, MergeDecision.REMOTE_ONLY_ADDED}


def _stamp(record: dict) -> datetime:
    return record.get("updated_at") or record.get("created_at") or datetime.min


def decide_merge(local: Optional[dict], remote: Optional[dict]) -> MergeDecision:
    if local is None:
        return MergeDecision.REMOTE_ONLY_ADDED
    if remote is None:
        return MergeDecision.LOCAL_ONLY_KEPT
    if local.get("pending_sync"):
        return MergeDecision.LOCAL_PENDING_WINS

    local_stamp, remote_stamp = _stamp(local), _stamp(remote)
    if remote_stamp > local_stamp:
        return MergeDecision.REMOTE_NEWER_WINS
    if local_stamp > remote_stamp:
        return MergeDecision.LOCAL_NEWER_KEPT
    if business_fields(local) == business_fields(remote):
        return MergeDecision.IDENTICAL_NO_OP
    # Same stamp, different content: keep local
    return MergeDecision.LOCAL_NEWER_KEPT


def merged_value(decision: MergeDecision, local: Optional[dict], remote: Optional[dict]) -> dict:
    if decision in REMOTE_DECISIONS:
        merged = dict(remote)
        merged["pending_sync"] = False
        if not merged.get("remote_key") and local:
            merged["remote_key"] = local.get("remote_key")
        return merged

    merged = dict(local)
    if remote and not merged.get("remote_key") and remote.get("remote_key"):
        merged["remote_key"] = remote["remote_key"]
    return merged


def merge_records(local: Mapping[str, dict], remote: Mapping[str, dict]) -> Dict[str, dict]:
    """
    Pure merge of two id -> record maps.

    merge_records(merge_records(A, B), B) == merge_records(A, B).
    """
    merged = {}
    for key in set(local) | set(remote):
        decision = decide_merge(local.get(key), remote.get(key))
        merged[key] = merged_value(decision, local.get(key), remote.get(key))
    return merged


@dataclass
class PullResult:
    success: bool = True
    network_error: bool = False
    decisions: Dict[str, int] = field(default_factory=dict)
    conflicts_found: int = 0
    rejected: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class SyncCycleResult:
    push: Optional[PushResult] = None
    pull: Optional[PullResult] = None
    skipped: bool = False


class SyncReconciler:
    """
    Push/pull driver. One instance per session; the online flag lives in a
    ConnectivityState shared across instances.
    """

    def __init__(
        self,
        store: BookingStore,
        client,
        connectivity: Optional["ConnectivityState"] = None,
        unit_minutes: Optional[int] = None
    ):
        self.store = store
        self.db = store.db
        self.client = client
        self.connectivity = connectivity or ConnectivityState()
        self.unit_minutes = unit_minutes or settings.duration_unit_minutes
        self.outbox = OutboxProcessor(store, client) if client is not None else None

    @property
    def is_online(self) -> bool:
        return self.connectivity.online

    # ---------- pull ----------

    def pull(self) -> PullResult:
        """Fetch every collection, then merge each under the write lock."""
        result = PullResult()
        if self.client is None:
            return result

        for collection in COLLECTIONS:
            response = self.client.list(collection)
            if not response.success:
                result.success = False
                result.network_error = response.network_error
                result.errors.append(f"{collection}: {response.error}")
                logger.warning(f"Pull of {collection} failed: {response.error}")
                if response.network_error:
                    self.connectivity.mark_offline()
                    return result
                continue

            self._mark_reachable()
            remote = {}
            for raw in response.data or []:
                converted = from_remote(collection, raw)
                if converted is None:
                    result.rejected += 1
                    continue
                remote[converted["id"]] = converted

            decisions, conflicts, failed = self.merge_collection(collection, remote)
            for decision, count in decisions.items():
                result.decisions[decision] = result.decisions.get(decision, 0) + count
            result.conflicts_found += conflicts
            result.rejected += failed

        self.connectivity.last_pull_at = utcnow()
        return result

    @staticmethod
    def _needs_write(rows: dict, key: str, decision: MergeDecision, merged: dict) -> bool:
        if decision in REMOTE_DECISIONS:
            return True
        return key in rows and merged.get("remote_key") != rows[key].remote_key

    def _apply_merge(self, db, model, rows: dict, key: str, decision: MergeDecision, merged: dict):
        if decision == MergeDecision.REMOTE_ONLY_ADDED:
            db.add(apply_dict(model(), merged))
        elif decision == MergeDecision.REMOTE_NEWER_WINS:
            apply_dict(rows[key], merged)
        else:
            rows[key].remote_key = merged["remote_key"]

    def merge_collection(self, collection: str, remote: Mapping[str, dict]):
        """
        Apply the merge for one collection to the local cache.

        Each record is applied inside its own SAVEPOINT, so a row the
        database refuses is skipped without undoing the rest of the batch.

        Returns ({decision: count}, conflicts_recorded, records_skipped).
        """
        model = COLLECTIONS[collection]
        counts: Dict[str, int] = defaultdict(int)
        touched_dates: Set[date] = set()
        skipped = 0

        with self.store.writing() as db:
            rows = {row.id: row for row in db.query(model).all()}
            local = {row_id: to_local_dict(row) for row_id, row in rows.items()}

            for key in set(local) | set(remote):
                decision = decide_merge(local.get(key), remote.get(key))
                merged = merged_value(decision, local.get(key), remote.get(key))
                if not self._needs_write(rows, key, decision, merged):
                    counts[decision.value] += 1
                    continue

                try:
                    with db.begin_nested():
                        self._apply_merge(db, model, rows, key, decision, merged)
                except SQLAlchemyError as e:
                    skipped += 1
                    logger.record_rejected(collection, key, f"local cache refused the row: {e}")
                    continue

                counts[decision.value] += 1
                if decision in REMOTE_DECISIONS:
                    if key in local and local[key].get("date"):
                        touched_dates.add(local[key]["date"])
                    if merged.get("date"):
                        touched_dates.add(merged["date"])

            conflicts = self.detect_conflicts(touched_dates) if collection == BOOKINGS else 0

        if counts.get(MergeDecision.REMOTE_ONLY_ADDED.value) or counts.get(MergeDecision.REMOTE_NEWER_WINS.value):
            logger.sync_event(
                "merged",
                f"Merged {collection}: {dict(counts)}",
                collection=collection,
                decisions=dict(counts),
                skipped=skipped
            )
        return dict(counts), conflicts, skipped

    def detect_conflicts(self, dates: Set[date]) -> int:
        """Record overlapping active bookings on the given dates. Caller holds the lock."""
        recorded = 0

        for check_date in sorted(dates):
            by_resource: Dict[int, List[Booking]] = defaultdict(list)
            for booking in self.store.bookings_on(check_date):
                if booking.status in ACTIVE_STATUSES:
                    by_resource[booking.resource_id].append(booking)

            for resource_id, bookings in by_resource.items():
                for a, b in combinations(bookings, 2):
                    a_span = booking_interval(a, self.unit_minutes)
                    b_span = booking_interval(b, self.unit_minutes)
                    if a_span is None or b_span is None:
                        continue
                    if not intervals_overlap(a_span[0], a_span[1], b_span[0], b_span[1]):
                        continue
                    if self._record_conflict(a, b):
                        recorded += 1

        return recorded

    def _record_conflict(self, a: Booking, b: Booking) -> bool:
        first, second = sorted([a.id, b.id])
        exists = self.db.query(ReconciliationConflict.id).filter(
            ReconciliationConflict.booking_a_id == first,
            ReconciliationConflict.booking_b_id == second
        ).first()
        if exists:
            return False

        self.db.add(ReconciliationConflict(
            booking_a_id=first,
            booking_b_id=second,
            resource_id=a.resource_id,
            date=a.date,
            status=ConflictStatus.OPEN.value,
            detected_at=utcnow(),
        ))
        self.db.flush()
        logger.reconciliation_conflict(first, second, a.resource_id, a.date)
        return True

    # ---------- push ----------

    def push(self) -> PushResult:
        """Drain the outbox. Never raises."""
        if self.outbox is None:
            return PushResult()

        try:
            self.outbox.ensure_coverage()
            result = self.outbox.process_batch()
        except Exception as e:
            logger.error(f"Push failed: {e}")
            return PushResult(failed=1, errors=[str(e)])

        if result.network_error:
            self.connectivity.mark_offline()
        elif result.pushed:
            self._mark_reachable()

        self.connectivity.last_push_at = utcnow()
        if result.pushed or result.failed:
            logger.info(f"Push: {result.pushed} pushed, {result.failed} failed, {result.skipped} deferred")
        return result

    # ---------- cycle / connectivity ----------

    def run_cycle(self) -> SyncCycleResult:
        """
        Push then pull. Overlapping cycles are skipped; the next trigger
        supersedes them.
        """
        if not self.connectivity.cycle_lock.acquire(blocking=False):
            logger.debug("Sync cycle already running, skipping")
            return SyncCycleResult(skipped=True)

        try:
            push_result = self.push()
            if push_result.network_error:
                return SyncCycleResult(push=push_result)
            try:
                pull_result = self.pull()
            except Exception as e:
                logger.error(f"Pull failed: {e}")
                pull_result = PullResult(success=False, errors=[str(e)])
            return SyncCycleResult(push=push_result, pull=pull_result)
        finally:
            self.connectivity.cycle_lock.release()

    def _mark_reachable(self):
        if self.connectivity.mark_online() and self.outbox is not None:
            self.outbox.release_backoff()

    def set_online(self, online: bool) -> Optional[SyncCycleResult]:
        """Explicit connectivity signal; a False -> True transition runs a full cycle."""
        if not online:
            self.connectivity.mark_offline()
            return None

        if self.connectivity.mark_online():
            logger.info("Connectivity restored, running sync cycle")
            if self.outbox is not None:
                self.outbox.release_backoff()
            return self.run_cycle()
        return None

    # ---------- operator queue ----------

    def list_conflicts(self, status: Optional[str] = None) -> List[ReconciliationConflict]:
        query = self.db.query(ReconciliationConflict)
        if status:
            query = query.filter(ReconciliationConflict.status == status)
        return query.order_by(ReconciliationConflict.detected_at.desc()).all()

    def open_conflict_count(self) -> int:
        return self.db.query(ReconciliationConflict).filter(
            ReconciliationConflict.status == ConflictStatus.OPEN.value
        ).count()

    def resolve_conflict(self, conflict_id: str, note: Optional[str] = None) -> LedgerResult:
        """Close a conflict after staff handled it (bookings are changed via the ledger)."""
        with self.store.writing():
            conflict = self.db.query(ReconciliationConflict).filter(
                ReconciliationConflict.id == conflict_id
            ).first()
            if conflict is None:
                return LedgerResult.fail(ErrorCode.NOT_FOUND, f"Conflict {conflict_id} not found")
            if conflict.status == ConflictStatus.RESOLVED.value:
                return LedgerResult.fail(ErrorCode.INVALID_STATE, "Conflict is already resolved")

            conflict.status = ConflictStatus.RESOLVED.value
            conflict.resolved_at = utcnow()
            conflict.resolution_note = note

        logger.info(f"Reconciliation conflict {conflict_id} resolved")
        return LedgerResult.ok(entry=conflict)

    def status(self) -> dict:
        return {
            "online": self.connectivity.online,
            "remote_configured": self.client is not None,
            "last_push_at": self.connectivity.last_push_at,
            "last_pull_at": self.connectivity.last_pull_at,
            "pending_bookings": len(self.store.pending_bookings()),
            "pending_waitlist": len(self.store.pending_entries()),
            "failed_events": self.db.query(SyncOutbox).filter(
                SyncOutbox.status == OutboxStatus.FAILED.value
            ).count(),
            "open_conflicts": self.open_conflict_count(),
        }


class ConnectivityState:
    """Process-wide online flag plus the cycle guard, shared by all reconcilers."""

    def __init__(self, online: bool = True):
        self.online = online
        self.last_push_at: Optional[datetime] = None
        self.last_pull_at: Optional[datetime] = None
        self.cycle_lock = threading.Lock()
        self._state_lock = threading.Lock()

    def mark_online(self) -> bool:
        """Returns True on an offline -> online transition."""
        with self._state_lock:
            was_offline = not self.online
            self.online = True
        if was_offline:
            logger.connectivity_changed(True)
        return was_offline

    def mark_offline(self):
        with self._state_lock:
            was_online = self.online
            self.online = False
        if was_online:
            logger.connectivity_changed(False)
