"""
Sync Models

- SyncOutbox: durable pending-change log drained by the reconciler's push step
- ReconciliationConflict: overlapping active bookings found after a merge,
  queued for staff review instead of being auto-resolved
"""

import uuid
import enum
from sqlalchemy import Column, String, Text, DateTime, Integer, Date, Index, UniqueConstraint

from ..database import Base
from ..utils.clock import utcnow


class OutboxStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class OutboxOperation(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"


OPEN_OUTBOX_STATUSES = {
    OutboxStatus.PENDING.value,
    OutboxStatus.PROCESSING.value,
    OutboxStatus.RETRYING.value,
}


class SyncOutbox(Base):
    """
    One row per local mutation that still has to reach the remote store.

    The row is written in the same transaction as the mutation itself, so a
    crash never loses a change that the local cache already holds.
    """
    __tablename__ = "sync_outbox"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    collection = Column(String(50), nullable=False)  # "bookings", "waitlist"
    record_id = Column(String(36), nullable=False)
    operation = Column(String(20), nullable=False, default=OutboxOperation.UPDATE.value)

    status = Column(String(20), default=OutboxStatus.PENDING.value, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=10, nullable=False)
    next_attempt_at = Column(DateTime, default=utcnow, nullable=False)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_sync_outbox_status_next", "status", "next_attempt_at"),
        Index("ix_sync_outbox_record", "collection", "record_id"),
    )

    def __repr__(self):
        return f"<SyncOutbox {self.collection}/{self.record_id} {self.operation} status={self.status}>"


class ConflictStatus(str, enum.Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class ReconciliationConflict(Base):
    __tablename__ = "reconciliation_conflicts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Stored with booking_a_id < booking_b_id so a pair is recorded once
    booking_a_id = Column(String(36), nullable=False)
    booking_b_id = Column(String(36), nullable=False)
    resource_id = Column(Integer, nullable=False)
    date = Column(Date, nullable=False)

    status = Column(String(20), default=ConflictStatus.OPEN.value, nullable=False)
    detected_at = Column(DateTime, default=utcnow, nullable=False)
    resolved_at = Column(DateTime, nullable=True)
    resolution_note = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("booking_a_id", "booking_b_id", name="uq_conflict_pair"),
    )

    def __repr__(self):
        return f"<ReconciliationConflict {self.booking_a_id} x {self.booking_b_id} status={self.status}>"
