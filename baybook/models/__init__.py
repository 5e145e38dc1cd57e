# Models package
from .booking import (
    Booking,
    BookingStatus,
    SyncTrackedMixin,
    TERMINAL_STATUSES,
    ACTIVE_STATUSES
)
from .waitlist import WaitlistEntry, WaitlistStatus
from .sync_outbox import (
    SyncOutbox,
    OutboxStatus,
    OutboxOperation,
    OPEN_OUTBOX_STATUSES,
    ReconciliationConflict,
    ConflictStatus
)

__all__ = [
    "Booking", "BookingStatus", "SyncTrackedMixin", "TERMINAL_STATUSES", "ACTIVE_STATUSES",
    "WaitlistEntry", "WaitlistStatus",
    "SyncOutbox", "OutboxStatus", "OutboxOperation", "OPEN_OUTBOX_STATUSES",
    "ReconciliationConflict", "ConflictStatus"
]
