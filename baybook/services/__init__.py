# Services package
from .time_utils import TimeOfDay, parse_time_of_day, format_time_of_day, normalize_time
from .pricing_engine import PricingEngine, PriceBreakdown, get_pricing_engine
from .resource_catalog import Resource, ResourceCatalog, ResourceCategory
from .availability import AvailabilityChecker, SlotAvailability
from .local_store import BookingStore
from .remote_store_client import RemoteStoreClient, RemoteResponse, get_remote_store_client
from .sync_outbox import OutboxProcessor, PushResult, enqueue_change
from .waitlist_matcher import WaitlistMatcher, WaitlistRequest, FreedSlot
from .booking_ledger import BookingLedger, BookingRequest, RecurringResult
from .sync_reconciler import (
    SyncReconciler,
    ConnectivityState,
    MergeDecision,
    decide_merge,
    merge_records
)

__all__ = [
    "TimeOfDay", "parse_time_of_day", "format_time_of_day", "normalize_time",
    "PricingEngine", "PriceBreakdown", "get_pricing_engine",
    "Resource", "ResourceCatalog", "ResourceCategory",
    "AvailabilityChecker", "SlotAvailability",
    "BookingStore",
    "RemoteStoreClient", "RemoteResponse", "get_remote_store_client",
    "OutboxProcessor", "PushResult", "enqueue_change",
    "WaitlistMatcher", "WaitlistRequest", "FreedSlot",
    "BookingLedger", "BookingRequest", "RecurringResult",
    "SyncReconciler", "ConnectivityState", "MergeDecision",
    "decide_merge", "merge_records",
]
