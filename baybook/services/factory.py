"""
Wiring for the ledger, waitlist and reconciler around one DB session.

Routers, scheduler jobs and the standalone worker all build their
collaborators here so every path shares the same catalog, connectivity
state and push trigger.
"""

from functools import lru_cache
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..config import settings
from .availability import AvailabilityChecker
from .booking_ledger import BookingLedger
from .local_store import BookingStore
from .membership import RemoteMembershipDirectory, StaticMembershipDirectory
from .notification_service import NotificationDispatcher
from .remote_store_client import get_remote_store_client
from .resource_catalog import ResourceCatalog
from .sync_reconciler import ConnectivityState, SyncReconciler
from .waitlist_matcher import WaitlistMatcher

# One online flag per process
_connectivity = ConnectivityState()


def get_connectivity() -> ConnectivityState:
    return _connectivity


@lru_cache()
def get_catalog() -> ResourceCatalog:
    return ResourceCatalog.from_settings()


def build_waitlist(db: Session, push_callback: Optional[Callable[[], None]] = None) -> WaitlistMatcher:
    return WaitlistMatcher(
        BookingStore(db),
        NotificationDispatcher(),
        push_callback,
        checker=AvailabilityChecker(get_catalog())
    )


def build_ledger(db: Session, push_callback: Optional[Callable[[], None]] = None) -> BookingLedger:
    store = BookingStore(db)
    lookup_client = get_remote_store_client(
        timeout=settings.membership_lookup_timeout_seconds,
        max_retries=1
    )
    if lookup_client is not None:
        membership = RemoteMembershipDirectory(
            lookup_client,
            is_online=lambda: _connectivity.online,
            on_network_error=_connectivity.mark_offline
        )
    else:
        membership = StaticMembershipDirectory()

    catalog = get_catalog()
    checker = AvailabilityChecker(catalog)
    return BookingLedger(
        store,
        catalog,
        checker=checker,
        membership=membership,
        waitlist=WaitlistMatcher(store, NotificationDispatcher(), push_callback, checker=checker),
        push_callback=push_callback,
    )


def build_reconciler(db: Session) -> SyncReconciler:
    return SyncReconciler(
        BookingStore(db),
        get_remote_store_client(),
        _connectivity,
        unit_minutes=get_catalog().config.duration_unit_minutes
    )
