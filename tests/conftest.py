"""
Shared fixtures: an isolated in-memory cache per test, a three-bay catalog
and an in-process fake of the remote store.
"""

import pytest
from datetime import datetime
from typing import Dict, List

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from baybook.config import Settings
from baybook.database import Base
from baybook import models  # noqa: F401
from baybook.services.availability import AvailabilityChecker
from baybook.services.booking_ledger import BookingLedger
from baybook.services.local_store import BookingStore
from baybook.services.membership import StaticMembershipDirectory
from baybook.services.remote_store_client import RemoteResponse
from baybook.services.resource_catalog import Resource, ResourceCatalog, ResourceCategory
from baybook.services.sync_reconciler import ConnectivityState, SyncReconciler
from baybook.services.waitlist_matcher import WaitlistMatcher


class FakeRemoteStore:
    """
    Stands in for RemoteStoreClient. Records live in per-collection dicts
    keyed by the assigned remote key.
    """

    def __init__(self):
        self.collections: Dict[str, Dict[str, dict]] = {}
        self.calls: List[tuple] = []
        self.offline = False
        self.reject_status = None
        self._next_key = 0

    def _offline_response(self) -> RemoteResponse:
        return RemoteResponse(
            success=False,
            status_code=0,
            error="All retries failed: connection refused",
            error_code="network_error",
            should_retry=True,
            network_error=True
        )

    def _rejected_response(self) -> RemoteResponse:
        return RemoteResponse(
            success=False,
            status_code=self.reject_status,
            error="Invalid record data",
            error_code="validation_error",
            should_retry=False
        )

    def seed(self, collection: str, record: dict, key: str = None) -> str:
        if key is None:
            self._next_key += 1
            key = f"rk-{self._next_key}"
        self.collections.setdefault(collection, {})[key] = dict(record, key=key)
        return key

    def list(self, collection: str) -> RemoteResponse:
        self.calls.append(("list", collection))
        if self.offline:
            return self._offline_response()
        records = [dict(r) for r in self.collections.get(collection, {}).values()]
        return RemoteResponse(success=True, status_code=200, data=records)

    def create(self, collection: str, record: dict) -> RemoteResponse:
        self.calls.append(("create", collection, record.get("id")))
        if self.offline:
            return self._offline_response()
        if self.reject_status:
            return self._rejected_response()
        key = self.seed(collection, record)
        return RemoteResponse(success=True, status_code=201, data={"key": key})

    def update(self, collection: str, key: str, partial: dict) -> RemoteResponse:
        self.calls.append(("update", collection, key))
        if self.offline:
            return self._offline_response()
        if self.reject_status:
            return self._rejected_response()
        self.collections.setdefault(collection, {}).setdefault(key, {"key": key}).update(partial)
        return RemoteResponse(success=True, status_code=200, data={"key": key})


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return BookingStore(db)


@pytest.fixture
def config():
    return Settings()


@pytest.fixture
def catalog(config):
    return ResourceCatalog([
        Resource(1, "Bay 1"),
        Resource(2, "Bay 2"),
        Resource(3, "Bay 3"),
        Resource(4, "Members Lounge", ResourceCategory.MEMBERS_ONLY.value, capacity=2),
    ], config)


@pytest.fixture
def notifier():
    class RecordingNotifier:
        def __init__(self):
            self.sent = []

        def notify(self, entry, slot):
            self.sent.append((entry.id, slot))
            return True

    return RecordingNotifier()


@pytest.fixture
def waitlist(store, notifier, catalog):
    return WaitlistMatcher(store, notifier, checker=AvailabilityChecker(catalog))


@pytest.fixture
def membership():
    return StaticMembershipDirectory()


@pytest.fixture
def ledger(store, catalog, config, waitlist, membership):
    # Monday 2025-06-09 09:00, the day before most test bookings
    return BookingLedger(
        store,
        catalog,
        membership=membership,
        waitlist=waitlist,
        config=config,
        clock=lambda: datetime(2025, 6, 9, 9, 0)
    )


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def reconciler(store, remote, config):
    return SyncReconciler(store, remote, ConnectivityState(), unit_minutes=config.duration_unit_minutes)
