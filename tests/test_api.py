"""
API tests

Run the FastAPI app against the per-test cache via dependency overrides.
The lifespan (scheduler, create_tables) is not started.
"""

import pytest
from fastapi.testclient import TestClient

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from baybook.database import get_db
from baybook.main import app
from baybook.utils.dependencies import get_ledger, get_reconciler, get_waitlist

BOOKING = {
    "customer_name": "Alex Morgan",
    "resource_id": 3,
    "date": "2025-06-10",
    "start_time": "10:00 AM",
    "duration_units": 2,
}


@pytest.fixture
def client(db, ledger, waitlist, reconciler):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_waitlist] = lambda: waitlist
    app.dependency_overrides[get_reconciler] = lambda: reconciler
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class TestBookingEndpoints:
    def test_create_booking(self, client):
        response = client.post("/api/bookings", json=BOOKING)

        assert response.status_code == 201
        body = response.json()
        assert body["start_time"] == "10:00"
        assert body["status"] == "confirmed"
        assert float(body["price"]) == 80.0
        assert body["pending_sync"] is True
        assert response.headers["X-Request-ID"]

    def test_conflict_returns_409_with_availability(self, client):
        client.post("/api/bookings", json=BOOKING)
        response = client.post("/api/bookings", json=dict(BOOKING, start_time="11:00 AM", duration_units=1))

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["code"] == "slot_unavailable"
        bay_3 = next(r for r in detail["availability"]["resources"] if r["resource_id"] == 3)
        slots = {s["start_time"]: s["available"] for s in bay_3["slots"]}
        assert slots["11:00"] is False
        assert slots["12:00"] is True

    def test_invalid_time_is_422(self, client):
        response = client.post("/api/bookings", json=dict(BOOKING, start_time="noonish"))
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "validation_error"

    def test_markup_is_stripped_from_names(self, client):
        response = client.post(
            "/api/bookings",
            json=dict(BOOKING, customer_name="Alex<script>alert(1)</script> Morgan")
        )
        assert response.json()["customer_name"] == "Alex Morgan"

    def test_list_and_get(self, client):
        created = client.post("/api/bookings", json=BOOKING).json()

        listed = client.get("/api/bookings", params={"date": "2025-06-10"})
        assert [b["id"] for b in listed.json()] == [created["id"]]

        fetched = client.get(f"/api/bookings/{created['id']}")
        assert fetched.status_code == 200
        assert client.get("/api/bookings/missing").status_code == 404

    def test_update_and_lifecycle(self, client):
        booking_id = client.post("/api/bookings", json=BOOKING).json()["id"]

        updated = client.patch(f"/api/bookings/{booking_id}", json={"duration_units": 3})
        assert updated.status_code == 200
        assert float(updated.json()["price"]) == 110.0

        assert client.post(f"/api/bookings/{booking_id}/check-in").json()["status"] == "checked_in"
        assert client.post(f"/api/bookings/{booking_id}/check-out").json()["status"] == "completed"

        cancelled = client.post(f"/api/bookings/{booking_id}/cancel", json={"reason": "late"})
        assert cancelled.status_code == 409
        assert cancelled.json()["detail"]["code"] == "invalid_state"

    def test_cancel_and_purge(self, client):
        booking_id = client.post("/api/bookings", json=BOOKING).json()["id"]

        assert client.delete(f"/api/bookings/{booking_id}").status_code == 409
        assert client.post(f"/api/bookings/{booking_id}/cancel", json={}).json()["status"] == "cancelled"
        assert client.delete(f"/api/bookings/{booking_id}").status_code == 204

    def test_recurring_series(self, client):
        response = client.post("/api/bookings/recurring", json=dict(BOOKING, pattern="weekly", count=3))

        assert response.status_code == 201
        body = response.json()
        assert len(body["created"]) == 3

        cancelled = client.post(
            f"/api/bookings/recurring/{body['recurring_id']}/cancel",
            params={"from_date": "2025-06-01"},
            json={"reason": "league ended"}
        )
        assert len(cancelled.json()) == 3

    def test_recurring_needs_bounds(self, client):
        response = client.post("/api/bookings/recurring", json=dict(BOOKING, pattern="weekly"))
        assert response.status_code == 422

    def test_availability(self, client):
        client.post("/api/bookings", json=BOOKING)
        response = client.get("/api/bookings/availability", params={"date": "2025-06-10"})

        assert response.status_code == 200
        bay_3 = next(r for r in response.json()["resources"] if r["resource_id"] == 3)
        assert bay_3["slots"][0]["start_time"] == "09:00"
        assert {s["start_time"]: s["available"] for s in bay_3["slots"]}["10:00"] is False

    def test_price_quote(self, client):
        response = client.get("/api/bookings/quote", params={
            "date": "2025-06-10", "start_time": "6:00 PM", "duration_units": 1, "member_tier": "par"
        })
        body = response.json()
        assert body["is_peak"] is True
        assert float(body["final"]) == 27.5

        bad = client.get("/api/bookings/quote", params={"date": "2025-06-10", "start_time": "x", "duration_units": 1})
        assert bad.status_code == 422


class TestWaitlistEndpoints:
    def test_add_and_match_on_cancel(self, client):
        booking_id = client.post("/api/bookings", json=BOOKING).json()["id"]
        entry = client.post("/api/waitlist", json={
            "customer_name": "Jo Park", "date": "2025-06-10", "preferred_start_time": "10:00 AM"
        })
        assert entry.status_code == 201
        entry_id = entry.json()["id"]

        client.post(f"/api/bookings/{booking_id}/cancel", json={})

        fetched = client.get(f"/api/waitlist/{entry_id}").json()
        assert fetched["status"] == "notified"
        assert fetched["matched_resource_id"] == 3

        booked = client.post(f"/api/waitlist/{entry_id}/booked", json={"booking_id": "b-new"})
        assert booked.json()["status"] == "booked"
        assert client.post(f"/api/waitlist/{entry_id}/expire").status_code == 409

    def test_list_by_date(self, client):
        client.post("/api/waitlist", json={"customer_name": "Jo Park", "date": "2025-06-10"})
        assert len(client.get("/api/waitlist", params={"date": "2025-06-10"}).json()) == 1


class TestSyncEndpoints:
    def test_status(self, client):
        body = client.get("/api/sync/status").json()
        assert body["online"] is True
        assert body["remote_configured"] is True
        assert body["open_conflicts"] == 0
        assert "running" in body["scheduler"]

    def test_run_cycle_pushes_pending(self, client, remote):
        client.post("/api/bookings", json=BOOKING)

        body = client.post("/api/sync/run").json()

        assert body["push"]["pushed"] == 1
        assert body["pull"]["success"] is True
        assert len(remote.collections["bookings"]) == 1
        assert client.get("/api/sync/status").json()["pending_bookings"] == 0

    def test_connectivity_signal(self, client, remote):
        client.post("/api/bookings", json=BOOKING)

        offline = client.post("/api/sync/connectivity", json={"online": False}).json()
        assert offline["online"] is False
        assert offline["pending_bookings"] == 1

        online = client.post("/api/sync/connectivity", json={"online": True}).json()
        assert online["online"] is True
        assert online["pending_bookings"] == 0

    def test_conflict_queue(self, client, remote):
        client.post("/api/bookings", json=BOOKING)
        remote.seed("bookings", {
            "id": "terminal-2-booking", "resource_id": 3, "date": "2025-06-10", "start_time": "10:00",
            "duration_units": 1, "customer_name": "Sam Lee", "status": "confirmed",
            "updated_at": "2025-06-10T08:00:00",
        })
        client.post("/api/sync/run")

        conflicts = client.get("/api/sync/conflicts", params={"status": "open"}).json()
        assert conflicts["open_count"] == 1
        conflict_id = conflicts["items"][0]["id"]

        resolved = client.post(f"/api/sync/conflicts/{conflict_id}/resolve", json={"note": "moved Sam"})
        assert resolved.json()["status"] == "resolved"
        assert client.get("/api/sync/conflicts").json()["open_count"] == 0

    def test_failed_outbox_retry(self, client, remote):
        client.post("/api/bookings", json=BOOKING)
        remote.reject_status = 422
        client.post("/api/sync/run")

        failed = client.get("/api/sync/outbox/failed").json()
        assert len(failed) == 1

        remote.reject_status = None
        assert client.post(f"/api/sync/outbox/{failed[0]['id']}/retry").json()["status"] == "queued"
        assert client.post("/api/sync/outbox/unknown/retry").status_code == 404


class TestHealth:
    def test_live_and_ready(self, client):
        assert client.get("/health/live").json()["status"] == "alive"
        assert client.get("/health/ready").json()["status"] == "ready"
