from datetime import timedelta

from listing_backend import sweep_function
from listing_backend.service.expiration import utc_now
from listing_backend.service.listing_store import InMemoryListingStore

from conftest import make_listing


def seeded_store():
    store = InMemoryListingStore()
    store.add_user("user-free", {"accountTier": "free"})
    store.add_listing("expired", make_listing(created_at=utc_now() - timedelta(hours=49)))
    store.add_listing("due", make_listing(status="archived", deleteAt=utc_now() - timedelta(hours=1)))
    return store


def test_scheduled_sweep_runs_sweep_then_purge(monkeypatch):
    store = seeded_store()
    monkeypatch.setattr(sweep_function, "create_firestore_client", lambda: None)
    monkeypatch.setattr(sweep_function, "FirestoreListingStore", lambda db: store)

    result = sweep_function.sweep_listings_scheduled(None)

    assert result["status"] == "success"
    assert result["stats"]["sweep"]["archived"] == 1
    assert result["stats"]["purge"]["deleted"] == 1
    assert store.listing("expired")["status"] == "archived"
    assert store.listing("due") is None


def test_http_trigger_reports_failure(monkeypatch):
    def broken_client():
        raise RuntimeError("no credentials")

    monkeypatch.setattr(sweep_function, "create_firestore_client", broken_client)

    body, status = sweep_function.sweep_listings_http(None)

    assert status == 500
    assert body["success"] is False
    assert "no credentials" in body["error"]
