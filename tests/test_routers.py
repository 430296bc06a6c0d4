import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from google.api_core import exceptions as core_exceptions

from listing_backend.config import settings
from listing_backend.main import api_v1, app
from listing_backend.service.expiration import utc_now
from listing_backend.service.listing_store import InMemoryListingStore, get_listing_store
from listing_backend.service.sweep_service import purge_expired_listings
from listing_backend.service.tier_service import AccountTierResolver, TierCache, get_tier_resolver

from conftest import make_listing

BASE = "/lifecycle/api/v1"
CRON_SECRET = "test-cron-secret"


@pytest.fixture
def client(store, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", CRON_SECRET)
    monkeypatch.setattr(settings, "admin_secret", "")
    api_v1.dependency_overrides[get_listing_store] = lambda: store
    api_v1.dependency_overrides[get_tier_resolver] = lambda: AccountTierResolver(store, cache=TierCache())
    yield TestClient(app)
    api_v1.dependency_overrides.clear()


def auth_headers():
    return {"Authorization": f"Bearer {CRON_SECRET}"}


def test_service_root(client):
    response = client.get("/lifecycle")
    assert response.status_code == 200
    assert "Listing Lifecycle API" in response.text


def test_archive_and_restore_round_trip(client, store):
    store.add_listing("l1", make_listing(created_at=utc_now() - timedelta(hours=1)))

    response = client.post(f"{BASE}/users/user-free/listings/l1/archive", json={})
    assert response.status_code == 200
    body = response.json()
    assert body["changed"] is True
    assert body["status"] == "archived"
    assert body["deleteAt"] is not None

    response = client.post(f"{BASE}/users/user-free/listings/l1/restore", json={"target_status": "active"})
    assert response.status_code == 200
    assert response.json()["outcome"] == "restored"
    assert "deleteAt" not in store.listing("l1")


def test_owner_cannot_postpone_deletion_with_archival_time(client, store):
    store.add_listing("l1", make_listing(created_at=utc_now() - timedelta(hours=1)))

    response = client.post(
        f"{BASE}/users/user-free/listings/l1/archive",
        json={"archived_at": "2999-01-01T00:00:00Z"}
    )

    assert response.status_code == 200
    delete_at = store.listing("l1")["deleteAt"]
    assert delete_at <= utc_now() + timedelta(days=7)

    purged = asyncio.run(purge_expired_listings(store, now=utc_now() + timedelta(days=8)))
    assert purged.deleted_listing_ids == ["l1"]
    assert store.listing("l1") is None


def test_archive_by_other_user_is_forbidden(client, store):
    store.add_listing("l1", make_listing())
    response = client.post(f"{BASE}/users/intruder/listings/l1/archive", json={})
    assert response.status_code == 403


def test_archive_sold_listing_conflicts(client, store):
    store.add_listing("l1", make_listing(status="sold"))
    response = client.post(f"{BASE}/users/user-free/listings/l1/archive", json={})
    assert response.status_code == 409


def test_restore_missing_listing_is_benign(client):
    response = client.post(f"{BASE}/users/user-free/listings/gone/restore", json={})
    assert response.status_code == 200
    assert response.json()["outcome"] == "not_found"


def test_lifecycle_status_of_missing_listing(client):
    response = client.get(f"{BASE}/listings/missing/lifecycle")
    assert response.status_code == 404


def test_check_expiration_with_unparseable_creation_time(client, store):
    store.add_listing("l1", make_listing(created_at="not a date"))
    response = client.post(f"{BASE}/listings/l1/check-expiration")
    assert response.status_code == 422


def test_check_expiration_archives_expired_listing(client, store):
    store.add_listing("l1", make_listing(created_at=utc_now() - timedelta(hours=49)))

    response = client.post(f"{BASE}/listings/l1/check-expiration")

    assert response.status_code == 200
    assert response.json()["status"] == "archived"
    assert store.listing("l1")["ttlReason"] == "tier_duration_exceeded"


@pytest.mark.parametrize("headers", [
    {},
    {"Authorization": "Bearer wrong"},
    {"Authorization": CRON_SECRET},
    {"X-Cron-Secret": "wrong"},
])
def test_admin_routes_require_secret(client, headers):
    response = client.post(f"{BASE}/admin/listings/sweep", headers=headers)
    assert response.status_code == 401


def test_unset_secrets_reject_empty_token(client, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", "")
    response = client.post(f"{BASE}/admin/listings/sweep", headers={"Authorization": "Bearer "})
    assert response.status_code == 401


def test_sweep_route(client, store):
    store.add_listing("l1", make_listing(created_at=utc_now() - timedelta(hours=49)))

    response = client.post(f"{BASE}/admin/listings/sweep", headers={"X-Cron-Secret": CRON_SECRET})

    assert response.status_code == 200
    assert response.json()["archived"] == 1
    assert store.listing("l1")["status"] == "archived"


def test_purge_route(client, store):
    store.add_listing("l1", make_listing(status="archived", deleteAt=utc_now() - timedelta(minutes=1)))

    response = client.post(f"{BASE}/admin/listings/purge-expired", headers=auth_headers())

    assert response.status_code == 200
    assert response.json()["deleted_listing_ids"] == ["l1"]
    assert store.listing("l1") is None


def test_validate_ttl_fields_route(client, store):
    store.add_listing("l1", make_listing(deleteAt=None))

    response = client.post(f"{BASE}/admin/listings/validate-ttl-fields", json={"dry_run": True}, headers=auth_headers())

    assert response.status_code == 200
    assert response.json()["issues_found"] == 1
    assert "deleteAt" in store.listing("l1")


def test_delete_route_maps_batch_failure_to_503(client, store, monkeypatch):
    store.add_listing("l1", make_listing())

    async def failing_commit(operations):
        raise core_exceptions.PermissionDenied("denied")

    monkeypatch.setattr(store, "commit_batch", failing_commit)
    response = client.delete(f"{BASE}/admin/listings/l1", headers=auth_headers())

    assert response.status_code == 503
    assert store.listing("l1") is not None


def test_tier_change_route(client, store):
    store.add_listing("l1", make_listing(owner_id="user-premium", created_at=utc_now() - timedelta(days=3)))

    response = client.post(f"{BASE}/admin/users/user-premium/tier-change", headers=auth_headers())

    assert response.status_code == 200
    assert response.json()["tier"] == "premium"
    assert response.json()["expires_at_updated"] == 1


def test_restore_archived_route(client, store):
    response = client.post(f"{BASE}/admin/users/user-premium/restore-archived", headers=auth_headers())
    assert response.status_code == 200
    assert response.json()["restored"] == 0
