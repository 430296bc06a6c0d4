from datetime import datetime, timezone

import pytest

from listing_backend.config import settings
from listing_backend.service.listing_store import InMemoryListingStore
from listing_backend.service.tier_service import AccountTierResolver, TierCache

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

PREMIUM_USER = {
    "accountTier": "premium",
    "subscription": {"status": "active", "currentPlan": "premium"},
}


def make_listing(owner_id="user-free", status="active", created_at=T0, **fields):
    data = {
        "userId": owner_id,
        "status": status,
        "createdAt": created_at,
        "updatedAt": created_at,
        "shortId": None,
    }
    data.update(fields)
    return data


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "batch_retry_initial_seconds", 0.01)
    monkeypatch.setattr(settings, "batch_retry_maximum_seconds", 0.02)
    monkeypatch.setattr(settings, "batch_retry_timeout_seconds", 5.0)


@pytest.fixture
def store():
    store = InMemoryListingStore()
    store.add_user("user-free", {"accountTier": "free"})
    store.add_user("user-premium", PREMIUM_USER)
    return store


@pytest.fixture
def resolver(store):
    return AccountTierResolver(store, cache=TierCache())
