import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import Depends

from listing_backend.config import get_logger, settings
from listing_backend.service.errors import TierLookupFailed, UnparseableDate
from listing_backend.service.expiration import parse_timestamp, utc_now
from listing_backend.service.listing_store import ListingStore, get_listing_store

logger = get_logger(__name__)

FREE_TIER = "free"
PREMIUM_TIER = "premium"


def determine_account_tier(user_data: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> str:
    """
    Derive the effective account tier from a user document.

    A stored ``accountTier`` of premium only counts while it is backed by an
    active or trialing subscription, an admin-granted or manually updated
    plan, or a canceled subscription that is still inside its paid period.
    Everything else is the free tier.
    """
    if not user_data:
        return FREE_TIER

    if user_data.get("accountTier", FREE_TIER) != PREMIUM_TIER:
        return FREE_TIER

    subscription = user_data.get("subscription") or {}
    status = subscription.get("status")

    if status in ("active", "trialing"):
        return PREMIUM_TIER
    if str(subscription.get("stripeSubscriptionId") or "").startswith("admin_"):
        return PREMIUM_TIER
    if subscription.get("manuallyUpdated") and subscription.get("currentPlan") == PREMIUM_TIER:
        return PREMIUM_TIER

    if status == "canceled":
        now = now or utc_now()
        for field in ("endDate", "renewalDate"):
            value = subscription.get(field)
            if value is None:
                continue
            try:
                if now < parse_timestamp(value, f"subscription.{field}"):
                    return PREMIUM_TIER
            except UnparseableDate as e:
                logger.warning(f"Ignoring subscription date: {e}")

    return FREE_TIER


def shortest_tier_duration_hours() -> int:
    return min(settings.tier_durations.values())


def tier_duration_hours(tier: str) -> int:
    """Listing duration for a tier; unknown tiers get the shortest duration."""
    durations = settings.tier_durations
    if tier not in durations:
        logger.warning(f"Unknown account tier '{tier}', using the shortest listing duration")
        return shortest_tier_duration_hours()
    return durations[tier]


class TierCache:
    """Per-owner tier cache with a fixed time-to-live."""

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = settings.tier_cache_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    def get(self, owner_id: str, allow_stale: bool = False) -> Optional[str]:
        entry = self._entries.get(owner_id)
        if entry is None:
            return None
        tier, stored_at = entry
        if not allow_stale and self._clock() - stored_at >= self.ttl_seconds:
            return None
        return tier

    def set(self, owner_id: str, tier: str) -> None:
        self._entries[owner_id] = (tier, self._clock())

    def invalidate(self, owner_id: Optional[str] = None) -> None:
        if owner_id is None:
            self._entries.clear()
            logger.info("Cleared all cached account tiers")
        else:
            self._entries.pop(owner_id, None)
            logger.info(f"Cleared cached account tier for user {owner_id}")


tier_cache = TierCache()


class AccountTierResolver:
    def __init__(self, store: ListingStore, cache: Optional[TierCache] = None):
        self.store = store
        self.cache = cache if cache is not None else tier_cache

    async def get_tier(self, owner_id: Optional[str], force_refresh: bool = False) -> str:
        """
        Resolve the owner's tier, using the cache when possible.

        Raises:
            TierLookupFailed: if the owner id is missing or the user lookup fails
                and no cached tier exists
        """
        if not owner_id or not isinstance(owner_id, str):
            raise TierLookupFailed(owner_id, "listing has no owner id")

        if not force_refresh:
            cached = self.cache.get(owner_id)
            if cached is not None:
                return cached

        try:
            user_data = await self.store.get_user(owner_id)
        except Exception as e:
            stale = self.cache.get(owner_id, allow_stale=True)
            if stale is not None:
                logger.warning(f"Tier lookup for user {owner_id} failed ({e}); reusing cached tier '{stale}'")
                return stale
            raise TierLookupFailed(owner_id, str(e)) from e

        if user_data is None:
            logger.info(f"User document not found for {owner_id}, defaulting to free tier")
        tier = determine_account_tier(user_data)
        self.cache.set(owner_id, tier)
        return tier

    async def get_tier_duration(self, owner_id: Optional[str]) -> int:
        """
        Listing duration in hours for the owner's tier.

        Lookup failures fall back to the shortest duration: a listing archived
        early can be restored, a listing that never expires is a leak.
        """
        try:
            tier = await self.get_tier(owner_id)
        except TierLookupFailed as e:
            logger.warning(f"{e}; falling back to the shortest listing duration")
            return shortest_tier_duration_hours()
        return tier_duration_hours(tier)


def get_tier_resolver(store: ListingStore = Depends(get_listing_store)) -> AccountTierResolver:
    return AccountTierResolver(store)
