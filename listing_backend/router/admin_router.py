from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query

from listing_backend.config import get_logger
from listing_backend.models.listing_schemas import (
    PurgeResult,
    RestoreArchivedResult,
    SweepResult,
    TierRecomputeResult,
    TTLValidationRequest,
    TTLValidationResult,
)
from listing_backend.service.errors import ListingLifecycleError
from listing_backend.service.lifecycle_service import (
    delete_listing,
    recompute_owner_listings,
    restore_incorrectly_archived,
)
from listing_backend.service.listing_store import ListingStore, get_listing_store
from listing_backend.service.sweep_service import purge_expired_listings, run_sweep, validate_ttl_fields
from listing_backend.service.tier_service import AccountTierResolver, get_tier_resolver
from listing_backend.utils.auth_utils import verify_cron_or_admin
from listing_backend.utils.http_errors import to_http_exception

logger = get_logger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["listing lifecycle admin"],
    dependencies=[Depends(verify_cron_or_admin)],
)

@router.post("/listings/sweep", response_model=SweepResult)
async def sweep_listings_route(
    page_size: Optional[int] = Query(None, gt=0, le=500, description="Listings per page and per atomic batch"),
    store: ListingStore = Depends(get_listing_store),
    resolver: AccountTierResolver = Depends(get_tier_resolver)
):
    """
    Run the consistency-repair sweep.

    This endpoint:
    1. Archives active listings past their tier duration (reason sweep_expired)
    2. Rewrites stale expiresAt values after tier changes
    3. Assigns deleteAt to archived listings missing it (reason sweep_missing_ttl)
    4. Archives inactive listings idle for longer than the inactive timeout
    """
    try:
        return await run_sweep(store, resolver, page_size=page_size)
    except HTTPException:
        raise
    except ListingLifecycleError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error running listing sweep: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="An error occurred while running the listing sweep")

@router.post("/listings/purge-expired", response_model=PurgeResult)
async def purge_expired_listings_route(
    store: ListingStore = Depends(get_listing_store)
):
    """
    Delete archived listings whose deleteAt has passed, as a backup to Firestore's TTL policy.
    """
    try:
        return await purge_expired_listings(store)
    except HTTPException:
        raise
    except ListingLifecycleError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error purging expired listings: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="An error occurred while purging expired listings")

@router.post("/listings/validate-ttl-fields", response_model=TTLValidationResult)
async def validate_ttl_fields_route(
    validation_request: TTLValidationRequest = Body(..., description="Whether to only report issues"),
    store: ListingStore = Depends(get_listing_store)
):
    """
    Find TTL fields stored as null and archived listings without deleteAt.
    Fixes them unless dry_run is true (the default).
    """
    try:
        return await validate_ttl_fields(store, dry_run=validation_request.dry_run)
    except HTTPException:
        raise
    except ListingLifecycleError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error validating TTL fields: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="An error occurred while validating TTL fields")

@router.delete("/listings/{listing_id}", response_model=dict)
async def delete_listing_route(
    listing_id: str = Path(..., description="The ID of the listing to delete"),
    store: ListingStore = Depends(get_listing_store)
):
    """
    Delete a listing together with its short id mapping and the owner's mirror document.
    """
    try:
        return await delete_listing(store, listing_id)
    except HTTPException:
        raise
    except ListingLifecycleError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error deleting listing {listing_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="An error occurred while deleting the listing")

@router.post("/users/{user_id}/tier-change", response_model=TierRecomputeResult)
async def tier_change_route(
    user_id: str = Path(..., description="The ID of the user whose tier changed"),
    store: ListingStore = Depends(get_listing_store),
    resolver: AccountTierResolver = Depends(get_tier_resolver)
):
    """
    Recompute expiresAt for all active listings of a user after their account tier changed.
    """
    try:
        return await recompute_owner_listings(store, resolver, user_id)
    except HTTPException:
        raise
    except ListingLifecycleError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error recomputing listings for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="An error occurred while recomputing the user's listings")

@router.post("/users/{user_id}/restore-archived", response_model=RestoreArchivedResult)
async def restore_archived_route(
    user_id: str = Path(..., description="The ID of the user whose listings should be checked"),
    store: ListingStore = Depends(get_listing_store),
    resolver: AccountTierResolver = Depends(get_tier_resolver)
):
    """
    Restore listings archived for expiring that would still be active under the user's current tier.
    """
    try:
        return await restore_incorrectly_archived(store, resolver, user_id)
    except HTTPException:
        raise
    except ListingLifecycleError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error restoring archived listings for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="An error occurred while restoring archived listings")
