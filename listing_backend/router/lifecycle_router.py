from fastapi import APIRouter, Body, Depends, HTTPException, Path

from listing_backend.config import get_logger
from listing_backend.models.listing_schemas import (
    ArchiveListingRequest,
    ArchiveResult,
    ExpirationCheckResult,
    LifecycleStatus,
    RestoreListingRequest,
    RestoreResult,
)
from listing_backend.service.errors import ListingLifecycleError
from listing_backend.service.lifecycle_service import (
    archive_listing,
    check_listing_expiration,
    get_lifecycle_status,
    restore_listing,
)
from listing_backend.service.listing_store import ListingStore, get_listing_store
from listing_backend.service.tier_service import AccountTierResolver, get_tier_resolver
from listing_backend.utils.http_errors import to_http_exception

logger = get_logger(__name__)

router = APIRouter(
    tags=["listing lifecycle"],
)

@router.get("/listings/{listing_id}/lifecycle", response_model=LifecycleStatus)
async def get_lifecycle_status_route(
    listing_id: str = Path(..., description="The ID of the listing"),
    store: ListingStore = Depends(get_listing_store)
):
    """
    Get the lifecycle state of a listing: status, expiresAt, deleteAt and the
    countdowns derived from them.
    """
    try:
        return await get_lifecycle_status(store, listing_id)
    except HTTPException:
        raise
    except ListingLifecycleError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error reading lifecycle of listing {listing_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="An error occurred while reading the listing lifecycle")

@router.post("/users/{user_id}/listings/{listing_id}/archive", response_model=ArchiveResult)
async def archive_listing_route(
    user_id: str = Path(..., description="The ID of the user who owns the listing"),
    listing_id: str = Path(..., description="The ID of the listing to archive"),
    archive_request: ArchiveListingRequest = Body(..., description="The reason tag recorded on the listing"),
    store: ListingStore = Depends(get_listing_store)
):
    """
    Archive a listing.

    This endpoint:
    1. Verifies the listing exists and the user is the owner
    2. Sets status to archived with archivedAt = now and a deleteAt 7 days later
    3. Leaves an already archived listing untouched (deleteAt is never pushed back)
    """
    try:
        return await archive_listing(
            store,
            listing_id,
            reason=archive_request.reason,
            owner_id=user_id
        )
    except HTTPException:
        raise
    except ListingLifecycleError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error archiving listing {listing_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="An error occurred while archiving the listing")

@router.post("/users/{user_id}/listings/{listing_id}/restore", response_model=RestoreResult)
async def restore_listing_route(
    user_id: str = Path(..., description="The ID of the user who owns the listing"),
    listing_id: str = Path(..., description="The ID of the listing to restore"),
    restore_request: RestoreListingRequest = Body(..., description="The status to restore the listing to"),
    store: ListingStore = Depends(get_listing_store),
    resolver: AccountTierResolver = Depends(get_tier_resolver)
):
    """
    Restore an archived listing.

    This endpoint:
    1. Verifies the user is the owner
    2. Recomputes expiresAt from the original creation time and the current tier
    3. Removes archivedAt, deleteAt and the TTL metadata in the same write

    A listing that has already been deleted returns outcome "not_found" with status 200.
    """
    try:
        return await restore_listing(
            store,
            resolver,
            listing_id,
            target_status=restore_request.target_status.value,
            owner_id=user_id
        )
    except HTTPException:
        raise
    except ListingLifecycleError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error restoring listing {listing_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="An error occurred while restoring the listing")

@router.post("/listings/{listing_id}/check-expiration", response_model=ExpirationCheckResult)
async def check_listing_expiration_route(
    listing_id: str = Path(..., description="The ID of the listing to check"),
    store: ListingStore = Depends(get_listing_store),
    resolver: AccountTierResolver = Depends(get_tier_resolver)
):
    """
    Check one listing against its owner's tier duration and archive it if it has expired.
    """
    try:
        return await check_listing_expiration(store, resolver, listing_id)
    except HTTPException:
        raise
    except ListingLifecycleError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error checking expiration of listing {listing_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="An error occurred while checking the listing expiration")
