from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from listing_backend.config import get_logger, settings
from listing_backend.models.listing_schemas import (
    ArchiveReason,
    ArchiveResult,
    EXPIRY_REASONS,
    ExpirationCheckResult,
    FlaggedListing,
    LifecycleStatus,
    ListingStatus,
    RestoreArchivedResult,
    RestoreResult,
    TierRecomputeResult,
)
from listing_backend.service.batch_writer import commit_with_retry
from listing_backend.service.errors import (
    ConcurrentModification,
    InvalidTransition,
    ListingNotFound,
    NotListingOwner,
    TierLookupFailed,
    UnparseableDate,
)
from listing_backend.service.expiration import (
    compute_delete_at,
    compute_expiration,
    is_expired,
    parse_timestamp,
    seconds_remaining,
    utc_now,
)
from listing_backend.service.listing_store import (
    ListingSnapshot,
    ListingStore,
    listing_delete_operations,
    listing_update,
)
from listing_backend.service.tier_service import (
    AccountTierResolver,
    shortest_tier_duration_hours,
    tier_duration_hours,
)
from listing_backend.service.ttl_fields import (
    ARCHIVED_AT,
    ARCHIVE_FIELDS,
    DELETE_AT,
    EXPIRATION_REASON,
    TTL_REASON,
    build_archive_update,
    build_restore_update,
    build_ttl_assignment,
    build_ttl_clear_update,
    has_ttl_fields,
)

logger = get_logger(__name__)

ARCHIVABLE_STATUSES = (ListingStatus.ACTIVE.value, ListingStatus.INACTIVE.value)
RESTORABLE_TARGETS = (ListingStatus.ACTIVE.value, ListingStatus.INACTIVE.value)


def _resolve_now(now: Optional[Any]) -> datetime:
    return parse_timestamp(now, "now") if now is not None else utc_now()


def _optional_timestamp(data: Dict[str, Any], field: str) -> Optional[datetime]:
    try:
        return parse_timestamp(data.get(field), field)
    except UnparseableDate:
        return None


def _check_owner(listing: ListingSnapshot, owner_id: Optional[str]) -> None:
    if owner_id is not None and listing.data.get("userId") != owner_id:
        raise NotListingOwner(listing.id, owner_id)


def flag_listing(error: UnparseableDate, listing_id: str) -> FlaggedListing:
    logger.warning(f"Excluding listing {listing_id} from automatic processing: {error}")
    return FlaggedListing(listing_id=listing_id, field=error.field, detail=str(error))


def creation_instant(listing: ListingSnapshot) -> datetime:
    """The instant active time is counted from: originalCreatedAt, else createdAt."""
    field = "originalCreatedAt" if listing.data.get("originalCreatedAt") is not None else "createdAt"
    return parse_timestamp(listing.data.get(field), field, listing.id)


async def compute_listing_expiration(resolver: AccountTierResolver, listing: ListingSnapshot) -> datetime:
    duration = await resolver.get_tier_duration(listing.data.get("userId"))
    return compute_expiration(creation_instant(listing), duration)


def plan_archive(listing: ListingSnapshot, archived_at: datetime, reason: str, now: datetime) -> Dict[str, Any]:
    return build_archive_update(listing.data, archived_at, compute_delete_at(archived_at), reason, now)


def needs_ttl_assignment(data: Dict[str, Any]) -> bool:
    # Firestore's TTL policy ignores anything that is not a timestamp
    return not isinstance(data.get(DELETE_AT), datetime)


def plan_missing_ttl(listing: ListingSnapshot, reason: str, now: datetime) -> Dict[str, Any]:
    """TTL assignment for an archived listing without a usable deleteAt."""
    try:
        archived_at = parse_timestamp(listing.data.get(ARCHIVED_AT), ARCHIVED_AT, listing.id)
        replaced_archived_at = None
        if archived_at > now:
            logger.warning(f"Listing {listing.id} has archivedAt in the future; counting the archive period from now")
            archived_at = now
            replaced_archived_at = now
    except UnparseableDate as e:
        logger.warning(f"{e}; counting the archive period from now")
        archived_at = now
        replaced_archived_at = now
    return build_ttl_assignment(compute_delete_at(archived_at), reason, now, archived_at=replaced_archived_at)


def stored_expiration_differs(listing: ListingSnapshot, expected: datetime) -> bool:
    stored = _optional_timestamp(listing.data, "expiresAt")
    return stored is None or stored != expected


def plan_active_listing(
    listing: ListingSnapshot,
    tier_duration: float,
    now: datetime,
    expired_reason: str
) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """
    Decide what an active listing needs under the given tier duration.

    Returns:
        (changes, action) where action is "archive", "refresh" or None when
        the stored fields are already correct

    Raises:
        UnparseableDate: if the creation instant cannot be read
    """
    expires_at = compute_expiration(creation_instant(listing), tier_duration)
    if is_expired(now, expires_at):
        return plan_archive(listing, now, expired_reason, now), "archive"
    if stored_expiration_differs(listing, expires_at):
        return {"expiresAt": expires_at, "updatedAt": now}, "refresh"
    return None, None


async def archive_listing(
    store: ListingStore,
    listing_id: str,
    reason: str = ArchiveReason.OWNER_ARCHIVED.value,
    archived_at: Optional[datetime] = None,
    owner_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> ArchiveResult:
    """
    Move an active or inactive listing to archived and schedule its deletion.

    Archiving an already archived listing never moves its deleteAt; if the
    listing is archived but lacks a deleteAt, one is assigned from archivedAt.

    Raises:
        ListingNotFound: if the listing does not exist
        NotListingOwner: if ``owner_id`` is given and does not own the listing
        InvalidTransition: if the listing is sold or pending, or ``archived_at`` lies after ``now``
        ConcurrentModification: if the listing changed between read and write
    """
    now = _resolve_now(now)
    listing = await store.get_listing(listing_id)
    if listing is None:
        raise ListingNotFound(listing_id)
    _check_owner(listing, owner_id)

    status = listing.data.get("status")
    if status == ListingStatus.ARCHIVED.value:
        if needs_ttl_assignment(listing.data):
            changes = plan_missing_ttl(listing, reason, now)
            await store.update_listing(listing_id, changes, expected_update_time=listing.update_time)
            logger.info(f"Listing {listing_id} was archived without deleteAt; assigned {changes[DELETE_AT].isoformat()}")
            return ArchiveResult(
                listing_id=listing_id,
                changed=True,
                status=status,
                archivedAt=changes.get(ARCHIVED_AT) or _optional_timestamp(listing.data, ARCHIVED_AT),
                deleteAt=changes[DELETE_AT],
                ttlReason=reason,
            )
        logger.info(f"Listing {listing_id} is already archived; leaving deleteAt unchanged")
        return ArchiveResult(
            listing_id=listing_id,
            changed=False,
            status=status,
            archivedAt=_optional_timestamp(listing.data, ARCHIVED_AT),
            deleteAt=_optional_timestamp(listing.data, DELETE_AT),
            ttlReason=listing.data.get(TTL_REASON),
        )

    if status not in ARCHIVABLE_STATUSES:
        raise InvalidTransition(listing_id, status, "archive")

    archived_at = parse_timestamp(archived_at, ARCHIVED_AT) if archived_at is not None else now
    if archived_at > now:
        # deleteAt stays within one grace period of the archive call
        raise InvalidTransition(listing_id, status, f"archive as of {archived_at.isoformat()}")
    changes = plan_archive(listing, archived_at, reason, now)
    await store.update_listing(listing_id, changes, expected_update_time=listing.update_time)
    logger.info(f"Archived listing {listing_id} ({reason}); deleteAt {changes[DELETE_AT].isoformat()}")

    return ArchiveResult(
        listing_id=listing_id,
        changed=True,
        status=ListingStatus.ARCHIVED.value,
        archivedAt=archived_at,
        deleteAt=changes[DELETE_AT],
        ttlReason=reason,
    )


async def restore_listing(
    store: ListingStore,
    resolver: AccountTierResolver,
    listing_id: str,
    target_status: str = ListingStatus.ACTIVE.value,
    owner_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> RestoreResult:
    """
    Bring an archived listing back and clear every TTL field with it.

    The new expiresAt is counted from the original creation instant under the
    owner's current tier. A listing that no longer exists was most likely
    removed by the TTL sweep; that is reported as ``not_found`` rather than an
    error, because the listing is no longer archived either way.

    Raises:
        NotListingOwner: if ``owner_id`` is given and does not own the listing
        InvalidTransition: for sold or pending listings, or an unsupported target status
        UnparseableDate: if the creation instant cannot be read
    """
    target_status = ListingStatus(target_status).value
    if target_status not in RESTORABLE_TARGETS:
        raise InvalidTransition(listing_id, target_status, "restore to")

    now = _resolve_now(now)
    listing = await store.get_listing(listing_id)
    if listing is None:
        logger.info(f"Listing {listing_id} no longer exists; nothing to restore")
        return RestoreResult(listing_id=listing_id, outcome="not_found")
    _check_owner(listing, owner_id)

    status = listing.data.get("status")
    if status == ListingStatus.ARCHIVED.value:
        expires_at = await compute_listing_expiration(resolver, listing)
        changes = build_restore_update(target_status, expires_at, now)
        try:
            await store.update_listing(listing_id, changes, expected_update_time=listing.update_time)
        except ListingNotFound:
            logger.info(f"Listing {listing_id} was deleted while restoring")
            return RestoreResult(listing_id=listing_id, outcome="not_found")
        except ConcurrentModification:
            if await store.get_listing(listing_id) is None:
                logger.info(f"Listing {listing_id} was deleted while restoring")
                return RestoreResult(listing_id=listing_id, outcome="not_found")
            raise
        logger.info(f"Restored listing {listing_id} to {target_status}; expiresAt {expires_at.isoformat()}")
        return RestoreResult(listing_id=listing_id, outcome="restored", status=target_status, expiresAt=expires_at)

    if status in RESTORABLE_TARGETS:
        leftover = [field for field in ARCHIVE_FIELDS if field in listing.data]
        if leftover:
            # A live listing must never carry deleteAt
            await store.update_listing(
                listing_id,
                build_ttl_clear_update(now, leftover),
                expected_update_time=listing.update_time,
            )
            logger.warning(f"Listing {listing_id} is {status} but carried {leftover}; cleared them")
            return RestoreResult(
                listing_id=listing_id,
                outcome="ttl_cleared",
                status=status,
                expiresAt=_optional_timestamp(listing.data, "expiresAt"),
            )
        return RestoreResult(
            listing_id=listing_id,
            outcome="already_active",
            status=status,
            expiresAt=_optional_timestamp(listing.data, "expiresAt"),
        )

    raise InvalidTransition(listing_id, status, "restore")


async def check_listing_expiration(
    store: ListingStore,
    resolver: AccountTierResolver,
    listing_id: str,
    now: Optional[datetime] = None
) -> ExpirationCheckResult:
    """Archive one active listing if its tier duration has run out."""
    now = _resolve_now(now)
    listing = await store.get_listing(listing_id)
    if listing is None:
        raise ListingNotFound(listing_id)

    status = listing.data.get("status")
    if status == ListingStatus.ARCHIVED.value:
        return ExpirationCheckResult(
            listing_id=listing_id,
            status="already_archived",
            deleteAt=_optional_timestamp(listing.data, DELETE_AT),
        )
    if status != ListingStatus.ACTIVE.value:
        return ExpirationCheckResult(listing_id=listing_id, status=str(status))

    expires_at = await compute_listing_expiration(resolver, listing)
    if not is_expired(now, expires_at):
        logger.info(f"Listing {listing_id} is not expired yet. Expires at: {expires_at.isoformat()}")
        return ExpirationCheckResult(listing_id=listing_id, status=status, expiresAt=expires_at)

    changes = plan_archive(listing, now, ArchiveReason.TIER_DURATION_EXCEEDED.value, now)
    await store.update_listing(listing_id, changes, expected_update_time=listing.update_time)
    logger.info(f"Listing {listing_id} expired at {expires_at.isoformat()}; archived")
    return ExpirationCheckResult(
        listing_id=listing_id,
        status=ListingStatus.ARCHIVED.value,
        expiresAt=expires_at,
        deleteAt=changes[DELETE_AT],
    )


async def get_lifecycle_status(store: ListingStore, listing_id: str, now: Optional[datetime] = None) -> LifecycleStatus:
    now = _resolve_now(now)
    listing = await store.get_listing(listing_id)
    if listing is None:
        raise ListingNotFound(listing_id)

    data = listing.data
    status = data.get("status")
    expires_at = _optional_timestamp(data, "expiresAt")
    delete_at = _optional_timestamp(data, DELETE_AT)
    archived = status == ListingStatus.ARCHIVED.value

    needs_repair = (
        (archived and needs_ttl_assignment(data))
        or (not archived and has_ttl_fields(data))
        or (status == ListingStatus.ACTIVE.value and expires_at is None)
    )

    return LifecycleStatus(
        listing_id=listing_id,
        status=status,
        expiresAt=expires_at,
        archivedAt=_optional_timestamp(data, ARCHIVED_AT),
        deleteAt=delete_at,
        seconds_until_expiration=seconds_remaining(now, expires_at) if expires_at and not archived else None,
        seconds_until_deletion=seconds_remaining(now, delete_at) if delete_at and archived else None,
        needs_repair=needs_repair,
    )


async def delete_listing(store: ListingStore, listing_id: str) -> dict:
    """Administrative delete of a listing together with its short id and user mirror documents."""
    listing = await store.get_listing(listing_id)
    if listing is None:
        raise ListingNotFound(listing_id)

    operations = listing_delete_operations(listing)
    await commit_with_retry(store, operations, label=f"delete of listing {listing_id}")
    logger.info(f"Deleted listing {listing_id} and {len(operations) - 1} related documents")
    return {"message": f"Listing {listing_id} deleted successfully", "deleted_documents": len(operations)}


async def _resolve_fresh_tier(resolver: AccountTierResolver, owner_id: str) -> Tuple[str, int]:
    resolver.cache.invalidate(owner_id)
    try:
        tier = await resolver.get_tier(owner_id, force_refresh=True)
    except TierLookupFailed as e:
        logger.warning(f"{e}; using the shortest listing duration")
        return "unknown", shortest_tier_duration_hours()
    return tier, tier_duration_hours(tier)


async def recompute_owner_listings(
    store: ListingStore,
    resolver: AccountTierResolver,
    owner_id: str,
    now: Optional[datetime] = None
) -> TierRecomputeResult:
    """
    Re-derive expiresAt for every active listing of an owner after a tier change.

    Listings whose new expiration is already past are archived. Archived
    listings keep their deleteAt: the archive grace period does not depend on
    the tier.
    """
    now = _resolve_now(now)
    tier, duration = await _resolve_fresh_tier(resolver, owner_id)
    result = TierRecomputeResult(user_id=owner_id, tier=tier, tier_duration_hours=duration)
    page_size = settings.sweep_page_size
    start_after = None

    while True:
        page = await store.list_listings(
            status=ListingStatus.ACTIVE.value,
            owner_id=owner_id,
            page_size=page_size,
            start_after_id=start_after
        )
        operations = []
        for listing in page:
            result.scanned += 1
            try:
                changes, action = plan_active_listing(listing, duration, now, ArchiveReason.TIER_CHANGE_EXPIRED.value)
            except UnparseableDate as e:
                result.flagged.append(flag_listing(e, listing.id))
                continue
            if action == "archive":
                result.archived += 1
            elif action == "refresh":
                result.expires_at_updated += 1
            if changes:
                operations.append(listing_update(listing, changes))

        await commit_with_retry(store, operations, label=f"tier recompute for user {owner_id}")
        if len(page) < page_size:
            break
        start_after = page[-1].id

    logger.info(
        f"Recomputed listings for user {owner_id} ({tier}, {duration}h): "
        f"scanned {result.scanned}, updated {result.expires_at_updated}, archived {result.archived}"
    )
    return result


async def restore_incorrectly_archived(
    store: ListingStore,
    resolver: AccountTierResolver,
    owner_id: str,
    now: Optional[datetime] = None
) -> RestoreArchivedResult:
    """
    Restore listings that were archived for running out of time but would still
    be live under the owner's current tier, e.g. after an upgrade to premium.
    """
    now = _resolve_now(now)
    tier, duration = await _resolve_fresh_tier(resolver, owner_id)
    result = RestoreArchivedResult(user_id=owner_id, tier=tier)
    page_size = settings.sweep_page_size
    start_after = None

    while True:
        page = await store.list_listings(
            status=ListingStatus.ARCHIVED.value,
            owner_id=owner_id,
            page_size=page_size,
            start_after_id=start_after
        )
        operations = []
        for listing in page:
            if listing.data.get(EXPIRATION_REASON) not in EXPIRY_REASONS:
                continue
            result.found += 1
            try:
                expires_at = compute_expiration(creation_instant(listing), duration)
            except UnparseableDate as e:
                result.flagged.append(flag_listing(e, listing.id))
                continue
            if is_expired(now, expires_at):
                continue
            previous = listing.data.get("previousStatus")
            status = previous if previous in RESTORABLE_TARGETS else ListingStatus.ACTIVE.value
            operations.append(listing_update(
                listing,
                build_restore_update(status, expires_at, now, reason="tier_upgrade_correction")
            ))
            result.restored += 1

        await commit_with_retry(store, operations, label=f"restore of archived listings for user {owner_id}")
        if len(page) < page_size:
            break
        start_after = page[-1].id

    logger.info(f"Restored {result.restored} of {result.found} expiry-archived listings for user {owner_id}")
    return result
