"""
Batch repair passes over the listings collection.

``run_sweep`` restores the lifecycle invariants that drift without a push
event: active listings past their tier duration, archived listings without a
usable deleteAt and long-idle inactive listings. ``purge_expired_listings``
backs up Firestore's native TTL deletion, which runs on a best-effort
schedule. ``validate_ttl_fields`` finds TTL fields stored as null.

Each page of repairs is committed as one atomic batch and every write is
guarded by a "needs update" check, so running a pass twice with the same clock
writes nothing the second time.
"""
from datetime import datetime, timedelta
from typing import AsyncIterator, Dict, List, Optional

from google.cloud import firestore

from listing_backend.config import get_logger, settings
from listing_backend.models.listing_schemas import (
    ArchiveReason,
    ListingStatus,
    PurgeResult,
    SweepResult,
    TTLFieldIssue,
    TTLValidationResult,
)
from listing_backend.service.batch_writer import commit_with_retry
from listing_backend.service.errors import UnparseableDate
from listing_backend.service.expiration import is_expired, parse_timestamp, utc_now
from listing_backend.service.lifecycle_service import (
    flag_listing,
    needs_ttl_assignment,
    plan_active_listing,
    plan_archive,
    plan_missing_ttl,
)
from listing_backend.service.listing_store import (
    ListingSnapshot,
    ListingStore,
    WriteOperation,
    listing_delete_operations,
    listing_update,
)
from listing_backend.service.tier_service import AccountTierResolver
from listing_backend.service.ttl_fields import (
    ARCHIVE_FIELDS,
    build_ttl_clear_update,
    find_null_ttl_fields,
)

logger = get_logger(__name__)

# Cap on the number of deleted ids echoed back in a purge result
MAX_REPORTED_IDS = 10
# Cap on the number of issues echoed back in a validation result
MAX_REPORTED_ISSUES = 50


async def iterate_pages(
    store: ListingStore,
    status: Optional[str],
    page_size: int
) -> AsyncIterator[List[ListingSnapshot]]:
    start_after = None
    while True:
        page = await store.list_listings(status=status, page_size=page_size, start_after_id=start_after)
        if page:
            yield page
        if len(page) < page_size:
            return
        start_after = page[-1].id


async def _commit_page(store: ListingStore, operations: List[WriteOperation], result: SweepResult, label: str) -> None:
    written = await commit_with_retry(store, operations, label=label)
    if written:
        result.writes += written
        result.batches_committed += 1


async def _sweep_active(store: ListingStore, resolver: AccountTierResolver, now: datetime, page_size: int, result: SweepResult) -> None:
    async for page in iterate_pages(store, ListingStatus.ACTIVE.value, page_size):
        operations = []
        for listing in page:
            result.scanned += 1
            # Tier may have changed since creation, so expiresAt is always re-derived
            duration = await resolver.get_tier_duration(listing.data.get("userId"))
            try:
                changes, action = plan_active_listing(listing, duration, now, ArchiveReason.SWEEP_EXPIRED.value)
            except UnparseableDate as e:
                result.flagged.append(flag_listing(e, listing.id))
                continue
            if action == "archive":
                result.archived += 1
                logger.info(f"Sweep archiving expired listing {listing.id}")
            elif action == "refresh":
                result.expires_at_updated += 1
            if changes:
                operations.append(listing_update(listing, changes))
        await _commit_page(store, operations, result, "sweep page (active)")


async def _sweep_archived(store: ListingStore, now: datetime, page_size: int, result: SweepResult) -> None:
    async for page in iterate_pages(store, ListingStatus.ARCHIVED.value, page_size):
        operations = []
        for listing in page:
            result.scanned += 1
            if not needs_ttl_assignment(listing.data):
                continue
            changes = plan_missing_ttl(listing, ArchiveReason.SWEEP_MISSING_TTL.value, now)
            operations.append(listing_update(listing, changes))
            result.ttl_assigned += 1
            logger.info(f"Sweep assigning deleteAt {changes['deleteAt'].isoformat()} to archived listing {listing.id}")
        await _commit_page(store, operations, result, "sweep page (archived)")


async def _sweep_inactive(store: ListingStore, now: datetime, page_size: int, result: SweepResult) -> None:
    idle_limit = timedelta(days=settings.inactive_archive_days)
    async for page in iterate_pages(store, ListingStatus.INACTIVE.value, page_size):
        operations = []
        for listing in page:
            result.scanned += 1
            field = "updatedAt" if listing.data.get("updatedAt") is not None else "createdAt"
            try:
                last_touched = parse_timestamp(listing.data.get(field), field, listing.id)
            except UnparseableDate as e:
                result.flagged.append(flag_listing(e, listing.id))
                continue
            if not is_expired(now, last_touched + idle_limit):
                continue
            changes = plan_archive(listing, now, ArchiveReason.INACTIVE_TIMEOUT.value, now)
            operations.append(listing_update(listing, changes))
            result.inactive_archived += 1
        await _commit_page(store, operations, result, "sweep page (inactive)")


async def run_sweep(
    store: ListingStore,
    resolver: AccountTierResolver,
    now: Optional[datetime] = None,
    page_size: Optional[int] = None
) -> SweepResult:
    """
    Run one consistency-repair pass.

    Raises:
        BatchWriteFailed: if a page's batch cannot be committed; pages committed
            before it stay applied and the next run picks up the rest
    """
    now = parse_timestamp(now, "now") if now is not None else utc_now()
    page_size = min(page_size or settings.sweep_page_size, settings.sweep_page_size)
    result = SweepResult()

    logger.info(f"Starting listing sweep at {now.isoformat()} with page size {page_size}")
    await _sweep_active(store, resolver, now, page_size, result)
    await _sweep_archived(store, now, page_size, result)
    await _sweep_inactive(store, now, page_size, result)

    logger.info(
        f"Sweep complete - scanned: {result.scanned}, archived: {result.archived}, "
        f"expiresAt updated: {result.expires_at_updated}, ttl assigned: {result.ttl_assigned}, "
        f"inactive archived: {result.inactive_archived}, flagged: {len(result.flagged)}, writes: {result.writes}"
    )
    return result


async def purge_expired_listings(
    store: ListingStore,
    now: Optional[datetime] = None,
    page_size: Optional[int] = None
) -> PurgeResult:
    """
    Delete archived listings whose deleteAt has passed.

    Firestore's own TTL deletion may lag; this never deletes before deleteAt.
    Listings that are not archived but still carry a past deleteAt are not
    deleted; their stale TTL fields are removed instead.
    """
    now = parse_timestamp(now, "now") if now is not None else utc_now()
    page_size = page_size or settings.purge_page_size
    result = PurgeResult()

    while True:
        due = await store.list_due_for_deletion(now, page_size)
        if not due:
            break

        operations = []
        for listing in due:
            if listing.data.get("status") == ListingStatus.ARCHIVED.value:
                listing_ops = listing_delete_operations(listing)
                operations.extend(listing_ops)
                result.deleted += 1
                result.related_deleted += len(listing_ops) - 1
                if len(result.deleted_listing_ids) < MAX_REPORTED_IDS:
                    result.deleted_listing_ids.append(listing.id)
            else:
                logger.warning(
                    f"Listing {listing.id} is {listing.data.get('status')} but has a past deleteAt; clearing TTL fields"
                )
                stale = [field for field in ARCHIVE_FIELDS if field in listing.data]
                operations.append(listing_update(listing, build_ttl_clear_update(now, stale)))
                result.stale_ttl_cleared += 1

        await commit_with_retry(store, operations, label="TTL purge batch")
        if len(due) < page_size:
            break

    logger.info(
        f"TTL purge complete - deleted: {result.deleted}, related deleted: {result.related_deleted}, "
        f"stale TTL cleared: {result.stale_ttl_cleared}"
    )
    return result


async def validate_ttl_fields(
    store: ListingStore,
    dry_run: bool = True,
    now: Optional[datetime] = None,
    page_size: Optional[int] = None
) -> TTLValidationResult:
    """
    Report (and unless ``dry_run``, fix) TTL fields stored as null and archived
    listings without a usable deleteAt.
    """
    now = parse_timestamp(now, "now") if now is not None else utc_now()
    page_size = min(page_size or settings.sweep_page_size, settings.sweep_page_size)
    result = TTLValidationResult(dry_run=dry_run)

    async for page in iterate_pages(store, None, page_size):
        operations = []
        page_issues = []
        for listing in page:
            result.checked += 1
            issues = []
            fixes: Dict[str, object] = {}

            for field in find_null_ttl_fields(listing.data):
                issues.append(f"Field '{field}' is set to null instead of being deleted")
                fixes[field] = firestore.DELETE_FIELD

            if listing.data.get("status") == ListingStatus.ARCHIVED.value and needs_ttl_assignment(listing.data):
                issues.append("Archived listing has no usable deleteAt")
                fixes.update(plan_missing_ttl(listing, "validation_fix", now))

            if not issues:
                continue

            result.issues_found += 1
            issue = TTLFieldIssue(listing_id=listing.id, status=listing.data.get("status"), issues=issues)
            page_issues.append(issue)
            if not dry_run:
                fixes.setdefault("updatedAt", now)
                operations.append(listing_update(listing, fixes))

        if operations:
            await commit_with_retry(store, operations, label="TTL field validation fixes")
            for issue in page_issues:
                issue.fixed = True
            result.fixed += len(page_issues)

        for issue in page_issues:
            if len(result.issues) < MAX_REPORTED_ISSUES:
                result.issues.append(issue)

    logger.info(
        f"TTL validation {'(dry run) ' if dry_run else ''}checked {result.checked} listings, "
        f"found {result.issues_found} with issues, fixed {result.fixed}"
    )
    return result
