from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ListingStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    SOLD = "sold"
    PENDING = "pending"
    INACTIVE = "inactive"


class ArchiveReason(str, Enum):
    """Reason tags written to ttlReason / expirationReason"""
    OWNER_ARCHIVED = "owner_archived"
    TIER_DURATION_EXCEEDED = "tier_duration_exceeded"
    TIER_CHANGE_EXPIRED = "tier_change_expired"
    SWEEP_EXPIRED = "sweep_expired"
    SWEEP_MISSING_TTL = "sweep_missing_ttl"
    INACTIVE_TIMEOUT = "inactive_timeout"


# Reasons for archives caused by running out of active time
EXPIRY_REASONS = (
    ArchiveReason.TIER_DURATION_EXCEEDED.value,
    ArchiveReason.SWEEP_EXPIRED.value,
    ArchiveReason.TIER_CHANGE_EXPIRED.value,
)


class ArchiveListingRequest(BaseModel):
    """Request model for archiving a listing"""
    reason: str = Field(ArchiveReason.OWNER_ARCHIVED.value, min_length=1, max_length=100, description="Diagnostic reason tag")


class RestoreListingRequest(BaseModel):
    """Request model for restoring an archived listing"""
    target_status: ListingStatus = Field(ListingStatus.ACTIVE, description="Status to restore to (active or inactive)")


class ArchiveResult(BaseModel):
    listing_id: str
    changed: bool  # False when the listing was already archived
    status: str
    archivedAt: Optional[datetime] = None
    deleteAt: Optional[datetime] = None
    ttlReason: Optional[str] = None


class RestoreResult(BaseModel):
    listing_id: str
    outcome: str  # restored, ttl_cleared, already_active, not_found
    status: Optional[str] = None
    expiresAt: Optional[datetime] = None


class ExpirationCheckResult(BaseModel):
    listing_id: str
    status: str  # already_archived, archived, active, or the untouched listing status
    expiresAt: Optional[datetime] = None
    deleteAt: Optional[datetime] = None


class LifecycleStatus(BaseModel):
    """What an owner sees: status plus countdowns"""
    listing_id: str
    status: Optional[str] = None
    expiresAt: Optional[datetime] = None
    archivedAt: Optional[datetime] = None
    deleteAt: Optional[datetime] = None
    seconds_until_expiration: Optional[int] = None
    seconds_until_deletion: Optional[int] = None
    needs_repair: bool = False


class FlaggedListing(BaseModel):
    """A listing left out of automatic processing"""
    listing_id: str
    field: str
    detail: str


class SweepResult(BaseModel):
    scanned: int = 0
    archived: int = 0
    expires_at_updated: int = 0
    ttl_assigned: int = 0
    inactive_archived: int = 0
    writes: int = 0
    batches_committed: int = 0
    flagged: List[FlaggedListing] = []


class TierRecomputeResult(BaseModel):
    user_id: str
    tier: str
    tier_duration_hours: int
    scanned: int = 0
    expires_at_updated: int = 0
    archived: int = 0
    flagged: List[FlaggedListing] = []


class RestoreArchivedResult(BaseModel):
    user_id: str
    tier: str
    found: int = 0
    restored: int = 0
    flagged: List[FlaggedListing] = []


class PurgeResult(BaseModel):
    deleted: int = 0
    related_deleted: int = 0
    stale_ttl_cleared: int = 0
    deleted_listing_ids: List[str] = []  # first few ids only


class TTLFieldIssue(BaseModel):
    listing_id: str
    status: Optional[str] = None
    issues: List[str]
    fixed: bool = False


class TTLValidationRequest(BaseModel):
    dry_run: bool = True


class TTLValidationResult(BaseModel):
    checked: int = 0
    issues_found: int = 0
    fixed: int = 0
    dry_run: bool = True
    issues: List[TTLFieldIssue] = []
