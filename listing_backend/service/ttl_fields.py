"""
Field-update builders for the TTL lifecycle fields.

Firestore's TTL policy watches ``deleteAt``. Clearing it with ``None`` would
leave a null field behind, so removals always use ``firestore.DELETE_FIELD``.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from google.cloud import firestore

DELETE_AT = "deleteAt"
TTL_SET_AT = "ttlSetAt"
TTL_REASON = "ttlReason"
ARCHIVED_AT = "archivedAt"
EXPIRATION_REASON = "expirationReason"

# Removed together on restore; a leftover deleteAt would let Firestore delete an active listing
ARCHIVE_FIELDS = (DELETE_AT, TTL_SET_AT, TTL_REASON, ARCHIVED_AT, EXPIRATION_REASON)


def validate_ttl_update(update: Dict[str, Any]) -> None:
    """Reject updates that would store null in a TTL field."""
    for field in ARCHIVE_FIELDS:
        if field in update and update[field] is None:
            raise ValueError(
                f"TTL field '{field}' is set to None. Use firestore.DELETE_FIELD to remove it."
            )


def find_null_ttl_fields(data: Dict[str, Any]) -> List[str]:
    return [field for field in ARCHIVE_FIELDS if field in data and data[field] is None]


def has_ttl_fields(data: Dict[str, Any]) -> bool:
    return any(data.get(field) is not None for field in (DELETE_AT, TTL_SET_AT, TTL_REASON, ARCHIVED_AT))


def build_archive_update(
    listing_data: Dict[str, Any],
    archived_at: datetime,
    delete_at: datetime,
    reason: str,
    now: datetime
) -> Dict[str, Any]:
    update = {
        "status": "archived",
        ARCHIVED_AT: archived_at,
        DELETE_AT: delete_at,
        TTL_SET_AT: now,
        TTL_REASON: reason,
        EXPIRATION_REASON: reason,
        "previousStatus": listing_data.get("status"),
        "updatedAt": now,
    }
    # Keep the first recorded creation instant across repeated archive cycles
    if listing_data.get("originalCreatedAt") is None and listing_data.get("createdAt") is not None:
        update["originalCreatedAt"] = listing_data["createdAt"]
    validate_ttl_update(update)
    return update


def build_ttl_assignment(
    delete_at: datetime,
    reason: str,
    now: datetime,
    archived_at: Optional[datetime] = None
) -> Dict[str, Any]:
    update = {
        DELETE_AT: delete_at,
        TTL_SET_AT: now,
        TTL_REASON: reason,
        "updatedAt": now,
    }
    if archived_at is not None:
        update[ARCHIVED_AT] = archived_at
    validate_ttl_update(update)
    return update


def build_restore_update(
    status: str,
    expires_at: datetime,
    now: datetime,
    reason: str = "manual_restoration"
) -> Dict[str, Any]:
    update: Dict[str, Any] = {field: firestore.DELETE_FIELD for field in ARCHIVE_FIELDS}
    update.update({
        "status": status,
        "expiresAt": expires_at,
        "updatedAt": now,
        "restoredAt": now,
        "restoredReason": reason,
    })
    return update


def build_ttl_clear_update(now: datetime, fields: Optional[List[str]] = None) -> Dict[str, Any]:
    update: Dict[str, Any] = {field: firestore.DELETE_FIELD for field in (fields or ARCHIVE_FIELDS)}
    update["updatedAt"] = now
    return update
