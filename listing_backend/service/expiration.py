"""
Date arithmetic for the listing lifecycle.

Every function here is pure. Timestamps coming out of Firestore, JSON payloads
or legacy documents are normalized by ``parse_timestamp`` to timezone-aware UTC
datetimes before any comparison, so there is no local-time drift.
"""
from datetime import datetime, timedelta, timezone
from numbers import Real
from typing import Any, Optional

from listing_backend.config import settings
from listing_backend.service.errors import UnparseableDate


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any, field: str = "timestamp", listing_id: Optional[str] = None) -> datetime:
    """
    Normalize a stored timestamp to an aware UTC datetime.

    Accepts datetimes (naive ones are read as UTC; Firestore's
    DatetimeWithNanoseconds is a datetime), ISO-8601 strings, epoch
    milliseconds and serialized Firestore timestamps
    (``{"_seconds": .., "_nanoseconds": ..}``).

    Raises:
        UnparseableDate: if the value is missing or cannot be interpreted
    """
    if value is None:
        raise UnparseableDate(field, value, listing_id)

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise UnparseableDate(field, value, listing_id)
        return parse_timestamp(parsed, field, listing_id)

    # bool is a Real too, but True/False are never timestamps
    if isinstance(value, Real) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise UnparseableDate(field, value, listing_id)

    if isinstance(value, dict):
        seconds = value.get("_seconds", value.get("seconds"))
        nanos = value.get("_nanoseconds", value.get("nanoseconds", 0)) or 0
        if isinstance(seconds, Real) and not isinstance(seconds, bool):
            try:
                return datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(microseconds=nanos // 1000)
            except (OverflowError, OSError, ValueError, TypeError):
                raise UnparseableDate(field, value, listing_id)

    raise UnparseableDate(field, value, listing_id)


def compute_expiration(created_at: Any, tier_duration_hours: float) -> datetime:
    """expiresAt = createdAt + tier duration."""
    if tier_duration_hours < 0:
        raise ValueError(f"Tier duration must not be negative, got {tier_duration_hours}")
    return parse_timestamp(created_at, "createdAt") + timedelta(hours=tier_duration_hours)


def is_expired(now: datetime, expires_at: Any) -> bool:
    """
    True once ``now`` is strictly past ``expires_at``.

    A listing expiring at exactly ``now`` is still live; the sweep archives it
    on the next pass.
    """
    return parse_timestamp(now, "now") > parse_timestamp(expires_at, "expiresAt")


def compute_delete_at(archived_at: Any) -> datetime:
    """deleteAt = archivedAt + archive grace period. The grace period is platform policy, not tier based."""
    return parse_timestamp(archived_at, "archivedAt") + timedelta(days=settings.archive_duration_days)


def seconds_remaining(now: datetime, instant: Any) -> int:
    remaining = parse_timestamp(instant) - parse_timestamp(now, "now")
    return max(0, int(remaining.total_seconds()))
