from datetime import datetime, timedelta, timezone

import pytest

from listing_backend.service.errors import UnparseableDate
from listing_backend.service.expiration import (
    compute_delete_at,
    compute_expiration,
    is_expired,
    parse_timestamp,
    seconds_remaining,
)

from conftest import T0


def test_expiration_is_creation_plus_tier_duration():
    assert compute_expiration(T0, 48) == T0 + timedelta(hours=48)
    assert compute_expiration(T0, 720) == T0 + timedelta(days=30)


def test_zero_duration_expires_at_creation():
    assert compute_expiration(T0, 0) == T0


def test_negative_duration_is_rejected():
    with pytest.raises(ValueError):
        compute_expiration(T0, -1)


def test_listing_is_live_at_exactly_expires_at():
    expires_at = T0 + timedelta(hours=48)
    assert is_expired(expires_at, expires_at) is False
    assert is_expired(expires_at + timedelta(seconds=1), expires_at) is True
    assert is_expired(expires_at - timedelta(seconds=1), expires_at) is False


def test_delete_at_is_seven_days_after_archival():
    assert compute_delete_at(T0) == T0 + timedelta(days=7)


def test_parse_naive_datetime_as_utc():
    assert parse_timestamp(datetime(2024, 3, 1, 12, 0)) == T0


def test_parse_converts_other_offsets_to_utc():
    plus_two = timezone(timedelta(hours=2))
    assert parse_timestamp(datetime(2024, 3, 1, 14, 0, tzinfo=plus_two)) == T0


@pytest.mark.parametrize("value", [
    "2024-03-01T12:00:00Z",
    "2024-03-01T12:00:00+00:00",
    1709294400000,
    {"_seconds": 1709294400, "_nanoseconds": 0},
    {"seconds": 1709294400},
])
def test_parse_accepts_stored_representations(value):
    parsed = parse_timestamp(value)
    assert parsed == T0
    assert parsed.tzinfo is not None


@pytest.mark.parametrize("value", [None, "", "next tuesday", True, {"foo": 1}, [2024, 3, 1]])
def test_parse_rejects_unusable_values(value):
    with pytest.raises(UnparseableDate) as excinfo:
        parse_timestamp(value, "createdAt", "listing-1")
    assert excinfo.value.field == "createdAt"
    assert excinfo.value.listing_id == "listing-1"


def test_unparseable_creation_time_is_not_treated_as_expired_or_live():
    with pytest.raises(UnparseableDate):
        compute_expiration("garbage", 48)
    with pytest.raises(UnparseableDate):
        is_expired(T0, None)


def test_seconds_remaining_never_negative():
    assert seconds_remaining(T0, T0 + timedelta(minutes=2)) == 120
    assert seconds_remaining(T0 + timedelta(days=1), T0) == 0
