import pytest
from google.cloud import firestore

from listing_backend.service.ttl_fields import (
    ARCHIVE_FIELDS,
    build_archive_update,
    build_restore_update,
    build_ttl_assignment,
    find_null_ttl_fields,
    has_ttl_fields,
    validate_ttl_update,
)

from conftest import T0


def test_archive_update_sets_every_ttl_field():
    update = build_archive_update({"status": "active", "createdAt": T0}, T0, T0, "owner_archived", T0)

    assert update["status"] == "archived"
    assert update["previousStatus"] == "active"
    assert update["ttlReason"] == "owner_archived"
    assert update["expirationReason"] == "owner_archived"
    assert update["originalCreatedAt"] == T0
    for field in ("deleteAt", "ttlSetAt", "archivedAt"):
        assert update[field] == T0


def test_archive_update_keeps_existing_original_creation_time():
    data = {"status": "inactive", "createdAt": "later", "originalCreatedAt": T0}
    update = build_archive_update(data, T0, T0, "inactive_timeout", T0)
    assert "originalCreatedAt" not in update


def test_restore_update_deletes_fields_instead_of_nulling_them():
    update = build_restore_update("active", T0, T0)

    for field in ARCHIVE_FIELDS:
        assert update[field] is firestore.DELETE_FIELD
    assert update["status"] == "active"
    assert update["expiresAt"] == T0
    assert update["restoredReason"] == "manual_restoration"


def test_ttl_assignment_only_overwrites_archived_at_when_given():
    assert "archivedAt" not in build_ttl_assignment(T0, "sweep_missing_ttl", T0)
    assert build_ttl_assignment(T0, "sweep_missing_ttl", T0, archived_at=T0)["archivedAt"] == T0


def test_null_ttl_values_are_rejected():
    with pytest.raises(ValueError, match="DELETE_FIELD"):
        validate_ttl_update({"deleteAt": None})


def test_find_null_ttl_fields():
    data = {"deleteAt": None, "ttlReason": None, "archivedAt": T0, "title": None}
    assert find_null_ttl_fields(data) == ["deleteAt", "ttlReason"]
    assert has_ttl_fields(data) is True
    assert has_ttl_fields({"status": "active", "deleteAt": None}) is False
