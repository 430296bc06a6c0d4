import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.api_core import exceptions as core_exceptions

from listing_backend.service.errors import ConcurrentModification, ListingNotFound
from listing_backend.service.listing_store import (
    FirestoreListingStore,
    ListingSnapshot,
    WriteOperation,
    listing_delete_operations,
)

from conftest import T0, make_listing


def firestore_mock():
    db = MagicMock()
    doc_ref = db.collection.return_value.document.return_value
    doc_ref.update = AsyncMock()
    batch = MagicMock()
    batch.commit = AsyncMock()
    db.batch.return_value = batch
    return db, doc_ref, batch


def test_update_of_missing_document_raises_listing_not_found():
    db, doc_ref, _ = firestore_mock()
    doc_ref.update.side_effect = core_exceptions.NotFound("no document")

    with pytest.raises(ListingNotFound):
        asyncio.run(FirestoreListingStore(db).update_listing("l1", {"status": "archived"}))


def test_failed_precondition_raises_concurrent_modification():
    db, doc_ref, _ = firestore_mock()
    doc_ref.update.side_effect = core_exceptions.FailedPrecondition("stale")

    with pytest.raises(ConcurrentModification):
        asyncio.run(FirestoreListingStore(db).update_listing("l1", {"status": "archived"}, expected_update_time=T0))

    db.write_option.assert_called_once_with(last_update_time=T0)


def test_commit_batch_writes_every_operation_in_one_commit():
    db, _, batch = firestore_mock()
    operations = [
        WriteOperation("listings", "l1", {"status": "archived"}),
        WriteOperation("shortIdMappings", "abc"),
    ]

    asyncio.run(FirestoreListingStore(db).commit_batch(operations))

    assert batch.update.call_count == 1
    assert batch.delete.call_count == 1
    batch.commit.assert_awaited_once()


def test_delete_operations_cover_mirror_documents():
    listing = ListingSnapshot(id="l1", data=make_listing(shortId="abc"), update_time=T0)

    operations = listing_delete_operations(listing)

    assert [(op.collection, op.document_id) for op in operations] == [
        ("listings", "l1"),
        ("shortIdMappings", "abc"),
        ("users/user-free/listings", "l1"),
    ]
    assert all(op.is_delete for op in operations)
    assert operations[0].expected_update_time == T0
