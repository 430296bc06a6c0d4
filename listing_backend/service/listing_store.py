"""
Document store access for listings and their owners.

``ListingStore`` is the narrow interface the lifecycle code needs from the
database: single-document reads, conditional updates, paged queries and an
atomic multi-document batch. ``FirestoreListingStore`` backs it with the
Firestore AsyncClient; ``InMemoryListingStore`` keeps everything in dicts for
local runs and tests.
"""
import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi import Depends
from google.api_core import exceptions as core_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1 import AsyncClient
from google.cloud.firestore_v1.field_path import FieldPath

from listing_backend.config import get_firestore_client, get_logger, settings
from listing_backend.service.errors import ConcurrentModification, ListingNotFound

logger = get_logger(__name__)


@dataclass
class ListingSnapshot:
    id: str
    data: Dict[str, Any]
    update_time: Optional[datetime] = None


@dataclass
class WriteOperation:
    """One write inside an atomic batch. ``data=None`` deletes the document."""
    collection: str
    document_id: str
    data: Optional[Dict[str, Any]] = None
    expected_update_time: Optional[datetime] = None

    @property
    def is_delete(self) -> bool:
        return self.data is None


def listing_update(listing: ListingSnapshot, changes: Dict[str, Any]) -> WriteOperation:
    """Batch update of a listing, conditioned on the snapshot it was planned from."""
    return WriteOperation(
        collection=settings.firestore_collection_listings,
        document_id=listing.id,
        data=changes,
        expected_update_time=listing.update_time,
    )


def listing_delete_operations(listing: ListingSnapshot) -> List[WriteOperation]:
    """Deletes for a listing and the documents that mirror it."""
    operations = [WriteOperation(
        settings.firestore_collection_listings,
        listing.id,
        expected_update_time=listing.update_time,
    )]
    short_id = listing.data.get("shortId")
    if short_id:
        operations.append(WriteOperation(settings.firestore_collection_short_ids, short_id))
    owner_id = listing.data.get("userId")
    if owner_id:
        operations.append(WriteOperation(f"{settings.firestore_collection_users}/{owner_id}/listings", listing.id))
    return operations


class ListingStore(ABC):
    """Abstract interface for listing storage"""

    @abstractmethod
    async def get_listing(self, listing_id: str) -> Optional[ListingSnapshot]:
        """Return the listing or None if it does not exist"""

    @abstractmethod
    async def update_listing(
        self,
        listing_id: str,
        changes: Dict[str, Any],
        expected_update_time: Optional[datetime] = None
    ) -> None:
        """
        Update fields of an existing listing.

        Raises ListingNotFound if the document is gone and ConcurrentModification
        if ``expected_update_time`` no longer matches.
        """

    @abstractmethod
    async def list_listings(
        self,
        status: Optional[str] = None,
        owner_id: Optional[str] = None,
        page_size: int = 500,
        start_after_id: Optional[str] = None
    ) -> List[ListingSnapshot]:
        """One page of listings ordered by document id"""

    @abstractmethod
    async def list_due_for_deletion(self, cutoff: datetime, limit: int) -> List[ListingSnapshot]:
        """Listings whose deleteAt is at or before ``cutoff``"""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Return the user document data or None"""

    @abstractmethod
    async def commit_batch(self, operations: Sequence[WriteOperation]) -> None:
        """Apply all operations atomically: either every write lands or none does"""


class FirestoreListingStore(ListingStore):
    def __init__(self, db_client: AsyncClient):
        self._db = db_client

    def _listings(self):
        return self._db.collection(settings.firestore_collection_listings)

    def _write_option(self, expected_update_time: Optional[datetime]):
        if expected_update_time is None:
            return None
        return self._db.write_option(last_update_time=expected_update_time)

    @staticmethod
    def _to_snapshot(doc) -> ListingSnapshot:
        return ListingSnapshot(id=doc.id, data=doc.to_dict() or {}, update_time=doc.update_time)

    async def get_listing(self, listing_id: str) -> Optional[ListingSnapshot]:
        doc = await self._listings().document(listing_id).get()
        if not doc.exists:
            return None
        return self._to_snapshot(doc)

    async def update_listing(
        self,
        listing_id: str,
        changes: Dict[str, Any],
        expected_update_time: Optional[datetime] = None
    ) -> None:
        listing_ref = self._listings().document(listing_id)
        try:
            await listing_ref.update(changes, option=self._write_option(expected_update_time))
        except core_exceptions.NotFound:
            raise ListingNotFound(listing_id)
        except core_exceptions.FailedPrecondition:
            raise ConcurrentModification(listing_id)

    async def list_listings(
        self,
        status: Optional[str] = None,
        owner_id: Optional[str] = None,
        page_size: int = 500,
        start_after_id: Optional[str] = None
    ) -> List[ListingSnapshot]:
        query = self._listings()
        if status:
            query = query.where('status', '==', status)
        if owner_id:
            query = query.where('userId', '==', owner_id)
        document_id = FieldPath.document_id()
        query = query.order_by(document_id).limit(page_size)
        if start_after_id:
            query = query.start_after({document_id: self._listings().document(start_after_id)})

        docs = await query.get()
        return [self._to_snapshot(doc) for doc in docs]

    async def list_due_for_deletion(self, cutoff: datetime, limit: int) -> List[ListingSnapshot]:
        query = self._listings().where('deleteAt', '<=', cutoff).order_by('deleteAt').limit(limit)
        docs = await query.get()
        return [self._to_snapshot(doc) for doc in docs]

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        doc = await self._db.collection(settings.firestore_collection_users).document(user_id).get()
        if not doc.exists:
            return None
        return doc.to_dict() or {}

    async def commit_batch(self, operations: Sequence[WriteOperation]) -> None:
        batch = self._db.batch()
        for operation in operations:
            doc_ref = self._db.collection(operation.collection).document(operation.document_id)
            option = self._write_option(operation.expected_update_time)
            if operation.is_delete:
                batch.delete(doc_ref, option=option)
            else:
                batch.update(doc_ref, operation.data, option=option)
        await batch.commit()
        logger.info(f"Committed batch with {len(operations)} operations")


class InMemoryListingStore(ListingStore):
    """In-memory implementation of ListingStore"""

    _EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._update_times: Dict[Tuple[str, str], datetime] = {}
        self._ticks = 0
        self.write_count = 0
        self.commit_count = 0

    # Seeding and inspection helpers

    def put(self, collection: str, document_id: str, data: Dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[document_id] = copy.deepcopy(data)
        self._touch(collection, document_id)

    def add_listing(self, listing_id: str, data: Dict[str, Any]) -> None:
        self.put(settings.firestore_collection_listings, listing_id, data)

    def add_user(self, user_id: str, data: Dict[str, Any]) -> None:
        self.put(settings.firestore_collection_users, user_id, data)

    def document(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        data = self._collections.get(collection, {}).get(document_id)
        return copy.deepcopy(data) if data is not None else None

    def listing(self, listing_id: str) -> Optional[Dict[str, Any]]:
        return self.document(settings.firestore_collection_listings, listing_id)

    def _touch(self, collection: str, document_id: str) -> None:
        # Strictly increasing update times, like Firestore's commit timestamps
        self._ticks += 1
        self._update_times[(collection, document_id)] = self._EPOCH + timedelta(microseconds=self._ticks)

    def _snapshot(self, collection: str, document_id: str) -> ListingSnapshot:
        return ListingSnapshot(
            id=document_id,
            data=copy.deepcopy(self._collections[collection][document_id]),
            update_time=self._update_times.get((collection, document_id)),
        )

    def _check(self, operation: WriteOperation) -> None:
        docs = self._collections.get(operation.collection, {})
        key = (operation.collection, operation.document_id)
        if operation.expected_update_time is not None:
            if operation.document_id not in docs or self._update_times.get(key) != operation.expected_update_time:
                raise ConcurrentModification(operation.document_id)
        if not operation.is_delete and operation.document_id not in docs:
            raise ListingNotFound(operation.document_id)

    def _apply(self, operation: WriteOperation) -> None:
        docs = self._collections.setdefault(operation.collection, {})
        if operation.is_delete:
            docs.pop(operation.document_id, None)
            self._update_times.pop((operation.collection, operation.document_id), None)
        else:
            doc = docs[operation.document_id]
            for key, value in operation.data.items():
                if value is firestore.DELETE_FIELD:
                    doc.pop(key, None)
                else:
                    doc[key] = copy.deepcopy(value)
            self._touch(operation.collection, operation.document_id)
        self.write_count += 1

    # ListingStore interface

    async def get_listing(self, listing_id: str) -> Optional[ListingSnapshot]:
        if listing_id not in self._collections.get(settings.firestore_collection_listings, {}):
            return None
        return self._snapshot(settings.firestore_collection_listings, listing_id)

    async def update_listing(
        self,
        listing_id: str,
        changes: Dict[str, Any],
        expected_update_time: Optional[datetime] = None
    ) -> None:
        operation = WriteOperation(settings.firestore_collection_listings, listing_id, changes, expected_update_time)
        self._check(operation)
        self._apply(operation)

    async def list_listings(
        self,
        status: Optional[str] = None,
        owner_id: Optional[str] = None,
        page_size: int = 500,
        start_after_id: Optional[str] = None
    ) -> List[ListingSnapshot]:
        collection = settings.firestore_collection_listings
        matches = []
        for listing_id in sorted(self._collections.get(collection, {})):
            data = self._collections[collection][listing_id]
            if status and data.get("status") != status:
                continue
            if owner_id and data.get("userId") != owner_id:
                continue
            if start_after_id and listing_id <= start_after_id:
                continue
            matches.append(self._snapshot(collection, listing_id))
            if len(matches) >= page_size:
                break
        return matches

    async def list_due_for_deletion(self, cutoff: datetime, limit: int) -> List[ListingSnapshot]:
        collection = settings.firestore_collection_listings
        due = []
        for listing_id, data in self._collections.get(collection, {}).items():
            delete_at = data.get("deleteAt")
            # Firestore range filters only match values of the same type
            if not isinstance(delete_at, datetime):
                continue
            if delete_at.tzinfo is None:
                delete_at = delete_at.replace(tzinfo=timezone.utc)
            if delete_at <= cutoff:
                due.append((delete_at, listing_id))
        due.sort()
        return [self._snapshot(collection, listing_id) for _, listing_id in due[:limit]]

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.document(settings.firestore_collection_users, user_id)

    async def commit_batch(self, operations: Sequence[WriteOperation]) -> None:
        # Validate everything first so a failing write leaves no partial state
        for operation in operations:
            self._check(operation)
        for operation in operations:
            self._apply(operation)
        self.commit_count += 1


def get_listing_store(db: AsyncClient = Depends(get_firestore_client)) -> ListingStore:
    return FirestoreListingStore(db)
