from typing import Any, Optional


class ListingLifecycleError(Exception):
    """Base class for listing lifecycle failures."""


class UnparseableDate(ListingLifecycleError):
    """A lifecycle timestamp is missing or malformed.

    Listings raising this are left out of automatic processing and reported
    for manual repair; they are never treated as expired or as not expired.
    """

    def __init__(self, field: str, value: Any, listing_id: Optional[str] = None):
        self.field = field
        self.value = value
        self.listing_id = listing_id
        where = f" on listing {listing_id}" if listing_id else ""
        super().__init__(f"Cannot parse '{field}'{where}: {value!r}")


class ListingNotFound(ListingLifecycleError):
    def __init__(self, listing_id: str):
        self.listing_id = listing_id
        super().__init__(f"Listing with ID {listing_id} not found")


class TierLookupFailed(ListingLifecycleError):
    def __init__(self, owner_id: Optional[str], reason: str):
        self.owner_id = owner_id
        self.reason = reason
        super().__init__(f"Account tier lookup failed for owner {owner_id}: {reason}")


class BatchWriteFailed(ListingLifecycleError):
    def __init__(self, operation_count: int, reason: str):
        self.operation_count = operation_count
        self.reason = reason
        super().__init__(f"Batch of {operation_count} writes failed: {reason}")


class InvalidTransition(ListingLifecycleError):
    def __init__(self, listing_id: str, status: Optional[str], action: str):
        self.listing_id = listing_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} listing {listing_id} with status '{status}'")


class ConcurrentModification(ListingLifecycleError):
    def __init__(self, listing_id: str):
        self.listing_id = listing_id
        super().__init__(f"Listing {listing_id} was modified concurrently")


class NotListingOwner(ListingLifecycleError):
    def __init__(self, listing_id: str, user_id: str):
        self.listing_id = listing_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is not the owner of listing {listing_id}")
