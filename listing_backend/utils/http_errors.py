from fastapi import HTTPException

from listing_backend.service.errors import (
    BatchWriteFailed,
    ConcurrentModification,
    InvalidTransition,
    ListingLifecycleError,
    ListingNotFound,
    NotListingOwner,
    UnparseableDate,
)

STATUS_CODES = (
    (ListingNotFound, 404),
    (NotListingOwner, 403),
    (InvalidTransition, 409),
    (ConcurrentModification, 409),
    (UnparseableDate, 422),
    (BatchWriteFailed, 503),
)


def to_http_exception(error: ListingLifecycleError) -> HTTPException:
    for error_type, status_code in STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))
