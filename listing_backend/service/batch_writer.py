from typing import Sequence

from google.api_core import exceptions as core_exceptions
from google.api_core.retry import if_exception_type
from google.api_core.retry_async import AsyncRetry

from listing_backend.config import get_logger, settings
from listing_backend.service.errors import BatchWriteFailed, ListingLifecycleError
from listing_backend.service.listing_store import ListingStore, WriteOperation

logger = get_logger(__name__)

# Errors worth retrying; anything else means the planned writes are stale
TRANSIENT_ERRORS = (
    core_exceptions.Aborted,
    core_exceptions.DeadlineExceeded,
    core_exceptions.InternalServerError,
    core_exceptions.ServiceUnavailable,
    core_exceptions.TooManyRequests,
)


async def commit_with_retry(store: ListingStore, operations: Sequence[WriteOperation], label: str = "batch") -> int:
    """
    Commit ``operations`` as one atomic batch.

    Transient failures retry the whole batch with exponential backoff; the
    writes are never split or retried one by one.

    Returns:
        int: number of writes committed

    Raises:
        BatchWriteFailed: when retries run out or the failure is not transient
    """
    operations = list(operations)
    if not operations:
        return 0

    def _log_retry(error: Exception) -> None:
        logger.warning(f"Retrying {label} of {len(operations)} writes after transient error: {error}")

    retry = AsyncRetry(
        predicate=if_exception_type(*TRANSIENT_ERRORS),
        initial=settings.batch_retry_initial_seconds,
        maximum=settings.batch_retry_maximum_seconds,
        multiplier=2.0,
        timeout=settings.batch_retry_timeout_seconds,
    )

    try:
        await retry(store.commit_batch, on_error=_log_retry)(operations)
    except core_exceptions.RetryError as e:
        logger.error(f"Giving up on {label}: {e}", exc_info=True)
        raise BatchWriteFailed(len(operations), f"retries exhausted: {e.cause or e}") from e
    except (core_exceptions.GoogleAPICallError, ListingLifecycleError) as e:
        logger.error(f"{label} of {len(operations)} writes failed: {e}", exc_info=True)
        raise BatchWriteFailed(len(operations), str(e)) from e

    logger.info(f"Committed {label} with {len(operations)} writes")
    return len(operations)
