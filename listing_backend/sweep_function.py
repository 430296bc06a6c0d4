"""
Cloud Scheduler entry points for the listing sweep.

Deploy with ``--entry-point sweep_listings_scheduled`` behind a Pub/Sub
trigger, or ``sweep_listings_http`` for manual runs. Each invocation runs the
consistency sweep followed by the TTL purge on a fresh Firestore client.
"""
import asyncio

import functions_framework

from listing_backend.config import create_firestore_client, get_logger
from listing_backend.service.listing_store import FirestoreListingStore
from listing_backend.service.sweep_service import purge_expired_listings, run_sweep
from listing_backend.service.tier_service import AccountTierResolver, TierCache

logger = get_logger(__name__)


async def run_scheduled_sweep() -> dict:
    store = FirestoreListingStore(create_firestore_client())
    # Tiers may have changed since the last run
    resolver = AccountTierResolver(store, cache=TierCache())

    sweep = await run_sweep(store, resolver)
    purge = await purge_expired_listings(store)
    return {
        'sweep': sweep.model_dump(mode="json"),
        'purge': purge.model_dump(mode="json"),
    }


@functions_framework.cloud_event
def sweep_listings_scheduled(cloud_event):
    """Scheduled trigger entry point"""
    logger.info("Scheduled listing sweep triggered")
    try:
        result = asyncio.run(run_scheduled_sweep())
        return {'status': 'success', 'stats': result}
    except Exception as e:
        logger.error(f"Listing sweep failed: {e}", exc_info=True)
        return {'status': 'error', 'message': str(e)}


@functions_framework.http
def sweep_listings_http(request):
    """HTTP trigger entry point for manual runs"""
    logger.info("HTTP listing sweep triggered")
    try:
        result = asyncio.run(run_scheduled_sweep())
        return {
            'success': True,
            'message': 'Listing sweep complete',
            'stats': result
        }
    except Exception as e:
        logger.error(f"Listing sweep failed: {e}", exc_info=True)
        return {
            'success': False,
            'error': str(e)
        }, 500


if __name__ == '__main__':
    logger.info("Running listing sweep locally...")
    logger.info(f"Result: {asyncio.run(run_scheduled_sweep())}")
