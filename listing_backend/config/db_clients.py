from google.cloud import firestore
from google.api_core.client_options import ClientOptions
from .settings import settings
from .logging_utils import get_logger
import os

logger = get_logger(__name__)

firestore_client = None


def create_firestore_client() -> firestore.AsyncClient:
    """
    Build a new Firestore AsyncClient.

    The client's gRPC channel is bound to the event loop it is first used on, so
    jobs that run each invocation under their own loop need a fresh client.
    """
    # Explicitly set the quota_project_id using ClientOptions
    client_options = ClientOptions(quota_project_id=settings.quota_project_id)
    client = firestore.AsyncClient(
        project=settings.firestore_project_id, # This is the project where your Firestore DB resides
        client_options=client_options
    )
    env_type = "Cloud Run" if os.getenv("K_SERVICE") else "local development"
    logger.info(f"Successfully initialized Firestore AsyncClient for project {settings.firestore_project_id} with quota project {settings.quota_project_id} in {env_type} environment.")
    return client


def get_firestore_client() -> firestore.AsyncClient:
    global firestore_client
    if firestore_client is None:
        try:
            firestore_client = create_firestore_client()
        except Exception as e:
            logger.error(f"Failed to initialize Firestore client: {e}", exc_info=True)
            raise RuntimeError("Firestore client is not initialized. Check Firestore configuration and credentials.") from e
    return firestore_client
