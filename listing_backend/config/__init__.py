from .settings import settings
from .logging_utils import get_logger
from .instrumentation_utils import instrument_app
from .db_clients import get_firestore_client, create_firestore_client

__all__ = [
    "settings",
    "get_logger",
    "instrument_app",
    "get_firestore_client",
    "create_firestore_client",
]
