from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Application settings
    app_name: str = "Listing Lifecycle API"

    # Firestore settings
    firestore_project_id: str = "card-marketplace-prod"
    quota_project_id: str = "card-marketplace-prod"
    firestore_collection_listings: str = "listings"
    firestore_collection_users: str = "users"
    firestore_collection_short_ids: str = "shortIdMappings"

    # Listing durations per account tier (in hours)
    free_listing_duration_hours: int = 48  # 2 days
    premium_listing_duration_hours: int = 720  # 30 days

    # Archived listings are deleted by Firestore TTL after this many days
    archive_duration_days: int = 7
    # Inactive listings untouched for this many days get archived by the sweep
    inactive_archive_days: int = 7

    # Account tier cache (in seconds)
    tier_cache_seconds: int = 300

    # Sweep settings. A Firestore batch holds at most 500 writes.
    sweep_page_size: int = Field(default=500, gt=0, le=500)
    # Each purged listing can take up to 3 deletes (listing, short id, user mirror)
    purge_page_size: int = Field(default=150, gt=0, le=166)

    # Batch commit retry (exponential backoff)
    batch_retry_initial_seconds: float = 1.0
    batch_retry_maximum_seconds: float = 30.0
    batch_retry_timeout_seconds: float = 120.0

    # Secrets accepted by the cron/admin endpoints
    cron_secret: str = ""
    admin_secret: str = ""

    # Logging settings
    log_level: str = "INFO"

    class Config:
        env_file = ".env" # If you want to use an.env file for configuration
        env_file_encoding = 'utf-8'

    @property
    def tier_durations(self) -> Dict[str, int]:
        """Listing duration in hours for every known account tier."""
        return {
            "free": self.free_listing_duration_hours,
            "premium": self.premium_listing_duration_hours,
        }

settings = Settings()
