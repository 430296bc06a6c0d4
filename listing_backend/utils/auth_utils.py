import secrets
from typing import Optional

from fastapi import Header, HTTPException

from listing_backend.config import get_logger, settings

logger = get_logger(__name__)


def _matches_configured_secret(token: Optional[str]) -> bool:
    if not token:
        return False
    for secret in (settings.cron_secret, settings.admin_secret):
        # An unset secret never authorizes anything
        if secret and secrets.compare_digest(token, secret):
            return True
    return False


async def verify_cron_or_admin(
    authorization: Optional[str] = Header(None),
    x_cron_secret: Optional[str] = Header(None)
) -> str:
    """
    Authorize scheduler and admin callers.

    Accepts ``Authorization: Bearer <secret>`` or ``X-Cron-Secret: <secret>``
    where the secret is either the cron secret or the admin secret.
    """
    if _matches_configured_secret(x_cron_secret):
        return "cron"

    if authorization and authorization.startswith("Bearer "):
        if _matches_configured_secret(authorization[len("Bearer "):]):
            return "bearer"

    logger.warning(f"Unauthorized access attempt (authorization header {'present' if authorization else 'missing'})")
    raise HTTPException(status_code=401, detail="Unauthorized")
