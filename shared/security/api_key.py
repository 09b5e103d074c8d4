"""
Internal API key for back-office callers (admin cancel).

An unset key falls back to a placeholder and logs a warning at import, so a
misconfigured deployment is visible instead of silently open.
"""
import secrets

import structlog

from shared.config import settings

logger = structlog.get_logger(__name__)

INTERNAL_API_KEY: str = settings.INTERNAL_API_KEY

if not INTERNAL_API_KEY:
    logger.warning("internal_api_key_not_set", detail="Using an insecure default. Set INTERNAL_API_KEY in production!")
    INTERNAL_API_KEY = "insecure-default-change-me"


def verify_api_key(provided_key: str) -> bool:
    """Constant-time comparison against the configured back-office key."""
    if not provided_key:
        return False
    return secrets.compare_digest(str(provided_key), INTERNAL_API_KEY)
