"""Customer sessions, the back-office key and checkout rate limiting."""
from .jwt_handler import create_access_token, verify_access_token
from .dependencies import get_current_user, verify_internal_api_key
from .rate_limiter import limiter

__all__ = [
    "create_access_token",
    "verify_access_token",
    "get_current_user",
    "verify_internal_api_key",
    "limiter",
]
