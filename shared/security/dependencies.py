from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer, APIKeyHeader

from shared.errors import AuthzError
from .jwt_handler import verify_access_token
from .api_key import verify_api_key

# Defines the expected header format (Bearer <token>). Sessions are issued by
# the storefront's auth provider; this service only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

# Defines the expected internal service header (back-office callers)
api_key_header = APIKeyHeader(name="X-Internal-API-Key", auto_error=False)

async def get_current_user(request: Request, token: str = Depends(oauth2_scheme)) -> str:
    """Dependency to validate JWT and return the customer ID (sub)."""
    if not token:
        raise AuthzError()

    payload = verify_access_token(token)
    if payload is None:
        raise AuthzError()

    user_id = payload.get("sub")
    if not user_id:
        raise AuthzError()

    # Store in request state for downstream use (like rate limiting)
    request.state.user_id = str(user_id)
    return str(user_id)

async def verify_internal_api_key(api_key: str = Depends(api_key_header)) -> bool:
    """Dependency to validate back-office and service-to-service requests."""
    if not verify_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing X-Internal-API-Key header"
        )
    return True
