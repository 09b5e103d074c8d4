"""Error taxonomy for the checkout services and the handlers that render it.

Every domain error carries the HTTP status it maps to, so routers can simply
raise and let ``register_exception_handlers`` shape the ``{"error": ...}`` body.
"""
import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger(__name__)


class CheckoutError(Exception):
    """Base exception for all checkout errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(CheckoutError):
    """Client-supplied data is wrong (price mismatch, empty cart, bad payload)."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthzError(CheckoutError):
    """Missing or invalid session."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message)


class AccessDeniedError(CheckoutError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(CheckoutError):
    status_code = status.HTTP_404_NOT_FOUND


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class SignatureInvalidError(CheckoutError):
    """Webhook authenticity check failed. Never processed further."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message)


class InvalidTransitionError(CheckoutError):
    """The order's current state does not allow the requested move."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, order_id: str, current: str, trigger: str):
        self.order_id = order_id
        self.current = current
        self.trigger = trigger
        super().__init__(f"Order {order_id} cannot apply {trigger} from {current}")


class GatewayError(CheckoutError):
    """The payment processor call failed or returned something unusable."""

    status_code = status.HTTP_502_BAD_GATEWAY


class PaymentSetupError(GatewayError):
    """Order creation could not open a payment authorization; the order was removed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class LedgerError(CheckoutError):
    """The order ledger hit a state it must never be in."""


class NotificationError(CheckoutError):
    """Email delivery failed. Raised and caught inside the dispatcher only."""


def _error_response(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


async def _checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    log = logger.bind(path=request.url.path, error_type=type(exc).__name__)
    if exc.status_code >= 500:
        log.error("request_failed", error=exc.message)
    else:
        log.info("request_rejected", error=exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthzError) else None
    return _error_response(exc.status_code, exc.message, headers)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Malformed payload")
    if location:
        message = f"{location}: {message}"
    return _error_response(status.HTTP_400_BAD_REQUEST, message)


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path, error_type=type(exc).__name__)
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error raised by a sub-app as ``{"error": message}``."""
    app.add_exception_handler(CheckoutError, _checkout_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
