"""
Payment processor adapter.

Everything that talks to Stripe lives here: opening, reading and cancelling
authorizations (PaymentIntents), the processor-side customer used for saved
cards, ephemeral keys for the mobile SDK and webhook signature checks.
Callers only ever see ``Authorization``/``EphemeralKey`` values and the
errors from ``shared.errors``.
"""
import json
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol

import stripe
import structlog

from services.customer_service.service import CustomerSnapshot
from shared.config import settings
from shared.errors import GatewayError, NotFoundError, SignatureInvalidError

logger = structlog.get_logger(__name__)

# Currencies Stripe charges in whole units
ZERO_DECIMAL_CURRENCIES = frozenset({
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
})


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Decimal amount -> processor integer, rounding half-up (19.999 -> 2000)."""
    amount = Decimal(str(amount))
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def authorization_key(order_id: str) -> str:
    return f"order-{order_id}-authorization"


@dataclass(frozen=True)
class Authorization:
    id: str
    client_secret: Optional[str]
    amount: int
    currency: str
    status: str
    customer_ref: Optional[str] = None
    metadata: Optional[dict] = None


@dataclass(frozen=True)
class EphemeralKey:
    id: str
    secret: str


class PaymentGateway(Protocol):
    async def ensure_customer(self, customer: CustomerSnapshot) -> str: ...

    async def open_authorization(
        self,
        order_id: str,
        user_id: str,
        customer_ref: Optional[str],
        amount: Decimal,
        currency: str,
        metadata: Optional[dict] = None,
    ) -> Authorization: ...

    async def retrieve(self, authorization_id: str) -> Authorization: ...

    async def cancel(self, authorization_id: str) -> Authorization: ...

    async def create_ephemeral_key(self, customer_ref: str) -> EphemeralKey: ...


def _to_authorization(intent) -> Authorization:
    customer = getattr(intent, "customer", None)
    if customer is not None and not isinstance(customer, str):
        customer = customer.id
    metadata = getattr(intent, "metadata", None)
    return Authorization(
        id=intent.id,
        client_secret=getattr(intent, "client_secret", None),
        amount=intent.amount,
        currency=intent.currency,
        status=intent.status,
        customer_ref=customer,
        metadata=dict(metadata) if metadata else {},
    )


def _is_missing(exc: stripe.StripeError) -> bool:
    return isinstance(exc, stripe.InvalidRequestError) and exc.code == "resource_missing"


class StripeGateway:
    """``PaymentGateway`` over the Stripe SDK's async client."""

    def __init__(self, client: stripe.StripeClient):
        self._client = client

    async def ensure_customer(self, customer: CustomerSnapshot) -> str:
        """Return a live processor customer id, creating one when needed."""
        if customer.processor_customer_id:
            try:
                existing = await self._client.customers.retrieve_async(customer.processor_customer_id)
                if not getattr(existing, "deleted", False):
                    return existing.id
                logger.info("processor_customer_deleted", customer_ref=customer.processor_customer_id)
            except stripe.StripeError as e:
                if not _is_missing(e):
                    raise GatewayError(f"Could not load payment customer: {e.user_message or e}") from e
                logger.info("processor_customer_missing", customer_ref=customer.processor_customer_id)

        try:
            created = await self._client.customers.create_async(
                params={
                    "email": customer.email,
                    "name": customer.name,
                    "metadata": {"userId": customer.id},
                }
            )
        except stripe.StripeError as e:
            raise GatewayError(f"Could not create payment customer: {e.user_message or e}") from e
        logger.info("processor_customer_created", user_id=customer.id, customer_ref=created.id)
        return created.id

    async def open_authorization(
        self,
        order_id: str,
        user_id: str,
        customer_ref: Optional[str],
        amount: Decimal,
        currency: str,
        metadata: Optional[dict] = None,
    ) -> Authorization:
        # orderId/userId are written last so client metadata can never replace them
        merged = {**(metadata or {}), "orderId": order_id, "userId": user_id}
        params = {
            "amount": to_minor_units(amount, currency),
            "currency": currency.lower(),
            "metadata": merged,
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_ref:
            params["customer"] = customer_ref

        try:
            intent = await self._client.payment_intents.create_async(
                params=params,
                options={"idempotency_key": authorization_key(order_id)},
            )
        except stripe.StripeError as e:
            logger.error("authorization_open_failed", order_id=order_id, error=str(e))
            raise GatewayError(f"Payment authorization failed: {e.user_message or e}") from e

        authorization = _to_authorization(intent)
        if not authorization.client_secret:
            logger.error("authorization_without_client_secret", order_id=order_id, payment_id=authorization.id)
            raise GatewayError("Payment authorization returned no client secret")

        logger.info(
            "authorization_opened",
            order_id=order_id,
            payment_id=authorization.id,
            amount=authorization.amount,
            currency=authorization.currency,
        )
        return authorization

    async def retrieve(self, authorization_id: str) -> Authorization:
        try:
            intent = await self._client.payment_intents.retrieve_async(authorization_id)
        except stripe.StripeError as e:
            if _is_missing(e):
                raise NotFoundError("Payment intent not found") from e
            raise GatewayError(f"Could not retrieve payment intent: {e.user_message or e}") from e
        return _to_authorization(intent)

    async def cancel(self, authorization_id: str) -> Authorization:
        try:
            intent = await self._client.payment_intents.cancel_async(authorization_id)
        except stripe.StripeError as e:
            logger.error("authorization_cancel_failed", payment_id=authorization_id, error=str(e))
            if _is_missing(e):
                raise NotFoundError("Payment intent not found") from e
            raise GatewayError(f"Could not cancel payment intent: {e.user_message or e}") from e
        logger.info("authorization_cancelled", payment_id=authorization_id)
        return _to_authorization(intent)

    async def create_ephemeral_key(self, customer_ref: str) -> EphemeralKey:
        try:
            key = await self._client.ephemeral_keys.create_async(
                params={"customer": customer_ref},
                options={"stripe_version": settings.STRIPE_API_VERSION},
            )
        except stripe.StripeError as e:
            raise GatewayError(f"Could not create ephemeral key: {e.user_message or e}") from e
        return EphemeralKey(id=key.id, secret=key.secret)


def verify_event(payload: bytes, signature: str, secret: str, tolerance: int = settings.WEBHOOK_TOLERANCE_SECONDS):
    """Check a ``Stripe-Signature`` header against the raw body and decode it.

    Raises:
        SignatureInvalidError: bad, stale or missing signature, or a body that is not JSON.
    """
    if not signature:
        raise SignatureInvalidError("Missing webhook signature")
    try:
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(body, signature, secret, tolerance)
        return json.loads(body)
    except stripe.SignatureVerificationError as e:
        raise SignatureInvalidError() from e
    except ValueError as e:
        # UnicodeDecodeError and JSONDecodeError are both ValueErrors
        raise SignatureInvalidError("Webhook payload is not valid JSON") from e


_gateway: Optional[StripeGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; one Stripe client per process."""
    global _gateway
    if _gateway is None:
        if not settings.STRIPE_SECRET_KEY:
            logger.error("stripe_not_configured")
            raise GatewayError("Payment processor is not configured")
        client = stripe.StripeClient(settings.STRIPE_SECRET_KEY, http_client=stripe.HTTPXClient())
        _gateway = StripeGateway(client)
    return _gateway
