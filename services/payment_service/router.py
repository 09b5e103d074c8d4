"""
Payment routes.

``router`` serves the storefront (JWT session) and ``webhook_router`` serves
the payment processor, which authenticates with the ``Stripe-Signature``
header instead of a session.
"""
import structlog
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification_service.service import NotificationDispatcher, get_notification_dispatcher
from services.order_service.service import OrderLedger
from shared.config import settings
from shared.config.database import get_db
from shared.errors import CheckoutError, SignatureInvalidError
from shared.security import get_current_user

from .events import parse_event
from .gateway import PaymentGateway, get_payment_gateway, verify_event
from .schemas import (
    CancelPaymentResponse,
    PaymentIntentResponse,
    ValidatePaymentRequest,
    ValidatePaymentResponse,
)
from .service import PaymentService, WebhookReconciler

logger = structlog.get_logger(__name__)

router = APIRouter()
public_router = APIRouter()  # For any public endpoints (e.g. health check)
webhook_router = APIRouter()


def _intent_out(authorization) -> PaymentIntentResponse:
    return PaymentIntentResponse(
        id=authorization.id,
        amount=authorization.amount,
        currency=authorization.currency,
        status=authorization.status,
        order_id=(authorization.metadata or {}).get("orderId"),
    )


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "payment", "status": "running"}


@router.get("/intents/{authorization_id}", response_model=PaymentIntentResponse)
async def get_payment_intent(
    authorization_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    authorization = await PaymentService(db, gateway).get_authorization(user_id, authorization_id)
    return _intent_out(authorization)


@router.post("/intents/{authorization_id}/cancel", response_model=CancelPaymentResponse)
async def cancel_payment_intent(
    authorization_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    authorization, state = await PaymentService(db, gateway).cancel_authorization(user_id, authorization_id)
    return CancelPaymentResponse(
        payment_intent=_intent_out(authorization),
        order_status=state.status.value if state else None,
        payment_status=state.payment_status.value if state else None,
    )


@router.post("/validate", response_model=ValidatePaymentResponse)
async def validate_payment(
    body: ValidatePaymentRequest,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    order = await PaymentService(db, gateway).validate_payment(user_id, body.payment_intent_id)
    return ValidatePaymentResponse(
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status,
        total_amount=order.total_amount,
        created_at=order.created_at,
    )


@webhook_router.post("/payment")
async def payment_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    # Raw bytes: the signature covers the exact body the processor sent
    payload = await request.body()

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("webhook_secret_not_configured")
        raise CheckoutError("Webhook secret is not configured")

    try:
        body = verify_event(payload, stripe_signature or "", settings.STRIPE_WEBHOOK_SECRET)
    except SignatureInvalidError as e:
        logger.warning(
            "security_event",
            reason="webhook_signature_invalid",
            detail=e.message,
            client=request.client.host if request.client else None,
        )
        raise

    event = parse_event(body)
    outcome = await WebhookReconciler(OrderLedger(db), dispatcher).reconcile(event)
    logger.info("webhook_processed", event_id=event.id, outcome=outcome)
    return {"received": True}
