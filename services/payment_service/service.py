import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.customer_service.service import CustomerService
from services.notification_service.service import NotificationDispatcher
from services.order_service.service import OrderLedger
from services.order_service.transitions import Outcome, Trigger
from shared.errors import (
    AccessDeniedError,
    InvalidTransitionError,
    NotFoundError,
    OrderNotFoundError,
    ValidationError,
)
from shared.observability import ecomm_webhook_events_total

from .events import (
    AuthorizationCanceled,
    AuthorizationFailed,
    AuthorizationRequiresAction,
    AuthorizationSucceeded,
    MalformedEvent,
    PaymentEvent,
    UnrecognizedEvent,
    event_type_label,
)
from .gateway import Authorization, PaymentGateway

logger = structlog.get_logger(__name__)

_TRIGGERS = {
    AuthorizationSucceeded: Trigger.AUTHORIZATION_SUCCEEDED,
    AuthorizationFailed: Trigger.AUTHORIZATION_FAILED,
    AuthorizationCanceled: Trigger.AUTHORIZATION_CANCELED,
}


class WebhookReconciler:
    """Folds verified processor events into the order ledger.

    Returns an outcome label for every event it acknowledges. Anything it
    cannot handle safely propagates so the processor redelivers the event.
    """

    def __init__(self, ledger: OrderLedger, dispatcher: NotificationDispatcher):
        self.ledger = ledger
        self.dispatcher = dispatcher

    async def reconcile(self, event: PaymentEvent) -> str:
        label = event_type_label(event)
        with structlog.contextvars.bound_contextvars(event_id=event.id, event_type=label):
            try:
                outcome = await self._dispatch(event)
            except Exception:
                ecomm_webhook_events_total.labels(event_type=label, outcome="error").inc()
                raise
        ecomm_webhook_events_total.labels(event_type=label, outcome=outcome).inc()
        return outcome

    async def _dispatch(self, event: PaymentEvent) -> str:
        if isinstance(event, UnrecognizedEvent):
            logger.info("webhook_event_unhandled")
            return "acknowledged"
        if isinstance(event, MalformedEvent):
            # Redelivery carries the same body
            logger.error("webhook_event_malformed", reason=event.reason)
            return "malformed_event"

        payment_id = event.authorization.id
        order_id = event.authorization.order_id
        if not order_id:
            # Retrying will not make an order reference appear
            logger.error("webhook_missing_order_reference", payment_id=payment_id)
            return "missing_order_reference"

        with structlog.contextvars.bound_contextvars(order_id=order_id, payment_id=payment_id):
            order = await self.ledger.get(order_id)
            if order is None:
                logger.error("webhook_order_not_found")
                return "order_not_found"
            if order.payment_id and order.payment_id != payment_id:
                logger.warning("webhook_payment_id_mismatch", order_payment_id=order.payment_id)

            if isinstance(event, AuthorizationRequiresAction):
                logger.info("authorization_requires_action")
                return "no_op"

            return await self._apply(event, order_id)

    async def _apply(self, event: PaymentEvent, order_id: str) -> str:
        trigger = _TRIGGERS[type(event)]
        extra = None
        if isinstance(event, AuthorizationSucceeded):
            extra = {"payment_method": event.authorization.payment_method}
        elif isinstance(event, AuthorizationFailed):
            logger.info("authorization_failed", reason=event.failure_message)

        try:
            result = await self.ledger.transition(order_id, trigger, extra)
        except OrderNotFoundError:
            logger.error("webhook_order_not_found")
            return "order_not_found"
        except InvalidTransitionError as e:
            logger.warning("webhook_transition_rejected", error=e.message)
            return "invalid_transition"

        if isinstance(event, AuthorizationSucceeded) and result.outcome is Outcome.APPLIED:
            order = await self.ledger.get(order_id)
            if order is not None:
                await self.dispatcher.notify_order_confirmed(order)

        return result.outcome.value


class PaymentService:
    """Customer-facing reads and cancellation of payment authorizations."""

    def __init__(self, db: AsyncSession, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway
        self.ledger = OrderLedger(db)

    async def _owned_authorization(self, user_id: str, authorization_id: str) -> Authorization:
        customer = await CustomerService.load_snapshot(self.db, user_id)
        authorization = await self.gateway.retrieve(authorization_id)
        if (
            not authorization.customer_ref
            or not customer.processor_customer_id
            or authorization.customer_ref != customer.processor_customer_id
        ):
            logger.warning("payment_access_denied", user_id=user_id, payment_id=authorization_id)
            raise AccessDeniedError("Access to this payment is denied")
        return authorization

    async def get_authorization(self, user_id: str, authorization_id: str) -> Authorization:
        return await self._owned_authorization(user_id, authorization_id)

    async def cancel_authorization(self, user_id: str, authorization_id: str):
        """Cancel with the processor first; the order only moves once that succeeded."""
        await self._owned_authorization(user_id, authorization_id)
        cancelled = await self.gateway.cancel(authorization_id)

        order = await self.ledger.get_by_payment_id(authorization_id, user_id)
        if order is None:
            logger.warning("cancelled_payment_without_order", payment_id=authorization_id)
            return cancelled, None

        result = await self.ledger.transition(order.id, Trigger.AUTHORIZATION_CANCELED)
        return cancelled, result.state

    async def validate_payment(self, user_id: str, authorization_id: str):
        authorization = await self._owned_authorization(user_id, authorization_id)
        if authorization.status != "succeeded":
            raise ValidationError("Payment has not succeeded")

        order = await self.ledger.get_by_payment_id(authorization_id, user_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order
