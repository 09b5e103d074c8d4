import secrets
import string
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.customer_service.service import CustomerSnapshot
from shared.config import settings
from shared.errors import InvalidTransitionError, LedgerError, OrderNotFoundError
from shared.observability import ecomm_order_transitions_total

from .models import Order
from .pricing import PricedCart
from .repository import OrderRepository
from .transitions import OrderState, Outcome, Trigger, plan

logger = structlog.get_logger(__name__)

_BASE36 = string.digits + string.ascii_uppercase
_CAS_ATTEMPTS = 3


def generate_order_number() -> str:
    """ORD-<epoch millis>-<9 random base36 chars>."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def _is_order_number_conflict(exc: IntegrityError) -> bool:
    return "order_number" in str(exc.orig)


@dataclass(frozen=True)
class TransitionResult:
    order_id: str
    outcome: Outcome
    state: OrderState
    previous: OrderState


class OrderLedger:
    """Durable Order + OrderItem aggregate and the only writer of its state."""

    def __init__(self, db: AsyncSession, number_factory: Callable[[], str] = generate_order_number):
        self.db = db
        self._next_number = number_factory

    async def create(self, customer: CustomerSnapshot, cart: PricedCart, currency: str) -> Order:
        """Persist a PENDING/PENDING order with its items as one unit.

        A clash on the order number is retried with a fresh number; any other
        failure leaves nothing behind and propagates.
        """
        attempts = settings.ORDER_NUMBER_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            order = Order(
                order_number=self._next_number(),
                user_id=customer.id,
                customer_email=customer.email,
                customer_name=customer.name,
                subtotal=cart.subtotal,
                shipping_cost=cart.shipping_cost,
                tax_amount=cart.tax_amount,
                total_amount=cart.total,
                currency=currency,
                shipping_address=dict(customer.shipping_address),
                billing_address=dict(customer.billing_address),
                items=[],
            )
            try:
                await OrderRepository.create_order(self.db, order, cart.items)
            except IntegrityError as e:
                if not _is_order_number_conflict(e):
                    raise LedgerError("Order could not be persisted") from e
                logger.warning("order_number_collision", order_number=order.order_number, attempt=attempt)
                continue

            logger.info(
                "order_created",
                order_id=order.id,
                order_number=order.order_number,
                total=str(order.total_amount),
                items=len(cart.items),
            )
            return order

        raise LedgerError(f"Could not allocate a unique order number after {attempts} attempts")

    async def attach_payment_id(self, order_id: str, payment_id: str) -> None:
        if not await OrderRepository.attach_payment_id(self.db, order_id, payment_id):
            # Either the order moved on or an authorization is already attached
            raise LedgerError(f"Order {order_id} cannot take payment {payment_id}")
        logger.info("payment_attached", order_id=order_id, payment_id=payment_id)

    async def transition(self, order_id: str, trigger: Trigger, extra: Optional[dict] = None) -> TransitionResult:
        """Apply ``trigger`` to the order. Safe to call again with the same trigger."""
        for _ in range(_CAS_ATTEMPTS):
            current = await OrderRepository.get_state(self.db, order_id)
            if current is None:
                raise OrderNotFoundError(order_id)

            try:
                decision = plan(order_id, current, trigger)
            except InvalidTransitionError:
                ecomm_order_transitions_total.labels(trigger=trigger.value, outcome="invalid").inc()
                logger.warning("order_transition_rejected", order_id=order_id, trigger=trigger.value, current=str(current))
                raise

            if decision.outcome is not Outcome.APPLIED:
                ecomm_order_transitions_total.labels(trigger=trigger.value, outcome=decision.outcome.value).inc()
                logger.info(
                    "order_transition_skipped",
                    order_id=order_id,
                    trigger=trigger.value,
                    outcome=decision.outcome.value,
                    current=str(current),
                )
                return TransitionResult(order_id, decision.outcome, current, current)

            if await OrderRepository.compare_and_set_state(self.db, order_id, current, decision.target, extra):
                ecomm_order_transitions_total.labels(trigger=trigger.value, outcome=Outcome.APPLIED.value).inc()
                logger.info(
                    "order_transitioned",
                    order_id=order_id,
                    trigger=trigger.value,
                    previous=str(current),
                    state=str(decision.target),
                )
                return TransitionResult(order_id, Outcome.APPLIED, decision.target, current)

            logger.info("order_transition_raced", order_id=order_id, trigger=trigger.value, observed=str(current))

        raise LedgerError(f"Order {order_id} kept changing while applying {trigger.value}")

    async def delete_unpaid(self, order_id: str) -> bool:
        deleted = await OrderRepository.delete_unpaid_order(self.db, order_id)
        if deleted:
            logger.info("order_deleted", order_id=order_id)
        else:
            logger.warning("order_delete_skipped", order_id=order_id, reason="not PENDING/PENDING")
        return deleted

    async def get(self, order_id: str) -> Optional[Order]:
        return await OrderRepository.get_order(self.db, order_id)

    async def get_for_user(self, order_id: str, user_id: str) -> Optional[Order]:
        return await OrderRepository.get_order_for_user(self.db, order_id, user_id)

    async def list_for_user(self, user_id: str) -> list[Order]:
        return await OrderRepository.list_orders_for_user(self.db, user_id)

    async def get_by_payment_id(self, payment_id: str, user_id: Optional[str] = None) -> Optional[Order]:
        return await OrderRepository.get_order_by_payment_id(self.db, payment_id, user_id)


class OrderService:
    @staticmethod
    async def get_order(db: AsyncSession, order_id: str, user_id: str) -> Order:
        order = await OrderLedger(db).get_for_user(order_id, user_id)
        if not order:
            raise OrderNotFoundError(order_id)
        return order

    @staticmethod
    async def list_orders(db: AsyncSession, user_id: str) -> list[Order]:
        return await OrderLedger(db).list_for_user(user_id)

    @staticmethod
    async def cancel_order(db: AsyncSession, order_id: str, user_id: Optional[str] = None) -> tuple[Order, TransitionResult]:
        """Customer cancel when ``user_id`` is given, back-office cancel otherwise."""
        ledger = OrderLedger(db)
        order = await (ledger.get_for_user(order_id, user_id) if user_id else ledger.get(order_id))
        if not order:
            raise OrderNotFoundError(order_id)
        result = await ledger.transition(order.id, Trigger.CUSTOMER_CANCEL)
        return order, result
