"""Order state machine.

The real state of an order is the ``(status, payment_status)`` pair. A trigger
names the cause of a move; ``plan`` decides, from the current pair alone,
whether the move is applied, already done, ignored, or illegal. The ledger
applies the plan with a compare-and-swap on the pair it planned from.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from shared.errors import InvalidTransitionError

from .models import TERMINAL_STATUSES, OrderStatus, PaymentStatus


class Trigger(str, Enum):
    AUTHORIZATION_SUCCEEDED = "authorization_succeeded"
    AUTHORIZATION_FAILED = "authorization_failed"
    AUTHORIZATION_CANCELED = "authorization_canceled"
    CUSTOMER_CANCEL = "customer_cancel"


class Outcome(str, Enum):
    APPLIED = "applied"
    REPLAYED = "replayed"
    IGNORED_TERMINAL = "ignored_terminal"


@dataclass(frozen=True)
class OrderState:
    status: OrderStatus
    payment_status: PaymentStatus

    @classmethod
    def of(cls, status: str, payment_status: str) -> "OrderState":
        return cls(OrderStatus(status), PaymentStatus(payment_status))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __str__(self) -> str:
        return f"{self.status.value}/{self.payment_status.value}"


PENDING = OrderState(OrderStatus.PENDING, PaymentStatus.PENDING)

_AUTHORIZATION_RULES = {
    Trigger.AUTHORIZATION_SUCCEEDED: OrderState(OrderStatus.CONFIRMED, PaymentStatus.PAID),
    Trigger.AUTHORIZATION_FAILED: OrderState(OrderStatus.CANCELLED, PaymentStatus.FAILED),
    Trigger.AUTHORIZATION_CANCELED: OrderState(OrderStatus.CANCELLED, PaymentStatus.FAILED),
}

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})


@dataclass(frozen=True)
class Plan:
    outcome: Outcome
    target: Optional[OrderState] = None


def target_for(current: OrderState, trigger: Trigger) -> OrderState:
    if trigger is Trigger.CUSTOMER_CANCEL:
        # Payment side is reconciled independently, so payment_status is kept
        return OrderState(OrderStatus.CANCELLED, current.payment_status)
    return _AUTHORIZATION_RULES[trigger]


def is_cancellable(status: str) -> bool:
    return OrderStatus(status) in CANCELLABLE_STATUSES


def plan(order_id: str, current: OrderState, trigger: Trigger) -> Plan:
    """Decide what ``trigger`` does to an order currently in ``current``.

    Raises:
        InvalidTransitionError: the move is not on the graph.
    """
    if trigger is Trigger.CUSTOMER_CANCEL:
        if current.status is OrderStatus.CANCELLED:
            return Plan(Outcome.REPLAYED, current)
        if current.status not in CANCELLABLE_STATUSES:
            raise InvalidTransitionError(order_id, str(current), trigger.value)
        return Plan(Outcome.APPLIED, target_for(current, trigger))

    # Processor triggers may arrive late, duplicated or out of order, so a
    # terminal order drops them quietly
    target = target_for(current, trigger)
    if current == target:
        return Plan(Outcome.REPLAYED, target)
    if current.is_terminal:
        return Plan(Outcome.IGNORED_TERMINAL, None)
    if current != PENDING:
        raise InvalidTransitionError(order_id, str(current), trigger.value)
    return Plan(Outcome.APPLIED, target)
