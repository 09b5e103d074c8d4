"""Typed view of the processor events the reconciler understands."""
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class AuthorizationObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    amount: Optional[int] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    payment_method_types: list[str] = Field(default_factory=list)

    @property
    def order_id(self) -> Optional[str]:
        return self.metadata.get("orderId") or None

    @property
    def payment_method(self) -> str:
        return self.payment_method_types[0] if self.payment_method_types else "card"


class _AuthorizationEvent(BaseModel):
    id: str
    authorization: AuthorizationObject


class AuthorizationSucceeded(_AuthorizationEvent):
    kind: Literal["succeeded"] = "succeeded"


class AuthorizationFailed(_AuthorizationEvent):
    kind: Literal["failed"] = "failed"
    failure_message: Optional[str] = None


class AuthorizationCanceled(_AuthorizationEvent):
    kind: Literal["canceled"] = "canceled"


class AuthorizationRequiresAction(_AuthorizationEvent):
    kind: Literal["requires_action"] = "requires_action"


class UnrecognizedEvent(BaseModel):
    kind: Literal["unrecognized"] = "unrecognized"
    id: str
    type: str


class MalformedEvent(BaseModel):
    """Verified envelope that cannot be read. Redelivery carries the same body."""

    kind: Literal["malformed"] = "malformed"
    id: str
    type: str
    reason: str


PaymentEvent = Union[
    AuthorizationSucceeded,
    AuthorizationFailed,
    AuthorizationCanceled,
    AuthorizationRequiresAction,
    UnrecognizedEvent,
    MalformedEvent,
]

_EVENT_TYPES = {
    "payment_intent.succeeded": AuthorizationSucceeded,
    "payment_intent.payment_failed": AuthorizationFailed,
    "payment_intent.canceled": AuthorizationCanceled,
    "payment_intent.requires_action": AuthorizationRequiresAction,
}


def event_type_label(event: PaymentEvent) -> str:
    return event.type if isinstance(event, (UnrecognizedEvent, MalformedEvent)) else event.kind


def parse_event(body) -> PaymentEvent:
    """Map a verified event envelope onto one of the known event models.

    A body that is not an object, or a known event type without a usable
    authorization object, comes back as ``MalformedEvent``.
    """
    if not isinstance(body, dict):
        return MalformedEvent(id="", type="", reason=f"envelope is {type(body).__name__}, not an object")

    event_id = str(body.get("id", ""))
    event_type = str(body.get("type", ""))
    model = _EVENT_TYPES.get(event_type)
    if model is None:
        return UnrecognizedEvent(id=event_id, type=event_type)

    data = body.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        return MalformedEvent(id=event_id, type=event_type, reason="data.object is missing")

    fields = {"id": event_id, "authorization": obj}
    if model is AuthorizationFailed:
        error = obj.get("last_payment_error")
        fields["failure_message"] = error.get("message") if isinstance(error, dict) else None
    try:
        return model.model_validate(fields)
    except ValidationError as e:
        return MalformedEvent(id=event_id, type=event_type, reason=str(e))
