from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PaymentIntentResponse(CamelModel):
    id: str
    amount: int
    currency: str
    status: str
    order_id: Optional[str] = None


class CancelPaymentResponse(CamelModel):
    payment_intent: PaymentIntentResponse
    order_status: Optional[str] = None
    payment_status: Optional[str] = None


class ValidatePaymentRequest(CamelModel):
    payment_intent_id: str = Field(min_length=1)


class ValidatePaymentResponse(CamelModel):
    order_id: str
    order_number: str
    status: str
    payment_status: str
    total_amount: float
    created_at: datetime
