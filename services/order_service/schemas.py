from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from shared.config import settings


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class CartItemIn(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    quantity: int = Field(gt=0, le=1000)
    price: float = Field(ge=0) # client-side price, compared against the catalog only


class CreateOrderRequest(BaseModel):
    items: list[CartItemIn] = Field(default_factory=list)
    currency: str = Field(default=settings.DEFAULT_CURRENCY, min_length=3, max_length=3)
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        if not v.isalpha():
            raise ValueError("Currency must be a 3-letter ISO code")
        return v.lower()


class PaymentIntentOut(CamelModel):
    id: str
    client_secret: str
    amount: int
    currency: str
    status: str


class EphemeralKeyOut(CamelModel):
    id: str
    secret: str


class CreateOrderResponse(CamelModel):
    order_id: str
    order_number: str
    payment_intent: PaymentIntentOut
    ephemeral_key: EphemeralKeyOut


class OrderItemOut(CamelModel):
    product_id: str
    product_name: str
    quantity: int
    price: float


class OrderOut(CamelModel):
    id: str
    order_number: str
    status: str
    payment_status: str
    payment_id: Optional[str] = None
    payment_method: Optional[str] = None
    subtotal: float
    shipping_cost: float
    tax_amount: float
    total_amount: float
    currency: str
    shipping_address: dict
    billing_address: dict
    created_at: datetime
    items: list[OrderItemOut] = []
    can_cancel: bool = False


class OrderSummaryOut(CamelModel):
    id: str
    order_number: str
    status: str
    payment_status: str
    total_amount: float
    currency: str
    created_at: datetime


class CancelOrderResponse(CamelModel):
    order_id: str
    order_number: str
    status: str
    payment_status: str
    outcome: str
