from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class ConfirmationLine(BaseModel):
    name: str
    price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class OrderConfirmation(BaseModel):
    order_number: str
    customer_name: str
    order_date: datetime
    items: list[ConfirmationLine] = Field(default_factory=list)
    subtotal: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    currency: str
    shipping_address: dict = Field(default_factory=dict)
    billing_address: dict = Field(default_factory=dict)
    payment_method: str = "card"
    estimated_delivery: str
