"""Server-side re-pricing of a submitted cart.

Client prices are only compared against the catalog, never persisted: every
priced line carries the catalog's unit price.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.catalog_service.repository import ProductRepository
from shared.config import settings
from shared.errors import ValidationError

from .schemas import CartItemIn

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
PRICE_TOLERANCE = Decimal("0.01")


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricedItem:
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class PricedCart:
    items: tuple[PricedItem, ...]
    subtotal: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.shipping_cost + self.tax_amount


def compute_charges(subtotal: Decimal) -> tuple[Decimal, Decimal]:
    """Shipping and tax for a subtotal. Both default to zero."""
    shipping = to_cents(settings.ORDER_SHIPPING_COST)
    tax = to_cents(subtotal * settings.ORDER_TAX_RATE)
    return shipping, tax


async def price_cart(db: AsyncSession, items: Sequence[CartItemIn]) -> PricedCart:
    if not items:
        raise ValidationError("Cart cannot be empty")

    products = await ProductRepository.get_products_by_ids(db, (i.id for i in items))

    priced = []
    for item in items:
        product = products.get(item.id)
        if product is None:
            raise ValidationError(f"Product {item.id} no longer exists")

        catalog_price = to_cents(Decimal(product.price))
        client_price = Decimal(str(item.price))
        if abs(catalog_price - client_price) > PRICE_TOLERANCE:
            logger.info(
                "price_mismatch",
                product_id=product.id,
                catalog_price=str(catalog_price),
                client_price=str(client_price),
            )
            raise ValidationError(f"Incorrect price for product {product.name}")

        priced.append(
            PricedItem(
                product_id=product.id,
                product_name=product.name,
                quantity=item.quantity,
                unit_price=catalog_price,
            )
        )

    subtotal = to_cents(sum((p.line_total for p in priced), Decimal("0")))
    shipping, tax = compute_charges(subtotal)
    return PricedCart(items=tuple(priced), subtotal=subtotal, shipping_cost=shipping, tax_amount=tax)
