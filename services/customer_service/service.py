from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.errors import NotFoundError

from .models import Customer
from .repository import CustomerRepository


@dataclass(frozen=True)
class CustomerSnapshot:
    """Plain copy of the customer fields checkout needs.

    Taken once per request so later rollbacks (which expire ORM instances)
    cannot touch the values captured into the order.
    """

    id: str
    email: str
    name: str
    processor_customer_id: Optional[str]
    shipping_address: dict = field(default_factory=dict)
    billing_address: dict = field(default_factory=dict)


def _address(street, city, postal_code, country) -> dict:
    return {
        "street": street or "",
        "city": city or "",
        "postalCode": postal_code or "",
        "country": country or settings.DEFAULT_COUNTRY,
    }


class CustomerService:

    @staticmethod
    def snapshot(customer: Customer) -> CustomerSnapshot:
        shipping = _address(
            customer.shipping_street,
            customer.shipping_city,
            customer.shipping_postal_code,
            customer.shipping_country,
        )
        if customer.use_same_address:
            billing = dict(shipping)
        else:
            billing = _address(
                customer.billing_street,
                customer.billing_city,
                customer.billing_postal_code,
                customer.billing_country,
            )
        return CustomerSnapshot(
            id=customer.id,
            email=customer.email,
            name=customer.name or "Customer",
            processor_customer_id=customer.processor_customer_id,
            shipping_address=shipping,
            billing_address=billing,
        )

    @staticmethod
    async def load_snapshot(db: AsyncSession, customer_id: str) -> CustomerSnapshot:
        customer = await CustomerRepository.get_by_id(db, customer_id)
        if not customer:
            raise NotFoundError("Customer not found")
        return CustomerService.snapshot(customer)

    @staticmethod
    async def remember_processor_customer(db: AsyncSession, customer_id: str, processor_customer_id: str) -> None:
        await CustomerRepository.set_processor_customer_id(db, customer_id, processor_customer_id)
