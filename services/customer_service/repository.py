from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Customer


class CustomerRepository:

    @staticmethod
    async def get_by_id(db: AsyncSession, customer_id: str) -> Optional[Customer]:
        result = await db.execute(select(Customer).where(Customer.id == customer_id))
        return result.scalars().first()

    @staticmethod
    async def set_processor_customer_id(db: AsyncSession, customer_id: str, processor_customer_id: str) -> None:
        await db.execute(
            update(Customer)
            .where(Customer.id == customer_id)
            .values(processor_customer_id=processor_customer_id)
        )
        await db.commit()
