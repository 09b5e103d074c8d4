from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from .models import Product

class ProductRepository:

    @staticmethod
    async def get_products_by_ids(db: AsyncSession, product_ids: Iterable[str]) -> dict[str, Product]:
        """Fresh read of every requested product, keyed by id. Missing ids are absent."""
        ids = set(product_ids)
        if not ids:
            return {}
        result = await db.execute(select(Product).where(Product.id.in_(ids)))
        return {p.id: p for p in result.scalars().all()}
