from typing import Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Order, OrderItem, OrderStatus, PaymentStatus, utcnow
from .pricing import PricedItem
from .transitions import OrderState


def _unpaid(order_id: str):
    return (
        Order.id == order_id,
        Order.status == OrderStatus.PENDING.value,
        Order.payment_status == PaymentStatus.PENDING.value,
    )


class OrderRepository:
    @staticmethod
    async def create_order(db: AsyncSession, order: Order, items: Sequence[PricedItem]) -> Order:
        """Insert the order and its items as one unit; nothing is kept on failure."""
        try:
            db.add(order)
            await db.flush()
            await OrderRepository._add_items(db, order, items)
            await db.commit()
        except BaseException:
            await db.rollback()
            raise
        return order

    @staticmethod
    async def _add_items(db: AsyncSession, order: Order, items: Sequence[PricedItem]) -> None:
        for item in items:
            order.items.append(
                OrderItem(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    price=item.unit_price,
                )
            )
        await db.flush()

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str) -> Optional[Order]:
        # populate_existing: the ledger is always read fresh, never from the identity map
        result = await db.execute(
            select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_order_for_user(db: AsyncSession, order_id: str, user_id: str) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.id == order_id, Order.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_order_by_payment_id(db: AsyncSession, payment_id: str, user_id: Optional[str] = None) -> Optional[Order]:
        stmt = select(Order).where(Order.payment_id == payment_id)
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        result = await db.execute(stmt.execution_options(populate_existing=True))
        return result.scalars().first()

    @staticmethod
    async def list_orders_for_user(db: AsyncSession, user_id: str) -> list[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_state(db: AsyncSession, order_id: str) -> Optional[OrderState]:
        result = await db.execute(
            select(Order.status, Order.payment_status).where(Order.id == order_id)
        )
        row = result.first()
        if row is None:
            return None
        return OrderState.of(row.status, row.payment_status)

    @staticmethod
    async def compare_and_set_state(
        db: AsyncSession,
        order_id: str,
        expected: OrderState,
        target: OrderState,
        values: Optional[dict] = None,
    ) -> bool:
        """Move the order to ``target`` only if it is still in ``expected``.

        Returns False when another writer changed the state first.
        """
        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == expected.status.value,
                Order.payment_status == expected.payment_status.value,
            )
            .values(
                status=target.status.value,
                payment_status=target.payment_status.value,
                updated_at=utcnow(),
                **(values or {}),
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount == 1

    @staticmethod
    async def attach_payment_id(db: AsyncSession, order_id: str, payment_id: str) -> bool:
        stmt = (
            update(Order)
            .where(*_unpaid(order_id), Order.payment_id.is_(None))
            .values(payment_id=payment_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount == 1

    @staticmethod
    async def delete_unpaid_order(db: AsyncSession, order_id: str) -> bool:
        """Delete a still-unpaid order and its items in one transaction."""
        try:
            await db.execute(
                delete(OrderItem)
                .where(OrderItem.order_id.in_(select(Order.id).where(*_unpaid(order_id))))
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(
                delete(Order).where(*_unpaid(order_id)).execution_options(synchronize_session=False)
            )
            await db.commit()
        except BaseException:
            await db.rollback()
            raise
        return result.rowcount == 1
