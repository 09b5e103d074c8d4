import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.customer_service.service import CustomerService
from services.payment_service.gateway import PaymentGateway
from shared.errors import GatewayError, PaymentSetupError
from shared.observability import ecomm_checkout_duration_seconds, ecomm_checkout_total

from .pricing import price_cart
from .saga import SagaOrchestrator
from .schemas import CreateOrderRequest, CreateOrderResponse
from .service import OrderLedger

logger = structlog.get_logger(__name__)

# --- ACTIONS ---

async def price_items(ctx: dict):
    ctx["cart"] = await price_cart(ctx["db"], ctx["request"].items)

async def load_customer(ctx: dict):
    ctx["customer"] = await CustomerService.load_snapshot(ctx["db"], ctx["user_id"])

async def create_order(ctx: dict):
    order = await ctx["ledger"].create(ctx["customer"], ctx["cart"], ctx["request"].currency)
    ctx["order_id"] = order.id
    ctx["order_number"] = order.order_number
    ctx["total_amount"] = order.total_amount
    structlog.contextvars.bind_contextvars(order_id=order.id)

async def ensure_customer(ctx: dict):
    customer = ctx["customer"]
    customer_ref = await ctx["gateway"].ensure_customer(customer)
    if customer_ref != customer.processor_customer_id:
        await CustomerService.remember_processor_customer(ctx["db"], customer.id, customer_ref)
    ctx["customer_ref"] = customer_ref

async def open_authorization(ctx: dict):
    ctx["authorization"] = await ctx["gateway"].open_authorization(
        order_id=ctx["order_id"],
        user_id=ctx["user_id"],
        customer_ref=ctx["customer_ref"],
        amount=ctx["total_amount"],
        currency=ctx["request"].currency,
        metadata=ctx["request"].metadata,
    )

async def attach_payment_id(ctx: dict):
    await ctx["ledger"].attach_payment_id(ctx["order_id"], ctx["authorization"].id)

async def create_ephemeral_key(ctx: dict):
    ctx["ephemeral_key"] = await ctx["gateway"].create_ephemeral_key(ctx["customer_ref"])


# --- COMPENSATIONS (Rollbacks) ---

async def delete_order(ctx: dict):
    order_id = ctx.get("order_id")
    if order_id:
        # Drop whatever transaction the failed step left open before deleting
        await ctx["db"].rollback()
        await ctx["ledger"].delete_unpaid(order_id)

async def cancel_authorization(ctx: dict):
    authorization = ctx.get("authorization")
    if authorization:
        await ctx["gateway"].cancel(authorization.id)


# --- BUILDER FACTORY ---

def build_checkout_saga() -> SagaOrchestrator:
    saga = SagaOrchestrator("checkout")
    saga.add_step("price_cart", price_items, None) # Read-only, no rollback needed
    saga.add_step("load_customer", load_customer, None)
    saga.add_step("create_order", create_order, delete_order)
    saga.add_step("ensure_customer", ensure_customer, None)
    saga.add_step("open_authorization", open_authorization, cancel_authorization)
    saga.add_step("attach_payment_id", attach_payment_id, None)
    saga.add_step("create_ephemeral_key", create_ephemeral_key, None)
    return saga


class CheckoutService:
    def __init__(self, db: AsyncSession, gateway: PaymentGateway, ledger: OrderLedger | None = None):
        self.db = db
        self.gateway = gateway
        self.ledger = ledger or OrderLedger(db)

    async def create_order_with_payment(self, user_id: str, request: CreateOrderRequest) -> CreateOrderResponse:
        """Price the cart, persist a PENDING order and open its payment authorization.

        If anything fails once the order exists, the order is deleted again
        before the error reaches the caller.
        """
        ctx = {
            "db": self.db,
            "ledger": self.ledger,
            "gateway": self.gateway,
            "user_id": user_id,
            "request": request,
        }
        with structlog.contextvars.bound_contextvars(user_id=user_id), ecomm_checkout_duration_seconds.time():
            try:
                await build_checkout_saga().execute(ctx)
            except GatewayError as e:
                ecomm_checkout_total.labels(status="failed").inc()
                raise PaymentSetupError(f"Failed to create payment: {e.message}") from e
            except Exception:
                ecomm_checkout_total.labels(status="failed").inc()
                raise
            finally:
                structlog.contextvars.unbind_contextvars("order_id")

        ecomm_checkout_total.labels(status="success").inc()
        authorization = ctx["authorization"]
        logger.info(
            "checkout_completed",
            user_id=user_id,
            order_id=ctx["order_id"],
            payment_id=authorization.id,
            amount=authorization.amount,
        )
        return CreateOrderResponse(
            order_id=ctx["order_id"],
            order_number=ctx["order_number"],
            payment_intent={
                "id": authorization.id,
                "client_secret": authorization.client_secret,
                "amount": authorization.amount,
                "currency": authorization.currency,
                "status": authorization.status,
            },
            ephemeral_key={"id": ctx["ephemeral_key"].id, "secret": ctx["ephemeral_key"].secret},
        )
