from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from services.payment_service.gateway import PaymentGateway, get_payment_gateway
from shared.config import settings
from shared.config.database import get_db
from shared.security import get_current_user, limiter, verify_internal_api_key

from .checkout_saga import CheckoutService
from .models import Order
from .schemas import (
    CancelOrderResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    OrderOut,
    OrderSummaryOut,
)
from .service import OrderService, TransitionResult
from .transitions import is_cancellable

router = APIRouter()
public_router = APIRouter()

# Back-office callers only
admin_router = APIRouter(prefix="/admin", dependencies=[Depends(verify_internal_api_key)])


def _order_out(order: Order) -> OrderOut:
    return OrderOut.model_validate(order).model_copy(update={"can_cancel": is_cancellable(order.status)})


def _cancel_response(order: Order, result: TransitionResult) -> CancelOrderResponse:
    return CancelOrderResponse(
        order_id=order.id,
        order_number=order.order_number,
        status=result.state.status.value,
        payment_status=result.state.payment_status.value,
        outcome=result.outcome.value,
    )


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "order", "status": "running"}


@router.post("/", response_model=CreateOrderResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.ORDER_CREATE_RATE_LIMIT)
async def create_order(
    request: Request,
    body: CreateOrderRequest,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    return await CheckoutService(db, gateway).create_order_with_payment(user_id, body)


@router.get("/", response_model=list[OrderSummaryOut])
async def list_orders(user_id: str = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await OrderService.list_orders(db, user_id)


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(order_id: str, user_id: str = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return _order_out(await OrderService.get_order(db, order_id, user_id))


@router.post("/{order_id}/cancel", response_model=CancelOrderResponse)
async def cancel_order(order_id: str, user_id: str = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    order, result = await OrderService.cancel_order(db, order_id, user_id)
    return _cancel_response(order, result)


@admin_router.post("/{order_id}/cancel", response_model=CancelOrderResponse)
async def admin_cancel_order(order_id: str, db: AsyncSession = Depends(get_db)):
    order, result = await OrderService.cancel_order(db, order_id)
    return _cancel_response(order, result)
