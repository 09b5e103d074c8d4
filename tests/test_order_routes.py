from sqlalchemy import update

from services.order_service.models import Order
from shared.security import create_access_token

from conftest import load_order, place_order

ADMIN_HEADERS = {"X-Internal-API-Key": "test-internal-key"}


async def set_state(session_factory, order_id, status, payment_status):
    async with session_factory() as session:
        await session.execute(update(Order).where(Order.id == order_id).values(status=status, payment_status=payment_status))
        await session.commit()


async def test_health(order_client):
    response = await order_client.get("/health")
    assert response.json() == {"service": "order", "status": "running"}


async def test_order_detail(order_client, auth_headers, session_factory):
    order = await place_order(session_factory)

    response = await order_client.get(f"/{order.id}", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["orderNumber"] == order.order_number
    assert body["totalAmount"] == 19.98
    assert body["canCancel"] is True
    assert body["items"] == [{"productId": "p1", "productName": "Shea Butter Cream", "quantity": 2, "price": 9.99}]
    assert body["shippingAddress"]["city"] == "Lyon"


async def test_order_detail_is_private(order_client, session_factory):
    order = await place_order(session_factory)
    other = {"Authorization": f"Bearer {create_access_token({'sub': 'user-2'})}"}

    response = await order_client.get(f"/{order.id}", headers=other)

    assert response.status_code == 404


async def test_order_history(order_client, auth_headers, session_factory):
    first = await place_order(session_factory, payment_id="pi_1")
    second = await place_order(session_factory, payment_id="pi_2")

    response = await order_client.get("/", headers=auth_headers)

    assert response.status_code == 200
    assert {o["id"] for o in response.json()} == {first.id, second.id}


async def test_customer_cancel_then_replay(order_client, auth_headers, session_factory):
    order = await place_order(session_factory)

    first = await order_client.post(f"/{order.id}/cancel", headers=auth_headers)
    second = await order_client.post(f"/{order.id}/cancel", headers=auth_headers)

    assert first.status_code == second.status_code == 200
    assert first.json()["outcome"] == "applied"
    assert second.json()["outcome"] == "replayed"
    assert (first.json()["status"], first.json()["paymentStatus"]) == ("CANCELLED", "PENDING")


async def test_cancel_keeps_payment_status_of_confirmed_order(order_client, auth_headers, session_factory):
    order = await place_order(session_factory)
    await set_state(session_factory, order.id, "CONFIRMED", "PAID")

    response = await order_client.post(f"/{order.id}/cancel", headers=auth_headers)

    assert response.status_code == 200
    stored = await load_order(session_factory, order.id)
    assert (stored.status, stored.payment_status) == ("CANCELLED", "PAID")


async def test_shipped_order_cannot_be_cancelled(order_client, auth_headers, session_factory):
    order = await place_order(session_factory)
    await set_state(session_factory, order.id, "SHIPPED", "PAID")

    response = await order_client.post(f"/{order.id}/cancel", headers=auth_headers)

    assert response.status_code == 409
    assert (await load_order(session_factory, order.id)).status == "SHIPPED"


async def test_admin_cancel_requires_internal_key(order_client, session_factory):
    order = await place_order(session_factory)

    denied = await order_client.post(f"/admin/{order.id}/cancel")
    allowed = await order_client.post(f"/admin/{order.id}/cancel", headers=ADMIN_HEADERS)

    assert denied.status_code == 403
    assert "error" in denied.json()
    assert allowed.status_code == 200
    assert (await load_order(session_factory, order.id)).status == "CANCELLED"
