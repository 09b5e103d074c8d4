from decimal import Decimal

import pytest

from services.customer_service.models import Customer
from services.order_service.models import Order, OrderItem
from shared.security import create_access_token

from conftest import count_rows, load_order

CART = {"items": [{"id": "p1", "quantity": 2, "price": 9.99}]}


async def test_creates_pending_order_and_opens_authorization(order_client, auth_headers, gateway, session_factory):
    response = await order_client.post("/", json=CART, headers=auth_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["orderNumber"].startswith("ORD-")
    assert body["paymentIntent"] == {
        "id": "pi_1",
        "clientSecret": "pi_1_secret_abc",
        "amount": 1998,
        "currency": "eur",
        "status": "requires_payment_method",
    }
    assert body["ephemeralKey"] == {"id": "ephkey_1", "secret": "ek_test_secret"}

    order = await load_order(session_factory, body["orderId"])
    assert (order.status, order.payment_status) == ("PENDING", "PENDING")
    assert order.payment_id == "pi_1"
    assert order.subtotal == Decimal("19.98")
    assert order.total_amount == Decimal("19.98")
    assert [(i.product_id, i.quantity, i.price) for i in order.items] == [("p1", 2, Decimal("9.99"))]

    authorization = gateway.opened[0]
    assert authorization.metadata["orderId"] == body["orderId"]
    assert authorization.metadata["userId"] == "user-1"


async def test_processor_customer_is_remembered(order_client, auth_headers, session_factory):
    await order_client.post("/", json=CART, headers=auth_headers)

    async with session_factory() as session:
        customer = await session.get(Customer, "user-1")
        assert customer.processor_customer_id == "cus_test"


async def test_client_metadata_cannot_redirect_the_order(order_client, auth_headers, gateway):
    payload = {**CART, "metadata": {"orderId": "someone-elses-order", "channel": "ios"}}
    response = await order_client.post("/", json=payload, headers=auth_headers)

    assert response.status_code == 201
    metadata = gateway.opened[0].metadata
    assert metadata["orderId"] == response.json()["orderId"]
    assert metadata["channel"] == "ios"


async def test_price_mismatch_creates_nothing(order_client, auth_headers, gateway, session_factory):
    payload = {"items": [{"id": "p1", "quantity": 2, "price": 8.99}]}
    response = await order_client.post("/", json=payload, headers=auth_headers)

    assert response.status_code == 400
    assert "Shea Butter Cream" in response.json()["error"]
    assert gateway.opened == []
    assert await count_rows(session_factory, Order) == 0


@pytest.mark.parametrize("payload", [{}, {"items": []}])
async def test_empty_cart_is_rejected(order_client, auth_headers, payload):
    response = await order_client.post("/", json=payload, headers=auth_headers)
    assert response.status_code == 400
    assert response.json() == {"error": "Cart cannot be empty"}


async def test_malformed_line_is_rejected(order_client, auth_headers):
    payload = {"items": [{"id": "p1", "quantity": 0, "price": 9.99}]}
    response = await order_client.post("/", json=payload, headers=auth_headers)
    assert response.status_code == 400
    assert "quantity" in response.json()["error"]


async def test_requires_a_session(order_client, gateway, session_factory):
    response = await order_client.post("/", json=CART)

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    assert gateway.opened == []
    assert await count_rows(session_factory, Order) == 0


async def test_rejects_a_forged_session(order_client):
    response = await order_client.post("/", json=CART, headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_unknown_customer(order_client, session_factory):
    headers = {"Authorization": f"Bearer {create_access_token({'sub': 'ghost'})}"}
    response = await order_client.post("/", json=CART, headers=headers)

    assert response.status_code == 404
    assert await count_rows(session_factory, Order) == 0


async def test_authorization_failure_deletes_the_order(order_client, auth_headers, gateway, session_factory):
    gateway.fail_on = "open_authorization"

    response = await order_client.post("/", json=CART, headers=auth_headers)

    assert response.status_code == 500
    assert "card_declined" in response.json()["error"]
    assert await count_rows(session_factory, Order) == 0
    assert await count_rows(session_factory, OrderItem) == 0


async def test_late_failure_cancels_authorization_and_deletes_order(order_client, auth_headers, gateway, session_factory):
    gateway.fail_on = "create_ephemeral_key"

    response = await order_client.post("/", json=CART, headers=auth_headers)

    assert response.status_code == 500
    assert gateway.cancelled == ["pi_1"]
    assert await count_rows(session_factory, Order) == 0
    assert await count_rows(session_factory, OrderItem) == 0


async def test_each_checkout_gets_its_own_order_number(order_client, auth_headers):
    first = await order_client.post("/", json=CART, headers=auth_headers)
    second = await order_client.post("/", json=CART, headers=auth_headers)

    assert first.status_code == second.status_code == 201
    assert first.json()["orderNumber"] != second.json()["orderNumber"]
    assert second.json()["paymentIntent"]["id"] == "pi_2"
