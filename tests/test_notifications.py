import json
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import httpx

from services.notification_service.schemas import ConfirmationLine, OrderConfirmation
from services.notification_service.service import NotificationDispatcher, build_confirmation


def confirmation(**overrides):
    fields = dict(
        order_number="ORD-1700000000000-ABCDEFGHI",
        customer_name="Jane <Doe>",
        order_date=datetime(2024, 3, 1, tzinfo=timezone.utc),
        items=[ConfirmationLine(name="Shea Butter Cream", price=Decimal("9.99"), quantity=2)],
        subtotal=Decimal("19.98"),
        shipping_cost=Decimal("0"),
        tax_amount=Decimal("0"),
        total_amount=Decimal("19.98"),
        currency="eur",
        shipping_address={"street": "12 rue des Lilas", "city": "Lyon", "postalCode": "69001", "country": "France"},
        estimated_delivery="03 Mar - 06 Mar 2024",
    )
    fields.update(overrides)
    return OrderConfirmation(**fields)


async def test_sends_through_provider_api():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"id": "email_1"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        dispatcher = NotificationDispatcher("re_key", "Shop <shop@example.com>", client=client, base_url="https://mail.test")
        assert await dispatcher.send_order_confirmation("jane@example.com", confirmation()) is True

    request = requests[0]
    assert str(request.url) == "https://mail.test/emails"
    assert request.headers["Authorization"] == "Bearer re_key"
    body = json.loads(request.content)
    assert body["to"] == ["jane@example.com"]
    assert body["from"] == "Shop <shop@example.com>"
    assert "ORD-1700000000000-ABCDEFGHI" in body["subject"]
    assert "Jane &lt;Doe&gt;" in body["html"]
    assert "19.98 EUR" in body["html"]
    assert "Lyon" in body["html"]


async def test_missing_credentials_skip_the_send():
    def handler(request):
        raise AssertionError("no request expected")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        dispatcher = NotificationDispatcher("", "shop@example.com", client=client)
        assert await dispatcher.send_order_confirmation("jane@example.com", confirmation()) is False


async def test_provider_error_is_swallowed():
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(422, json={"message": "bad"}))) as client:
        dispatcher = NotificationDispatcher("re_key", "shop@example.com", client=client)
        assert await dispatcher.send_order_confirmation("jane@example.com", confirmation()) is False


async def test_transport_error_is_swallowed():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        dispatcher = NotificationDispatcher("re_key", "shop@example.com", client=client)
        assert await dispatcher.send_order_confirmation("jane@example.com", confirmation()) is False


async def test_unrenderable_order_is_swallowed(dispatcher, outbox):
    broken = SimpleNamespace(id="o1", customer_email="jane@example.com", created_at=None)
    assert await dispatcher.notify_order_confirmed(broken) is False
    assert outbox.sent == []


def test_build_confirmation_from_order():
    order = SimpleNamespace(
        order_number="ORD-1-X",
        customer_name="Jane",
        created_at=datetime(2024, 3, 1, 12, 0),
        items=[SimpleNamespace(product_name="Argan Oil", price=Decimal("24.50"), quantity=1)],
        subtotal=Decimal("24.50"),
        shipping_cost=Decimal("0.00"),
        tax_amount=Decimal("0.00"),
        total_amount=Decimal("24.50"),
        currency="eur",
        shipping_address={"city": "Lyon"},
        billing_address=None,
        payment_method=None,
    )

    data = build_confirmation(order)

    assert data.items[0].line_total == Decimal("24.50")
    assert data.payment_method == "card"
    assert data.billing_address == {}
    assert data.estimated_delivery == "03 Mar - 06 Mar 2024"
