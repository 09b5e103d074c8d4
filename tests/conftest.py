"""Shared fixtures: in-memory database, fake payment processor, captured email."""
import os

# Settings are read at import time, so the environment is fixed first
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"
os.environ["OBSERVABILITY_ENABLED"] = "false"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ORDER_CREATE_RATE_LIMIT"] = "1000/minute"

import hashlib
import hmac
import json
import time
from dataclasses import replace
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from services.catalog_service.models import Product
from services.customer_service.models import Customer
from services.customer_service.service import CustomerService
from services.notification_service.service import NotificationDispatcher, get_notification_dispatcher
from services.order_service.main import order_app
from services.order_service.models import Order
from services.order_service.pricing import PricedCart, PricedItem
from services.order_service.service import OrderLedger
from services.payment_service.gateway import (
    Authorization,
    EphemeralKey,
    get_payment_gateway,
    to_minor_units,
)
from services.payment_service.main import payment_app, webhook_app
from shared.config.database import Base, get_db
from shared.errors import GatewayError, NotFoundError
from shared.security import create_access_token, limiter

WEBHOOK_SECRET = "whsec_test_secret"
USER_ID = "user-1"

limiter.enabled = False


# --- DATABASE ---

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        execution_options={
            "schema_translate_map": {"catalog_schema": None, "customer_schema": None, "order_schema": None}
        },
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def seeded(session_factory):
    async with session_factory() as session:
        session.add_all([
            Product(id="p1", name="Shea Butter Cream", price=Decimal("9.99"), stock=10),
            Product(id="p2", name="Argan Oil", price=Decimal("24.50"), stock=3),
            Customer(
                id=USER_ID,
                email="jane@example.com",
                name="Jane Doe",
                shipping_street="12 rue des Lilas",
                shipping_city="Lyon",
                shipping_postal_code="69001",
                shipping_country="France",
                use_same_address=True,
            ),
            Customer(id="user-2", email="max@example.com", name="Max", processor_customer_id="cus_other"),
        ])
        await session.commit()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {create_access_token({'sub': USER_ID})}"}


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def load_order(session_factory, order_id: str) -> Order:
    async with session_factory() as session:
        return await OrderLedger(session).get(order_id)


async def place_order(session_factory, payment_id: str = "pi_1", quantity: int = 2) -> Order:
    """Create a PENDING/PENDING order for USER_ID with an attached authorization."""
    async with session_factory() as session:
        customer = await CustomerService.load_snapshot(session, USER_ID)
        cart = PricedCart(
            items=(PricedItem("p1", "Shea Butter Cream", quantity, Decimal("9.99")),),
            subtotal=Decimal("9.99") * quantity,
            shipping_cost=Decimal("0.00"),
            tax_amount=Decimal("0.00"),
        )
        ledger = OrderLedger(session)
        order = await ledger.create(customer, cart, "eur")
        if payment_id:
            await ledger.attach_payment_id(order.id, payment_id)
        return await ledger.get(order.id)


# --- PAYMENT PROCESSOR ---

class FakeGateway:
    """In-memory PaymentGateway. ``fail_on`` names the call that raises GatewayError."""

    def __init__(self):
        self.fail_on = None
        self.intents = {}
        self.opened = []
        self.cancelled = []

    async def ensure_customer(self, customer):
        if self.fail_on == "ensure_customer":
            raise GatewayError("processor unavailable")
        return customer.processor_customer_id or "cus_test"

    async def open_authorization(self, order_id, user_id, customer_ref, amount, currency, metadata=None):
        if self.fail_on == "open_authorization":
            raise GatewayError("card_declined")
        authorization = Authorization(
            id=f"pi_{len(self.opened) + 1}",
            client_secret=f"pi_{len(self.opened) + 1}_secret_abc",
            amount=to_minor_units(amount, currency),
            currency=currency,
            status="requires_payment_method",
            customer_ref=customer_ref,
            metadata={**(metadata or {}), "orderId": order_id, "userId": user_id},
        )
        self.opened.append(authorization)
        self.intents[authorization.id] = authorization
        return authorization

    async def retrieve(self, authorization_id):
        if authorization_id not in self.intents:
            raise NotFoundError("Payment intent not found")
        return self.intents[authorization_id]

    async def cancel(self, authorization_id):
        if self.fail_on == "cancel":
            raise GatewayError("processor unavailable")
        cancelled = replace(await self.retrieve(authorization_id), status="canceled")
        self.intents[authorization_id] = cancelled
        self.cancelled.append(authorization_id)
        return cancelled

    async def create_ephemeral_key(self, customer_ref):
        if self.fail_on == "create_ephemeral_key":
            raise GatewayError("processor unavailable")
        return EphemeralKey(id="ephkey_1", secret="ek_test_secret")

    def set_status(self, authorization_id, status):
        self.intents[authorization_id] = replace(self.intents[authorization_id], status=status)


@pytest.fixture
def gateway():
    return FakeGateway()


# --- EMAIL PROVIDER ---

class Outbox:
    def __init__(self):
        self.sent = []
        self.status_code = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.status_code >= 400:
            return httpx.Response(self.status_code, json={"message": "provider down"})
        self.sent.append(json.loads(request.content))
        return httpx.Response(200, json={"id": f"email_{len(self.sent)}"})


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
async def dispatcher(outbox):
    async with httpx.AsyncClient(transport=httpx.MockTransport(outbox.handler)) as client:
        yield NotificationDispatcher(api_key="re_test", sender="Shop <shop@example.com>", client=client)


# --- APPS ---

def _override(app, session_factory, gateway, dispatcher):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher


@pytest.fixture
async def order_client(session_factory, seeded, gateway, dispatcher):
    _override(order_app, session_factory, gateway, dispatcher)
    transport = httpx.ASGITransport(app=order_app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    order_app.dependency_overrides.clear()


@pytest.fixture
async def payment_client(session_factory, seeded, gateway, dispatcher):
    _override(payment_app, session_factory, gateway, dispatcher)
    transport = httpx.ASGITransport(app=payment_app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    payment_app.dependency_overrides.clear()


@pytest.fixture
async def webhook_client(session_factory, seeded, gateway, dispatcher):
    _override(webhook_app, session_factory, gateway, dispatcher)
    transport = httpx.ASGITransport(app=webhook_app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    webhook_app.dependency_overrides.clear()


# --- WEBHOOK PAYLOADS ---

def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header for ``payload``."""
    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def intent_event(event_type: str, order_id: str | None, payment_id: str = "pi_1", event_id: str = "evt_1") -> bytes:
    metadata = {"userId": USER_ID}
    if order_id:
        metadata["orderId"] = order_id
    body = {
        "id": event_id,
        "type": event_type,
        "data": {
            "object": {
                "id": payment_id,
                "object": "payment_intent",
                "amount": 1998,
                "currency": "eur",
                "status": event_type.rsplit(".", 1)[-1],
                "metadata": metadata,
                "payment_method_types": ["card"],
            }
        },
    }
    return json.dumps(body).encode()


