"""
Best-effort transactional email.

The dispatcher never raises: a failed send is logged and counted and the
caller carries on. Order and payment state are the source of truth, email
is advisory.
"""
from datetime import timedelta
from decimal import Decimal
from html import escape
from typing import Optional

import httpx
import structlog

from shared.config import settings
from shared.errors import NotificationError
from shared.observability import ecomm_notifications_total

from .schemas import ConfirmationLine, OrderConfirmation

logger = structlog.get_logger(__name__)

DELIVERY_WINDOW_DAYS = (2, 5)


def _money(amount: Decimal, currency: str) -> str:
    return f"{Decimal(amount):.2f} {currency.upper()}"


def _address_html(address: dict) -> str:
    parts = [address.get("street"), f"{address.get('postalCode', '')} {address.get('city', '')}".strip(), address.get("country")]
    return "<br>".join(escape(p) for p in parts if p)


def render_order_confirmation(data: OrderConfirmation) -> str:
    rows = "".join(
        "<tr>"
        f"<td>{escape(line.name)}</td>"
        f"<td>{line.quantity}</td>"
        f"<td>{_money(line.price, data.currency)}</td>"
        f"<td>{_money(line.line_total, data.currency)}</td>"
        "</tr>"
        for line in data.items
    )
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto">'
        f"<h1>Order #{escape(data.order_number)} confirmed</h1>"
        f"<p>Hello {escape(data.customer_name)},</p>"
        f"<p>Thank you for your order placed on {data.order_date:%Y-%m-%d}.</p>"
        "<table><tr><th>Product</th><th>Qty</th><th>Price</th><th>Total</th></tr>"
        f"{rows}</table>"
        f"<p>Subtotal: {_money(data.subtotal, data.currency)}<br>"
        f"Shipping: {_money(data.shipping_cost, data.currency)}<br>"
        f"Tax: {_money(data.tax_amount, data.currency)}<br>"
        f"<strong>Total: {_money(data.total_amount, data.currency)}</strong></p>"
        f"<p>Paid by {escape(data.payment_method)}.</p>"
        f"<h3>Shipping address</h3><p>{_address_html(data.shipping_address)}</p>"
        f"<h3>Billing address</h3><p>{_address_html(data.billing_address)}</p>"
        f"<p>Estimated delivery: {escape(data.estimated_delivery)}</p>"
        "</div>"
    )


def build_confirmation(order) -> OrderConfirmation:
    """Email payload for an order that just became CONFIRMED/PAID."""
    first, last = (order.created_at + timedelta(days=d) for d in DELIVERY_WINDOW_DAYS)
    return OrderConfirmation(
        order_number=order.order_number,
        customer_name=order.customer_name,
        order_date=order.created_at,
        items=[
            ConfirmationLine(name=item.product_name, price=item.price, quantity=item.quantity)
            for item in order.items
        ],
        subtotal=order.subtotal,
        shipping_cost=order.shipping_cost,
        tax_amount=order.tax_amount,
        total_amount=order.total_amount,
        currency=order.currency,
        shipping_address=order.shipping_address or {},
        billing_address=order.billing_address or {},
        payment_method=order.payment_method or "card",
        estimated_delivery=f"{first:%d %b} - {last:%d %b %Y}",
    )


class NotificationDispatcher:
    def __init__(
        self,
        api_key: str,
        sender: str,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = settings.RESEND_API_URL,
    ):
        self.api_key = api_key
        self.sender = sender
        self.base_url = base_url.rstrip("/")
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send_order_confirmation(self, email: str, data: OrderConfirmation) -> bool:
        """Send the confirmation email. Returns True when the provider accepted it."""
        log = logger.bind(kind="order_confirmation", order_number=data.order_number)
        if not self.configured:
            log.warning("email_not_configured", to=email)
            ecomm_notifications_total.labels(kind="order_confirmation", status="skipped").inc()
            return False

        try:
            html = render_order_confirmation(data)
            message_id = await self._send(email, f"Order confirmation #{data.order_number}", html)
        except Exception as e:
            log.error("email_send_failed", to=email, error=str(e), error_type=type(e).__name__)
            ecomm_notifications_total.labels(kind="order_confirmation", status="failed").inc()
            return False

        log.info("email_sent", to=email, message_id=message_id)
        ecomm_notifications_total.labels(kind="order_confirmation", status="sent").inc()
        return True

    async def notify_order_confirmed(self, order) -> bool:
        try:
            data = build_confirmation(order)
        except Exception as e:
            logger.error("email_payload_invalid", order_id=order.id, error=str(e), error_type=type(e).__name__)
            ecomm_notifications_total.labels(kind="order_confirmation", status="failed").inc()
            return False
        return await self.send_order_confirmation(order.customer_email, data)

    async def _send(self, to: str, subject: str, html: str) -> Optional[str]:
        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self._client is not None:
            response = await self._client.post(f"{self.base_url}/emails", json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=settings.EMAIL_TIMEOUT_SECONDS) as client:
                response = await client.post(f"{self.base_url}/emails", json=payload, headers=headers)

        if response.status_code >= 400:
            raise NotificationError(f"Email provider returned {response.status_code}: {response.text[:200]}")
        return response.json().get("id")


def get_notification_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency."""
    return NotificationDispatcher(api_key=settings.RESEND_API_KEY, sender=settings.FROM_EMAIL)
