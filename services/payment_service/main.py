"""
Payment sub-apps.

``payment_app`` carries the customer-facing payment routes; ``webhook_app``
receives processor callbacks and is mounted separately so it stays outside
the session-authenticated surface.
"""
from fastapi import FastAPI

from shared.errors import register_exception_handlers
from shared.observability.setup import setup_observability

from .router import public_router, router, webhook_router


payment_app = FastAPI(title="Payment Service", version="2.0.0")

# Structured logs, OTLP traces and /metrics
setup_observability(payment_app, "payment_service")
register_exception_handlers(payment_app)

payment_app.include_router(router)
payment_app.include_router(public_router)


webhook_app = FastAPI(title="Payment Webhooks", version="2.0.0")

setup_observability(webhook_app, "webhook_service")
register_exception_handlers(webhook_app)

webhook_app.include_router(webhook_router)
webhook_app.include_router(public_router)
