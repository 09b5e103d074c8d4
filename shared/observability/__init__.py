from .setup import setup_observability
from .metrics import (
    ecomm_checkout_total,
    ecomm_checkout_duration_seconds,
    ecomm_saga_compensation_total,
    ecomm_webhook_events_total,
    ecomm_order_transitions_total,
    ecomm_notifications_total,
)
