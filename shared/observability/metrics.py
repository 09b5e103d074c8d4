from prometheus_client import Counter, Histogram

# Business Metrics
ecomm_checkout_total = Counter(
    "ecomm_checkout_total",
    "Total checkouts processed",
    ["status"] # Labels: 'success', 'failed'
)

ecomm_checkout_duration_seconds = Histogram(
    "ecomm_checkout_duration_seconds",
    "Checkout duration in seconds"
)

ecomm_saga_compensation_total = Counter(
    "ecomm_saga_compensation_total",
    "Total saga compensations triggered",
    ["step_name"] # Labels: 'create_order', 'open_authorization', etc.
)

ecomm_webhook_events_total = Counter(
    "ecomm_webhook_events_total",
    "Payment webhook events reconciled",
    ["event_type", "outcome"] # outcome: 'applied', 'replayed', 'ignored_terminal', ...
)

ecomm_order_transitions_total = Counter(
    "ecomm_order_transitions_total",
    "Order ledger transition attempts",
    ["trigger", "outcome"]
)

ecomm_notifications_total = Counter(
    "ecomm_notifications_total",
    "Transactional emails attempted",
    ["kind", "status"] # status: 'sent', 'failed', 'skipped'
)
