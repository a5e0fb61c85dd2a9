"""
Prometheus metrics for the shop backend.

Tracks:
- Orders created and status changes
- Payments created and verification outcomes
- Webhook events by gateway and result
- HTTP request duration
"""
from decimal import Decimal

from prometheus_client import Counter, Histogram

# Order metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total number of orders created",
)

order_value_kes = Histogram(
    "order_value_kes",
    "Order totals in shillings",
    buckets=(500, 1000, 2000, 5000, 10000, 20000, 50000, 100000),
)

order_status_changes_total = Counter(
    "order_status_changes_total",
    "Total order status changes",
    ["to_status"],
)

# Payment metrics
payments_created_total = Counter(
    "payments_created_total",
    "Total number of payments created",
    ["currency"],
)

payment_verifications_total = Counter(
    "payment_verifications_total",
    "Total payment verification attempts",
    ["result"],  # verified, already_verified, rejected, error
)

payment_verification_duration_seconds = Histogram(
    "payment_verification_duration_seconds",
    "Payment verification duration in seconds",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Webhook metrics
webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["gateway", "event_type", "status"],  # applied, failed, duplicate, ignored, rejected
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["gateway"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# HTTP metrics
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "status_code"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_order_created(total: Decimal) -> None:
        """Record a new order and its value."""
        orders_created_total.inc()
        order_value_kes.observe(float(total))

    @staticmethod
    def record_order_status_change(to_status: str) -> None:
        order_status_changes_total.labels(to_status=to_status).inc()

    @staticmethod
    def record_payment_created(currency: str) -> None:
        payments_created_total.labels(currency=currency).inc()

    @staticmethod
    def record_verification(result: str, duration_seconds: float) -> None:
        """Record a verification attempt and how long it took."""
        payment_verifications_total.labels(result=result).inc()
        payment_verification_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_webhook_event(
        gateway: str, event_type: str, status: str, duration_seconds: float
    ) -> None:
        """Record webhook event processing."""
        webhook_events_processed_total.labels(
            gateway=gateway, event_type=event_type or "unknown", status=status
        ).inc()
        webhook_processing_duration_seconds.labels(gateway=gateway).observe(duration_seconds)

    @staticmethod
    def record_http_request(method: str, status_code: int, duration_seconds: float) -> None:
        http_request_duration_seconds.labels(
            method=method, status_code=str(status_code)
        ).observe(duration_seconds)


# Export singleton instance
metrics = MetricsCollector()
