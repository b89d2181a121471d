"""
Prometheus metrics for checkout monitoring.

Tracks:
- Checkout requests by outcome
- QIWI API calls and errors by operation
- Payment notifications by bill status
- Payout outcomes and amounts
- Payout lock acquisitions
"""
from prometheus_client import Counter, Histogram

# Checkout metrics
checkout_requests_total = Counter(
    "checkout_requests_total",
    "Total number of checkout requests",
    ["status"],  # created, failed
)

checkout_duration_seconds = Histogram(
    "checkout_duration_seconds",
    "Checkout processing duration in seconds",
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# QIWI API metrics
qiwi_api_requests_total = Counter(
    "qiwi_api_requests_total",
    "Total QIWI API requests",
    ["operation", "status"],  # operation: create_bill, cross_rates, etc.
)

qiwi_api_errors_total = Counter(
    "qiwi_api_errors_total",
    "Total QIWI API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

qiwi_api_duration_seconds = Histogram(
    "qiwi_api_duration_seconds",
    "QIWI API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Notification metrics
notifications_received_total = Counter(
    "notifications_received_total",
    "Total payment notifications received",
    ["bill_status", "outcome"],  # outcome: stored, invalid_signature
)

# Payout metrics
payouts_total = Counter(
    "payouts_total",
    "Total payout attempts by outcome",
    ["status"],
)

payout_amount_rub = Histogram(
    "payout_amount_rub",
    "Net payout amounts in RUB",
    buckets=(10, 50, 100, 500, 1000, 5000, 10000, 50000, 100000),
)

# Lock metrics
bill_lock_acquisitions_total = Counter(
    "bill_lock_acquisitions_total",
    "Total payout lock acquisitions",
    ["status"],  # acquired, failed
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_checkout(status: str, duration_seconds: float) -> None:
        """Record a checkout request."""
        checkout_requests_total.labels(status=status).inc()
        checkout_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_qiwi_api_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record QIWI API call."""
        qiwi_api_requests_total.labels(operation=operation, status=status).inc()
        qiwi_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_qiwi_api_error(error_type: str) -> None:
        """Record QIWI API error."""
        qiwi_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def record_notification(bill_status: str, outcome: str) -> None:
        """Record a payment notification."""
        notifications_received_total.labels(bill_status=bill_status, outcome=outcome).inc()

    @staticmethod
    def record_payout(status: str, net_amount: float = 0) -> None:
        """Record a payout attempt."""
        payouts_total.labels(status=status).inc()
        if net_amount > 0:
            payout_amount_rub.observe(net_amount)

    @staticmethod
    def record_bill_lock(status: str) -> None:
        """Record payout lock acquisition."""
        bill_lock_acquisitions_total.labels(status=status).inc()


# Export singleton instance
metrics = MetricsCollector()
