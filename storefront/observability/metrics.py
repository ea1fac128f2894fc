"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from storefront.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    TRIGGER = "trigger"
    PRODUCT_ID = "product_id"
    ERROR_TYPE = "error_type"


class StorefrontMetrics:
    """
    Centralized metrics for the storefront API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Payment intents created (per product)
    - Reconciliations (per trigger and outcome) and consistency errors
    - Access checks (granted / denied reasons)
    """

    def __init__(self) -> None:
        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "storefront_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "storefront_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "storefront_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "storefront_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Payment Metrics
        # ====================================================================
        self.payment_intents_created_total = Counter(
            "storefront_payment_intents_created_total",
            "Total payment intents created at the gateway",
            [MetricLabels.PRODUCT_ID],
        )

        self.reconciliations_total = Counter(
            "storefront_reconciliations_total",
            "Reconciliation attempts by trigger and outcome",
            [MetricLabels.TRIGGER, MetricLabels.OUTCOME],
        )

        self.reconciliation_errors_total = Counter(
            "storefront_reconciliation_errors_total",
            "Ledger consistency errors (catalog drift, paid but unfulfilled)",
            [MetricLabels.ERROR_TYPE],
        )

        self.gateway_call_duration_seconds = Histogram(
            "storefront_gateway_call_duration_seconds",
            "Payment gateway call duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Access Metrics
        # ====================================================================
        self.access_checks_total = Counter(
            "storefront_access_checks_total",
            "Access verifications by result",
            ["granted", "reason"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "storefront_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_reconciliation(self, trigger: str, outcome: str) -> None:
        """Record a reconciliation attempt."""
        self.reconciliations_total.labels(trigger=trigger, outcome=outcome).inc()

    def record_reconciliation_error(self, error_type: str) -> None:
        """Record a ledger consistency error."""
        self.reconciliation_errors_total.labels(error_type=error_type).inc()

    def record_access_check(self, granted: bool, reason: str | None = None) -> None:
        """Record an access verification."""
        self.access_checks_total.labels(granted=str(granted), reason=reason or "ok").inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = StorefrontMetrics()
