"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from licensing.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class LicensingMetrics:
    """
    Centralized metrics for the licensing API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Checkouts and gateway calls
    - Webhook deliveries by outcome
    - License issuance and device activation results
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "licensing_service",
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
            "licensing_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "licensing_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "licensing_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Payment Metrics
        # ====================================================================
        self.checkouts_total = Counter(
            "licensing_checkouts_total",
            "Checkout attempts",
            ["success", MetricLabels.ERROR_TYPE],
        )

        self.gateway_request_duration_seconds = Histogram(
            "licensing_gateway_request_duration_seconds",
            "Payment gateway request duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.webhooks_total = Counter(
            "licensing_webhooks_total",
            "Payment webhook deliveries by outcome",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # License Metrics
        # ====================================================================
        self.licenses_issued_total = Counter(
            "licensing_licenses_issued_total",
            "Licenses created from completed purchases",
            ["app_slug"],
        )

        self.license_key_collisions_total = Counter(
            "licensing_license_key_collisions_total",
            "Generated license keys that were already taken",
        )

        self.activations_total = Counter(
            "licensing_activations_total",
            "Device activation requests by result",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "licensing_errors_total",
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

    def record_checkout(self, success: bool, error_type: str | None = None) -> None:
        """Record checkout metrics."""
        self.checkouts_total.labels(success=str(success), error_type=error_type or "none").inc()

    def record_gateway_request(self, operation: str, duration: float) -> None:
        """Record gateway call duration."""
        self.gateway_request_duration_seconds.labels(operation=operation).observe(duration)

    def record_webhook(self, outcome: str) -> None:
        """Record webhook delivery outcome."""
        self.webhooks_total.labels(outcome=outcome).inc()

    def record_license_issued(self, app_slug: str) -> None:
        """Record a newly issued license."""
        self.licenses_issued_total.labels(app_slug=app_slug).inc()

    def record_license_key_collision(self) -> None:
        """Record a generated license key that was already taken."""
        self.license_key_collisions_total.inc()

    def record_activation(self, outcome: str) -> None:
        """Record device activation result."""
        self.activations_total.labels(outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = LicensingMetrics()
