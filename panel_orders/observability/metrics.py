"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

import time
from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from panel_orders.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    ORDER_TYPE = "order_type"
    ERROR_KIND = "error_kind"
    OUTCOME = "outcome"


class OrderMetrics:
    """
    Centralized metrics for the Panel Orders API.

    Covers:
    - HTTP requests (rate, duration, in-flight)
    - Orders created (rate, payable amount) and rejected (by error kind)
    - Close-order task enqueue results and close outcomes
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "panel_orders_service",
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
            "panel_orders_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "panel_orders_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "panel_orders_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Order Metrics
        # ====================================================================
        self.orders_created_total = Counter(
            "panel_orders_orders_created_total",
            "Total orders created",
            [MetricLabels.ORDER_TYPE],
        )

        self.order_amount_minor = Histogram(
            "panel_orders_order_amount_minor",
            "Final payable order amounts in minor units",
            [MetricLabels.ORDER_TYPE],
            buckets=(0, 100, 500, 1000, 2500, 5000, 10000, 25000, 50000, 100000, 1000000),
        )

        self.order_rejections_total = Counter(
            "panel_orders_order_rejections_total",
            "Total order requests refused or failed",
            [MetricLabels.ERROR_KIND, MetricLabels.ORDER_TYPE],
        )

        # ====================================================================
        # Expiry Metrics
        # ====================================================================
        self.close_order_enqueue_total = Counter(
            "panel_orders_close_order_enqueue_total",
            "Close-order task enqueue attempts",
            ["success"],
        )

        self.orders_closed_total = Counter(
            "panel_orders_orders_closed_total",
            "Close-order consumer results",
            [MetricLabels.OUTCOME],
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

    def record_order_created(self, order_type: str, amount_minor: int) -> None:
        self.orders_created_total.labels(order_type=order_type).inc()
        self.order_amount_minor.labels(order_type=order_type).observe(amount_minor)

    def record_order_rejected(self, error_kind: str, order_type: str) -> None:
        self.order_rejections_total.labels(error_kind=error_kind, order_type=order_type).inc()

    def record_close_enqueue(self, success: bool) -> None:
        self.close_order_enqueue_total.labels(success=str(success)).inc()

    def record_order_closed(self, outcome: str) -> None:
        self.orders_closed_total.labels(outcome=outcome).inc()


# Global metrics instance
metrics = OrderMetrics()


class track_http_request:
    """
    Context manager for tracking HTTP requests.

    Usage:
        with track_http_request("/v1/orders/purchase", "POST") as tracker:
            # ... process request
            tracker.set_status_code(201)
    """

    def __init__(self, endpoint: str, method: str) -> None:
        self.endpoint = endpoint
        self.method = method
        self.status_code = 200
        self.start_time: float = 0.0

    def set_status_code(self, status_code: int) -> None:
        """Set the response status code."""
        self.status_code = status_code

    def __enter__(self) -> "track_http_request":
        """Start tracking."""
        self.start_time = time.time()
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).inc()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Record metrics."""
        duration = time.time() - self.start_time
        if exc_type is not None:
            self.status_code = 500  # Default to 500 on exception
        metrics.record_http_request(self.endpoint, self.method, self.status_code, duration)
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).dec()
