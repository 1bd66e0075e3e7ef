"""
Metrics Collection with Prometheus.

Exposes marketplace and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from qa_engine.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ACTION = "action"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class MarketplaceMetrics:
    """
    Centralized metrics for the Q&A marketplace engine.

    Covers:
    - HTTP requests (rate, duration, in flight)
    - State transitions (action, outcome)
    - Payment provider calls (operation, success)
    - Sweep outcomes
    - Sanitizer flags, fraud signals and tier gate blocks
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "qa_marketplace_service",
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
            "qa_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "qa_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "qa_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Lifecycle Metrics
        # ====================================================================
        self.transitions_total = Counter(
            "qa_transitions_total",
            "Question state transitions attempted",
            [MetricLabels.ACTION, MetricLabels.OUTCOME],
        )

        self.questions_submitted_total = Counter(
            "qa_questions_submitted_total",
            "Questions submitted",
            ["pricing_mode", "is_free"],
        )

        # ====================================================================
        # Payment Metrics
        # ====================================================================
        self.payment_calls_total = Counter(
            "qa_payment_calls_total",
            "Payment provider calls",
            [MetricLabels.OPERATION, "success"],
        )

        self.payment_amount_cents = Histogram(
            "qa_payment_amount_cents",
            "Payment amounts in cents",
            [MetricLabels.OPERATION],
            buckets=(100, 500, 1000, 1500, 2500, 4500, 7500, 10000),
        )

        # ====================================================================
        # Sweep Metrics
        # ====================================================================
        self.sweep_rows_total = Counter(
            "qa_sweep_rows_total",
            "Rows processed by the background sweeps",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Abuse Metrics
        # ====================================================================
        self.sanitizer_flags_total = Counter(
            "qa_sanitizer_flags_total",
            "Contact details removed from messages",
            ["flag_type"],
        )

        self.fraud_signals_total = Counter(
            "qa_fraud_signals_total",
            "Fraud signals written to the activity log",
            ["signal", "severity"],
        )

        self.tier_gate_blocks_total = Counter(
            "qa_tier_gate_blocks_total",
            "Asker messages blocked pending a tier upgrade",
            ["next_tier"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "qa_errors_total",
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

    def record_transition(self, action: str, outcome: str) -> None:
        """Record a state transition attempt."""
        self.transitions_total.labels(action=action, outcome=outcome).inc()

    def record_payment(self, operation: str, success: bool, amount_cents: int | None = None) -> None:
        """Record a payment provider call."""
        self.payment_calls_total.labels(operation=operation, success=str(success)).inc()
        if success and amount_cents is not None:
            self.payment_amount_cents.labels(operation=operation).observe(amount_cents)

    def record_sweep(
        self, released: int, refunded: int, expired: int, auto_accepted: int, failed: int
    ) -> None:
        """Record sweep outcome counts."""
        for outcome, count in (
            ("released", released),
            ("refunded", refunded),
            ("expired", expired),
            ("auto_accepted", auto_accepted),
            ("failed", failed),
        ):
            if count:
                self.sweep_rows_total.labels(outcome=outcome).inc(count)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = MarketplaceMetrics()
