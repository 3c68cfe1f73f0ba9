"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class PortalMetrics:
    """
    Centralized metrics for the portal API.

    Covers:
    - HTTP requests (rate, duration, in flight)
    - Wallet and credit ledger movements
    - Workflow runs and webhook dispatch outcomes
    - Commission transitions and payouts
    - Outbox deliveries
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info("portal_service", "Service information")
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
            "portal_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "portal_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "portal_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.wallet_movements_total = Counter(
            "portal_wallet_movements_total",
            "Wallet transactions recorded",
            ["type", "reason"],
        )

        self.wallet_amount_minor = Histogram(
            "portal_wallet_amount_minor",
            "Wallet movement amounts in minor units",
            buckets=(1000, 5000, 10000, 50000, 100000, 500000, 1000000, 5000000),
        )

        self.credit_purchases_total = Counter(
            "portal_credit_purchases_total",
            "Credit purchases by review status",
            ["status"],
        )

        self.credits_consumed_total = Counter(
            "portal_credits_consumed_total",
            "AI credits consumed by workflow runs",
        )

        # ====================================================================
        # Workflow Metrics
        # ====================================================================
        self.workflow_runs_total = Counter(
            "portal_workflow_runs_total",
            "Workflow runs recorded",
            ["status", "simulated"],
        )

        self.workflow_rejections_total = Counter(
            "portal_workflow_rejections_total",
            "Workflow runs refused by a precondition",
            ["reason"],
        )

        self.webhook_dispatch_total = Counter(
            "portal_webhook_dispatch_total",
            "Workflow webhook dispatch attempts",
            [MetricLabels.OUTCOME],
        )

        self.webhook_dispatch_duration_seconds = Histogram(
            "portal_webhook_dispatch_duration_seconds",
            "Workflow webhook round trip duration",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Commission Metrics
        # ====================================================================
        self.commission_transitions_total = Counter(
            "portal_commission_transitions_total",
            "Commission status transitions",
            ["to_status"],
        )

        self.commission_amount_minor = Histogram(
            "portal_commission_amount_minor",
            "Commission amounts in minor units",
            buckets=(10000, 50000, 100000, 200000, 500000, 1000000, 5000000),
        )

        self.payouts_total = Counter(
            "portal_payouts_total",
            "Partner payout requests by status",
            ["status"],
        )

        # ====================================================================
        # Outbox Metrics
        # ====================================================================
        self.outbox_deliveries_total = Counter(
            "portal_outbox_deliveries_total",
            "Outbox delivery attempts",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "portal_errors_total",
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

    def record_wallet_movement(self, tx_type: str, reason: str, amount_minor: int) -> None:
        """Record a wallet credit or debit."""
        self.wallet_movements_total.labels(type=tx_type, reason=reason).inc()
        self.wallet_amount_minor.observe(amount_minor)

    def record_credit_purchase(self, status: str) -> None:
        """Record a credit purchase by its ledger status."""
        self.credit_purchases_total.labels(status=status).inc()

    def record_workflow_run(self, status: str, simulated: bool, credits: int) -> None:
        """Record a completed workflow run."""
        self.workflow_runs_total.labels(status=status, simulated=str(simulated)).inc()
        if credits:
            self.credits_consumed_total.inc(credits)

    def record_workflow_rejection(self, reason: str) -> None:
        """Record a run refused before dispatch."""
        self.workflow_rejections_total.labels(reason=reason).inc()

    def record_webhook_dispatch(self, outcome: str, duration: float) -> None:
        """Record a webhook dispatch attempt."""
        self.webhook_dispatch_total.labels(outcome=outcome).inc()
        self.webhook_dispatch_duration_seconds.observe(duration)

    def record_commission_transition(self, to_status: str, amount_minor: int | None = None) -> None:
        """Record a commission status change."""
        self.commission_transitions_total.labels(to_status=to_status).inc()
        if amount_minor is not None:
            self.commission_amount_minor.observe(amount_minor)

    def record_payout(self, status: str) -> None:
        """Record a payout request status change."""
        self.payouts_total.labels(status=status).inc()

    def record_outbox_delivery(self, outcome: str) -> None:
        """Record an outbox delivery attempt."""
        self.outbox_deliveries_total.labels(outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = PortalMetrics()

