"""
Prometheus metrics for monitoring the alerting pipeline.

Defines and exposes metrics for:
- Metric sample ingestion
- Alert evaluation latency
- Alert lifecycle transitions
- Notification delivery outcomes

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    start_http_server,
)

from servmon.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class AlertingMetrics:
    """
    Prometheus metrics collector for the servmon alerting pipeline.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_alert_opened("critical")
        metrics.record_notification("discord", "success")
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.samples_ingested = Counter(
            "servmon_samples_ingested_total",
            "Total number of metric samples ingested",
        )

        self.evaluation_errors = Counter(
            "servmon_evaluation_errors_total",
            "Alert evaluations that failed after the sample was stored",
        )

        self.evaluation_latency = Histogram(
            "servmon_evaluation_latency_seconds",
            "Time to evaluate one metric sample against its thresholds",
            buckets=LATENCY_BUCKETS,
        )

        self.alerts_opened = Counter(
            "servmon_alerts_opened_total",
            "Total alerts opened",
            ["severity"],
        )

        self.alerts_resolved = Counter(
            "servmon_alerts_resolved_total",
            "Total alerts resolved",
            ["mode"],  # automatic, manual
        )

        self.alerts_acknowledged = Counter(
            "servmon_alerts_acknowledged_total",
            "Total alerts acknowledged",
        )

        self.notifications = Counter(
            "servmon_notifications_total",
            "Notification delivery attempts",
            ["channel", "kind", "outcome"],  # kind: alert, resolved
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info("Prometheus metrics server started on port %d", port)

    # Convenience methods

    def record_sample(self) -> None:
        self.samples_ingested.inc()

    def record_evaluation(self, latency: float) -> None:
        self.evaluation_latency.observe(latency)

    def record_evaluation_error(self) -> None:
        self.evaluation_errors.inc()

    def record_alert_opened(self, severity: str) -> None:
        self.alerts_opened.labels(severity=severity).inc()

    def record_alert_resolved(self, mode: str) -> None:
        self.alerts_resolved.labels(mode=mode).inc()

    def record_alert_acknowledged(self) -> None:
        self.alerts_acknowledged.inc()

    def record_notification(
        self,
        channel: str,
        outcome: str,
        kind: str = "alert",
    ) -> None:
        """
        Record a notification delivery outcome.

        Args:
            channel: Channel name (discord, webhook, email)
            outcome: success, failure or timeout
            kind: alert or resolved
        """
        self.notifications.labels(channel=channel, kind=kind, outcome=outcome).inc()


# Global metrics instance
_metrics: AlertingMetrics | None = None


def get_metrics() -> AlertingMetrics:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = AlertingMetrics()
    return _metrics
