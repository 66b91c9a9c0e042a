"""
Prometheus metrics for the alert pipeline.

Defines and exposes metrics for:
- Draft generation and processed alert volume
- Duplicate suppression
- Pipeline errors by category
- Notification delivery per channel
- Processing cycle latency

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    start_http_server,
)

from pondwatch.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the pondwatch alert pipeline.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.alerts_processed.labels(severity="high").inc()
        metrics.cycle_latency.labels(trigger="poll").observe(0.02)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.drafts_generated = Counter(
            "pondwatch_alert_drafts_total",
            "Total alert drafts generated from readings",
            ["parameter"],
        )

        self.alerts_processed = Counter(
            "pondwatch_alerts_processed_total",
            "Total alerts that survived the pipeline",
            ["severity"],
        )

        self.duplicates_suppressed = Counter(
            "pondwatch_alert_duplicates_suppressed_total",
            "Total drafts suppressed by the deduplication window",
            ["parameter"],
        )

        self.pipeline_errors = Counter(
            "pondwatch_alert_pipeline_errors_total",
            "Total recoverable pipeline errors",
            ["error_type"],
        )

        self.notifications_sent = Counter(
            "pondwatch_notifications_sent_total",
            "Total notifications delivered",
            ["channel"],
        )

        self.cycle_latency = Histogram(
            "pondwatch_alert_cycle_latency_seconds",
            "Time to run one processing cycle",
            ["trigger"],
            buckets=LATENCY_BUCKETS,
        )

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

    def record_cycle(
        self,
        trigger: str,
        processed_severities: list[str],
        suppressed_parameters: list[str],
        error_types: list[str],
        channels: list[str],
        latency: float,
    ) -> None:
        """
        Record the outcome of one processing cycle.

        Args:
            trigger: What started the cycle (poll, push, manual)
            processed_severities: Severity of each processed alert
            suppressed_parameters: Parameter of each suppressed draft
            error_types: Type of each recorded pipeline error
            channels: Channel name of each delivered notification
            latency: Cycle duration in seconds
        """
        for severity in processed_severities:
            self.alerts_processed.labels(severity=severity).inc()
        for parameter in suppressed_parameters:
            self.duplicates_suppressed.labels(parameter=parameter).inc()
        for error_type in error_types:
            self.pipeline_errors.labels(error_type=error_type).inc()
        for channel in channels:
            self.notifications_sent.labels(channel=channel).inc()
        self.cycle_latency.labels(trigger=trigger).observe(latency)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
