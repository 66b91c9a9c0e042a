"""Observability layer - logging and metrics."""

from pondwatch.observability.logging import setup_logging
from pondwatch.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
