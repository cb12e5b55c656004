"""Observability layer - logging and metrics."""

from servmon.observability.logging import setup_logging
from servmon.observability.metrics import AlertingMetrics, get_metrics

__all__ = ["setup_logging", "AlertingMetrics", "get_metrics"]
