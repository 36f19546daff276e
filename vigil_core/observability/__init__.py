"""Observability package for logging and metrics."""

from vigil_core.observability.logging import (
    StructuredLogger,
    JsonFormatter,
    LogContext,
    get_logger,
    configure_logging,
)
from vigil_core.observability.metrics import (
    MetricsCollector,
    collect_job_gauges,
    get_metrics,
)
from vigil_core.observability.sink import OperationalSink

__all__ = [
    "StructuredLogger",
    "JsonFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "MetricsCollector",
    "collect_job_gauges",
    "get_metrics",
    "OperationalSink",
]
