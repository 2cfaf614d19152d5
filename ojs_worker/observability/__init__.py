"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from ojs_worker.observability.logging import (
    add_worker_context,
    bind_context,
    get_logger,
    setup_logging,
    unbind_context,
)
from ojs_worker.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from ojs_worker.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "get_logger",
    "add_worker_context",
    "bind_context",
    "unbind_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
]
