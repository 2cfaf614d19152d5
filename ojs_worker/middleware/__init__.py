"""
Middleware module.
Contains the middleware chain and the built-in middleware.
"""

from ojs_worker.middleware.chain import (
    CallNext,
    Middleware,
    MiddlewareChain,
    MiddlewareEntry,
)
from ojs_worker.middleware.logging import LoggingMiddleware
from ojs_worker.middleware.metrics import (
    MetricsMiddleware,
    MetricsRecorder,
    PrometheusRecorder,
)
from ojs_worker.middleware.retry import RetryMiddleware
from ojs_worker.middleware.timeout import JobTimeoutError, TimeoutMiddleware

__all__ = [
    "CallNext",
    "Middleware",
    "MiddlewareChain",
    "MiddlewareEntry",
    "LoggingMiddleware",
    "MetricsMiddleware",
    "MetricsRecorder",
    "PrometheusRecorder",
    "RetryMiddleware",
    "JobTimeoutError",
    "TimeoutMiddleware",
]
