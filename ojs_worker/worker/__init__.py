"""
Worker module.
Contains the worker engine and the handler registry.
"""

from ojs_worker.worker.handlers import HandlerRegistry, JobHandler
from ojs_worker.worker.main import Worker, run, run_async

__all__ = [
    "Worker",
    "run",
    "run_async",
    "HandlerRegistry",
    "JobHandler",
]
