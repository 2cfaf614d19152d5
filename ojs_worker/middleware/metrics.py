"""
Metrics middleware.

Reports job start, completion and failure to a MetricsRecorder. The
default recorder feeds the worker's Prometheus collector; implement the
protocol to forward to StatsD, Datadog, or anything else.
"""

import time
from typing import Any, Protocol

from ojs_worker.middleware.chain import CallNext
from ojs_worker.observability.metrics import MetricsCollector, get_metrics
from ojs_worker.types.job import JobContext


class MetricsRecorder(Protocol):
    """Receiver of per-job execution metrics."""

    def job_started(self, job_type: str, queue: str) -> None: ...

    def job_completed(self, job_type: str, queue: str, duration_seconds: float) -> None: ...

    def job_failed(
        self,
        job_type: str,
        queue: str,
        duration_seconds: float,
        error: BaseException,
    ) -> None: ...


class PrometheusRecorder:
    """MetricsRecorder backed by the Prometheus metrics collector."""

    def __init__(self, collector: MetricsCollector | None = None):
        self._collector = collector or get_metrics()

    def job_started(self, job_type: str, queue: str) -> None:
        self._collector.record_job_started(job_type, queue)

    def job_completed(self, job_type: str, queue: str, duration_seconds: float) -> None:
        self._collector.record_job_completed(job_type, queue, "completed", duration_seconds)

    def job_failed(
        self,
        job_type: str,
        queue: str,
        duration_seconds: float,
        error: BaseException,
    ) -> None:
        self._collector.record_job_completed(job_type, queue, "failed", duration_seconds)


class MetricsMiddleware:
    """
    Record execution metrics for every job.

    Example:
        worker.use(MetricsMiddleware(), name="metrics")
    """

    def __init__(self, recorder: MetricsRecorder | None = None):
        self._recorder = recorder or PrometheusRecorder()

    async def __call__(self, ctx: JobContext, call_next: CallNext) -> Any:
        job = ctx.job
        self._recorder.job_started(job.type, job.queue)

        start = time.monotonic()
        try:
            result = await call_next()
        except Exception as e:
            self._recorder.job_failed(job.type, job.queue, time.monotonic() - start, e)
            raise

        self._recorder.job_completed(job.type, job.queue, time.monotonic() - start)
        return result
