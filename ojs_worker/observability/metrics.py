"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from ojs_worker.constants import (
    METRIC_ACTIVE_JOBS,
    METRIC_HEARTBEATS,
    METRIC_JOB_DURATION,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_FETCHED,
    METRIC_JOBS_STARTED,
    METRIC_TRANSPORT_ERRORS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the OJS worker.

    Collects metrics for:
    - Jobs fetched, started and completed
    - Job execution duration
    - Active jobs
    - Heartbeats and transport errors
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        # Jobs fetched counter
        self.jobs_fetched = Counter(
            METRIC_JOBS_FETCHED,
            "Total number of jobs claimed from the server",
            ["worker_id"],
            registry=self._registry,
        )

        # Jobs started counter
        self.jobs_started = Counter(
            METRIC_JOBS_STARTED,
            "Total number of jobs that entered the middleware chain",
            ["job_type", "queue"],
            registry=self._registry,
        )

        # Jobs completed counter
        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of jobs finished",
            ["job_type", "queue", "status"],
            registry=self._registry,
        )

        # Job duration histogram
        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["job_type", "queue", "status"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        # Active jobs gauge
        self.active_jobs = Gauge(
            METRIC_ACTIVE_JOBS,
            "Number of jobs currently being executed",
            ["worker_id"],
            registry=self._registry,
        )

        # Heartbeats counter
        self.heartbeats = Counter(
            METRIC_HEARTBEATS,
            "Total number of heartbeat calls sent",
            ["worker_id"],
            registry=self._registry,
        )

        # Transport errors counter
        self.transport_errors = Counter(
            METRIC_TRANSPORT_ERRORS,
            "Total number of failed transport calls",
            ["operation", "error"],
            registry=self._registry,
        )

    def record_jobs_fetched(self, worker_id: str, count: int) -> None:
        """Record jobs claimed by a fetch."""
        self.jobs_fetched.labels(worker_id=worker_id).inc(count)

    def record_job_started(self, job_type: str, queue: str) -> None:
        """Record a job entering execution."""
        self.jobs_started.labels(job_type=job_type, queue=queue).inc()

    def record_job_completed(
        self,
        job_type: str,
        queue: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record a job completion."""
        self.jobs_completed.labels(job_type=job_type, queue=queue, status=status).inc()
        self.job_duration.labels(job_type=job_type, queue=queue, status=status).observe(
            duration_seconds
        )

    def set_active_jobs(self, worker_id: str, count: int) -> None:
        """Update the number of active jobs for a worker."""
        self.active_jobs.labels(worker_id=worker_id).set(count)

    def record_heartbeat(self, worker_id: str) -> None:
        """Record a heartbeat call."""
        self.heartbeats.labels(worker_id=worker_id).inc()

    def record_transport_error(self, operation: str, error: str) -> None:
        """Record a failed transport call."""
        self.transport_errors.labels(operation=operation, error=error).inc()

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
