"""
Logging middleware: job start, completion and failure with timing.
"""

import time
from typing import Any

import structlog

from ojs_worker.middleware.chain import CallNext
from ojs_worker.observability.logging import get_logger
from ojs_worker.types.job import JobContext


class LoggingMiddleware:
    """
    Log every job passing through the chain.

    Example:
        worker.use(LoggingMiddleware(), name="logging")
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None):
        self._logger = logger or get_logger(__name__)

    async def __call__(self, ctx: JobContext, call_next: CallNext) -> Any:
        job = ctx.job
        log = self._logger.bind(job_id=job.id, job_type=job.type, queue=job.queue)
        log.debug("Job started", attempt=job.attempt)

        start = time.monotonic()
        try:
            result = await call_next()
        except Exception as e:
            log.error(
                "Job failed",
                duration_ms=round((time.monotonic() - start) * 1000, 2),
                error=str(e),
            )
            raise

        log.info("Job completed", duration_ms=round((time.monotonic() - start) * 1000, 2))
        return result
