"""
Timeout middleware: bound the execution time of the inner chain.
"""

import asyncio
from typing import Any

from ojs_worker.middleware.chain import CallNext
from ojs_worker.types.job import JobContext


class JobTimeoutError(Exception):
    """Raised when a job exceeds its execution timeout."""

    def __init__(self, timeout_seconds: float, job_id: str):
        super().__init__(f"Job {job_id} timed out after {timeout_seconds}s")
        self.timeout_seconds = timeout_seconds
        self.job_id = job_id


class TimeoutMiddleware:
    """
    Cancel the inner chain once it runs longer than the given seconds.

    Cancellation is delivered at the handler's next await; a handler
    blocking the event loop without awaiting cannot be interrupted.

    Example:
        worker.use(TimeoutMiddleware(seconds=30), name="timeout")
    """

    def __init__(self, seconds: float):
        self.seconds = seconds

    async def __call__(self, ctx: JobContext, call_next: CallNext) -> Any:
        try:
            async with asyncio.timeout(self.seconds):
                return await call_next()
        except TimeoutError as e:
            raise JobTimeoutError(timeout_seconds=self.seconds, job_id=ctx.job.id) from e
