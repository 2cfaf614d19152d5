"""
In-process retry middleware with capped exponential backoff.

This retries inside a single delivery, before the job is nacked. The
server's own retry policy still applies to the final nack.
"""

import asyncio
import logging
import random
from typing import Any

from ojs_worker.middleware.chain import CallNext
from ojs_worker.types.job import JobContext

logger = logging.getLogger(__name__)


class RetryMiddleware:
    """
    Retry the inner chain when it raises.

    Example:
        worker.use(RetryMiddleware(max_retries=3), name="retry")
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 30.0,
        jitter: bool = True,
    ):
        """
        Initialize the retry middleware.

        Args:
            max_retries: Retries after the first attempt.
            base_delay: Delay in seconds before the first retry; doubles each time.
            max_delay: Upper bound on any single delay.
            jitter: Scale each delay by a random factor in [0.5, 1.0).
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter

    def delay_for(self, attempt: int) -> float:
        """Backoff in seconds after the given zero-based attempt."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random() * 0.5
        return delay

    async def __call__(self, ctx: JobContext, call_next: CallNext) -> Any:
        attempt = 0
        while True:
            try:
                return await call_next()
            except Exception as e:
                if attempt >= self.max_retries:
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    "Retrying job after error",
                    extra={
                        "job_id": ctx.job.id,
                        "attempt": attempt + 1,
                        "delay": round(delay, 3),
                        "error": str(e),
                    },
                )
                await asyncio.sleep(delay)
                attempt += 1
