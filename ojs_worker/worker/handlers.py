"""
Job handler registry.

Job handlers must be idempotent - the server delivers at least once, so
a handler may run more than once for the same job id after a missed
heartbeat or a lost ack.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ojs_worker.types.job import JobContext

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[Any]]


class HandlerRegistry:
    """Maps job type strings to handlers. One registry per worker."""

    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}

    def register(self, job_type: str, handler: JobHandler) -> JobHandler:
        """
        Register a handler for a job type, replacing any previous one.

        Args:
            job_type: Dot-namespaced job type, e.g. "email.send".
            handler: Async callable receiving a JobContext. Its return value
                is sent as the job result.

        Returns:
            The handler, unchanged.

        Raises:
            TypeError: If handler is not callable.
        """
        if not callable(handler):
            raise TypeError(f"handler for '{job_type}' must be callable")

        self._handlers[str(job_type)] = handler
        logger.info(f"Registered handler for job type: {job_type}")
        return handler

    def handler(self, job_type: str) -> Callable[[JobHandler], JobHandler]:
        """
        Decorator form of register().

        Example:
            @registry.handler("email.send")
            async def send_email(ctx: JobContext) -> dict:
                ...
        """
        def decorator(handler: JobHandler) -> JobHandler:
            return self.register(job_type, handler)
        return decorator

    def get(self, job_type: str) -> JobHandler | None:
        """Get the handler for a job type, or None if not registered."""
        return self._handlers.get(job_type)

    def list_handlers(self) -> list[str]:
        """List all registered job types."""
        return list(self._handlers.keys())

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers
