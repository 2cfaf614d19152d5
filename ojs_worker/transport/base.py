"""
Transport interface consumed by the worker.
"""

from typing import Any, Protocol

from ojs_worker.types.api import JobError


class Transport(Protocol):
    """
    The four worker calls against an OJS server.

    Implementations raise OJSError subclasses on failure; the worker
    catches and logs them.
    """

    async def fetch(self, queues: list[str], batch_size: int) -> list[dict[str, Any]]:
        """Claim up to batch_size jobs and return their envelopes."""
        ...

    async def ack(self, job_id: str, result: Any = None) -> None:
        """Report a job as completed."""
        ...

    async def nack(self, job_id: str, error: JobError) -> None:
        """Report a job as failed."""
        ...

    async def heartbeat(self, job_ids: list[str]) -> None:
        """Extend the leases of the given jobs."""
        ...

    async def close(self) -> None:
        """Release any held connections."""
        ...
