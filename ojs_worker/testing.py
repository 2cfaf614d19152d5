"""
In-memory transport for testing workers without an OJS server.

Construct one per test and pass it to the worker:

    transport = FakeTransport()
    transport.push({"type": "email.send", "args": [{"to": "a@b.c"}]})
    worker = Worker(transport=transport, concurrency=1)
"""

import itertools
from dataclasses import dataclass
from typing import Any

from ojs_worker.constants import DEFAULT_QUEUE, JobState
from ojs_worker.errors import OJSError
from ojs_worker.types.api import JobError
from ojs_worker.types.job import Job


@dataclass
class FetchCall:
    """A recorded fetch request."""

    queues: list[str]
    batch_size: int


@dataclass
class AckCall:
    """A recorded ack."""

    job_id: str
    result: Any


@dataclass
class NackCall:
    """A recorded nack."""

    job_id: str
    error: JobError


class FakeTransport:
    """
    Transport that serves pushed jobs and records every call.

    Operations can be made to fail with fail(); failures are raised
    until clear_failure() is called.
    """

    def __init__(self) -> None:
        self.pending: list[dict[str, Any]] = []
        self.fetches: list[FetchCall] = []
        self.acks: list[AckCall] = []
        self.nacks: list[NackCall] = []
        self.heartbeats: list[list[str]] = []
        self.closed = False
        self._failures: dict[str, OJSError] = {}
        self._ids = itertools.count(1)

    def push(self, *jobs: Job | dict[str, Any]) -> list[str]:
        """
        Make jobs available for fetching.

        Dict envelopes without an id get a generated one.

        Returns:
            The ids of the pushed jobs, in order.
        """
        ids = []
        for job in jobs:
            envelope = job.to_wire() if isinstance(job, Job) else dict(job)
            envelope.setdefault("id", f"fake-{next(self._ids):06d}")
            envelope.setdefault("queue", DEFAULT_QUEUE)
            envelope.setdefault("state", JobState.ACTIVE.value)
            self.pending.append(envelope)
            ids.append(envelope["id"])
        return ids

    def fail(self, operation: str, error: OJSError) -> None:
        """Raise error from the given operation ("fetch", "ack", "nack", "heartbeat")."""
        self._failures[operation] = error

    def clear_failure(self, operation: str) -> None:
        self._failures.pop(operation, None)

    @property
    def acked_ids(self) -> list[str]:
        return [call.job_id for call in self.acks]

    @property
    def nacked_ids(self) -> list[str]:
        return [call.job_id for call in self.nacks]

    async def fetch(self, queues: list[str], batch_size: int) -> list[dict[str, Any]]:
        self.fetches.append(FetchCall(queues=list(queues), batch_size=batch_size))
        self._raise_if_failing("fetch")

        claimed = [job for job in self.pending if job["queue"] in queues][:batch_size]
        for job in claimed:
            self.pending.remove(job)
        return claimed

    async def ack(self, job_id: str, result: Any = None) -> None:
        self._raise_if_failing("ack")
        self.acks.append(AckCall(job_id=job_id, result=result))

    async def nack(self, job_id: str, error: JobError) -> None:
        self._raise_if_failing("nack")
        self.nacks.append(NackCall(job_id=job_id, error=error))

    async def heartbeat(self, job_ids: list[str]) -> None:
        self._raise_if_failing("heartbeat")
        self.heartbeats.append(list(job_ids))

    async def close(self) -> None:
        self.closed = True

    def _raise_if_failing(self, operation: str) -> None:
        error = self._failures.get(operation)
        if error is not None:
            raise error
