"""
Pytest configuration and shared fixtures.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from ojs_worker.testing import FakeTransport
from ojs_worker.types.job import Job, JobContext
from ojs_worker.worker.main import Worker

WaitUntil = Callable[..., Awaitable[None]]


async def _wait_until(
    predicate: Callable[[], bool],
    timeout: float = 3.0,
    interval: float = 0.005,
) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until() -> WaitUntil:
    """Poll a predicate until it holds, failing the test after a timeout."""
    return _wait_until


@pytest.fixture
def fake_transport() -> FakeTransport:
    """Create an in-memory transport."""
    return FakeTransport()


@pytest.fixture
def make_worker(fake_transport: FakeTransport) -> Callable[..., Worker]:
    """Create workers wired to the fake transport with fast timings."""
    def factory(**overrides: Any) -> Worker:
        options: dict[str, Any] = {
            "transport": fake_transport,
            "queues": ["default"],
            "concurrency": 2,
            "batch_size": 5,
            "poll_interval": 0.01,
            "heartbeat_interval": 0.01,
            "shutdown_timeout": 2.0,
            "worker_id": "test-worker",
        }
        options.update(overrides)
        return Worker(**options)
    return factory


@pytest.fixture
def worker(make_worker: Callable[..., Worker]) -> Worker:
    """Create a worker with default test settings."""
    return make_worker()


@pytest.fixture
def sample_job() -> Job:
    """Create a sample job."""
    return Job.from_wire(
        {
            "id": "job-1",
            "type": "test.job",
            "queue": "default",
            "args": [{"key": "value"}],
            "state": "active",
            "attempt": 1,
        }
    )


@pytest.fixture
def job_context(sample_job: Job) -> JobContext:
    """Create a job context whose heartbeats are recorded in ctx.store."""
    async def record_heartbeat(job_ids: list[str]) -> None:
        ctx.store.setdefault("heartbeats", []).append(job_ids)

    ctx = JobContext(job=sample_job, heartbeat_callback=record_heartbeat)
    return ctx
