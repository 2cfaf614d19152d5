"""
Integration tests for the worker run loop against the in-memory transport
and a mocked OJS server.
"""

import asyncio
import json
from collections.abc import Callable
from datetime import datetime

import httpx
import pytest

from ojs_worker.constants import WorkerState
from ojs_worker.errors import ConnectionFailedError
from ojs_worker.middleware import LoggingMiddleware, RetryMiddleware, TimeoutMiddleware
from ojs_worker.testing import FakeTransport
from ojs_worker.transport.http import HttpTransport
from ojs_worker.types.job import JobContext
from ojs_worker.worker.main import Worker, run_async


async def start_worker(worker: Worker, wait_until) -> asyncio.Task:
    """Start the worker in a task and wait until it is running."""
    task = asyncio.create_task(worker.start())
    await wait_until(lambda: worker.state == WorkerState.RUNNING)
    return task


async def stop_worker(worker: Worker, task: asyncio.Task, timeout: float = 5.0) -> None:
    worker.stop()
    await asyncio.wait_for(task, timeout)


class TestWorkerRun:
    """End-to-end tests for fetching, executing and reporting jobs."""

    @pytest.mark.asyncio
    async def test_processes_all_jobs(
        self,
        make_worker: Callable[..., Worker],
        fake_transport: FakeTransport,
        wait_until,
    ):
        """Test every pushed job is acked and concurrency is never exceeded."""
        worker = make_worker(concurrency=3, batch_size=2)
        running = 0
        peak = 0

        @worker.handler("work")
        async def work(ctx: JobContext) -> dict:
            nonlocal running, peak
            running += 1
            peak = max(peak, running, worker.active_count)
            await asyncio.sleep(0.01)
            running -= 1
            return {"n": ctx.job.args["n"]}

        ids = fake_transport.push(*({"type": "work", "args": [{"n": i}]} for i in range(10)))

        task = await start_worker(worker, wait_until)
        await wait_until(lambda: len(fake_transport.acks) == 10)
        await stop_worker(worker, task)

        assert sorted(fake_transport.acked_ids) == sorted(ids)
        assert {call.result["n"] for call in fake_transport.acks} == set(range(10))
        assert fake_transport.nacks == []
        assert 1 <= peak <= 3
        assert all(1 <= call.batch_size <= 2 for call in fake_transport.fetches)

    @pytest.mark.asyncio
    async def test_state_after_stop(
        self,
        worker: Worker,
        wait_until,
    ):
        """Test start() returns with the worker stopped and idle."""
        task = await start_worker(worker, wait_until)
        await stop_worker(worker, task)

        assert worker.state == WorkerState.STOPPED
        assert worker.active_count == 0

    @pytest.mark.asyncio
    async def test_failures_and_missing_handlers_are_nacked(
        self,
        worker: Worker,
        fake_transport: FakeTransport,
        wait_until,
    ):
        """Test failing and unknown jobs are nacked while others succeed."""
        @worker.handler("ok")
        async def ok(ctx: JobContext) -> str:
            return "fine"

        @worker.handler("fail")
        async def fail(ctx: JobContext) -> None:
            raise ValueError("invalid input")

        ok_id, fail_id, unknown_id = fake_transport.push(
            {"type": "ok"}, {"type": "fail"}, {"type": "unknown"}
        )

        task = await start_worker(worker, wait_until)
        await wait_until(lambda: len(fake_transport.acks) + len(fake_transport.nacks) == 3)
        await stop_worker(worker, task)

        assert fake_transport.acked_ids == [ok_id]
        errors = {call.job_id: call.error for call in fake_transport.nacks}
        assert errors[fail_id].type == "ValueError"
        assert errors[fail_id].message == "invalid input"
        assert errors[unknown_id].type == "HandlerNotFound"

    @pytest.mark.asyncio
    async def test_only_configured_queues_fetched(
        self,
        make_worker: Callable[..., Worker],
        fake_transport: FakeTransport,
        wait_until,
    ):
        """Test jobs on other queues are left alone."""
        worker = make_worker(queues=["email"])

        @worker.handler("work")
        async def work(ctx: JobContext) -> None:
            return None

        email_id, default_id = fake_transport.push(
            {"type": "work", "queue": "email"}, {"type": "work"}
        )

        task = await start_worker(worker, wait_until)
        await wait_until(lambda: len(fake_transport.acks) == 1)
        await stop_worker(worker, task)

        assert fake_transport.acked_ids == [email_id]
        assert [job["id"] for job in fake_transport.pending] == [default_id]

    @pytest.mark.asyncio
    async def test_fetch_errors_do_not_stop_worker(
        self,
        worker: Worker,
        fake_transport: FakeTransport,
        wait_until,
    ):
        """Test the worker keeps polling through transport failures."""
        @worker.handler("work")
        async def work(ctx: JobContext) -> None:
            return None

        fake_transport.fail("fetch", ConnectionFailedError("refused"))
        job_id, = fake_transport.push({"type": "work"})

        task = await start_worker(worker, wait_until)
        await wait_until(lambda: len(fake_transport.fetches) >= 3)
        assert worker.state == WorkerState.RUNNING

        fake_transport.clear_failure("fetch")
        await wait_until(lambda: fake_transport.acked_ids == [job_id])
        await stop_worker(worker, task)

    @pytest.mark.asyncio
    async def test_middleware_runs_around_handlers(
        self,
        worker: Worker,
        fake_transport: FakeTransport,
        wait_until,
    ):
        """Test built-in middleware composes with a running worker."""
        attempts = 0

        @worker.handler("flaky")
        async def flaky(ctx: JobContext) -> str:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise ConnectionError("temporary")
            return "recovered"

        worker.use(LoggingMiddleware(), name="logging")
        worker.use(RetryMiddleware(max_retries=3, base_delay=0.001, jitter=False), name="retry")
        worker.use(TimeoutMiddleware(1.0), name="timeout")

        job_id, = fake_transport.push({"type": "flaky"})

        task = await start_worker(worker, wait_until)
        await wait_until(lambda: len(fake_transport.acks) == 1)
        await stop_worker(worker, task)

        assert attempts == 3
        assert fake_transport.acks[0].job_id == job_id
        assert fake_transport.acks[0].result == "recovered"


class TestQuietAndHeartbeat:
    """Tests for quiet mode and lease extension."""

    @pytest.mark.asyncio
    async def test_quiet_stops_fetching(
        self,
        worker: Worker,
        fake_transport: FakeTransport,
        wait_until,
    ):
        """Test a quiet worker stops claiming jobs but keeps running."""
        task = await start_worker(worker, wait_until)
        await wait_until(lambda: len(fake_transport.fetches) >= 1)

        worker.quiet()
        fetches = len(fake_transport.fetches)
        fake_transport.push({"type": "work"})
        await asyncio.sleep(0.1)

        assert worker.state == WorkerState.QUIET
        assert len(fake_transport.fetches) == fetches
        assert len(fake_transport.pending) == 1

        await stop_worker(worker, task)
        assert worker.state == WorkerState.STOPPED

    @pytest.mark.asyncio
    async def test_heartbeats_cover_active_jobs(
        self,
        make_worker: Callable[..., Worker],
        fake_transport: FakeTransport,
        wait_until,
    ):
        """Test running jobs are heartbeated in one batched call."""
        worker = make_worker(concurrency=2)
        release = asyncio.Event()

        @worker.handler("slow")
        async def slow(ctx: JobContext) -> None:
            await release.wait()

        ids = fake_transport.push({"type": "slow"}, {"type": "slow"})

        task = await start_worker(worker, wait_until)
        await wait_until(lambda: worker.active_count == 2)
        await wait_until(
            lambda: any(sorted(beat) == sorted(ids) for beat in fake_transport.heartbeats)
        )

        release.set()
        await wait_until(lambda: len(fake_transport.acks) == 2)
        await stop_worker(worker, task)

    @pytest.mark.asyncio
    async def test_no_heartbeat_when_idle(
        self,
        worker: Worker,
        fake_transport: FakeTransport,
        wait_until,
    ):
        """Test an idle worker sends no heartbeats."""
        task = await start_worker(worker, wait_until)
        await asyncio.sleep(0.05)
        await stop_worker(worker, task)

        assert fake_transport.heartbeats == []


class TestShutdown:
    """Tests for graceful shutdown."""

    @pytest.mark.asyncio
    async def test_in_flight_jobs_drain(
        self,
        make_worker: Callable[..., Worker],
        fake_transport: FakeTransport,
        wait_until,
    ):
        """Test stop() waits for running jobs to finish and report."""
        worker = make_worker(concurrency=2)

        @worker.handler("slow")
        async def slow(ctx: JobContext) -> str:
            await asyncio.sleep(0.1)
            return "done"

        ids = fake_transport.push({"type": "slow"}, {"type": "slow"})

        task = await start_worker(worker, wait_until)
        await wait_until(lambda: worker.active_count == 2)
        await stop_worker(worker, task)

        assert sorted(fake_transport.acked_ids) == sorted(ids)
        assert worker.state == WorkerState.STOPPED

    @pytest.mark.asyncio
    async def test_stuck_job_abandoned_at_deadline(
        self,
        make_worker: Callable[..., Worker],
        fake_transport: FakeTransport,
        wait_until,
    ):
        """Test shutdown gives up on a job that outlives the timeout."""
        worker = make_worker(concurrency=1, shutdown_timeout=0.1)
        release = asyncio.Event()

        @worker.handler("stuck")
        async def stuck(ctx: JobContext) -> str:
            await release.wait()
            return "late"

        job_id, = fake_transport.push({"type": "stuck"})

        task = await start_worker(worker, wait_until)
        await wait_until(lambda: worker.active_count == 1)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await stop_worker(worker, task)

        assert loop.time() - started < 3.0
        assert worker.state == WorkerState.STOPPED
        assert worker.active_count == 0
        assert fake_transport.acks == []
        assert len(worker._abandoned_tasks) == 1

        # The abandoned task is not cancelled and still reports
        release.set()
        await wait_until(lambda: fake_transport.acked_ids == [job_id])
        await wait_until(lambda: not worker._abandoned_tasks)

    @pytest.mark.asyncio
    async def test_abandoned_unit_stays_on_its_own_run(
        self,
        make_worker: Callable[..., Worker],
        fake_transport: FakeTransport,
        wait_until,
    ):
        """Test a unit abandoned in one run exits on its own after a restart."""
        worker = make_worker(concurrency=1, shutdown_timeout=0.05)
        release = asyncio.Event()
        ran_work = []

        @worker.handler("stuck")
        async def stuck(ctx: JobContext) -> None:
            await release.wait()

        @worker.handler("work")
        async def work(ctx: JobContext) -> None:
            ran_work.append(ctx.job.id)

        stuck_id, = fake_transport.push({"type": "stuck"})
        task = await start_worker(worker, wait_until)
        await wait_until(lambda: worker.active_count == 1)
        await stop_worker(worker, task)

        assert len(worker._abandoned_tasks) == 1
        abandoned = next(iter(worker._abandoned_tasks))

        work_ids = fake_transport.push(*({"type": "work"} for _ in range(6)))
        task = await start_worker(worker, wait_until)
        release.set()
        await wait_until(lambda: len(fake_transport.acks) == 7)
        await stop_worker(worker, task)

        await wait_until(abandoned.done)
        assert not worker._abandoned_tasks
        assert sorted(ran_work) == sorted(work_ids)
        assert stuck_id in fake_transport.acked_ids
        assert worker.state == WorkerState.STOPPED

    @pytest.mark.asyncio
    async def test_restart_after_stop(
        self,
        worker: Worker,
        fake_transport: FakeTransport,
        wait_until,
    ):
        """Test a stopped worker can be started again."""
        @worker.handler("work")
        async def work(ctx: JobContext) -> None:
            return None

        fake_transport.push({"type": "work"})
        task = await start_worker(worker, wait_until)
        await wait_until(lambda: len(fake_transport.acks) == 1)
        await stop_worker(worker, task)

        fake_transport.push({"type": "work"})
        task = await start_worker(worker, wait_until)
        await wait_until(lambda: len(fake_transport.acks) == 2)
        await stop_worker(worker, task)

        assert worker.state == WorkerState.STOPPED

    @pytest.mark.asyncio
    async def test_run_async_closes_transport(
        self,
        worker: Worker,
        fake_transport: FakeTransport,
        wait_until,
    ):
        """Test run_async() closes the transport once the worker stops."""
        task = asyncio.create_task(run_async(worker))
        await wait_until(lambda: worker.state == WorkerState.RUNNING)

        worker.stop()
        await asyncio.wait_for(task, 5.0)

        assert fake_transport.closed is True


class TestHttpTransportRun:
    """End-to-end tests through HttpTransport and a mocked OJS server."""

    @pytest.mark.asyncio
    async def test_rich_result_is_acked_as_json(
        self,
        make_worker: Callable[..., Worker],
        wait_until,
    ):
        """Test a handler result with datetimes reaches the server as JSON."""
        served = []
        acks = []

        def server(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/workers/fetch"):
                if served:
                    return httpx.Response(200, json={"jobs": []})
                served.append(True)
                return httpx.Response(
                    200, json={"jobs": [{"id": "j1", "type": "report", "queue": "default"}]}
                )
            if request.url.path.endswith("/workers/ack"):
                acks.append(json.loads(request.content))
            return httpx.Response(200, json={})

        transport = HttpTransport(
            "http://ojs.test", client_transport=httpx.MockTransport(server)
        )
        worker = make_worker(transport=transport)

        @worker.handler("report")
        async def report(ctx: JobContext) -> dict:
            return {"generated_at": datetime(2024, 1, 1, 9, 0)}

        task = await start_worker(worker, wait_until)
        await wait_until(lambda: len(acks) == 1)
        await stop_worker(worker, task)
        await transport.close()

        assert acks == [{"job_id": "j1", "result": {"generated_at": "2024-01-01T09:00:00"}}]
