"""
Worker process for executing OJS jobs.

The worker fetches jobs from the OJS server, runs each one through the
middleware chain and its registered handler, and reports the outcome
with ack/nack. Leases on running jobs are extended by heartbeat.
"""

import asyncio
import logging
import os
import signal
import threading
from functools import partial
from typing import Any

from pydantic import ValidationError

from ojs_worker.config import get_settings
from ojs_worker.constants import (
    ERROR_HANDLER_NOT_FOUND,
    HEARTBEAT_JOIN_GRACE_SECONDS,
    SPAN_EXECUTE_JOB,
    SPAN_FETCH_JOBS,
    WorkerState,
)
from ojs_worker.errors import (
    InvalidRequestError,
    OJSError,
    WorkerAlreadyRunningError,
    classify,
)
from ojs_worker.middleware.chain import Middleware, MiddlewareChain
from ojs_worker.observability.logging import bind_context, setup_logging, unbind_context
from ojs_worker.observability.metrics import get_metrics
from ojs_worker.observability.tracing import get_tracer
from ojs_worker.transport.base import Transport
from ojs_worker.transport.http import HttpTransport
from ojs_worker.types.api import JobError
from ojs_worker.types.job import Job, JobContext
from ojs_worker.worker.handlers import HandlerRegistry, JobHandler

logger = logging.getLogger(__name__)


class Worker:
    """
    OJS job worker.

    Features:
    - Poll loop that never claims more jobs than it has free capacity for
    - Fixed pool of execution tasks fed by a blocking work queue
    - Onion-model middleware around every handler
    - One batched heartbeat for all active jobs
    - Quiet mode and graceful shutdown on SIGTERM/SIGINT

    Example:
        worker = Worker(queues=["default", "email"], concurrency=10)

        @worker.handler("email.send")
        async def send_email(ctx: JobContext) -> dict:
            return {"message_id": await deliver(ctx.job.args["to"])}

        asyncio.run(worker.start())

    Shutdown waits for in-flight jobs until shutdown_timeout, then
    abandons them: the tasks are not cancelled and may still ack or nack
    later. Add TimeoutMiddleware to bound handler run time.
    """

    def __init__(
        self,
        transport: Transport | None = None,
        queues: list[str] | None = None,
        concurrency: int | None = None,
        batch_size: int | None = None,
        poll_interval: float | None = None,
        heartbeat_interval: float | None = None,
        shutdown_timeout: float | None = None,
        worker_id: str | None = None,
    ):
        """
        Initialize the worker.

        Args:
            transport: Transport to the OJS server. Defaults to an
                HttpTransport for the ojs_url setting.
            queues: Queues to fetch from.
            concurrency: Number of jobs executed at once.
            batch_size: Maximum number of jobs claimed per fetch.
            poll_interval: Seconds between polls.
            heartbeat_interval: Seconds between heartbeats.
            shutdown_timeout: Seconds to wait for in-flight jobs on shutdown.
            worker_id: Identifier used in logs and metrics. Defaults to
                hostname + PID.
        """
        settings = get_settings()

        self.worker_id = worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.queues = list(queues or settings.worker_queues)
        self.concurrency = (
            concurrency if concurrency is not None else settings.worker_concurrency
        )
        self.batch_size = batch_size if batch_size is not None else settings.worker_batch_size
        self.poll_interval = (
            poll_interval
            if poll_interval is not None
            else settings.worker_poll_interval_seconds
        )
        self.heartbeat_interval = (
            heartbeat_interval
            if heartbeat_interval is not None
            else settings.worker_heartbeat_interval_seconds
        )
        self.shutdown_timeout = (
            shutdown_timeout
            if shutdown_timeout is not None
            else settings.worker_shutdown_timeout_seconds
        )

        if self.concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {self.concurrency}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")

        self.transport: Transport = transport or HttpTransport(
            settings.ojs_url,
            timeout=settings.ojs_request_timeout_seconds,
        )
        self.handlers = HandlerRegistry()
        self.middleware = MiddlewareChain()

        self._state = WorkerState.STOPPED
        self._lock = threading.Lock()
        self._active_jobs: dict[str, asyncio.Task] = {}
        self._work_queue: asyncio.Queue[Job | None] = asyncio.Queue()
        self._worker_tasks: list[asyncio.Task] = []
        self._abandoned_tasks: set[asyncio.Task] = set()
        self._heartbeat_task: asyncio.Task | None = None
        self._metrics = get_metrics()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, job_type: str, handler: JobHandler) -> JobHandler:
        """Register the handler for a job type. See HandlerRegistry.register."""
        return self.handlers.register(job_type, handler)

    def handler(self, job_type: str):
        """Decorator registering the decorated coroutine function for a job type."""
        return self.handlers.handler(job_type)

    def use(self, middleware: Middleware, name: str | None = None) -> "Worker":
        """
        Append a middleware to the chain.

        The chain itself is available as worker.middleware for
        prepend/insert_before/insert_after/remove.
        """
        self.middleware.add(middleware, name=name)
        return self

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkerState:
        """Current lifecycle state."""
        with self._lock:
            return self._state

    def stop(self) -> None:
        """
        Initiate graceful shutdown: stop fetching, finish in-flight jobs.

        Safe to call from any thread. No-op unless running or quiet.
        """
        with self._lock:
            if self._state not in (WorkerState.RUNNING, WorkerState.QUIET):
                return
            self._state = WorkerState.TERMINATING

        logger.info("Worker stopping", extra={"worker_id": self.worker_id})

    def quiet(self) -> None:
        """
        Stop fetching new jobs but keep processing fetched and in-flight ones.

        Safe to call from any thread. No-op unless running.
        """
        with self._lock:
            if self._state != WorkerState.RUNNING:
                return
            self._state = WorkerState.QUIET

        logger.info("Worker quiet", extra={"worker_id": self.worker_id})

    async def start(self) -> None:
        """
        Start the worker and block until it has shut down.

        Raises:
            WorkerAlreadyRunningError: If the worker is not stopped.
        """
        with self._lock:
            if self._state != WorkerState.STOPPED:
                raise WorkerAlreadyRunningError(f"Worker already {self._state}")
            self._state = WorkerState.RUNNING

        logger.info(
            "Worker starting",
            extra={
                "worker_id": self.worker_id,
                "queues": self.queues,
                "concurrency": self.concurrency,
            },
        )

        self._work_queue = asyncio.Queue()
        installed_signals: list[signal.Signals] = []

        try:
            installed_signals = self._install_signal_handlers()

            for index in range(self.concurrency):
                self._worker_tasks.append(
                    asyncio.create_task(
                        self._worker_loop(index, self._work_queue),
                        name=f"ojs-worker-{self.worker_id}-{index}",
                    )
                )
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat_loop(),
                name=f"ojs-heartbeat-{self.worker_id}",
            )

            # Poll loop runs in the caller's task
            await self._poll_loop()
        finally:
            await self._wait_for_shutdown()
            self._remove_signal_handlers(installed_signals)

    # ------------------------------------------------------------------
    # Active jobs
    # ------------------------------------------------------------------

    @property
    def active_count(self) -> int:
        """Number of jobs currently being executed."""
        with self._lock:
            return len(self._active_jobs)

    def active_job_ids(self) -> list[str]:
        """Snapshot of the ids of jobs currently being executed."""
        with self._lock:
            return list(self._active_jobs.keys())

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    async def _poll_loop(self) -> None:
        """Fetch jobs into the work queue until the worker is terminating."""
        while self._is_running_or_quiet():
            try:
                if self._should_fetch():
                    for job in await self._fetch_jobs():
                        self._work_queue.put_nowait(job)

            except Exception as e:
                logger.exception(
                    f"Error in poll loop: {e}",
                    extra={"worker_id": self.worker_id},
                )

            if self._is_running_or_quiet():
                await asyncio.sleep(self.poll_interval)

    async def _fetch_jobs(self) -> list[Job]:
        """
        Claim as many jobs as there is free capacity for.

        Capacity counts both queued and executing jobs against
        concurrency. Fetch errors are logged and yield no jobs.

        Returns:
            Jobs claimed from the server.
        """
        available = self.concurrency - self._work_queue.qsize() - self.active_count
        if available <= 0:
            return []

        batch_size = min(available, self.batch_size)

        try:
            with get_tracer().start_as_current_span(SPAN_FETCH_JOBS) as span:
                span.set_attribute("worker_id", self.worker_id)
                span.set_attribute("batch_size", batch_size)
                envelopes = await self.transport.fetch(self.queues, batch_size)
        except OJSError as e:
            logger.warning(
                f"Fetch error: {e}",
                extra={"worker_id": self.worker_id, "code": e.code},
            )
            self._metrics.record_transport_error("fetch", type(e).__name__)
            return []

        jobs = []
        for envelope in envelopes:
            try:
                jobs.append(Job.from_wire(envelope))
            except ValidationError as e:
                logger.error(
                    "Skipping malformed job envelope",
                    extra={"worker_id": self.worker_id, "error": str(e)},
                )

        if jobs:
            self._metrics.record_jobs_fetched(self.worker_id, len(jobs))
            logger.info(
                f"Fetched {len(jobs)} jobs",
                extra={"worker_id": self.worker_id},
            )

        return jobs

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _worker_loop(self, index: int, queue: asyncio.Queue) -> None:
        """
        Execute jobs from the work queue until a None sentinel arrives.

        Each unit stays bound to the queue of the run that spawned it, so a
        unit abandoned at shutdown drains its own sentinel after a restart.
        """
        while True:
            job = await queue.get()
            if job is None:
                break

            try:
                await self._process_job(job)
            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id, "unit": index, "job_id": job.id},
                )

    async def _process_job(self, job: Job) -> None:
        """
        Execute a single job and report its outcome.

        Handles the full dispatch:
        1. Mark the job active
        2. Resolve the handler (nack HandlerNotFound if missing)
        3. Run middleware and handler
        4. Ack the result or nack the classified exception

        Args:
            job: The job to execute.
        """
        with self._lock:
            self._active_jobs[job.id] = asyncio.current_task()
            active = len(self._active_jobs)
        self._metrics.set_active_jobs(self.worker_id, active)
        bind_context(job_id=job.id, job_type=job.type)

        try:
            handler = self.handlers.get(job.type)
            if handler is None:
                logger.error(
                    f"No handler for job type: {job.type}",
                    extra={"job_id": job.id},
                )
                await self._nack_job(
                    job.id,
                    JobError(
                        type=ERROR_HANDLER_NOT_FOUND,
                        message=f"No handler registered for job type: {job.type}",
                    ),
                )
                return

            ctx = JobContext(job=job, heartbeat_callback=self._send_heartbeat)

            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", job.id)
                span.set_attribute("job_type", job.type)
                span.set_attribute("queue", job.queue)
                span.set_attribute("attempt", job.attempt)

                try:
                    result = await self.middleware.invoke(ctx, partial(handler, ctx))
                except Exception as e:
                    span.record_exception(e)
                    logger.warning(
                        "Job failed",
                        extra={"job_id": job.id, "error": str(e), "attempt": job.attempt},
                    )
                    await self._nack_job(job.id, classify(e))
                    return

            await self._ack_job(job.id, result)

        finally:
            with self._lock:
                self._active_jobs.pop(job.id, None)
                active = len(self._active_jobs)
            self._metrics.set_active_jobs(self.worker_id, active)
            unbind_context("job_id", "job_type")

    async def _ack_job(self, job_id: str, result: Any) -> None:
        """
        Acknowledge successful completion. Failures are logged, not retried.

        A result the transport cannot encode never reached the server, so
        the job is nacked with the encoding error instead.
        """
        try:
            await self.transport.ack(job_id, result)
        except OJSError as e:
            logger.warning(f"ACK error for job {job_id}: {e}", extra={"job_id": job_id})
            self._metrics.record_transport_error("ack", type(e).__name__)
            if isinstance(e, InvalidRequestError) and e.http_status is None:
                await self._nack_job(job_id, classify(e))

    async def _nack_job(self, job_id: str, error: JobError) -> None:
        """Report job failure. Failures are logged, not retried."""
        try:
            await self.transport.nack(job_id, error)
        except OJSError as e:
            logger.warning(f"NACK error for job {job_id}: {e}", extra={"job_id": job_id})
            self._metrics.record_transport_error("nack", type(e).__name__)

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    async def _heartbeat_loop(self) -> None:
        """
        Periodically extend leases on active jobs.

        Keeps running while terminating as long as jobs are still
        finishing, so their leases do not lapse during shutdown.
        """
        while self._is_running_or_processing():
            await asyncio.sleep(self.heartbeat_interval)

            job_ids = self.active_job_ids()
            if not job_ids:
                continue

            try:
                await self._send_heartbeat(job_ids)
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")

    async def _send_heartbeat(self, job_ids: list[str]) -> None:
        """Send one heartbeat for the given jobs. Failures are logged."""
        try:
            await self.transport.heartbeat(job_ids)
        except OJSError as e:
            logger.warning(f"Heartbeat error: {e}", extra={"job_ids": job_ids})
            self._metrics.record_transport_error("heartbeat", type(e).__name__)
            return

        self._metrics.record_heartbeat(self.worker_id)
        logger.debug("Extended leases", extra={"job_ids": job_ids})

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def _wait_for_shutdown(self) -> None:
        """
        Drain execution tasks against one shared deadline, then reset.

        Tasks still busy at the deadline are abandoned, not cancelled.
        """
        with self._lock:
            if self._state in (WorkerState.RUNNING, WorkerState.QUIET):
                self._state = WorkerState.TERMINATING

        # One sentinel per execution task, queued behind already-fetched jobs
        for _ in range(self.concurrency):
            self._work_queue.put_nowait(None)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.shutdown_timeout

        abandoned = 0
        for task in self._worker_tasks:
            remaining = max(deadline - loop.time(), 0)
            done, _ = await asyncio.wait({task}, timeout=remaining)
            if not done:
                self._abandon(task)
                abandoned += 1

        if abandoned:
            logger.warning(
                f"Abandoning {abandoned} execution tasks "
                f"still running after {self.shutdown_timeout}s",
                extra={"worker_id": self.worker_id, "job_ids": self.active_job_ids()},
            )

        if self._heartbeat_task:
            done, _ = await asyncio.wait(
                {self._heartbeat_task}, timeout=HEARTBEAT_JOIN_GRACE_SECONDS
            )
            if not done:
                self._heartbeat_task.cancel()
                await asyncio.wait({self._heartbeat_task})

        with self._lock:
            self._state = WorkerState.STOPPED
            self._active_jobs.clear()
        self._worker_tasks = []
        self._heartbeat_task = None
        self._metrics.set_active_jobs(self.worker_id, 0)

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    def _abandon(self, task: asyncio.Task) -> None:
        # The event loop only holds weak references to tasks
        self._abandoned_tasks.add(task)
        task.add_done_callback(self._abandoned_tasks.discard)

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> list[signal.Signals]:
        """
        Map SIGTERM/SIGINT to stop() when running on the main thread.

        The callback runs on the event loop, not in the interrupted frame.
        """
        if threading.current_thread() is not threading.main_thread():
            return []

        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
            except NotImplementedError:
                # Event loops without signal support (e.g. Windows)
                logger.debug(f"Signal handlers not supported for {sig.name}")
                continue
            installed.append(sig)
        return installed

    def _remove_signal_handlers(self, installed: list[signal.Signals]) -> None:
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}", extra={"worker_id": self.worker_id})
        self.stop()

    # ------------------------------------------------------------------
    # State checks
    # ------------------------------------------------------------------

    def _is_running_or_quiet(self) -> bool:
        with self._lock:
            return self._state in (WorkerState.RUNNING, WorkerState.QUIET)

    def _is_running_or_processing(self) -> bool:
        with self._lock:
            return self._state in (WorkerState.RUNNING, WorkerState.QUIET) or (
                self._state == WorkerState.TERMINATING and bool(self._active_jobs)
            )

    def _should_fetch(self) -> bool:
        with self._lock:
            return self._state == WorkerState.RUNNING


async def run_async(worker: Worker) -> None:
    """Run the worker until it stops, then close its transport."""
    try:
        await worker.start()
    finally:
        await worker.transport.close()


def run(worker: Worker) -> None:
    """Configure logging and run the worker in a new event loop."""
    setup_logging(worker_id=worker.worker_id)
    asyncio.run(run_async(worker))
