"""
Application constants.
Centralized location for all constant values used across the worker.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states as reported by the OJS server.

    State transitions are server-authoritative; the worker only
    reports outcomes (ack/nack) and never changes a job's state itself.
    """

    SCHEDULED = "scheduled"
    AVAILABLE = "available"
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    RETRYABLE = "retryable"
    CANCELLED = "cancelled"
    DISCARDED = "discarded"


class WorkerState(StrEnum):
    """
    Worker lifecycle states.

    State transitions:
    - STOPPED -> RUNNING (start)
    - RUNNING -> QUIET (quiet: stop fetching, keep draining)
    - RUNNING/QUIET -> TERMINATING (stop)
    - TERMINATING -> STOPPED (shutdown finished)
    """

    STOPPED = "stopped"
    RUNNING = "running"
    QUIET = "quiet"
    TERMINATING = "terminating"


# Wire protocol
OJS_SPEC_VERSION = "1.0"
OJS_BASE_PATH = "/ojs/v1"
OJS_CONTENT_TYPE = "application/openjobspec+json"
OJS_VERSION_HEADER = "OJS-Version"

# Worker endpoints
PATH_WORKERS_FETCH = "/workers/fetch"
PATH_WORKERS_ACK = "/workers/ack"
PATH_WORKERS_NACK = "/workers/nack"
PATH_WORKERS_HEARTBEAT = "/workers/heartbeat"

# Default values
DEFAULT_QUEUE = "default"
HEARTBEAT_JOIN_GRACE_SECONDS = 1.0
MAX_BACKTRACE_LINES = 50

# Error types reported in nacks
ERROR_HANDLER_NOT_FOUND = "HandlerNotFound"

# Metrics names
METRIC_JOBS_FETCHED = "ojs_jobs_fetched_total"
METRIC_JOBS_STARTED = "ojs_jobs_started_total"
METRIC_JOBS_COMPLETED = "ojs_jobs_completed_total"
METRIC_JOB_DURATION = "ojs_job_duration_seconds"
METRIC_ACTIVE_JOBS = "ojs_active_jobs"
METRIC_HEARTBEATS = "ojs_heartbeats_total"
METRIC_TRANSPORT_ERRORS = "ojs_transport_errors_total"

# Trace span names
SPAN_FETCH_JOBS = "fetch_jobs"
SPAN_EXECUTE_JOB = "execute_job"
