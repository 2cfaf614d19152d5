"""
Type definitions for the OJS worker.
Contains wire bodies and job types, grouped by module.
"""

from ojs_worker.types.api import (
    AckRequest,
    FetchRequest,
    FetchResponse,
    HeartbeatRequest,
    JobError,
    NackRequest,
)
from ojs_worker.types.job import (
    HeartbeatCallback,
    Job,
    JobContext,
)

__all__ = [
    # API types
    "FetchRequest",
    "FetchResponse",
    "AckRequest",
    "NackRequest",
    "HeartbeatRequest",
    "JobError",
    # Job types
    "Job",
    "JobContext",
    "HeartbeatCallback",
]
