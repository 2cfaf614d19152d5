"""
Worker API request and response type definitions.

Bodies exchanged with the OJS server on the /workers endpoints.
"""

from typing import Any

from pydantic import BaseModel, Field


class JobError(BaseModel):
    """Structured error reported when a job fails."""

    type: str = Field(..., description="Error class or category")
    message: str = Field(..., description="Human readable error message")
    backtrace: list[str] | None = Field(
        default=None, description="Stack trace lines, innermost last"
    )


class FetchRequest(BaseModel):
    """Request body for claiming a batch of jobs."""

    queues: list[str]
    batch_size: int = Field(..., ge=1)


class FetchResponse(BaseModel):
    """Response body for a fetch call."""

    jobs: list[dict[str, Any] | None] = Field(default_factory=list)


class AckRequest(BaseModel):
    """Request body for acknowledging a completed job."""

    job_id: str
    result: Any = None


class NackRequest(BaseModel):
    """Request body for reporting a failed job."""

    job_id: str
    error: JobError


class HeartbeatRequest(BaseModel):
    """Request body for extending leases on active jobs."""

    job_ids: list[str]
