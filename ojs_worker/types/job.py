"""
Job-related type definitions for internal use.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from ojs_worker.constants import DEFAULT_QUEUE, OJS_SPEC_VERSION, JobState

# Sends a heartbeat for the given job ids
HeartbeatCallback = Callable[[list[str]], Awaitable[None]]


class Job(BaseModel):
    """
    Job envelope as delivered by the OJS server.

    Immutable: the worker never changes a job, it only reports
    the outcome of running it.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    type: str
    queue: str = DEFAULT_QUEUE
    args: dict[str, Any] | list[Any] = {}
    meta: dict[str, Any] = {}
    priority: int | None = None
    timeout: int | None = None
    scheduled_at: datetime | None = None
    expires_at: datetime | None = None
    state: JobState | None = None
    attempt: int = 0
    created_at: datetime | None = None
    enqueued_at: datetime | None = None
    started_at: datetime | None = None
    error: dict[str, Any] | None = None

    @field_validator("args", mode="before")
    @classmethod
    def unwrap_args(cls, value: Any) -> Any:
        """Args travel as a list; a single object is exposed as a dict."""
        if value is None or value == []:
            return {}
        if isinstance(value, list) and len(value) == 1 and isinstance(value[0], dict):
            return value[0]
        return value

    @field_validator("meta", mode="before")
    @classmethod
    def default_meta(cls, value: Any) -> Any:
        return value if value is not None else {}

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "Job":
        """
        Build a Job from a wire-format envelope.

        Args:
            data: Parsed JSON envelope.

        Returns:
            The validated Job.

        Raises:
            pydantic.ValidationError: If required fields are missing or invalid.
        """
        return cls.model_validate(data)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to a wire-format envelope."""
        envelope = self.model_dump(mode="json", exclude_none=True)
        envelope["specversion"] = OJS_SPEC_VERSION
        envelope["args"] = [self.args] if isinstance(self.args, dict) else self.args
        if not self.meta:
            envelope.pop("meta")
        return envelope


@dataclass
class JobContext:
    """
    Context passed to middleware and job handlers during execution.

    Created once per dispatch. The store is shared by every middleware
    and the handler of that dispatch only.
    """

    job: Job
    heartbeat_callback: HeartbeatCallback = field(repr=False)
    store: dict[str, Any] = field(default_factory=dict)

    async def heartbeat(self) -> None:
        """Extend the lease on this job right away."""
        await self.heartbeat_callback([self.job.id])
