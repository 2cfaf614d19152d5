"""
Error types for the OJS worker.

Transport errors describe failures talking to the OJS server and are
always caught by the worker loops. Programmer errors (registering a
non-callable, starting a running worker, editing a missing middleware)
are raised to the caller.
"""

import traceback
from typing import Any

from ojs_worker.constants import MAX_BACKTRACE_LINES
from ojs_worker.types.api import JobError


class OJSError(Exception):
    """Base error for all failures reported by the OJS transport."""

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
        request_id: str | None = None,
        http_status: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable
        self.details = details
        self.request_id = request_id
        self.http_status = http_status

    @classmethod
    def from_response(cls, body: Any, http_status: int) -> "OJSError":
        """
        Build an error from an OJS error response body.

        Args:
            body: Parsed JSON body, usually {"error": {...}}.
            http_status: HTTP status code of the response.

        Returns:
            An instance of the class mapped from the error code,
            or OJSError when the code is unknown.
        """
        err = body.get("error", body) if isinstance(body, dict) else {}
        code = err.get("code")
        error_class = ERROR_CODE_MAP.get(code, OJSError)
        kwargs: dict[str, Any] = {
            "details": err.get("details"),
            "request_id": err.get("request_id"),
            "http_status": http_status,
        }
        if error_class is OJSError:
            kwargs["code"] = code
            kwargs["retryable"] = bool(err.get("retryable", False))
        elif error_class is InvalidRequestError:
            # Several codes share this class; keep the one the server sent
            kwargs["code"] = code

        return error_class(err.get("message") or "Unknown error", **kwargs)


class ConnectionFailedError(OJSError):
    """Raised when the server cannot be reached."""

    def __init__(self, message: str = "Connection failed", **kwargs: Any):
        super().__init__(message, retryable=True, **kwargs)


class RequestTimeoutError(OJSError):
    """Raised when a request times out."""

    def __init__(self, message: str = "Request timed out", **kwargs: Any):
        super().__init__(message, code="timeout", retryable=True, **kwargs)


class InvalidRequestError(OJSError):
    """Raised for invalid request payloads (400)."""

    def __init__(
        self,
        message: str = "Validation failed",
        code: str = "invalid_request",
        **kwargs: Any,
    ):
        super().__init__(message, code=code, retryable=False, **kwargs)


class NotFoundError(OJSError):
    """Raised when a resource is not found (404)."""

    def __init__(self, message: str = "Not found", **kwargs: Any):
        super().__init__(message, code="not_found", retryable=False, **kwargs)


class ConflictError(OJSError):
    """Raised on unique constraint violations (409)."""

    def __init__(
        self,
        message: str = "Conflict",
        existing_job_id: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, code="duplicate", retryable=False, **kwargs)
        self.existing_job_id = existing_job_id


class QueuePausedError(OJSError):
    """Raised when a queue is paused (409)."""

    def __init__(self, message: str = "Queue is paused", **kwargs: Any):
        super().__init__(message, code="queue_paused", retryable=True, **kwargs)


class RateLimitError(OJSError):
    """Raised when rate limited (429)."""

    def __init__(
        self,
        message: str = "Rate limited",
        retry_after: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, code="rate_limited", retryable=True, **kwargs)
        self.retry_after = retry_after


class ServerError(OJSError):
    """Raised on server errors (5xx)."""

    def __init__(self, message: str = "Server error", **kwargs: Any):
        super().__init__(message, code="backend_error", retryable=True, **kwargs)


class PayloadTooLargeError(OJSError):
    """Raised when the request envelope exceeds the size limit (413)."""

    def __init__(self, message: str = "Envelope too large", **kwargs: Any):
        super().__init__(
            message, code="envelope_too_large", retryable=False, **kwargs
        )


class UnsupportedError(OJSError):
    """Raised when the server does not support a feature (422)."""

    def __init__(self, message: str = "Feature not supported", **kwargs: Any):
        super().__init__(message, code="unsupported", retryable=False, **kwargs)


# Maps OJS error codes to exception classes
ERROR_CODE_MAP: dict[str | None, type[OJSError]] = {
    "invalid_request": InvalidRequestError,
    "invalid_payload": InvalidRequestError,
    "schema_validation": InvalidRequestError,
    "not_found": NotFoundError,
    "duplicate": ConflictError,
    "queue_paused": QueuePausedError,
    "rate_limited": RateLimitError,
    "backend_error": ServerError,
    "timeout": RequestTimeoutError,
    "unsupported": UnsupportedError,
    "envelope_too_large": PayloadTooLargeError,
}


class WorkerAlreadyRunningError(RuntimeError):
    """Raised when start() is called on a worker that is not stopped."""


class MiddlewareNotFoundError(LookupError):
    """Raised when a structural edit names a middleware that is not in the chain."""

    def __init__(self, name: str | None):
        super().__init__(f"middleware '{name}' not found")
        self.name = name


def classify(exc: BaseException) -> JobError:
    """
    Convert an exception into the wire error reported with a nack.

    Args:
        exc: The exception raised by a handler or middleware.

    Returns:
        JobError with the exception class name, message, and up to
        MAX_BACKTRACE_LINES backtrace lines.
    """
    backtrace = [
        line.rstrip()
        for frame in traceback.format_tb(exc.__traceback__)
        for line in frame.splitlines()
    ][:MAX_BACKTRACE_LINES]

    return JobError(
        type=type(exc).__name__,
        message=str(exc),
        backtrace=backtrace or None,
    )
