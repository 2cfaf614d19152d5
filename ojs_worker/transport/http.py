"""
HTTP transport for the OJS worker endpoints, built on httpx.
"""

import logging
from typing import Any

import httpx
from pydantic import BaseModel

from ojs_worker import __version__
from ojs_worker.constants import (
    OJS_BASE_PATH,
    OJS_CONTENT_TYPE,
    OJS_SPEC_VERSION,
    OJS_VERSION_HEADER,
    PATH_WORKERS_ACK,
    PATH_WORKERS_FETCH,
    PATH_WORKERS_HEARTBEAT,
    PATH_WORKERS_NACK,
)
from ojs_worker.errors import (
    ConflictError,
    ConnectionFailedError,
    InvalidRequestError,
    NotFoundError,
    OJSError,
    PayloadTooLargeError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    UnsupportedError,
)
from ojs_worker.types.api import (
    AckRequest,
    FetchRequest,
    FetchResponse,
    HeartbeatRequest,
    JobError,
    NackRequest,
)

logger = logging.getLogger(__name__)


class HttpTransport:
    """
    Transport that talks to an OJS server over HTTP.

    One AsyncClient is shared by every task of a worker; httpx pools
    keep-alive connections per host, so each concurrent request gets
    its own connection from the pool.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        client_transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the transport.

        Args:
            base_url: Server base URL, e.g. "http://localhost:8080".
            timeout: Request timeout in seconds.
            headers: Extra headers sent with every request.
            client_transport: httpx transport to send requests through,
                e.g. httpx.MockTransport in tests.
        """
        self.base_url = base_url.rstrip("/")
        default_headers = {
            "Content-Type": OJS_CONTENT_TYPE,
            "Accept": OJS_CONTENT_TYPE,
            "User-Agent": f"ojs-python-worker/{__version__}",
            OJS_VERSION_HEADER: OJS_SPEC_VERSION,
            **(headers or {}),
        }
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}{OJS_BASE_PATH}",
            timeout=timeout,
            headers=default_headers,
            transport=client_transport,
        )

    async def post(
        self,
        path: str,
        request: BaseModel | None = None,
        **dump_options: Any,
    ) -> Any:
        """
        POST a request body as JSON and return the parsed response.

        The body is serialized in pydantic's JSON mode, so datetimes,
        UUIDs, decimals and models in a handler result are sent as JSON.

        Args:
            path: Endpoint path below the OJS base path.
            request: Body model; omitted when None.
            **dump_options: Passed to model_dump (e.g. exclude_none=True).

        Raises:
            InvalidRequestError: If the body cannot be encoded as JSON.
            OJSError: Classified failure for any non-2xx response or
                network problem.
        """
        try:
            body = (
                request.model_dump(mode="json", **dump_options)
                if request is not None
                else None
            )
            http_request = self._client.build_request("POST", path, json=body)
        except (TypeError, ValueError) as e:
            raise InvalidRequestError(
                f"Request body for {path} is not JSON serializable: {e}",
                code="invalid_payload",
            ) from e

        try:
            response = await self._client.send(http_request)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Request to {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise ConnectionFailedError(
                f"Connection to {self.base_url} failed: {e}"
            ) from e

        return self._handle_response(response)

    async def fetch(self, queues: list[str], batch_size: int) -> list[dict[str, Any]]:
        request = FetchRequest(queues=queues, batch_size=batch_size)
        body = await self.post(PATH_WORKERS_FETCH, request)

        if body is None:
            return []
        if isinstance(body, list):
            return [job for job in body if job]
        if isinstance(body, dict) and "jobs" in body:
            return [job for job in FetchResponse.model_validate(body).jobs if job]
        # Some servers answer a single-job fetch with the bare envelope
        return [body]

    async def ack(self, job_id: str, result: Any = None) -> None:
        if result is None:
            request = AckRequest(job_id=job_id)
        else:
            request = AckRequest(job_id=job_id, result=result)
        await self.post(PATH_WORKERS_ACK, request, exclude_unset=True)

    async def nack(self, job_id: str, error: JobError) -> None:
        request = NackRequest(job_id=job_id, error=error)
        await self.post(PATH_WORKERS_NACK, request, exclude_none=True)

    async def heartbeat(self, job_ids: list[str]) -> None:
        request = HeartbeatRequest(job_ids=job_ids)
        await self.post(PATH_WORKERS_HEARTBEAT, request)

    async def close(self) -> None:
        """Close pooled connections."""
        await self._client.aclose()

    def _handle_response(self, response: httpx.Response) -> Any:
        """Map an HTTP response to a parsed body or a classified error."""
        status = response.status_code
        body = self._parse_body(response, strict=200 <= status < 300)

        if status in (200, 201, 202, 204):
            return body

        request_id = self._extract_request_id(body)

        if status == 400:
            raise OJSError.from_response(body, http_status=status)
        if status == 404:
            raise NotFoundError(
                self._extract_message(body, "Not found"),
                request_id=request_id,
                http_status=status,
            )
        if status == 409:
            err = body.get("error", body) if isinstance(body, dict) else {}
            if err.get("code") == "duplicate":
                raise ConflictError(
                    self._extract_message(body, "Duplicate job"),
                    existing_job_id=(err.get("details") or {}).get("existing_job_id"),
                    request_id=request_id,
                    http_status=status,
                )
            raise OJSError.from_response(body, http_status=status)
        if status == 413:
            raise PayloadTooLargeError(
                self._extract_message(body, "Envelope too large"),
                request_id=request_id,
                http_status=status,
            )
        if status == 422:
            raise UnsupportedError(
                self._extract_message(body, "Feature not supported"),
                request_id=request_id,
                http_status=status,
            )
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                self._extract_message(body, "Rate limited"),
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                request_id=request_id,
                http_status=status,
            )
        if 500 <= status < 600:
            raise ServerError(
                self._extract_message(body, "Server error"),
                request_id=request_id,
                http_status=status,
            )

        raise OJSError(f"Unexpected response: {status}", http_status=status)

    @staticmethod
    def _parse_body(response: httpx.Response, strict: bool) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            if strict:
                raise OJSError(
                    f"Invalid JSON in response body: {e}",
                    http_status=response.status_code,
                ) from e
            logger.debug(
                "Ignoring non-JSON error body",
                extra={"status": response.status_code},
            )
            return None

    @staticmethod
    def _extract_message(body: Any, default: str) -> str:
        if not isinstance(body, dict):
            return default
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return err["message"]
        return body.get("message") or default

    @staticmethod
    def _extract_request_id(body: Any) -> str | None:
        if not isinstance(body, dict):
            return None
        err = body.get("error")
        if isinstance(err, dict) and err.get("request_id"):
            return err["request_id"]
        return body.get("request_id")
