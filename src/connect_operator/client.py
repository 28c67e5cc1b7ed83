"""Kafka Connect REST API client.

Thin async wrapper over the connector management endpoints. Every call is
bounded by a deadline and every HTTP-level outcome is converted into either
a decoded payload or a typed exception:

- TransportError: the request never produced an HTTP response
  (connection failure, timeout). Always retryable.
- ApplicationError: the server answered with a non-2xx status.
  NotFoundError (404) and DecodeError (malformed 2xx body) refine it.

asyncio.CancelledError is never caught here, so a cancelled reconcile is
never reported as a failed connector.
"""

from __future__ import annotations

import logging
import ssl
from typing import Any, TypeVar
from urllib.parse import quote

import aiohttp
from pydantic import BaseModel, Field, ValidationError

from .config import DEFAULT_REQUEST_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

CONNECTORS_PATH = "/connectors"

# Status codes that indicate a transient server-side condition.
# 409 is returned both for duplicate names and while a rebalance is in progress.
RETRYABLE_STATUS_CODES = frozenset({408, 409, 429})

JSON_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}

# Cap on error body text kept on exceptions and in logs
MAX_ERROR_BODY_CHARS = 4096

PayloadT = TypeVar("PayloadT", bound=BaseModel)


# =============================================================================
# Errors
# =============================================================================


class KafkaConnectError(Exception):
    """Base class for every error raised by the client."""

    retryable: bool = True


class TransportError(KafkaConnectError):
    """The request did not complete: network failure or deadline exceeded."""

    def __init__(self, message: str, *, operation: str, timed_out: bool = False) -> None:
        super().__init__(message)
        self.operation = operation
        self.timed_out = timed_out


class ApplicationError(KafkaConnectError):
    """Kafka Connect answered with a non-2xx status code."""

    def __init__(
        self, status_code: int, body: str, *, operation: str, message: str | None = None
    ) -> None:
        self.status_code = status_code
        self.body = body[:MAX_ERROR_BODY_CHARS]
        self.operation = operation
        super().__init__(message or f"{operation} failed with HTTP {status_code}: {self.body}")

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        """Transient server conditions are retryable; other 4xx are configuration errors."""
        return self.status_code >= 500 or self.status_code in RETRYABLE_STATUS_CODES

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409


class NotFoundError(ApplicationError):
    """The connector does not exist. A state, not a failure."""

    def __init__(self, body: str, *, operation: str) -> None:
        super().__init__(404, body, operation=operation)


class DecodeError(ApplicationError):
    """A success response carried a body that could not be decoded."""

    def __init__(self, status_code: int, body: str, *, operation: str, reason: str) -> None:
        super().__init__(
            status_code,
            body,
            operation=operation,
            message=f"{operation} returned an undecodable body (HTTP {status_code}): {reason}",
        )

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return True


# =============================================================================
# Wire payloads
# =============================================================================


class TaskId(BaseModel):
    model_config = {"extra": "ignore"}

    connector: str
    task: int


class ConnectorInfo(BaseModel):
    """Response of create, get and update-config."""

    model_config = {"extra": "ignore"}

    name: str
    config: dict[str, str] = Field(default_factory=dict)
    tasks: list[TaskId] = Field(default_factory=list)
    type: str | None = None


class StateInfo(BaseModel):
    model_config = {"extra": "ignore"}

    state: str
    worker_id: str = ""
    trace: str | None = None


class TaskStateInfo(StateInfo):
    id: int


class ConnectorStatusPayload(BaseModel):
    """Response of GET /connectors/{name}/status."""

    model_config = {"extra": "ignore"}

    name: str
    connector: StateInfo
    tasks: list[TaskStateInfo] = Field(default_factory=list)
    type: str | None = None


# =============================================================================
# Client
# =============================================================================


class KafkaConnectClient:
    """Client bound to one Kafka Connect endpoint.

    Instances are cheap: the underlying aiohttp session (and its connection
    pool) is owned by ConnectionPool and shared between clients.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        *,
        username: str | None = None,
        password: str | None = None,
        ssl_context: ssl.SSLContext | bool = True,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._ssl = ssl_context
        self._timeout_seconds = timeout_seconds

        # Basic auth only when both halves are configured
        self._auth: aiohttp.BasicAuth | None = None
        if username and password:
            self._auth = aiohttp.BasicAuth(username, password)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def create(
        self, name: str, config: dict[str, str], *, timeout: float | None = None
    ) -> ConnectorInfo:
        """Create a connector. Raises ApplicationError with is_conflict if it exists."""
        body = {"name": name, "config": _require_strings(config)}
        raw, status = await self._request(
            "POST", CONNECTORS_PATH, operation="create", json_body=body, timeout=timeout
        )
        return _decode(ConnectorInfo, raw, status, operation="create")

    async def get(self, name: str, *, timeout: float | None = None) -> ConnectorInfo:
        """Get a connector's name, config and task ids."""
        raw, status = await self._request(
            "GET", _connector_path(name), operation="get", timeout=timeout
        )
        return _decode(ConnectorInfo, raw, status, operation="get")

    async def update_config(
        self, name: str, config: dict[str, str], *, timeout: float | None = None
    ) -> ConnectorInfo:
        """Replace a connector's configuration with the given map."""
        raw, status = await self._request(
            "PUT",
            _connector_path(name, "config"),
            operation="update",
            json_body=_require_strings(config),
            timeout=timeout,
        )
        return _decode(ConnectorInfo, raw, status, operation="update")

    async def delete(self, name: str, *, timeout: float | None = None) -> None:
        """Delete a connector. Raises NotFoundError if it is already gone."""
        await self._request("DELETE", _connector_path(name), operation="delete", timeout=timeout)

    async def get_status(
        self, name: str, *, timeout: float | None = None
    ) -> ConnectorStatusPayload:
        """Get connector and task states."""
        raw, status = await self._request(
            "GET", _connector_path(name, "status"), operation="status", timeout=timeout
        )
        return _decode(ConnectorStatusPayload, raw, status, operation="status")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        json_body: Any = None,
        timeout: float | None = None,
    ) -> tuple[bytes, int]:
        """Send a request and return (body, status) for 2xx responses.

        Raises:
            TransportError: On connection errors and timeouts.
            NotFoundError: On HTTP 404.
            ApplicationError: On any other non-2xx status.
        """
        url = self._base_url + path
        deadline = timeout if timeout is not None else self._timeout_seconds

        try:
            async with self._session.request(
                method,
                url,
                json=json_body,
                headers=JSON_HEADERS,
                auth=self._auth,
                ssl=self._ssl,
                timeout=aiohttp.ClientTimeout(total=deadline),
            ) as resp:
                raw = await resp.read()
                status = resp.status
        except TimeoutError as e:
            # aiohttp.ServerTimeoutError is also a TimeoutError, so this comes first
            raise TransportError(
                f"{operation} timed out after {deadline:g}s: {method} {url}",
                operation=operation,
                timed_out=True,
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(
                f"{operation} failed: {method} {url}: {type(e).__name__}: {e}",
                operation=operation,
            ) from e

        logger.debug(
            "Kafka Connect request",
            extra={"method": method, "url": url, "status": status, "operation": operation},
        )

        if 200 <= status < 300:
            return raw, status

        text = raw.decode("utf-8", errors="replace")
        if status == 404:
            raise NotFoundError(text, operation=operation)
        raise ApplicationError(status, text, operation=operation)


class ConnectionPool:
    """Owns the aiohttp session shared by every reconcile worker.

    Usage:
        async with ConnectionPool(timeout_seconds=30) as pool:
            client = pool.client("http://connect:8083")
            info = await client.get("sink1")
    """

    def __init__(self, *, timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS) -> None:
        self._timeout_seconds = timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> ConnectionPool:
        self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def client(
        self,
        base_url: str,
        *,
        username: str | None = None,
        password: str | None = None,
        ssl_context: ssl.SSLContext | bool = True,
    ) -> KafkaConnectClient:
        if self._session is None:
            raise RuntimeError("ConnectionPool must be entered before creating clients")
        return KafkaConnectClient(
            self._session,
            base_url,
            username=username,
            password=password,
            ssl_context=ssl_context,
            timeout_seconds=self._timeout_seconds,
        )


def _connector_path(name: str, *suffix: str) -> str:
    return "/".join([CONNECTORS_PATH, quote(name, safe=""), *suffix])


def _require_strings(config: dict[str, str]) -> dict[str, str]:
    """Refuse to send non-string values; Kafka Connect config is string-only."""
    for key, value in config.items():
        if not isinstance(value, str):
            raise TypeError(
                f"config value for {key!r} must be str, got {type(value).__name__}"
            )
    return config


def _decode(model: type[PayloadT], raw: bytes, status: int, *, operation: str) -> PayloadT:
    text = raw.decode("utf-8", errors="replace")
    if not text.strip():
        raise DecodeError(status, text, operation=operation, reason="empty body")
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise DecodeError(status, text, operation=operation, reason=str(e)) from e

