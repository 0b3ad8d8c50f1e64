"""HTTP transport: the only place that talks to :mod:`httpx` directly.

:class:`HttpxTransport` wraps :class:`httpx.AsyncClient` and turns every
httpx exception into a :class:`RequestFailure` whose :class:`FailureKind`
says *why* the request failed (timeout phase, connection failure,
cancellation, ...).  Nothing above this module ever sees an httpx
exception type.

``RequestFailure`` is also what the pipeline uses for non-2xx responses
(kind ``BAD_RESPONSE``), so the retry and CSRF stages classify transport
failures and HTTP errors in one place.

Example::

    transport = HttpxTransport(config, inner=httpx.MockTransport(handler))
    request = transport.build_request("GET", "/api/user")
    response = await transport.send(request)
"""

from __future__ import annotations

import abc
import enum
from typing import Any, Optional

import httpx

from sanctum_auth.models import SanctumConfig


class FailureKind(str, enum.Enum):
    """Why a request did not produce a usable response."""

    CONNECT_TIMEOUT = "connect_timeout"
    RECEIVE_TIMEOUT = "receive_timeout"
    SEND_TIMEOUT = "send_timeout"
    CONNECTION = "connection"
    CANCELLED = "cancelled"
    BAD_RESPONSE = "bad_response"
    UNKNOWN = "unknown"

    @property
    def is_timeout(self) -> bool:
        return self in (
            FailureKind.CONNECT_TIMEOUT,
            FailureKind.RECEIVE_TIMEOUT,
            FailureKind.SEND_TIMEOUT,
        )


class RequestFailure(Exception):
    """A failed request, before it is mapped to a :class:`~sanctum_auth.exceptions.SanctumError`.

    Args:
        kind: Failure category.
        message: Description for logs.
        request: The request that failed, when known.
        response: The error response for ``BAD_RESPONSE`` failures.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        request: Optional[httpx.Request] = None,
        response: Optional[httpx.Response] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.request = request
        self.response = response

    @property
    def status_code(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None

    @classmethod
    def from_response(cls, response: httpx.Response) -> RequestFailure:
        return cls(
            FailureKind.BAD_RESPONSE,
            f"HTTP {response.status_code}",
            request=response.request,
            response=response,
        )

    def body(self) -> Any:
        """Decoded JSON body of the error response, or ``None``."""
        if self.response is None:
            return None
        return response_json(self.response)

    def body_message(self) -> str:
        """The backend's ``message`` field, or an empty string."""
        body = self.body()
        if isinstance(body, dict):
            return str(body.get("message") or "")
        return ""

    def __repr__(self) -> str:
        return f"RequestFailure(kind={self.kind.value!r}, status_code={self.status_code!r})"


def response_json(response: httpx.Response) -> Any:
    """Decode a JSON body, returning ``None`` for empty or non-JSON content."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class Transport(abc.ABC):
    """Sends fully built requests.

    Implementations must raise :class:`RequestFailure` for transport-level
    errors and return every HTTP response, whatever its status.
    """

    @abc.abstractmethod
    def build_request(
        self,
        method: str,
        path: str,
        headers: Optional[dict[str, str]] = None,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> httpx.Request:
        """Build a request for *path* relative to the configured base URL."""

    @abc.abstractmethod
    async def send(self, request: httpx.Request) -> httpx.Response:
        """Send *request* and return the response, or raise :class:`RequestFailure`."""

    async def aclose(self) -> None:
        """Release network resources."""


class HttpxTransport(Transport):
    """:class:`Transport` backed by :class:`httpx.AsyncClient`.

    Args:
        config: Supplies the base URL, per-phase timeouts, and the
            connection limit.
        inner: Optional httpx transport (e.g. :class:`httpx.MockTransport`
            in tests).
    """

    def __init__(
        self,
        config: SanctumConfig,
        inner: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        timeouts = config.timeouts
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(
                connect=timeouts.connect,
                read=timeouts.receive,
                write=timeouts.send,
                pool=timeouts.connect,
            ),
            limits=httpx.Limits(
                max_connections=config.max_connections,
                max_keepalive_connections=config.max_connections,
            ),
            transport=inner,
        )

    def build_request(
        self,
        method: str,
        path: str,
        headers: Optional[dict[str, str]] = None,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> httpx.Request:
        # Built without the client's cookie jar; cookies are attached by the pipeline.
        return httpx.Request(
            method.upper(),
            self._url_for(path),
            headers=headers,
            json=json,
            params=params,
            extensions={"timeout": self._client.timeout.as_dict()},
        )

    def _url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._config.base_url}/{path.lstrip('/')}"

    async def send(self, request: httpx.Request) -> httpx.Response:
        try:
            return await self._client.send(request)
        except httpx.ConnectTimeout as exc:
            raise RequestFailure(FailureKind.CONNECT_TIMEOUT, f"Connect timeout: {exc}", request) from exc
        except httpx.PoolTimeout as exc:
            raise RequestFailure(FailureKind.CONNECT_TIMEOUT, f"Pool timeout: {exc}", request) from exc
        except httpx.ReadTimeout as exc:
            raise RequestFailure(FailureKind.RECEIVE_TIMEOUT, f"Receive timeout: {exc}", request) from exc
        except httpx.WriteTimeout as exc:
            raise RequestFailure(FailureKind.SEND_TIMEOUT, f"Send timeout: {exc}", request) from exc
        except httpx.NetworkError as exc:
            raise RequestFailure(FailureKind.CONNECTION, f"Connection failed: {exc}", request) from exc
        except httpx.HTTPError as exc:
            raise RequestFailure(FailureKind.UNKNOWN, f"Request failed: {exc}", request) from exc

    async def aclose(self) -> None:
        await self._client.aclose()
