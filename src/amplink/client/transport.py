"""HTTP transport for the agent-session service.

Thin wrapper over ``httpx.AsyncClient`` that maps HTTP failures onto the
client error taxonomy. Unary calls return decoded JSON; ``open_stream``
returns an open ``httpx.Response`` whose body the caller reads and must
close.

Failure mapping:
- could not connect, or status in ``RETRYABLE_STATUS`` -> ``ConnectError``
- any other 4xx/5xx -> ``RequestError``
- connection broke after the request was sent -> ``TransportError``
"""

import logging
from typing import Any

import httpx

from amplink.client.config import Settings
from amplink.errors import ConnectError, RequestError, TransportError
from amplink.lib.retry import with_retry
from amplink.version import CLIENT_VERSION

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({408, 429, 502, 503, 504})
"""Statuses meaning the request was not processed and may be sent again."""

_CONNECT_FAILURES = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


def _error_detail(response: httpx.Response) -> tuple[str, Any]:
    """Extract a message and body from an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}", None
    if isinstance(body, dict):
        message = body.get("error") or body.get("detail") or body.get("message")
        if isinstance(message, dict):
            message = message.get("message")
        if message:
            return str(message), body
    return response.text or f"HTTP {response.status_code}", body


def status_error(method: str, path: str, response: httpx.Response) -> TransportError:
    """Build the taxonomy error for a non-2xx response."""
    message, body = _error_detail(response)
    text = f"{method} {path} -> HTTP {response.status_code}: {message}"
    if response.status_code in RETRYABLE_STATUS:
        return ConnectError(text, status_code=response.status_code, body=body)
    return RequestError(text, status_code=response.status_code, body=body)


class Transport:
    """Sends requests to the remote service.

    Args:
        settings: Base URL, timeouts, credentials and retry limits.
        transport: Optional httpx transport (e.g. ``httpx.MockTransport``).
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        headers = {
            "Accept": "application/json",
            "User-Agent": f"amplink/{CLIENT_VERSION}",
        }
        if settings.api_key:
            headers["Authorization"] = f"Bearer {settings.api_key}"
        self._client = httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(
                settings.request_timeout, connect=settings.connect_timeout
            ),
            transport=transport,
        )

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def request(
        self, method: str, path: str, *, json: dict[str, Any] | None = None
    ) -> Any:
        """Send a unary request, retrying while the service is unreachable.

        Returns:
            Decoded JSON body, or ``None`` for an empty body.

        Raises:
            ConnectError: Still unreachable after the configured attempts.
            RequestError: The server rejected the request.
            TransportError: The connection failed after the request was sent.
        """
        send = with_retry(
            max_attempts=self.settings.connect_max_attempts,
            min_wait=self.settings.backoff_min,
            max_wait=self.settings.backoff_max,
        )(self._request_once)
        return await send(method, path, json=json)

    async def _request_once(
        self, method: str, path: str, *, json: dict[str, Any] | None = None
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json)
        except _CONNECT_FAILURES as e:
            raise ConnectError(f"{method} {path}: could not connect: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            raise status_error(method, path, response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"{method} {path}: response is not JSON",
                status_code=response.status_code,
            ) from e

    async def open_stream(
        self,
        path: str,
        *,
        json: dict[str, Any],
        last_event_id: str | None = None,
    ) -> httpx.Response:
        """Open a streaming POST and return the response with its body unread.

        When ``last_event_id`` is given the request asks the server to resume
        after that frame and to skip frames already delivered.

        Raises:
            ConnectError: Connection failed or a retryable status came back.
            RequestError: The server rejected the request.
        """
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if last_event_id is not None:
            headers["Last-Event-ID"] = last_event_id
            headers["X-Skip-Duplicates"] = "true"

        # Any bytes, heartbeat comments included, reset the read timeout
        request = self._client.build_request(
            "POST",
            path,
            json=json,
            headers=headers,
            timeout=httpx.Timeout(
                self.settings.request_timeout,
                connect=self.settings.connect_timeout,
                read=self.settings.idle_timeout,
            ),
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TransportError as e:
            raise ConnectError(f"POST {path}: could not open stream: {e}") from e

        if response.is_error:
            try:
                await response.aread()
            finally:
                await response.aclose()
            raise status_error("POST", path, response)

        logger.debug(
            "Opened stream %s (resume from %s)", path, last_event_id or "start"
        )
        return response

    async def aclose(self) -> None:
        await self._client.aclose()
