"""Shared test fixtures.

``FakeService`` stands in for the agent-session service behind an
``httpx.MockTransport``. Tests script what every prompt connection returns
with ``add_stream`` and inspect ``requests`` afterwards.
"""

import asyncio
import json
from collections import deque
from collections.abc import AsyncIterator, Iterable
from typing import Any

import httpx
import pytest

from amplink.client.config import Settings

DROP = object()
"""Stream script marker: the connection resets at this point."""

STALL = object()
"""Stream script marker: the server stops sending without closing.

The read blocks until the client closes the response, then fails the way a
closed socket does.
"""

TIMEOUT = object()
"""Stream script marker: the read timeout expires at this point."""


class Pause:
    """Stream script marker: wait ``seconds`` before the next chunk."""

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds


def event(type_: str, **data: Any) -> dict[str, Any]:
    """Build a wire payload ``{"type": ..., "data": {...}}``."""
    return {"type": type_, "data": data}


def sse(
    payload: dict[str, Any] | str,
    *,
    event_id: str | None = None,
    retry: int | None = None,
) -> bytes:
    """Encode one SSE frame."""
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    if retry is not None:
        lines.append(f"retry: {retry}")
    data = payload if isinstance(payload, str) else json.dumps(payload)
    lines.extend(f"data: {line}" for line in data.split("\n"))
    return ("\n".join(lines) + "\n\n").encode()


class ScriptedStream(httpx.AsyncByteStream):
    """Response body that plays a script of chunks and markers."""

    def __init__(self, script: Iterable[object]) -> None:
        self.script = list(script)
        self.closed = asyncio.Event()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.script:
            if self.closed.is_set():
                raise httpx.ReadError("socket closed")
            if chunk is DROP:
                raise httpx.ReadError("connection reset by peer")
            if chunk is TIMEOUT:
                raise httpx.ReadTimeout("timed out")
            if chunk is STALL:
                await self.closed.wait()
                raise httpx.ReadError("socket closed")
            if isinstance(chunk, Pause):
                await asyncio.sleep(chunk.seconds)
            else:
                assert isinstance(chunk, bytes)
                yield chunk

    async def aclose(self) -> None:
        self.closed.set()


class FakeService:
    """In-memory agent-session service."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.streams: deque[list[object] | httpx.Response] = deque()
        self.session_streams: dict[str, deque[list[object]]] = {}
        self.stream_responses: list[httpx.Response] = []
        self.create_responses: deque[httpx.Response] = deque()
        self.delete_status = 204
        self.approval_status = 200
        self.deleted: set[str] = set()
        self._counter = 0
        self.transport = httpx.MockTransport(self.handle)

    def add_stream(self, *chunks: object, session_id: str | None = None) -> None:
        """Script the body of the next prompt connection.

        With ``session_id`` the script is only used for that session.
        """
        if session_id is None:
            self.streams.append(list(chunks))
        else:
            scripts = self.session_streams.setdefault(session_id, deque())
            scripts.append(list(chunks))

    def add_stream_status(self, status: int) -> None:
        """Make the next prompt connection fail with ``status``."""
        self.streams.append(httpx.Response(status, json={"error": "scripted"}))

    def requests_to(self, method: str, suffix: str) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.path.endswith(suffix)
        ]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        match request.method, request.url.path.strip("/").split("/"):
            case "POST", ["sessions"]:
                if self.create_responses:
                    return self.create_responses.popleft()
                self._counter += 1
                body = json.loads(request.content)
                return httpx.Response(
                    201, json={"session_id": f"s{self._counter}", **body}
                )
            case "POST", ["sessions", session_id, "prompt"]:
                scripted = self.session_streams.get(session_id) or self.streams
                if not scripted:
                    return httpx.Response(500, json={"error": "no stream scripted"})
                script = scripted.popleft()
                if isinstance(script, httpx.Response):
                    return script
                response = httpx.Response(
                    200,
                    headers={"content-type": "text/event-stream"},
                    stream=ScriptedStream(script),
                )
                self.stream_responses.append(response)
                return response
            case "POST", ["sessions", _, "approvals", _]:
                return httpx.Response(self.approval_status, json={"ok": True})
            case "DELETE", ["sessions", session_id]:
                if session_id in self.deleted:
                    return httpx.Response(404, json={"error": "no such session"})
                if self.delete_status < 400:
                    self.deleted.add(session_id)
                return httpx.Response(self.delete_status)
        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def settings() -> Settings:
    """Settings with no backoff so retries run instantly."""
    return Settings(
        base_url="http://agents.test",
        api_key="test-key",
        backoff_min=0,
        backoff_max=0,
        idle_timeout=5,
    )


@pytest.fixture
def service() -> FakeService:
    return FakeService()
