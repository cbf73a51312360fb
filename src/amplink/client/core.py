"""Client facade, response collection and one-shot execution.

All application-facing operations go through ``AmpLinkClient``, which wires
the transport, session manager and approval coordinator together.

Exports:
- AmpLinkClient: create/delete/prompt/respond_approval/run
- ResponseCollector: drains a stream into a ``Response``
- build_client(): AsyncContextManager[AmpLinkClient]
- run(text, ...): build + create session + prompt + collect + delete

Examples:
    One-shot::

        >>> response = await run("Summarize the README")
        >>> response.text
        'The README describes...'

    Streaming with approvals::

        >>> async with build_client() as client:
        ...     async with client.session() as session:
        ...         async for event in await client.prompt(session, "clean up"):
        ...             if isinstance(event, ApprovalRequiredEvent):
        ...                 await client.respond_approval(
        ...                     session, event.request_id, "approved"
        ...                 )
"""

import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from types import TracebackType
from typing import Self

import httpx
from pydantic import BaseModel, Field

from amplink.client.approvals import ApprovalCoordinator
from amplink.client.config import Settings, settings as default_settings
from amplink.client.events import (
    ApprovalRequiredEvent,
    ContentDeltaEvent,
    ContentEndEvent,
    DoneEvent,
    ErrorEvent,
    Event,
    ToolCallEvent,
)
from amplink.client.models import ApprovalRequest, Decision, Session, SessionConfig
from amplink.client.policy import ReconnectPolicy
from amplink.client.sessions import SessionManager
from amplink.client.stream import EventStream
from amplink.client.transport import Transport

logger = logging.getLogger(__name__)

ApprovalHandler = Callable[
    [ApprovalRequest], Decision | bool | Awaitable[Decision | bool]
]
"""Decides an approval request during ``run``/``collect``; may be async."""


# ---------------------------------------------------------------------------
# Response collection
# ---------------------------------------------------------------------------


class Response(BaseModel):
    """Everything a prompt produced, gathered from its event stream."""

    session_id: str
    text: str = ""
    events: list[Event] = Field(default_factory=list)
    tool_calls: list[ToolCallEvent] = Field(default_factory=list)
    approvals: list[ApprovalRequest] = Field(default_factory=list)
    error: ErrorEvent | None = None
    done: DoneEvent | None = None

    @property
    def completed(self) -> bool:
        """True when the server signalled ``done``."""
        return self.done is not None


class ResponseCollector:
    """Accumulates a stream's events into a ``Response``.

    Supports two usage patterns:

    **async for**: iterate events yourself; state accumulates as you go::

        collector = ResponseCollector(client, stream)
        async for event in collector:
            ...

    **collect()**: drain the stream and return the ``Response``::

        response = await ResponseCollector(client, stream).collect()

    With an ``approval_handler`` every ``approval.required`` event is
    answered as it arrives; without one, approvals are recorded and expire
    when the stream ends.
    """

    def __init__(
        self,
        client: "AmpLinkClient",
        stream: EventStream,
        *,
        approval_handler: ApprovalHandler | None = None,
    ) -> None:
        self.client = client
        self.stream = stream
        self.approval_handler = approval_handler
        self.response = Response(session_id=stream.session.session_id)
        self._parts: list[str] = []

    @property
    def text(self) -> str:
        return "".join(self._parts)

    async def __aiter__(self) -> AsyncIterator[Event]:
        async with self.stream:
            async for event in self.stream:
                self.response.events.append(event)
                match event:
                    case ContentDeltaEvent():
                        self._parts.append(event.delta)
                    case ContentEndEvent(text=str() as text) if not self._parts:
                        self._parts.append(text)
                    case ToolCallEvent():
                        self.response.tool_calls.append(event)
                    case ApprovalRequiredEvent():
                        if event.approval is not None:
                            self.response.approvals.append(event.approval)
                        await self._answer(event)
                    case ErrorEvent():
                        self.response.error = event
                        logger.warning(
                            "Error event on session %s: %s",
                            self.response.session_id,
                            event.message,
                        )
                    case DoneEvent():
                        self.response.done = event
                self.response.text = self.text
                yield event

    async def _answer(self, event: ApprovalRequiredEvent) -> None:
        if self.approval_handler is None or event.approval is None:
            return
        if event.approval.resolved:
            return
        decision = self.approval_handler(event.approval)
        if inspect.isawaitable(decision):
            decision = await decision
        await self.client.respond_approval(
            self.stream.session, event.request_id, decision
        )

    async def collect(self) -> Response:
        """Drain the stream and return the accumulated response."""
        async for _ in self:
            pass
        return self.response


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class AmpLinkClient:
    """Application-facing client for the agent-session service.

    Args:
        settings: Overrides the module-level settings singleton.
        transport: Optional httpx transport, e.g. ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.transport = Transport(self.settings, transport=transport)
        self.approvals = ApprovalCoordinator(self.transport)
        self.sessions = SessionManager(
            self.transport,
            self.approvals,
            ReconnectPolicy.from_settings(self.settings),
            default_bundle=self.settings.default_bundle,
        )

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Delete remaining sessions and close the HTTP client."""
        try:
            await self.sessions.aclose()
        finally:
            await self.transport.aclose()

    async def create_session(self, config: SessionConfig | None = None) -> Session:
        return await self.sessions.create_session(config)

    async def delete_session(self, session: Session) -> None:
        await self.sessions.delete_session(session)

    async def prompt(self, session: Session, text: str) -> EventStream:
        return await self.sessions.prompt(session, text)

    async def respond_approval(
        self, session: Session, request_id: str, decision: Decision | bool
    ) -> ApprovalRequest:
        return await self.approvals.respond(session, request_id, decision)

    def session(
        self, config: SessionConfig | None = None
    ) -> AbstractAsyncContextManager[Session]:
        """Scoped session: created on entry, deleted on every exit path."""
        return self.sessions.session(config)

    async def run(
        self,
        text: str,
        *,
        config: SessionConfig | None = None,
        approval_handler: ApprovalHandler | None = None,
    ) -> Response:
        """Create a session, run one prompt to completion, delete the session."""
        async with self.session(config) as session:
            stream = await self.prompt(session, text)
            collector = ResponseCollector(
                self, stream, approval_handler=approval_handler
            )
            return await collector.collect()


# ---------------------------------------------------------------------------
# Construction helpers
# ---------------------------------------------------------------------------


@asynccontextmanager
async def build_client(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[AmpLinkClient]:
    """Yield a client whose sessions and connections are closed on exit."""
    async with AmpLinkClient(settings, transport=transport) as client:
        yield client


async def run(
    text: str,
    *,
    config: SessionConfig | None = None,
    approval_handler: ApprovalHandler | None = None,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Response:
    """One-shot execution: build a client, run ``text``, tear everything down."""
    async with build_client(settings, transport=transport) as client:
        return await client.run(
            text, config=config, approval_handler=approval_handler
        )
