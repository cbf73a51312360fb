"""Lazy, cancellable event stream for one prompt.

``EventStream`` is an explicit state machine (``pending -> open -> closed``)
that implements the async iterator and async context manager protocols.
Nothing touches the network until the first ``__anext__``; after that each
``__anext__`` reads from the response only until the next frame is complete.
There is no background reader, so a slow consumer simply leaves bytes in
the socket.

Closing (``aclose()``, ``async with`` exit, task cancellation, a ``done``
event, or a terminal error) closes the HTTP response, expires pending
approvals and frees the session for the next prompt. A stream dropped
without being closed is closed when it is garbage collected.

Example:
    async with await manager.prompt(session, "ping") as stream:
        async for event in stream:
            if isinstance(event, ContentDeltaEvent):
                print(event.delta, end="")
"""

import logging
import weakref
from collections import deque
from collections.abc import Callable
from enum import StrEnum
from types import TracebackType
from typing import TYPE_CHECKING, Self

import httpx
from tenacity import RetryCallState

from amplink.client.events import (
    ApprovalRequiredEvent,
    DoneEvent,
    ErrorEvent,
    Event,
    parse_event,
)
from amplink.client.models import Session
from amplink.client.policy import ReconnectPolicy
from amplink.client.transport import Transport
from amplink.errors import MidStreamError, TransportError
from amplink.lib.sse import Frame, FrameReader

if TYPE_CHECKING:
    from amplink.client.approvals import ApprovalCoordinator

logger = logging.getLogger(__name__)


class StreamState(StrEnum):
    PENDING = "pending"
    OPEN = "open"
    CLOSED = "closed"


def is_replay(frame_id: str, last_event_id: str) -> bool:
    """Whether a frame received after resuming was already delivered.

    Numeric ids are compared as integers; anything else only matches itself.
    """
    if frame_id.isdigit() and last_event_id.isdigit():
        return int(frame_id) <= int(last_event_id)
    return frame_id == last_event_id


class StreamConnection:
    """The HTTP response a stream is reading and the frame reader over it.

    Kept apart from ``EventStream`` so it can still be closed after the
    stream itself was garbage collected.
    """

    def __init__(self) -> None:
        self.response: httpx.Response | None = None
        self.reader: FrameReader | None = None

    @property
    def is_open(self) -> bool:
        return self.response is not None

    def attach(self, response: httpx.Response) -> None:
        self.response = response
        self.reader = FrameReader(response)

    async def aclose(self) -> None:
        response, self.response, self.reader = self.response, None, None
        if response is not None:
            await response.aclose()


class EventStream:
    """One prompt's events, bound to one session.

    Instances come from ``SessionManager.prompt``; do not build them directly.
    ``on_close`` runs once when the stream closes. ``on_abandon`` runs instead
    if the stream is garbage collected while still open.
    """

    def __init__(
        self,
        session: Session,
        text: str,
        *,
        transport: Transport,
        coordinator: "ApprovalCoordinator",
        policy: ReconnectPolicy,
        on_close: Callable[[Session], None],
        on_abandon: Callable[[Session, StreamConnection], None],
    ) -> None:
        self.session = session
        self.text = text
        self._transport = transport
        self._coordinator = coordinator
        self._policy = policy
        self._on_close = on_close

        self._state = StreamState.PENDING
        self._conn = StreamConnection()
        self._frames: deque[Frame] = deque()
        self._eof = False
        self._last_event_id: str | None = None
        self._frames_seen = 0
        self._resumes = 0
        self._retry_hint: float | None = None

        # Must not reference self, or the stream would never be collected
        self._finalizer = weakref.finalize(self, on_abandon, session, self._conn)
        self._finalizer.atexit = False

    def __repr__(self) -> str:
        return (
            f"EventStream(session={self.session.session_id!r}, "
            f"state={self._state.value}, last_event_id={self._last_event_id!r})"
        )

    # ------------------------------------------------------------------
    # State exposed to the reconnect policy
    # ------------------------------------------------------------------

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is StreamState.CLOSED

    @property
    def last_event_id(self) -> str | None:
        """Id of the newest frame received; sent as the resume marker."""
        return self._last_event_id

    @property
    def frames_seen(self) -> int:
        return self._frames_seen

    @property
    def resumes(self) -> int:
        return self._resumes

    @property
    def retry_hint(self) -> float | None:
        """Reconnect delay suggested by the server's ``retry:`` field, seconds."""
        return self._retry_hint

    @property
    def path(self) -> str:
        return f"/sessions/{self.session.session_id}/prompt"

    # ------------------------------------------------------------------
    # Protocols
    # ------------------------------------------------------------------

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> Event:
        if self._state is StreamState.CLOSED:
            raise StopAsyncIteration
        self._state = StreamState.OPEN

        try:
            event = await self._advance()
        except Exception:
            if self._state is StreamState.CLOSED:
                # Closed by another task while this one was reading
                raise StopAsyncIteration from None
            await self.aclose()
            raise
        except BaseException:
            await self.aclose()
            raise

        if event is None:
            await self.aclose()
            raise StopAsyncIteration
        return event

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
        """Cancel the stream. Idempotent; no events are delivered afterwards."""
        if self._state is StreamState.CLOSED:
            return
        self._state = StreamState.CLOSED
        self._finalizer.detach()
        self._frames.clear()
        try:
            await self._conn.aclose()
        finally:
            self._coordinator.expire(self.session.session_id)
            self._on_close(self.session)
            logger.debug(
                "Closed stream for session %s after %d frame(s)",
                self.session.session_id,
                self._frames_seen,
            )

    # ------------------------------------------------------------------
    # Advancing
    # ------------------------------------------------------------------

    async def _advance(self) -> Event | None:
        while True:
            if self.closed:
                return None
            if self._frames:
                return await self._dispatch(self._frames.popleft())
            if self._eof:
                return None

            try:
                async for attempt in self._policy.retrying(
                    self, before_sleep=self._before_reconnect
                ):
                    with attempt:
                        await self._fill()
            except TransportError as e:
                if self.closed:
                    # Closed by another task; the read failed because of it
                    return None
                if not self._frames_seen:
                    raise
                logger.warning(
                    "Stream for session %s interrupted after event %s: %s",
                    self.session.session_id,
                    self._last_event_id,
                    e,
                )
                self._eof = True
                return ErrorEvent.interrupted(
                    str(e), last_event_id=self._last_event_id
                )

    async def _dispatch(self, frame: Frame) -> Event:
        event = parse_event(frame)
        logger.debug(
            "Session %s event %s (id=%s)",
            self.session.session_id,
            event.type,
            event.event_id,
        )
        if isinstance(event, ApprovalRequiredEvent):
            event = self._coordinator.observe(self.session.session_id, event)
        elif isinstance(event, DoneEvent):
            await self.aclose()
        return event

    async def _fill(self) -> None:
        """Read until one new frame is buffered or the body ends."""
        try:
            if not self._conn.is_open:
                await self._connect()
            while not self._frames and not self._eof and not self.closed:
                assert self._conn.reader is not None
                frame = await self._conn.reader.next()
                if frame is None:
                    self._eof = True
                    await self._conn.aclose()
                else:
                    self._accept(frame)
        except BaseException as e:
            await self._conn.aclose()
            error = self._policy.classify(e, frames_seen=self._frames_seen)
            if error is e:
                raise
            raise error from e

    async def _connect(self) -> None:
        response = await self._transport.open_stream(
            self.path,
            json={"content": self.text},
            last_event_id=self._last_event_id,
        )
        if self.closed:
            await response.aclose()
            return
        self._conn.attach(response)

    def _accept(self, frame: Frame) -> None:
        if (
            self._resumes
            and frame.id is not None
            and self._last_event_id is not None
            and is_replay(frame.id, self._last_event_id)
        ):
            logger.debug("Skipping replayed frame %s", frame.id)
            return
        self._frames_seen += 1
        if frame.id is not None:
            self._last_event_id = frame.id
        if frame.retry is not None:
            self._retry_hint = frame.retry / 1000
        self._frames.append(frame)

    def _before_reconnect(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        if isinstance(error, MidStreamError):
            self._resumes += 1
            # The prompt is re-sent; the server is expected to replay, not rerun
            logger.warning(
                "Resuming stream for session %s after event %s in %.2fs "
                "(%d/%d): %s",
                self.session.session_id,
                self._last_event_id,
                delay,
                self._resumes,
                self._policy.resume_max_attempts,
                error,
            )
        else:
            logger.warning(
                "Stream connect for session %s failed (attempt %d/%d), "
                "retrying in %.2fs: %s",
                self.session.session_id,
                retry_state.attempt_number,
                self._policy.connect_max_attempts,
                delay,
                error,
            )
