"""Session lifecycle management.

``SessionManager`` is the only component that mutates ``Session`` state.
It creates and deletes sessions on the service and hands out at most one
open ``EventStream`` per session at a time.

Lifecycle::

    created -> active -> deleting -> deleted

Example:
    async with manager.session(SessionConfig(bundle="foundation")) as session:
        stream = await manager.prompt(session, "ping")
        async for event in stream:
            ...
    # session deleted here, on every exit path
"""

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from amplink.client.approvals import ApprovalCoordinator
from amplink.client.models import Session, SessionConfig, SessionState, StreamSlot
from amplink.client.policy import ReconnectPolicy
from amplink.client.stream import EventStream, StreamConnection
from amplink.client.transport import Transport
from amplink.errors import (
    InvalidSessionState,
    RequestError,
    SessionCreateError,
    StreamBusy,
    TransportError,
)

logger = logging.getLogger(__name__)


class SessionManager:
    """Creates, tracks and deletes sessions; opens prompt streams.

    Args:
        transport: HTTP transport to the service.
        coordinator: Approval coordinator shared with the streams.
        policy: Reconnect policy applied to every stream.
        default_bundle: Bundle used when a config does not name one.
    """

    def __init__(
        self,
        transport: Transport,
        coordinator: ApprovalCoordinator,
        policy: ReconnectPolicy,
        *,
        default_bundle: str = "foundation",
    ) -> None:
        self._transport = transport
        self._coordinator = coordinator
        self._policy = policy
        self._default_bundle = default_bundle
        self._sessions: dict[str, Session] = {}
        # Weak: dropping the last reference to a stream releases its session
        self._streams: weakref.WeakValueDictionary[str, EventStream] = (
            weakref.WeakValueDictionary()
        )
        self._background_tasks: set[asyncio.Task[None]] = set()

    @property
    def sessions(self) -> list[Session]:
        """Sessions created by this manager and not yet deleted."""
        return list(self._sessions.values())

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def stream_for(self, session: Session) -> EventStream | None:
        """The stream currently open on ``session``, if any."""
        return self._streams.get(session.session_id)

    async def create_session(self, config: SessionConfig | None = None) -> Session:
        """Create a session on the service.

        Raises:
            SessionCreateError: Transport failure, rejection, or a response
                without a session id.
        """
        config = config or SessionConfig()
        try:
            body = await self._transport.request(
                "POST", "/sessions", json=config.to_request(self._default_bundle)
            )
        except TransportError as e:
            raise SessionCreateError(f"Could not create session: {e}") from e

        if not isinstance(body, dict) or not isinstance(body.get("session_id"), str):
            raise SessionCreateError(
                f"Create-session response has no session_id: {body!r}"
            )

        session = Session(session_id=body["session_id"], config=config, info=body)
        session.state = SessionState.ACTIVE
        self._sessions[session.session_id] = session
        logger.info(
            "Created session %s (bundle=%s)",
            session.session_id,
            body.get("bundle") or config.bundle or self._default_bundle,
        )
        return session

    async def delete_session(self, session: Session) -> None:
        """Delete a session. Deleting a deleted session is a no-op.

        An open stream on the session is cancelled first. A 404 from the
        service counts as already deleted.

        Raises:
            TransportError: The service could not be reached or refused; the
                session returns to ``active`` so the call can be retried.
        """
        async with session.lock:
            if session.state in (SessionState.DELETED, SessionState.DELETING):
                return

            previous = session.state
            session.state = SessionState.DELETING
            stream = self._streams.get(session.session_id)
            if stream is not None:
                await stream.aclose()

            try:
                await self._transport.request(
                    "DELETE", f"/sessions/{session.session_id}"
                )
            except RequestError as e:
                if e.status_code != 404:
                    session.state = previous
                    raise
                logger.debug("Session %s already gone on server", session.session_id)
            except BaseException:
                session.state = previous
                raise

            session.state = SessionState.DELETED
            self._sessions.pop(session.session_id, None)
            self._coordinator.forget(session.session_id)
            logger.info("Deleted session %s", session.session_id)

    async def prompt(self, session: Session, text: str) -> EventStream:
        """Start a prompt and return its (not yet connected) event stream.

        Raises:
            InvalidSessionState: The session is not active.
            StreamBusy: A previous stream on the session is still open.
        """
        async with session.lock:
            if session.state is not SessionState.ACTIVE:
                raise InvalidSessionState(
                    session.session_id, session.state.value, SessionState.ACTIVE.value
                )
            if session.stream_slot is StreamSlot.STREAMING:
                raise StreamBusy(session.session_id)

            stream = EventStream(
                session,
                text,
                transport=self._transport,
                coordinator=self._coordinator,
                policy=self._policy,
                on_close=self._release,
                on_abandon=self._abandoned,
            )
            session.stream_slot = StreamSlot.STREAMING
            self._streams[session.session_id] = stream
            return stream

    def _release(self, session: Session) -> None:
        self._streams.pop(session.session_id, None)
        session.stream_slot = StreamSlot.IDLE

    def _abandoned(self, session: Session, connection: StreamConnection) -> None:
        """Release a stream that was garbage collected without being closed."""
        logger.warning(
            "Stream for session %s was dropped without being closed; closing it",
            session.session_id,
        )
        self._coordinator.expire(session.session_id)
        self._release(session)
        if not connection.is_open:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop; response for session %s left open",
                session.session_id,
            )
            return
        task = loop.create_task(self._close_connection(connection))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _close_connection(self, connection: StreamConnection) -> None:
        try:
            await connection.aclose()
        except httpx.HTTPError as e:
            logger.warning("Could not close abandoned stream: %s", e)

    @asynccontextmanager
    async def session(
        self, config: SessionConfig | None = None
    ) -> AsyncIterator[Session]:
        """Create a session for the duration of a block; always deleted after."""
        session = await self.create_session(config)
        try:
            yield session
        finally:
            await self.delete_session(session)

    async def aclose(self) -> None:
        """Delete every session this manager still tracks.

        Also waits for abandoned streams still being closed.
        """
        for session in list(self._sessions.values()):
            try:
                await self.delete_session(session)
            except TransportError as e:
                logger.warning(
                    "Could not delete session %s on shutdown: %s",
                    session.session_id,
                    e,
                )
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks)
