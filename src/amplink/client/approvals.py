"""Approval coordination.

Correlates ``approval.required`` events with the caller's decisions by
request id. The coordinator never holds the stream back: it records the
request and lets the event through; whether execution waits for the answer
is up to the server.

State machine per request::

    pending --respond--> approved | denied
    pending --stream closed--> expired

All three outcomes are terminal.
"""

import logging
from typing import TYPE_CHECKING

from amplink.client.events import ApprovalRequiredEvent
from amplink.client.models import (
    ApprovalRequest,
    ApprovalState,
    Decision,
    Session,
    StreamSlot,
)
from amplink.errors import ApprovalWindowClosed, UnknownApprovalRequest

if TYPE_CHECKING:
    from amplink.client.transport import Transport

logger = logging.getLogger(__name__)


def normalize_decision(decision: Decision | bool) -> ApprovalState:
    """Turn ``"approved"``/``"denied"`` (or a bool) into an ``ApprovalState``."""
    if isinstance(decision, bool):
        return ApprovalState.APPROVED if decision else ApprovalState.DENIED
    match decision:
        case "approved":
            return ApprovalState.APPROVED
        case "denied":
            return ApprovalState.DENIED
    raise ValueError(f"Decision must be 'approved' or 'denied', got {decision!r}")


class ApprovalCoordinator:
    """Tracks approval requests per session and sends decisions."""

    def __init__(self, transport: "Transport") -> None:
        self._transport = transport
        self._requests: dict[str, dict[str, ApprovalRequest]] = {}
        self._in_flight: set[tuple[str, str]] = set()
        # Final states of requests whose session was deleted
        self._settled: dict[tuple[str, str], ApprovalState] = {}

    def observe(
        self, session_id: str, event: ApprovalRequiredEvent
    ) -> ApprovalRequiredEvent:
        """Register the request carried by ``event`` and attach it.

        A request id seen before (a frame replayed after a reconnect) keeps
        its existing record.
        """
        requests = self._requests.setdefault(session_id, {})
        request = requests.get(event.request_id)
        if request is None:
            request = ApprovalRequest(
                request_id=event.request_id,
                session_id=session_id,
                prompt=event.prompt,
                options=event.options,
            )
            requests[event.request_id] = request
            logger.info(
                "Approval %s requested on session %s: %s",
                event.request_id,
                session_id,
                event.prompt,
            )
        return event.model_copy(update={"approval": request})

    def get(self, session_id: str, request_id: str) -> ApprovalRequest | None:
        return self._requests.get(session_id, {}).get(request_id)

    def pending(self, session_id: str) -> list[ApprovalRequest]:
        """Requests on the session still waiting for a decision."""
        return [
            r
            for r in self._requests.get(session_id, {}).values()
            if r.state is ApprovalState.PENDING
        ]

    def expire(self, session_id: str) -> list[ApprovalRequest]:
        """Expire every pending request of a session whose stream closed.

        Requests with a response already in flight are left to settle.
        """
        expired = []
        for request in self.pending(session_id):
            if (session_id, request.request_id) in self._in_flight:
                continue
            request.state = ApprovalState.EXPIRED
            expired.append(request)
        if expired:
            logger.info(
                "Expired %d unanswered approval(s) on session %s",
                len(expired),
                session_id,
            )
        return expired

    def forget(self, session_id: str) -> None:
        """Drop the records of a deleted session.

        Only each request's final state is kept, so a late ``respond`` still
        tells an expired request apart from one never observed.
        """
        for request in self._requests.pop(session_id, {}).values():
            self._settled[(session_id, request.request_id)] = request.state

    def _claim(self, session_id: str, request_id: str) -> ApprovalRequest:
        request = self.get(session_id, request_id)
        if request is None:
            match self._settled.get((session_id, request_id)):
                case None:
                    raise UnknownApprovalRequest(
                        session_id, request_id, "never observed"
                    )
                case ApprovalState.EXPIRED | ApprovalState.PENDING:
                    raise ApprovalWindowClosed(session_id, request_id)
                case state:
                    raise UnknownApprovalRequest(
                        session_id, request_id, f"already {state.value}"
                    )
        if request.state is ApprovalState.EXPIRED:
            raise ApprovalWindowClosed(session_id, request_id)
        if request.state is not ApprovalState.PENDING:
            raise UnknownApprovalRequest(
                session_id, request_id, f"already {request.state.value}"
            )
        key = (session_id, request_id)
        if key in self._in_flight:
            raise UnknownApprovalRequest(
                session_id, request_id, "a response is already in flight"
            )
        self._in_flight.add(key)
        return request

    async def respond(
        self,
        session: Session,
        request_id: str,
        decision: Decision | bool,
    ) -> ApprovalRequest:
        """Send a decision for a pending request.

        Raises:
            UnknownApprovalRequest: Never observed, already answered, or an
                answer is in flight.
            ApprovalWindowClosed: The stream closed before an answer.
            TransportError: Sending failed; the request stays pending unless
                its stream closed meanwhile.
        """
        state = normalize_decision(decision)
        session_id = session.session_id
        request = self._claim(session_id, request_id)
        try:
            await self._transport.request(
                "POST",
                f"/sessions/{session_id}/approvals/{request_id}",
                json={"decision": state.value},
            )
        except BaseException:
            self._in_flight.discard((session_id, request_id))
            if session.stream_slot is StreamSlot.IDLE:
                request.state = ApprovalState.EXPIRED
            raise
        self._in_flight.discard((session_id, request_id))
        request.state = state
        logger.info(
            "Approval %s on session %s %s", request_id, session_id, state.value
        )
        return request
