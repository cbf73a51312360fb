"""Error taxonomy for the session protocol client.

Every fail-fast error names the precondition it guards (session state,
request identifier, stream concurrency) so callers can decide whether to
retry, pick another session, or give up.

Hierarchy::

    AmpLinkError
    ├── TransportError
    │   ├── ConnectError        (retryable, nothing received yet)
    │   ├── MidStreamError      (retryable only when resumable)
    │   └── RequestError        (non-retryable HTTP status)
    ├── DecodeError             (terminal, never retried)
    ├── SessionCreateError
    ├── InvalidSessionState
    ├── StreamBusy
    └── UnknownApprovalRequest
        └── ApprovalWindowClosed
"""

from typing import Any


class AmpLinkError(Exception):
    """Base class for all client errors."""


class TransportError(AmpLinkError):
    """A failure talking to the remote service.

    Args:
        message: Human readable description.
        status_code: HTTP status when the server answered, else ``None``.
        body: Decoded error body, when one was returned.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ConnectError(TransportError):
    """Connection could not be established or was refused before any frame."""


class MidStreamError(TransportError):
    """Connection failed after at least one frame was received."""


class RequestError(TransportError):
    """The server rejected a request with a non-retryable status."""


class DecodeError(AmpLinkError):
    """A frame's data could not be decoded as the expected payload.

    Always terminal: the bytes were corrupted, not merely delayed.
    """

    def __init__(self, message: str, *, event_id: str | None = None) -> None:
        super().__init__(message)
        self.event_id = event_id


class SessionCreateError(AmpLinkError):
    """Session creation failed (transport failure or invalid response)."""


class InvalidSessionState(AmpLinkError):
    """Operation requires a different session lifecycle state."""

    def __init__(self, session_id: str, state: str, expected: str) -> None:
        super().__init__(
            f"Session {session_id} is {state!r}, operation requires {expected!r}"
        )
        self.session_id = session_id
        self.state = state
        self.expected = expected


class StreamBusy(AmpLinkError):
    """A stream is already open on the session."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Session {session_id} already has an open stream; "
            "exhaust or close it before prompting again"
        )
        self.session_id = session_id


class UnknownApprovalRequest(AmpLinkError):
    """Approval request id is not pending for the session."""

    def __init__(self, session_id: str, request_id: str, reason: str) -> None:
        super().__init__(
            f"Approval request {request_id!r} on session {session_id}: {reason}"
        )
        self.session_id = session_id
        self.request_id = request_id
        self.reason = reason


class ApprovalWindowClosed(UnknownApprovalRequest):
    """The stream that raised the approval request has already closed."""

    def __init__(self, session_id: str, request_id: str) -> None:
        super().__init__(
            session_id, request_id, "stream closed before a response was recorded"
        )
