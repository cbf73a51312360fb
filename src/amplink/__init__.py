"""Client library for remote agent sessions streamed over SSE.

Structure:
- amplink/errors.py: Error taxonomy shared by every layer
- amplink/lib/: Protocol utilities (SSE decoding, retry helpers)
- amplink/client/: Session protocol client
  - transport.py: HTTP requests and streaming responses
  - stream.py: Lazy, cancellable event stream with reconnect
  - sessions.py: Session lifecycle, one open stream per session
  - approvals.py: approval.required correlation
  - core.py: AmpLinkClient facade and one-shot run()
"""

from amplink.client import (
    AmpLinkClient,
    ApprovalRequest,
    ApprovalRequiredEvent,
    ContentDeltaEvent,
    DoneEvent,
    ErrorEvent,
    Event,
    EventStream,
    Response,
    Session,
    SessionConfig,
    Settings,
    build_client,
    run,
)
from amplink.errors import (
    AmpLinkError,
    ApprovalWindowClosed,
    ConnectError,
    DecodeError,
    InvalidSessionState,
    MidStreamError,
    RequestError,
    SessionCreateError,
    StreamBusy,
    TransportError,
    UnknownApprovalRequest,
)
from amplink.version import CLIENT_VERSION

__all__ = [
    "CLIENT_VERSION",
    # Client
    "AmpLinkClient",
    "ApprovalRequest",
    "ApprovalRequiredEvent",
    "ContentDeltaEvent",
    "DoneEvent",
    "ErrorEvent",
    "Event",
    "EventStream",
    "Response",
    "Session",
    "SessionConfig",
    "Settings",
    "build_client",
    "run",
    # Errors
    "AmpLinkError",
    "ApprovalWindowClosed",
    "ConnectError",
    "DecodeError",
    "InvalidSessionState",
    "MidStreamError",
    "RequestError",
    "SessionCreateError",
    "StreamBusy",
    "TransportError",
    "UnknownApprovalRequest",
]
