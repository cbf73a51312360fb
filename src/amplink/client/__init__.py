"""Session protocol client.

Modules:
- config: Settings via pydantic-settings
- models: Session, SessionConfig, ApprovalRequest and their states
- events: Typed events decoded from stream frames
- transport: httpx wrapper mapping failures onto the error taxonomy
- policy: Reconnect policy for streams
- stream: EventStream, the lazy cancellable event sequence
- approvals: ApprovalCoordinator
- sessions: SessionManager
- core: AmpLinkClient facade, ResponseCollector, build_client, run
"""

from amplink.client.approvals import ApprovalCoordinator
from amplink.client.config import Settings, settings
from amplink.client.core import (
    AmpLinkClient,
    ApprovalHandler,
    Response,
    ResponseCollector,
    build_client,
    run,
)
from amplink.client.events import (
    ApprovalRequiredEvent,
    ContentDeltaEvent,
    ContentEndEvent,
    DoneEvent,
    ErrorEvent,
    Event,
    ThinkingDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
    UnknownEvent,
    parse_event,
)
from amplink.client.models import (
    ApprovalRequest,
    ApprovalState,
    Decision,
    Session,
    SessionConfig,
    SessionState,
    StreamSlot,
)
from amplink.client.policy import ReconnectPolicy
from amplink.client.sessions import SessionManager
from amplink.client.stream import EventStream, StreamState
from amplink.client.transport import Transport

__all__ = [
    # Core
    "AmpLinkClient",
    "ApprovalHandler",
    "Response",
    "ResponseCollector",
    "build_client",
    "run",
    # Config
    "Settings",
    "settings",
    # Events
    "ApprovalRequiredEvent",
    "ContentDeltaEvent",
    "ContentEndEvent",
    "DoneEvent",
    "ErrorEvent",
    "Event",
    "ThinkingDeltaEvent",
    "ToolCallEvent",
    "ToolResultEvent",
    "UnknownEvent",
    "parse_event",
    # Models
    "ApprovalRequest",
    "ApprovalState",
    "Decision",
    "Session",
    "SessionConfig",
    "SessionState",
    "StreamSlot",
    # Components
    "ApprovalCoordinator",
    "EventStream",
    "ReconnectPolicy",
    "SessionManager",
    "StreamState",
    "Transport",
]
