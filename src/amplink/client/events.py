"""Typed events decoded from stream frames.

Each frame's data decodes to ``{"type": ..., "data": {...}}``. Known types
map to a dedicated ``Event`` subclass with typed fields pulled out of
``data``; anything else becomes ``UnknownEvent`` so new server event kinds
never break the client.

All events are frozen. ``data`` always holds the raw payload.

Examples:
    >>> frame = Frame(id="7", data='{"type": "content.delta", "data": {"delta": "hi"}}')
    >>> event = parse_event(frame)
    >>> event.delta, event.event_id
    ('hi', '7')
"""

from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from amplink.client.models import ApprovalRequest
from amplink.errors import DecodeError
from amplink.lib.sse import Frame, decode_payload


class Event(BaseModel):
    """Base for every event delivered to the application."""

    model_config = ConfigDict(frozen=True)

    type: str
    event_id: str | None = Field(
        default=None, description="Identifier of the originating frame"
    )
    data: dict[str, Any] = Field(default_factory=dict)


class ContentDeltaEvent(Event):
    type: Literal["content.delta"] = "content.delta"
    delta: str = ""
    index: int | None = None


class ContentEndEvent(Event):
    type: Literal["content.end"] = "content.end"
    text: str | None = None
    index: int | None = None


class ThinkingDeltaEvent(Event):
    type: Literal["thinking.delta"] = "thinking.delta"
    delta: str = ""


class ToolCallEvent(Event):
    """The agent invoked a tool."""

    type: Literal["tool.call"] = "tool.call"
    tool_call_id: str | None = None
    name: str = ""
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolResultEvent(Event):
    type: Literal["tool.result"] = "tool.result"
    tool_call_id: str | None = None
    output: Any = None
    is_error: bool = False


class ApprovalRequiredEvent(Event):
    """The server asks for a decision.

    ``approval`` is attached by the approval coordinator as the event passes
    through the stream; respond with ``respond_approval(session,
    event.request_id, ...)``.

    The event is frozen but ``approval`` is the coordinator's live record,
    not a snapshot: its ``state`` keeps changing after the event was
    delivered, once the request is answered or expires.

    ``options`` is passed through as sent, strings or objects.
    """

    type: Literal["approval.required"] = "approval.required"
    request_id: str
    prompt: str = ""
    options: list[Any] = Field(default_factory=list)
    approval: ApprovalRequest | None = None


class ErrorEvent(Event):
    """An error reported in-band.

    Sent by the server, or synthesized by the client when a stream is
    interrupted and cannot be resumed (``code == "stream_interrupted"``).
    """

    type: Literal["error"] = "error"
    code: str | None = None
    message: str = ""
    recoverable: bool = False

    @classmethod
    def interrupted(cls, message: str, *, last_event_id: str | None) -> Self:
        data = {
            "code": "stream_interrupted",
            "message": message,
            "last_event_id": last_event_id,
        }
        return cls(code="stream_interrupted", message=message, data=data)


class DoneEvent(Event):
    """Final event of a prompt. The stream closes after delivering it."""

    type: Literal["done"] = "done"
    reason: str | None = None
    usage: dict[str, Any] | None = None


class UnknownEvent(Event):
    """An event type this client does not know; ``data`` carries it as-is.

    Data that is not a JSON object is wrapped as ``{"value": ...}``.
    """


EVENT_TYPES: dict[str, type[Event]] = {
    "content.delta": ContentDeltaEvent,
    "content.end": ContentEndEvent,
    "thinking.delta": ThinkingDeltaEvent,
    "tool.call": ToolCallEvent,
    "tool.result": ToolResultEvent,
    "approval.required": ApprovalRequiredEvent,
    "error": ErrorEvent,
    "done": DoneEvent,
}


_RESERVED = frozenset({"type", "event_id", "data", "approval"})


def parse_event(frame: Frame) -> Event:
    """Decode a frame into a typed event.

    The payload's ``type`` wins over the SSE ``event:`` field; the latter is
    only a fallback.

    Raises:
        DecodeError: Data is not a JSON object, carries no type, or a known
            type's payload has the wrong shape.
    """
    payload = decode_payload(frame)
    event_type = payload.get("type") or frame.event
    if not isinstance(event_type, str) or not event_type:
        raise DecodeError("Frame payload has no event type", event_id=frame.id)

    data = payload.get("data")
    if data is None:
        data = {}
    event_cls = EVENT_TYPES.get(event_type)
    if event_cls is None:
        # Unknown types are passed through whatever their data looks like
        if not isinstance(data, dict):
            data = {"value": data}
        return UnknownEvent(type=event_type, event_id=frame.id, data=data)
    if not isinstance(data, dict):
        raise DecodeError(
            f"Payload data for {event_type!r} must be an object", event_id=frame.id
        )

    fields = {k: v for k, v in data.items() if k not in _RESERVED}
    try:
        return event_cls.model_validate(
            {**fields, "type": event_type, "event_id": frame.id, "data": data}
        )
    except ValidationError as e:
        raise DecodeError(
            f"Invalid {event_type!r} payload: {e.error_count()} error(s)",
            event_id=frame.id,
        ) from e
