"""Tests for event decoding."""

import json

import pytest
from pydantic import ValidationError

from amplink.client.events import (
    ApprovalRequiredEvent,
    ContentDeltaEvent,
    DoneEvent,
    ErrorEvent,
    ToolCallEvent,
    UnknownEvent,
    parse_event,
)
from amplink.errors import DecodeError
from amplink.lib.sse import Frame


def frame(
    payload: object, *, event_id: str | None = None, event: str | None = None
) -> Frame:
    return Frame(data=json.dumps(payload), id=event_id, event=event)


class TestKnownEvents:
    """Known types decode to their own event class."""

    def test_content_delta(self) -> None:
        event = parse_event(
            frame({"type": "content.delta", "data": {"delta": "hi"}}, event_id="7")
        )

        assert isinstance(event, ContentDeltaEvent)
        assert event.delta == "hi"
        assert event.event_id == "7"
        assert event.data == {"delta": "hi"}

    def test_tool_call(self) -> None:
        event = parse_event(
            frame(
                {
                    "type": "tool.call",
                    "data": {
                        "tool_call_id": "t1",
                        "name": "bash",
                        "arguments": {"command": "ls"},
                    },
                }
            )
        )

        assert isinstance(event, ToolCallEvent)
        assert event.name == "bash"
        assert event.arguments == {"command": "ls"}

    def test_approval_required(self) -> None:
        event = parse_event(
            frame(
                {
                    "type": "approval.required",
                    "data": {"request_id": "r1", "prompt": "delete logs?"},
                }
            )
        )

        assert isinstance(event, ApprovalRequiredEvent)
        assert event.request_id == "r1"
        assert event.approval is None

    def test_done_without_data(self) -> None:
        event = parse_event(frame({"type": "done"}))

        assert isinstance(event, DoneEvent)
        assert event.data == {}

    def test_sse_event_field_as_fallback_type(self) -> None:
        event = parse_event(frame({"data": {"reason": "complete"}}, event="done"))

        assert isinstance(event, DoneEvent)
        assert event.reason == "complete"

    def test_payload_type_wins_over_event_field(self) -> None:
        event = parse_event(
            frame({"type": "content.delta", "data": {"delta": "x"}}, event="message")
        )

        assert isinstance(event, ContentDeltaEvent)

    def test_events_are_frozen(self) -> None:
        event = parse_event(frame({"type": "content.delta", "data": {"delta": "a"}}))

        with pytest.raises(ValidationError):
            event.delta = "b"  # type: ignore[misc]


class TestUnknownEvents:
    """Unrecognized types never fail."""

    def test_unknown_type_keeps_payload(self) -> None:
        event = parse_event(
            frame({"type": "usage.update", "data": {"tokens": 12}}, event_id="3")
        )

        assert isinstance(event, UnknownEvent)
        assert event.type == "usage.update"
        assert event.data == {"tokens": 12}
        assert event.event_id == "3"

    @pytest.mark.parametrize("data", ["hi", [1, 2], 7, True])
    def test_unknown_type_with_non_object_data(self, data: object) -> None:
        event = parse_event(frame({"type": "progress", "data": data}, event_id="4"))

        assert isinstance(event, UnknownEvent)
        assert event.type == "progress"
        assert event.data == {"value": data}
        assert event.event_id == "4"

    def test_unknown_type_fields_not_validated(self) -> None:
        event = parse_event(
            frame({"type": "progress", "data": {"type": "x", "approval": 1}})
        )

        assert event.data == {"type": "x", "approval": 1}


class TestApprovalOptions:
    """Approval options are passed through as sent."""

    def test_object_options(self) -> None:
        options = [
            {"id": "allow", "label": "Allow once"},
            {"id": "deny", "label": "Deny"},
        ]
        event = parse_event(
            frame(
                {
                    "type": "approval.required",
                    "data": {"request_id": "r1", "options": options},
                }
            )
        )

        assert isinstance(event, ApprovalRequiredEvent)
        assert event.options == options

    def test_mixed_options(self) -> None:
        event = parse_event(
            frame(
                {
                    "type": "approval.required",
                    "data": {"request_id": "r1", "options": ["yes", {"id": "no"}]},
                }
            )
        )

        assert event.options == ["yes", {"id": "no"}]


class TestDecodeFailures:
    """Malformed payloads raise DecodeError."""

    def test_not_json(self) -> None:
        with pytest.raises(DecodeError):
            parse_event(Frame(data="{oops"))

    def test_missing_type(self) -> None:
        with pytest.raises(DecodeError, match="no event type"):
            parse_event(frame({"data": {}}))

    def test_data_not_object(self) -> None:
        with pytest.raises(DecodeError, match="must be an object"):
            parse_event(frame({"type": "content.delta", "data": "hi"}))

    def test_wrong_field_shape(self) -> None:
        with pytest.raises(DecodeError, match="Invalid 'content.delta' payload"):
            parse_event(frame({"type": "content.delta", "data": {"delta": ["x"]}}))

    def test_approval_without_request_id(self) -> None:
        with pytest.raises(DecodeError) as exc_info:
            parse_event(
                frame({"type": "approval.required", "data": {}}, event_id="5")
            )

        assert exc_info.value.event_id == "5"


class TestInterrupted:
    """Client-synthesized error events."""

    def test_interrupted(self) -> None:
        event = ErrorEvent.interrupted("connection reset", last_event_id="42")

        assert event.code == "stream_interrupted"
        assert event.message == "connection reset"
        assert event.data["last_event_id"] == "42"
        assert event.event_id is None
