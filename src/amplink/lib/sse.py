"""Server-Sent Events framing on top of httpx-sse.

``FrameReader`` pulls one ``Frame`` at a time out of a streamed
``httpx.Response``. Line splitting and field parsing are done by
``httpx_sse.EventSource``; this module only maps its events onto ``Frame``
and enforces a size limit on each frame's data.

The reader never reads ahead: ``next()`` consumes the body only until the
next frame is complete.

Examples:
    >>> reader = FrameReader(response)
    >>> while (frame := await reader.next()) is not None:
    ...     payload = decode_payload(frame)
"""

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
from httpx_sse import EventSource, ServerSentEvent, SSEError
from pydantic import BaseModel, ConfigDict

from amplink.errors import DecodeError

DEFAULT_MAX_FRAME_BYTES = 1_048_576
"""Upper bound on the data of a single frame."""

_DEFAULT_EVENT = "message"


class Frame(BaseModel):
    """One decoded SSE frame.

    ``id`` and ``retry`` are only set when the frame itself carried the field.
    """

    model_config = ConfigDict(frozen=True)

    data: str
    event: str | None = None
    id: str | None = None
    retry: int | None = None


class FrameReader:
    """Reads frames from an SSE response, one per ``next()`` call.

    Args:
        response: Streamed response with its body unread.
        max_frame_bytes: Limit on the UTF-8 size of one frame's data.
    """

    def __init__(
        self,
        response: httpx.Response,
        *,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
    ) -> None:
        self.max_frame_bytes = max_frame_bytes
        self._events: AsyncIterator[ServerSentEvent] = EventSource(
            response
        ).aiter_sse()
        # httpx-sse repeats the last seen id on every later event
        self._seen_id = ""

    async def next(self) -> Frame | None:
        """Return the next frame, or ``None`` when the body ends.

        Raises:
            DecodeError: The response is not an event stream, or a frame is
                larger than ``max_frame_bytes``.
        """
        while True:
            try:
                sse = await anext(self._events, None)
            except SSEError as e:
                raise DecodeError(f"Not an event stream: {e}") from e
            if sse is None:
                return None
            frame = self.to_frame(sse)
            if frame is not None:
                return frame

    def to_frame(self, sse: ServerSentEvent) -> Frame | None:
        """Map an httpx-sse event onto a ``Frame``; ``None`` if it has no data."""
        event_id = sse.id if sse.id and sse.id != self._seen_id else None
        self._seen_id = sse.id
        if not sse.data:
            return None

        size = len(sse.data.encode())
        if size > self.max_frame_bytes:
            raise DecodeError(
                f"Frame of {size} bytes exceeds {self.max_frame_bytes} bytes",
                event_id=event_id,
            )
        return Frame(
            data=sse.data,
            event=sse.event if sse.event != _DEFAULT_EVENT else None,
            id=event_id,
            retry=sse.retry,
        )


def decode_payload(frame: Frame) -> dict[str, Any]:
    """Parse a frame's data as a JSON object.

    Raises:
        DecodeError: The data is not JSON or not a JSON object.
    """
    try:
        payload = json.loads(frame.data)
    except json.JSONDecodeError as e:
        raise DecodeError(
            f"Frame data is not valid JSON: {e.msg}", event_id=frame.id
        ) from e
    if not isinstance(payload, dict):
        raise DecodeError(
            f"Frame data must be a JSON object, got {type(payload).__name__}",
            event_id=frame.id,
        )
    return payload
