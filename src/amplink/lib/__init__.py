"""Protocol-level utilities with no knowledge of sessions or events.

Modules:
- sse: Server-Sent Events frames over httpx-sse (Frame, FrameReader)
- retry: tenacity helpers (with_retry, wait_retry_hint)
"""

from amplink.lib.retry import wait_retry_hint, with_retry
from amplink.lib.sse import DEFAULT_MAX_FRAME_BYTES, Frame, FrameReader, decode_payload

__all__ = [
    # SSE
    "DEFAULT_MAX_FRAME_BYTES",
    "Frame",
    "FrameReader",
    "decode_payload",
    # Retry
    "wait_retry_hint",
    "with_retry",
]
