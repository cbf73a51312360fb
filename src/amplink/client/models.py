"""Session and approval records.

``Session`` and ``ApprovalRequest`` are the only mutable records in the
client. Session state is changed exclusively by ``SessionManager``;
approval state exclusively by ``ApprovalCoordinator``.
"""

import asyncio
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field, PrivateAttr


class SessionState(StrEnum):
    """Lifecycle of a session."""

    CREATED = "created"
    ACTIVE = "active"
    DELETING = "deleting"
    DELETED = "deleted"


class StreamSlot(StrEnum):
    """Whether the session currently has an open event stream."""

    IDLE = "idle"
    STREAMING = "streaming"


class ApprovalState(StrEnum):
    """Lifecycle of an approval request. Everything but PENDING is terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"


Decision = Literal["approved", "denied"]


class SessionConfig(BaseModel):
    """Options sent to the service when creating a session.

    ``bundle`` falls back to ``Settings.default_bundle`` when left unset.
    """

    bundle: str | None = Field(default=None, description="Bundle to load")
    cwd: str | None = Field(default=None, description="Working directory")
    title: str | None = Field(default=None, description="Display title")
    options: dict[str, Any] = Field(
        default_factory=dict, description="Extra options forwarded verbatim"
    )

    def to_request(self, default_bundle: str) -> dict[str, Any]:
        """Build the JSON body for the create-session request."""
        body: dict[str, Any] = {"bundle": self.bundle or default_bundle}
        if self.cwd is not None:
            body["cwd"] = self.cwd
        if self.title is not None:
            body["title"] = self.title
        if self.options:
            body["options"] = self.options
        return body


class Session(BaseModel):
    """A server-side session tracked by the client."""

    session_id: str
    config: SessionConfig
    state: SessionState = SessionState.CREATED
    stream_slot: StreamSlot = StreamSlot.IDLE
    info: dict[str, Any] = Field(
        default_factory=dict, description="Raw creation response from the server"
    )

    _lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)

    @property
    def lock(self) -> asyncio.Lock:
        """Guards ``stream_slot`` against concurrent prompt/delete."""
        return self._lock

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE


class ApprovalRequest(BaseModel):
    """A pending decision raised by the server through ``approval.required``."""

    request_id: str
    session_id: str
    prompt: str = ""
    options: list[Any] = Field(default_factory=list)
    state: ApprovalState = ApprovalState.PENDING

    @property
    def resolved(self) -> bool:
        return self.state is not ApprovalState.PENDING
