"""Reconnect policy for event streams.

Decides, for each failure while reading a stream, whether to reconnect or
give up:

- Nothing received yet: ``ConnectError``, retried up to
  ``connect_max_attempts`` with exponential backoff.
- At least one frame received: ``MidStreamError``, retried up to
  ``resume_max_attempts`` reconnects, and only when a frame id was captured
  so the server can resume after it.
- ``DecodeError``, ``RequestError`` and caller cancellation are never
  retried.

The retry loop itself is a tenacity ``AsyncRetrying`` built by
``ReconnectPolicy.retrying``.
"""

from collections.abc import Callable
from typing import Protocol, Self

import httpx
from pydantic import BaseModel, ConfigDict, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    wait_exponential,
)

from amplink.client.config import Settings
from amplink.errors import ConnectError, MidStreamError, TransportError
from amplink.lib.retry import wait_retry_hint


class ResumeState(Protocol):
    """What the policy needs to know about the stream it is retrying."""

    @property
    def closed(self) -> bool: ...

    @property
    def last_event_id(self) -> str | None: ...

    @property
    def resumes(self) -> int: ...

    @property
    def retry_hint(self) -> float | None: ...


class ReconnectPolicy(BaseModel):
    """Retry limits and classification for stream failures."""

    model_config = ConfigDict(frozen=True)

    connect_max_attempts: int = Field(default=3, ge=1)
    resume_max_attempts: int = Field(default=3, ge=0)
    backoff_min: float = Field(default=0.5, ge=0)
    backoff_max: float = Field(default=10.0, ge=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> Self:
        return cls(
            connect_max_attempts=settings.connect_max_attempts,
            resume_max_attempts=settings.resume_max_attempts,
            backoff_min=settings.backoff_min,
            backoff_max=settings.backoff_max,
        )

    def classify(self, error: BaseException, *, frames_seen: int) -> BaseException:
        """Map a raw transport failure onto ``ConnectError``/``MidStreamError``.

        Errors already in the taxonomy pass through, except that a connect
        failure after frames were received (a failed reconnect) counts as
        mid-stream. Unrelated exceptions are returned unchanged.
        """
        if isinstance(error, ConnectError):
            if frames_seen:
                return MidStreamError(
                    str(error), status_code=error.status_code, body=error.body
                )
            return error
        if isinstance(error, TransportError):
            return error
        if isinstance(error, httpx.TransportError):
            name = type(error).__name__
            message = f"{name}: {error}" if str(error) else name
            if frames_seen:
                return MidStreamError(message)
            return ConnectError(message)
        return error

    def should_retry(self, error: BaseException, state: ResumeState) -> bool:
        if state.closed:
            return False
        if isinstance(error, MidStreamError):
            return state.last_event_id is not None
        return isinstance(error, ConnectError)

    def should_stop(self, retry_state: RetryCallState, state: ResumeState) -> bool:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        if isinstance(error, MidStreamError):
            return state.resumes >= self.resume_max_attempts
        return retry_state.attempt_number >= self.connect_max_attempts

    def retrying(
        self,
        state: ResumeState,
        *,
        before_sleep: Callable[[RetryCallState], None] | None = None,
    ) -> AsyncRetrying:
        """Build the retry loop for one read of ``state``'s stream."""
        return AsyncRetrying(
            stop=lambda rs: self.should_stop(rs, state),
            wait=wait_retry_hint(
                lambda: state.retry_hint,
                wait_exponential(
                    multiplier=self.backoff_min,
                    min=self.backoff_min,
                    max=self.backoff_max,
                ),
            ),
            retry=retry_if_exception(lambda e: self.should_retry(e, state)),
            before_sleep=before_sleep,
            reraise=True,
        )
