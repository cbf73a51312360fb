"""Retry utilities built on tenacity.

Examples:
    Retry a unary call while the service is unreachable::

        >>> @with_retry(max_attempts=3)
        ... async def create(client: httpx.AsyncClient) -> dict[str, object]:
        ...     ...

    Let a server-supplied hint stretch the backoff::

        >>> wait = wait_retry_hint(lambda: 2.0, wait_exponential(min=0.5, max=10))
"""

import logging
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    RetryCallState,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from amplink.errors import ConnectError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 10,
    extra_exceptions: tuple[type[Exception], ...] = (),
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for retrying async functions with exponential backoff.

    Only ``ConnectError`` is retried by default: the request never reached
    the server, so sending it again cannot apply it twice.

    Args:
        max_attempts: Maximum number of attempts, the first one included.
        min_wait: Minimum wait time between retries in seconds.
        max_wait: Maximum wait time between retries in seconds.
        extra_exceptions: Additional exception types to retry on.

    Returns:
        Decorator that wraps the function with retry logic.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type((ConnectError, *extra_exceptions)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


class wait_retry_hint(wait_base):
    """Wait at least as long as a dynamically supplied hint.

    ``hint`` is polled on every retry and returns seconds or ``None``. With no
    hint the ``fallback`` strategy decides alone.
    """

    def __init__(
        self, hint: Callable[[], float | None], fallback: wait_base
    ) -> None:
        self.hint = hint
        self.fallback = fallback

    def __call__(self, retry_state: RetryCallState) -> float:
        base = self.fallback(retry_state)
        hint = self.hint()
        if hint is None:
            return base
        return max(base, hint)
