"""Tests for the tenacity retry helpers."""

import pytest
from tenacity import RetryCallState, wait_fixed

from amplink.errors import ConnectError, RequestError
from amplink.lib.retry import wait_retry_hint, with_retry


@pytest.mark.asyncio
async def test_retries_connect_errors() -> None:
    """ConnectError is retried until the call succeeds."""
    calls = 0

    @with_retry(max_attempts=3, min_wait=0, max_wait=0)
    async def flaky() -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise ConnectError("refused")
        return "ok"

    assert await flaky() == "ok"
    assert calls == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts() -> None:
    calls = 0

    @with_retry(max_attempts=2, min_wait=0, max_wait=0)
    async def down() -> None:
        nonlocal calls
        calls += 1
        raise ConnectError("refused")

    with pytest.raises(ConnectError):
        await down()
    assert calls == 2


@pytest.mark.asyncio
async def test_request_errors_not_retried() -> None:
    """A rejected request may have been applied; it is never resent."""
    calls = 0

    @with_retry(max_attempts=3, min_wait=0, max_wait=0)
    async def rejected() -> None:
        nonlocal calls
        calls += 1
        raise RequestError("bad request", status_code=400)

    with pytest.raises(RequestError):
        await rejected()
    assert calls == 1


class TestWaitRetryHint:
    """The server hint stretches the backoff but never shortens it."""

    @pytest.fixture
    def retry_state(self) -> RetryCallState:
        return RetryCallState(retry_object=None, fn=None, args=(), kwargs={})  # type: ignore[arg-type]

    def test_no_hint_uses_fallback(self, retry_state: RetryCallState) -> None:
        wait = wait_retry_hint(lambda: None, wait_fixed(0.5))

        assert wait(retry_state) == 0.5

    def test_longer_hint_wins(self, retry_state: RetryCallState) -> None:
        wait = wait_retry_hint(lambda: 2.0, wait_fixed(0.5))

        assert wait(retry_state) == 2.0

    def test_shorter_hint_ignored(self, retry_state: RetryCallState) -> None:
        wait = wait_retry_hint(lambda: 0.1, wait_fixed(0.5))

        assert wait(retry_state) == 0.5
