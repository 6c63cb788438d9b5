"""Tests for retry helpers."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from replay_uploader.async_utils import (
    retry_with_exponential_backoff,
    retry_with_linear_backoff,
)
from replay_uploader.async_utils.retry import exponential_delay, linear_delay


class Flaky:
    """Fails a fixed number of times, then returns its call count."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> int:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"failure {self.calls}")
        return self.calls


@pytest.mark.asyncio
async def test_exponential_retry_until_success() -> None:
    flaky = Flaky(failures=2)
    on_fail = MagicMock()

    with patch(
        "replay_uploader.async_utils.retry.exponential_delay", return_value=0
    ) as delay:
        assert await retry_with_exponential_backoff(flaky, on_fail) == 3

    assert [c.args[0] for c in delay.call_args_list] == [1, 2]
    assert [c.args[1:] for c in on_fail.call_args_list] == [(1, 5), (2, 5)]


@pytest.mark.asyncio
async def test_retry_gives_up_after_max_attempts() -> None:
    flaky = Flaky(failures=10)

    with patch("replay_uploader.async_utils.retry.linear_delay", return_value=0):
        with pytest.raises(ConnectionError, match="failure 3"):
            await retry_with_linear_backoff(flaky, max_attempts=3)

    assert flaky.calls == 3


@pytest.mark.asyncio
async def test_on_fail_can_stop_retrying() -> None:
    flaky = Flaky(failures=10)

    def on_fail(error: BaseException, attempt: int, max_attempts: int) -> None:
        raise ValueError("stop") from error

    with pytest.raises(ValueError, match="stop"):
        await retry_with_linear_backoff(flaky, on_fail)

    assert flaky.calls == 1


def test_delays() -> None:
    with patch("replay_uploader.async_utils.retry.random.random", return_value=0.5):
        assert exponential_delay(1) == pytest.approx(0.25)
        assert exponential_delay(3) == pytest.approx(0.85)
        assert linear_delay(4) == pytest.approx(0.15)
