"""Retry helpers with jittered backoff."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from replay_uploader.const import (
    DEFAULT_RETRY_ATTEMPTS,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_JITTER_SECONDS,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnFail = Callable[[BaseException, int, int], None]


def _jitter() -> float:
    return random.random() * RETRY_JITTER_SECONDS


def exponential_delay(attempt: int) -> float:
    """Delay before retrying after ``attempt`` failed, in seconds."""
    return 2**attempt * RETRY_BASE_DELAY_SECONDS + _jitter()


def linear_delay(attempt: int) -> float:
    """Delay before retrying after ``attempt`` failed, in seconds."""
    return RETRY_BASE_DELAY_SECONDS + _jitter()


async def _retry(
    fn: Callable[[], Awaitable[T]],
    backoff: Callable[[int], float],
    on_fail: OnFail | None,
    max_attempts: int,
) -> T:
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as e:
            if on_fail is not None:
                # on_fail may raise to stop retrying early.
                on_fail(e, attempt, max_attempts)
            if attempt >= max_attempts:
                raise
            delay = backoff(attempt)
            logger.debug(
                f"Attempt {attempt}/{max_attempts} failed ({e}), "
                f"retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)


async def retry_with_exponential_backoff(
    fn: Callable[[], Awaitable[T]],
    on_fail: OnFail | None = None,
    max_attempts: int = DEFAULT_RETRY_ATTEMPTS,
) -> T:
    """Call ``fn`` until it succeeds, sleeping ``2**attempt * 100ms`` plus jitter.

    Args:
        fn: Factory returning a fresh awaitable for every attempt.
        on_fail: Called as ``on_fail(error, attempt, max_attempts)`` after each
            failure. Raising from it stops the loop with that error.
        max_attempts: Total number of attempts.

    Returns:
        The first successful result.
    """
    return await _retry(fn, exponential_delay, on_fail, max_attempts)


async def retry_with_linear_backoff(
    fn: Callable[[], Awaitable[T]],
    on_fail: OnFail | None = None,
    max_attempts: int = DEFAULT_RETRY_ATTEMPTS,
) -> T:
    """Call ``fn`` until it succeeds, sleeping 100ms plus jitter between attempts."""
    return await _retry(fn, linear_delay, on_fail, max_attempts)
