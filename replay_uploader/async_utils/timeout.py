"""Timeout helpers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def timeout_after(seconds: float) -> None:
    """Complete after ``seconds``."""
    await asyncio.sleep(seconds)


def _consume_result(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Awaitable failed after losing a timeout race: {error}")


async def race_with_timeout(
    awaitable: Awaitable[T],
    seconds: float,
    cancel_event: asyncio.Event | None = None,
) -> T | None:
    """Race ``awaitable`` against a timer.

    The awaitable is not cancelled when the timer wins; ``cancel_event`` is set
    instead so it can stop cooperatively.

    Args:
        awaitable: The work to wait for.
        seconds: How long to wait before giving up.
        cancel_event: Set when the timeout wins.

    Returns:
        The awaitable's result, or None if the timeout won.
    """
    task = asyncio.ensure_future(awaitable)
    done, _ = await asyncio.wait({task}, timeout=seconds)
    if task in done:
        return task.result()

    if cancel_event is not None:
        cancel_event.set()
    task.add_done_callback(_consume_result)
    return None
