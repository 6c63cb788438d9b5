"""Resolvable completion handles.

A ``Deferred`` wraps an ``asyncio.Future`` and adds an explicit status, an
optional context payload and strict settle semantics: settling twice is an
error unless the ``*_if_pending`` variants are used.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Generator
from enum import Enum
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
D = TypeVar("D")


class DeferredStatus(str, Enum):
    """Settle state of a Deferred."""

    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class Deferred(Generic[T, D]):
    """A completion handle that is settled from the outside."""

    def __init__(self, data: D | None = None) -> None:
        """Create a pending deferred bound to the running loop.

        Args:
            data: Context payload describing what this deferred waits for.
        """
        self.data = data
        self.status = DeferredStatus.PENDING
        self.resolution: T | None = None
        self.rejection: BaseException | None = None
        self.task: asyncio.Task | None = None
        self._future: asyncio.Future[T] = asyncio.get_running_loop().create_future()

    @property
    def is_pending(self) -> bool:
        """Whether the deferred has not been settled yet."""
        return self.status == DeferredStatus.PENDING

    @property
    def future(self) -> asyncio.Future[T]:
        """The underlying future, for use with ``asyncio.wait`` and friends."""
        return self._future

    def resolve(self, value: T) -> None:
        """Resolve the deferred.

        Raises:
            RuntimeError: If the deferred has already been settled.
        """
        self._assert_pending()
        self.status = DeferredStatus.RESOLVED
        self.resolution = value
        self._future.set_result(value)

    def reject(self, error: BaseException) -> None:
        """Reject the deferred.

        Raises:
            RuntimeError: If the deferred has already been settled.
        """
        self._assert_pending()
        self.status = DeferredStatus.REJECTED
        self.rejection = error
        self._future.set_exception(error)
        # Mark the exception retrieved; a rejection nobody awaits is not a bug.
        self._future.exception()

    def resolve_if_pending(self, value: T) -> None:
        """Resolve the deferred unless it is already settled."""
        if self.is_pending:
            self.resolve(value)

    def reject_if_pending(self, error: BaseException) -> None:
        """Reject the deferred unless it is already settled."""
        if self.is_pending:
            self.reject(error)

    def _assert_pending(self) -> None:
        if not self.is_pending:
            raise RuntimeError(f"Deferred has already been {self.status.value}")

    def __await__(self) -> Generator[Any, None, T]:
        return self._future.__await__()

    def __repr__(self) -> str:
        return f"Deferred(status={self.status.value}, data={self.data!r})"


def create_settled_deferred(data: D, task: Awaitable[Any]) -> Deferred[bool, D]:
    """Run ``task`` and settle a deferred with its success as a bool.

    The returned deferred never rejects. A failing task is logged and resolves
    the deferred with ``False`` so one failure cannot abort its siblings.

    Args:
        data: Context payload attached to the deferred.
        task: The awaitable to run.

    Returns:
        A deferred resolved with True on success or False on failure.
    """
    deferred: Deferred[bool, D] = Deferred(data)

    async def _settle() -> None:
        try:
            await task
        except Exception as e:
            logger.debug(f"Settled task failed for {data!r}: {e}")
            deferred.resolve_if_pending(False)
        else:
            deferred.resolve_if_pending(True)

    # Keep a reference so the task is not garbage collected mid-flight.
    deferred.task = asyncio.ensure_future(_settle())
    return deferred
