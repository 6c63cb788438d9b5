"""Bounded-concurrency work queue with forkable groups."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Job = Callable[[], Awaitable[Any]]


class WorkGroup:
    """A view on a WorkQueue that tracks only the jobs added through it.

    All groups of a queue share the queue's concurrency budget.
    """

    def __init__(self, queue: WorkQueue) -> None:
        """Initialise the group.

        Args:
            queue: The queue whose workers run this group's jobs.
        """
        self._queue = queue
        self._pending_count = 0
        self._idle: asyncio.Future[None] | None = None

    def add(self, job: Callable[[], Awaitable[T]]) -> asyncio.Future[T]:
        """Schedule ``job``.

        Args:
            job: Factory returning the awaitable to run once a slot is free.

        Returns:
            A future settled with the job's own outcome.
        """
        self._pending_count += 1

        async def _tracked() -> T:
            try:
                return await job()
            finally:
                self._finalize()

        return self._queue.submit(_tracked)

    def fork(self) -> WorkGroup:
        """Return a new group sharing the same queue."""
        return WorkGroup(self._queue)

    async def wait_until_idle(self) -> None:
        """Wait until every job added through this group has settled.

        Jobs added while waiting are waited for as well.
        """
        if not self._pending_count:
            return
        if self._idle is None:
            self._idle = asyncio.get_running_loop().create_future()
        await asyncio.shield(self._idle)

    def _finalize(self) -> None:
        self._pending_count -= 1
        if not self._pending_count and self._idle is not None:
            if not self._idle.done():
                self._idle.set_result(None)
            self._idle = None


class WorkQueue:
    """Runs at most ``concurrency`` jobs at once, starting the rest in FIFO order.

    Error handling is the responsibility of the scheduled job; a failing job
    only fails its own future.
    """

    def __init__(self, concurrency: int) -> None:
        """Initialise the queue.

        Args:
            concurrency: Maximum number of jobs running at the same time.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self._jobs: deque[tuple[Job, asyncio.Future[Any]]] = deque()
        self._active_count = 0
        self._tasks: set[asyncio.Task] = set()
        self._root = WorkGroup(self)

    @property
    def active_count(self) -> int:
        """Number of jobs currently running."""
        return self._active_count

    def add(self, job: Callable[[], Awaitable[T]]) -> asyncio.Future[T]:
        """Schedule ``job`` on the root group."""
        return self._root.add(job)

    def fork(self) -> WorkGroup:
        """Return a group whose ``wait_until_idle`` only covers its own jobs."""
        return WorkGroup(self)

    async def wait_until_idle(self) -> None:
        """Wait until every job added through the root group has settled."""
        await self._root.wait_until_idle()

    def submit(self, job: Job) -> asyncio.Future[Any]:
        """Queue ``job`` without group tracking and return its future."""
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._jobs.append((job, future))
        self._run()
        return future

    def _run(self) -> None:
        while self._active_count < self.concurrency and self._jobs:
            job, future = self._jobs.popleft()
            self._active_count += 1
            task = asyncio.ensure_future(self._execute(job, future))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _execute(self, job: Job, future: asyncio.Future[Any]) -> None:
        try:
            result = await job()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._active_count -= 1
            self._run()
