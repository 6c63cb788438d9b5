"""Queue that holds work until the session is initialized and authenticated."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from replay_uploader.async_utils import Deferred, race_with_timeout
from replay_uploader.const import (
    AUTH_INFO_TIMEOUT_SECONDS,
    TASK_QUEUE_FLUSH_TIMEOUT_SECONDS,
)
from replay_uploader.session.collaborators import AuthInfo, PackageInfo

logger = logging.getLogger(__name__)

Task = Callable[[AuthInfo | None], Awaitable[None] | None]
Hook = Callable[..., Awaitable[None] | None]


class TaskStatus(str, Enum):
    """Progress of a queued task."""

    WAITING = "waiting"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass(eq=False)
class QueuedTask:
    """A task and the deferred settled once it has run."""

    task: Task
    deferred: Deferred[None, None]
    status: TaskStatus = field(default=TaskStatus.WAITING)


async def _call_hook(hook: Hook | None, *args: Any) -> None:
    if hook is None:
        return
    result = hook(*args)
    if inspect.isawaitable(result):
        await result


class AuthenticatedTaskQueue:
    """Buffers tasks until package info and auth info have both resolved.

    Tasks added before that run once both are available; tasks added later run
    immediately. Each task runs exactly once and its exceptions are swallowed,
    so a misbehaving task cannot break the queue or the caller.
    """

    def __init__(
        self,
        auth_info: Awaitable[AuthInfo | None],
        package_info: Awaitable[PackageInfo],
        on_initialize: Callable[[PackageInfo], Awaitable[None] | None] | None = None,
        on_authenticate: Callable[[AuthInfo | None], Awaitable[None] | None]
        | None = None,
        on_finalize: Callable[[], Awaitable[None] | None] | None = None,
        flush_timeout: float = TASK_QUEUE_FLUSH_TIMEOUT_SECONDS,
        auth_info_timeout: float = AUTH_INFO_TIMEOUT_SECONDS,
    ) -> None:
        """Initialise the queue; must be called from a running event loop.

        Args:
            auth_info: Resolves to the session identity, or None if anonymous.
            package_info: Resolves to the embedding package's info.
            on_initialize: Called with the package info once it resolves.
            on_authenticate: Called with the auth info once it resolves.
            on_finalize: Called by ``close`` after flushing.
            flush_timeout: Upper bound on how long ``close`` waits for tasks.
            auth_info_timeout: After this long the queue proceeds without
                auth info.
        """
        self._on_initialize = on_initialize
        self._on_authenticate = on_authenticate
        self._on_finalize = on_finalize
        self._flush_timeout = flush_timeout

        self._authenticated = False
        self._auth_info: AuthInfo | None = None
        self._queue: list[QueuedTask] = []
        self._running: set[asyncio.Task] = set()

        self._initialized: Deferred[PackageInfo, None] = Deferred()
        self._auth_resolved: Deferred[AuthInfo | None, None] = Deferred()

        self._start_tasks = [
            asyncio.ensure_future(self._initialize(package_info)),
            asyncio.ensure_future(self._authenticate(auth_info, auth_info_timeout)),
        ]

    @property
    def queue_size(self) -> int:
        """Number of tasks that have not finished yet."""
        return len(self._queue)

    @property
    def auth_info(self) -> AuthInfo | None:
        """The resolved auth info, or None before authentication or if anonymous."""
        return self._auth_info

    def add_to_queue(self, task: Task) -> None:
        """Queue ``task``; it runs right away once the session is ready."""
        queued = QueuedTask(task=task, deferred=Deferred())
        self._queue.append(queued)
        if self._authenticated:
            self._start(queued)

    async def wait_until(
        self, status: Literal["initialized", "initialized-and-authenticated"]
    ) -> None:
        """Wait until package info (and optionally auth info) has resolved."""
        await self._initialized
        if status == "initialized-and-authenticated":
            await self._auth_resolved

    async def close(self) -> None:
        """Flush pending tasks for at most the flush timeout, then finalize."""
        await self._flush()
        await _call_hook(self._on_finalize)

    async def flush_and_close(self) -> None:
        """Alias of ``close``."""
        await self.close()

    async def _initialize(self, package_info: Awaitable[PackageInfo]) -> None:
        info = await package_info
        self._initialized.resolve_if_pending(info)
        try:
            await _call_hook(self._on_initialize, info)
        except Exception as e:
            logger.debug(f"on_initialize failed: {e}")

    async def _authenticate(
        self, auth_info: Awaitable[AuthInfo | None], timeout: float
    ) -> None:
        try:
            info = await race_with_timeout(auth_info, timeout)
        except Exception as e:
            logger.debug(f"Auth info could not be resolved: {e}")
            info = None
        await self._initialized

        self._authenticated = True
        self._auth_info = info
        self._auth_resolved.resolve_if_pending(info)
        try:
            await _call_hook(self._on_authenticate, info)
        except Exception as e:
            logger.debug(f"on_authenticate failed: {e}")
        for queued in list(self._queue):
            if queued.status == TaskStatus.WAITING:
                self._start(queued)

    def _start(self, queued: QueuedTask) -> None:
        queued.status = TaskStatus.RUNNING
        running = asyncio.ensure_future(self._run_task(queued))
        self._running.add(running)
        running.add_done_callback(self._running.discard)

    async def _run_task(self, queued: QueuedTask) -> None:
        try:
            await _call_hook(queued.task, self._auth_info)
        except Exception as e:
            logger.debug(f"Queued task failed: {e}")
        finally:
            queued.deferred.resolve_if_pending(None)
            queued.status = TaskStatus.FINISHED
            if queued in self._queue:
                self._queue.remove(queued)

    async def _flush(self) -> None:
        pending = list(self._queue)
        for queued in pending:
            if queued.status == TaskStatus.WAITING:
                self._start(queued)
        if not pending:
            return

        async def _all_settled() -> bool:
            await asyncio.gather(*(queued.deferred.future for queued in pending))
            return True

        if await race_with_timeout(_all_settled(), self._flush_timeout) is None:
            logger.debug(f"Flush timed out with {self.queue_size} task(s) unfinished")
