"""Process-wide emitter carrying upload status changes to displays."""

import asyncio
import logging
from typing import Any

from pyee.asyncio import AsyncIOEventEmitter

logger = logging.getLogger(__name__)

_MAX_LOGGED_ARG_LENGTH = 100


class Emitter(AsyncIOEventEmitter):
    """Event bus between the upload coordinator and status displays."""

    # Upload coordinator -> status displays
    RECORDING_STATUS_CHANGED = "RECORDING_STATUS_CHANGED"
    # (recording_id, field, value)

    # Upload manager -> status displays
    BATCH_FINISHED = "BATCH_FINISHED"
    # (uploaded_count, failed_count)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> bool:
        """Log the event at debug level, then dispatch it to listeners.

        Returns:
            Whether any listener was registered for ``event``.
        """
        if logger.isEnabledFor(logging.DEBUG):
            shown = []
            for arg in args:
                text = repr(arg)
                if len(text) > _MAX_LOGGED_ARG_LENGTH:
                    text = f"{text[:_MAX_LOGGED_ARG_LENGTH]}..."
                shown.append(text)
            logger.debug(f"EVENT {event}: {', '.join(shown)}")
        return super().emit(event, *args, **kwargs)


_emitter: Emitter | None = None


def init_emitter(*, loop: asyncio.AbstractEventLoop) -> Emitter:
    """Create the shared emitter bound to ``loop``.

    Raises:
        RuntimeError: If it was already created.
    """
    global _emitter
    if _emitter is not None:
        raise RuntimeError("Emitter already initialized")
    _emitter = Emitter(loop=loop)
    return _emitter


def get_emitter() -> Emitter:
    """Return the shared emitter, which must already exist."""
    if _emitter is None:
        raise RuntimeError("Emitter not initialized.")
    return _emitter


def get_or_init_emitter() -> Emitter:
    """Return the shared emitter, creating it on the running loop if needed."""
    global _emitter
    if _emitter is None:
        _emitter = Emitter(loop=asyncio.get_running_loop())
    return _emitter
