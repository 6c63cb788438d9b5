"""Stream recording files to pre-signed upload links.

All PUTs go through one bounded WorkQueue shared by every recording, so the
number of concurrent requests stays fixed however many recordings upload.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

import aiofiles
import aiofiles.os
import aiohttp

from replay_uploader import __version__
from replay_uploader.async_utils import (
    WorkQueue,
    retry_with_exponential_backoff,
    retry_with_linear_backoff,
)
from replay_uploader.const import STREAM_READ_SIZE
from replay_uploader.exceptions import (
    MissingETagError,
    TransferError,
    UploadAbortedError,
)

logger = logging.getLogger(__name__)

USER_AGENT = f"replay-uploader/{__version__}"


def part_range(index: int, chunk_size: int, total_size: int) -> tuple[int, int]:
    """Inclusive byte range of part ``index``."""
    start = index * chunk_size
    end = min(start + chunk_size, total_size) - 1
    return start, end


def _raise_if_not_retryable(
    error: BaseException, attempt: int, max_attempts: int
) -> None:
    logger.debug(f"Transfer attempt {attempt}/{max_attempts} failed: {error}")
    if isinstance(error, (FileNotFoundError, UploadAbortedError)):
        raise error


async def _read_range(
    path: str, start: int, length: int, cancel_event: asyncio.Event | None
) -> AsyncIterator[bytes]:
    async with aiofiles.open(path, "rb") as f:
        await f.seek(start)
        remaining = length
        while remaining > 0:
            if cancel_event is not None and cancel_event.is_set():
                raise UploadAbortedError(f"Upload of {path} was aborted")
            chunk = await f.read(min(STREAM_READ_SIZE, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


class FileTransfer:
    """PUTs files, or byte ranges of them, to upload links."""

    def __init__(
        self,
        client_session: aiohttp.ClientSession,
        queue: WorkQueue,
        user_agent: str = USER_AGENT,
    ) -> None:
        """Initialise the transfer.

        Args:
            client_session: aiohttp ClientSession for HTTP requests.
            queue: Bounded queue every PUT runs through.
            user_agent: Value of the User-Agent header.
        """
        self._session = client_session
        self._queue = queue
        self._user_agent = user_agent

    async def upload_file(self, url: str, path: str, size: int) -> None:
        """Upload a whole file in one PUT, retried with exponential backoff.

        A missing file is not retried.
        """
        await self._queue.add(
            lambda: retry_with_exponential_backoff(
                lambda: self._put(url, path, 0, size, None),
                _raise_if_not_retryable,
            )
        )

    async def upload_file_in_parts(
        self,
        path: str,
        part_links: list[str],
        chunk_size: int,
        cancel_event: asyncio.Event | None = None,
    ) -> list[str]:
        """Upload one byte range per part link.

        Each part is retried with linear backoff. When a part fails for good
        ``cancel_event`` is set and the sibling parts stop.

        Returns:
            ETags in part order.
        """
        total_size = (await aiofiles.os.stat(path)).st_size
        cancel_event = cancel_event or asyncio.Event()

        async def upload_part(index: int, url: str) -> str:
            start, end = part_range(index, chunk_size, total_size)
            logger.debug(
                f"Uploading part {index + 1} of {path} "
                f"(bytes {start}-{end} of {total_size})"
            )

            async def attempt() -> str:
                status, etag = await self._put(
                    url, path, start, end - start + 1, cancel_event
                )
                if etag is None:
                    raise MissingETagError(status)
                return etag

            try:
                etag = await retry_with_linear_backoff(attempt, _raise_if_not_retryable)
            except Exception:
                cancel_event.set()
                raise
            logger.debug(f"ETag received for part {index + 1}: {etag}")
            return etag

        parts = [
            self._queue.add(lambda index=index, url=url: upload_part(index, url))
            for index, url in enumerate(part_links)
        ]
        results = await asyncio.gather(*parts, return_exceptions=True)

        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            # Report the failure that caused the abort rather than an aborted sibling.
            raise next(
                (e for e in errors if not isinstance(e, UploadAbortedError)), errors[0]
            )
        return list(results)  # type: ignore[arg-type]

    async def _put(
        self,
        url: str,
        path: str,
        start: int,
        length: int,
        cancel_event: asyncio.Event | None,
    ) -> tuple[int, str | None]:
        """PUT ``length`` bytes of ``path`` starting at ``start``.

        Returns:
            The response status and ETag, if any.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise UploadAbortedError(f"Upload of {path} was aborted")
        # Surface a missing file before the request so it is never retried.
        await aiofiles.os.stat(path)

        headers = {
            "Content-Length": str(length),
            "User-Agent": self._user_agent,
            "Connection": "keep-alive",
        }
        try:
            async with self._session.put(
                url,
                data=_read_range(path, start, length, cancel_event),
                headers=headers,
            ) as response:
                logger.debug(
                    f"Response received. Status: {response.status}, "
                    f"Status Text: {response.reason}"
                )
                if not 200 <= response.status < 300:
                    body = await response.text()
                    logger.debug(f"Response text: {body[:500]}")
                    raise TransferError(response.status, response.reason)
                return response.status, response.headers.get("ETag")
        except (aiohttp.ClientError, OSError) as e:
            if cancel_event is not None and cancel_event.is_set():
                raise UploadAbortedError(f"Upload of {path} was aborted") from e
            raise
