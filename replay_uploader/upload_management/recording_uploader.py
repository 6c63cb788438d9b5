"""Upload one recording: ticket, metadata, bytes, source maps and processing."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import aiofiles.os

from replay_uploader.async_utils import retry_with_exponential_backoff
from replay_uploader.models import (
    LogEntryKind,
    ProcessingBehavior,
    ProcessingStatus,
    Recording,
    RecordingStatus,
    UploadStatus,
)
from replay_uploader.protocol import api
from replay_uploader.upload_management.crash_uploader import upload_crash_data
from replay_uploader.upload_management.metadata import validate_recording_metadata
from replay_uploader.upload_management.source_map_uploader import upload_source_maps
from replay_uploader.upload_management.status_events import (
    set_processing_status,
    set_upload_status,
)
from replay_uploader.upload_management.upload_context import UploadContext

logger = logging.getLogger(__name__)

_background_tasks: set[asyncio.Task] = set()


def _log_attempt(what: str) -> Callable[[BaseException, int, int], None]:
    def on_fail(error: BaseException, attempt: int, max_attempts: int) -> None:
        logger.debug(f"Attempt {attempt}/{max_attempts} to {what} failed: {error}")

    return on_fail


async def _upload_single_shot(
    context: UploadContext,
    recording: Recording,
    path: str,
    size: int,
    metadata: dict[str, Any],
    recording_data: dict[str, Any],
) -> None:
    ticket = await api.begin_recording_upload(
        context.client, recording.id, recording.build_id, size
    )
    await context.store.update_recording_log(
        recording, LogEntryKind.UPLOAD_STARTED, server=context.server_url
    )
    await retry_with_exponential_backoff(
        lambda: api.set_recording_metadata(context.client, metadata, recording_data),
        _log_attempt("set metadata"),
    )
    await context.transfer.upload_file(ticket["uploadLink"], path, size)
    await api.end_recording_upload(context.client, ticket["recordingId"])


async def _upload_multipart(
    context: UploadContext,
    recording: Recording,
    path: str,
    size: int,
    metadata: dict[str, Any],
    recording_data: dict[str, Any],
) -> None:
    ticket = await api.begin_recording_multipart_upload(
        context.client,
        recording.id,
        recording.build_id,
        size,
        max_chunk_size=context.multipart_chunk_size,
    )
    await context.store.update_recording_log(
        recording, LogEntryKind.UPLOAD_STARTED, server=context.server_url
    )
    await retry_with_exponential_backoff(
        lambda: api.set_recording_metadata(context.client, metadata, recording_data),
        _log_attempt("set metadata"),
    )
    part_ids = await context.transfer.upload_file_in_parts(
        path, ticket["partLinks"], ticket["chunkSize"], cancel_event=asyncio.Event()
    )
    await api.end_recording_multipart_upload(
        context.client, ticket["recordingId"], ticket["uploadId"], part_ids
    )


def _start_processing(context: UploadContext, recording: Recording) -> None:
    async def process() -> None:
        try:
            await api.process_recording(context.client, recording.id)
        except Exception as e:
            logger.debug(f"Processing request for {recording.id} failed: {e}")

    # The log and processing status are left alone so the batch summary
    # reports the recording as uploaded.
    task = asyncio.ensure_future(process())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


async def _wait_for_processing(context: UploadContext, recording: Recording) -> None:
    try:
        await context.client.wait_until_authenticated()
        await context.store.update_recording_log(
            recording, LogEntryKind.PROCESSING_STARTED
        )
        set_processing_status(recording, ProcessingStatus.PROCESSING)

        await retry_with_exponential_backoff(
            lambda: api.process_recording(context.client, recording.id),
            _log_attempt("process recording"),
        )

        await context.store.update_recording_log(
            recording, LogEntryKind.PROCESSING_FINISHED
        )
        set_processing_status(recording, ProcessingStatus.PROCESSED)
    except Exception as e:
        # The upload itself succeeded even if processing did not.
        logger.warning(f"Processing failed for recording {recording.id}: {e}")
        await context.store.update_recording_log(
            recording, LogEntryKind.PROCESSING_FAILED
        )
        set_processing_status(recording, ProcessingStatus.FAILED)


async def upload_recording(
    context: UploadContext,
    recording: Recording,
    multipart: bool,
    processing_behavior: ProcessingBehavior,
) -> None:
    """Upload ``recording`` and keep its log entries in step.

    Args:
        context: Collaborators shared by the batch.
        recording: The recording to upload; must have a path.
        multipart: Whether multipart uploads are allowed for large files.
        processing_behavior: What to do once the upload has finished.

    Raises:
        Exception: Whatever failed the transfer. ``uploadFailed`` has been
            appended and the error captured on the recording by then.
    """
    path = recording.path
    if not path:
        raise ValueError(f"Recording {recording.id} has no path")

    size = (await aiofiles.os.stat(path)).st_size
    logger.info(f"UploadRecording:Started {recording.id} ({size} bytes)")

    metadata, recording_data = validate_recording_metadata(recording)
    set_upload_status(recording, UploadStatus.UPLOADING)

    try:
        if multipart and size > context.multipart_min_size:
            await _upload_multipart(
                context, recording, path, size, metadata, recording_data
            )
        else:
            await _upload_single_shot(
                context, recording, path, size, metadata, recording_data
            )
    except Exception as e:
        logger.warning(f"UploadRecording:Failed {recording.id}: {e}")
        recording.upload_error = e
        await context.store.update_recording_log(recording, LogEntryKind.UPLOAD_FAILED)
        set_upload_status(recording, UploadStatus.FAILED)
        raise

    logger.debug(f"Uploaded {size} bytes for recording {recording.id}")

    if recording.metadata.source_maps:
        await upload_source_maps(context, recording)
        logger.debug(f"Uploaded source maps for recording {recording.id}")

    await context.store.update_recording_log(
        recording, LogEntryKind.UPLOAD_FINISHED, server=context.server_url
    )
    set_upload_status(recording, UploadStatus.UPLOADED)
    logger.info(f"UploadRecording:Succeeded {recording.id}")

    if processing_behavior == ProcessingBehavior.START_PROCESSING:
        logger.debug(f"Start processing recording {recording.id}")
        _start_processing(context, recording)
    elif processing_behavior == ProcessingBehavior.WAIT_FOR_PROCESSING:
        logger.debug(f"Begin processing recording {recording.id}")
        await _wait_for_processing(context, recording)


async def upload_recording_or_crash_data(
    context: UploadContext,
    recording: Recording,
    multipart: bool,
    processing_behavior: ProcessingBehavior,
) -> None:
    """Report crash data for crashed recordings, upload the file otherwise."""
    if recording.recording_status == RecordingStatus.CRASHED:
        await upload_crash_data(context, recording)
    else:
        await upload_recording(context, recording, multipart, processing_behavior)
