"""Report the diagnostics of a crashed recording."""

from __future__ import annotations

import asyncio
import logging

from replay_uploader.models import LogEntryKind, Recording, UploadStatus
from replay_uploader.protocol import api
from replay_uploader.upload_management.status_events import set_upload_status
from replay_uploader.upload_management.upload_context import UploadContext

logger = logging.getLogger(__name__)


async def upload_crash_data(context: UploadContext, recording: Recording) -> None:
    """Report every crash blob plus a metadata marker for ``recording``.

    Failures are recorded on the recording and not raised; there is no retry
    at this level.
    """
    logger.info(f"UploadCrashData:Started {recording.id}")

    crash_data = list(recording.crash_data or [])
    crash_data.append({"kind": "recordingMetadata", "recordingId": recording.id})

    try:
        await asyncio.gather(
            *(api.report_crash(context.client, data) for data in crash_data)
        )
        await context.store.update_recording_log(
            recording, LogEntryKind.CRASH_UPLOADED, server=context.server_url
        )
    except Exception as e:
        logger.warning(f"UploadCrashData:Failed {recording.id}: {e}")
        recording.upload_error = e
        set_upload_status(recording, UploadStatus.FAILED)
        return

    set_upload_status(recording, UploadStatus.UPLOADED)
    logger.info(f"UploadCrashData:Succeeded {recording.id}")
