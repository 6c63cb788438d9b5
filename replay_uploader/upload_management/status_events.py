"""Status setters that broadcast changes on the shared emitter."""

from __future__ import annotations

from replay_uploader.event_emitter import Emitter, get_or_init_emitter
from replay_uploader.models import ProcessingStatus, Recording, UploadStatus


def set_upload_status(recording: Recording, status: UploadStatus) -> None:
    """Update ``recording.upload_status`` and announce the change."""
    if recording.mark_upload_status(status):
        get_or_init_emitter().emit(
            Emitter.RECORDING_STATUS_CHANGED, recording.id, "upload_status", status
        )


def set_processing_status(recording: Recording, status: ProcessingStatus) -> None:
    """Update ``recording.processing_status`` and announce the change."""
    if recording.mark_processing_status(status):
        get_or_init_emitter().emit(
            Emitter.RECORDING_STATUS_CHANGED, recording.id, "processing_status", status
        )
