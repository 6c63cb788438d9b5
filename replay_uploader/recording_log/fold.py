"""Fold log entries into recordings.

Each kind has one handler in ``_FOLD_HANDLERS``. Entries arrive sorted by kind
priority, so the result does not depend on the physical order of lines.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from urllib.parse import urlparse

from replay_uploader.exceptions import InvalidLogEntryError, UnknownRecordingError
from replay_uploader.models import (
    LogEntry,
    LogEntryKind,
    OriginalSource,
    ProcessingStatus,
    Recording,
    RecordingStatus,
    SourceMap,
    UploadStatus,
)

logger = logging.getLogger(__name__)


def derive_host(uri: object, argv: object) -> str | None:
    """Host shown for a recording: the URI's network location or the program name."""
    if uri:
        if isinstance(uri, str):
            netloc = urlparse(uri).netloc
            return netloc or uri
        return None
    if isinstance(argv, list) and argv and isinstance(argv[0], str):
        return os.path.basename(argv[0])
    return None


def _require(entry: LogEntry, **fields: object) -> None:
    for name, value in fields.items():
        if value is None or value == "":
            raise InvalidLogEntryError(f'"{entry.kind}" entry must have a "{name}"')


class _Fold:
    """Mutable fold state for one pass over the log."""

    def __init__(self) -> None:
        self.recordings: dict[str, Recording] = {}
        self.start_timestamps: dict[str, int | float] = {}

    def recording_for(self, entry: LogEntry) -> Recording:
        recording_id = entry.owner_id
        recording = self.recordings.get(recording_id)
        if recording is None:
            raise UnknownRecordingError(recording_id, entry.kind)
        return recording


def _create_recording(state: _Fold, entry: LogEntry) -> None:
    state.recordings[entry.id] = Recording.from_create_entry(entry)


def _add_metadata(state: _Fold, entry: LogEntry) -> None:
    recording = state.recording_for(entry)
    metadata = entry.metadata or {}
    recording.metadata.raw.update(metadata)

    host = derive_host(metadata.get("uri"), metadata.get("argv"))
    if host:
        recording.metadata.host = host
    if metadata.get("uri"):
        recording.metadata.uri = metadata["uri"]
    if isinstance(metadata.get("argv"), list):
        recording.metadata.argv = metadata["argv"]
    if metadata.get("title"):
        recording.metadata.title = metadata["title"]
    if metadata.get("process"):
        recording.metadata.process_type = metadata["process"]
    if metadata.get("processGroupId"):
        recording.metadata.process_group_id = metadata["processGroupId"]


def _write_started(state: _Fold, entry: LogEntry) -> None:
    recording = state.recording_for(entry)
    recording.path = entry.path
    state.start_timestamps[recording.id] = entry.timestamp


def _sourcemap_added(state: _Fold, entry: LogEntry) -> None:
    _require(
        entry,
        recordingId=entry.recording_id,
        path=entry.path,
        baseURL=entry.base_url,
        targetMapURLHash=entry.target_map_url_hash,
    )
    recording = state.recording_for(entry)
    recording.metadata.source_maps.append(
        SourceMap(
            id=entry.id,
            path=entry.path or "",
            base_url=entry.base_url or "",
            target_map_url_hash=entry.target_map_url_hash or "",
            target_content_hash=entry.target_content_hash,
            target_url_hash=entry.target_url_hash,
        )
    )


def _original_source_added(state: _Fold, entry: LogEntry) -> None:
    _require(
        entry,
        recordingId=entry.recording_id,
        parentId=entry.parent_id,
        path=entry.path,
        parentOffset=entry.parent_offset,
    )
    recording = state.recording_for(entry)
    for source_map in recording.metadata.source_maps:
        if source_map.id == entry.parent_id:
            source_map.original_sources.append(
                OriginalSource(
                    path=entry.path or "", parent_offset=entry.parent_offset or 0
                )
            )
            return
    raise InvalidLogEntryError(f'Source map with ID "{entry.parent_id}" not found')


def _write_finished(state: _Fold, entry: LogEntry) -> None:
    recording = state.recording_for(entry)
    recording.mark_recording_status(RecordingStatus.FINISHED)
    start = state.start_timestamps.get(recording.id)
    if start is not None:
        recording.duration = entry.timestamp - start


def _upload_started(state: _Fold, entry: LogEntry) -> None:
    state.recording_for(entry).mark_upload_status(UploadStatus.UPLOADING)


def _upload_finished(state: _Fold, entry: LogEntry) -> None:
    state.recording_for(entry).mark_upload_status(UploadStatus.UPLOADED)


def _upload_failed(state: _Fold, entry: LogEntry) -> None:
    state.recording_for(entry).mark_upload_status(UploadStatus.FAILED)


def _recording_unusable(state: _Fold, entry: LogEntry) -> None:
    recording = state.recording_for(entry)
    recording.mark_recording_status(RecordingStatus.UNUSABLE)
    if recording.recording_status == RecordingStatus.UNUSABLE:
        recording.unusable_reason = entry.reason


def _crashed(state: _Fold, entry: LogEntry) -> None:
    recording = state.recording_for(entry)
    recording.mark_recording_status(RecordingStatus.CRASHED)
    # The reason only describes an unusable recording.
    recording.unusable_reason = None


def _crash_data(state: _Fold, entry: LogEntry) -> None:
    recording = state.recording_for(entry)
    if recording.crash_data is None:
        recording.crash_data = []
    recording.crash_data.append(entry.data)


def _crash_uploaded(state: _Fold, entry: LogEntry) -> None:
    state.recording_for(entry).mark_upload_status(UploadStatus.UPLOADED)


def _processing_started(state: _Fold, entry: LogEntry) -> None:
    state.recording_for(entry).mark_processing_status(ProcessingStatus.PROCESSING)


def _processing_finished(state: _Fold, entry: LogEntry) -> None:
    state.recording_for(entry).mark_processing_status(ProcessingStatus.PROCESSED)


def _processing_failed(state: _Fold, entry: LogEntry) -> None:
    state.recording_for(entry).mark_processing_status(ProcessingStatus.FAILED)


_FOLD_HANDLERS: dict[str, Callable[[_Fold, LogEntry], None]] = {
    LogEntryKind.CREATE_RECORDING.value: _create_recording,
    LogEntryKind.ADD_METADATA.value: _add_metadata,
    LogEntryKind.WRITE_STARTED.value: _write_started,
    LogEntryKind.SOURCEMAP_ADDED.value: _sourcemap_added,
    LogEntryKind.ORIGINAL_SOURCE_ADDED.value: _original_source_added,
    LogEntryKind.WRITE_FINISHED.value: _write_finished,
    LogEntryKind.UPLOAD_STARTED.value: _upload_started,
    LogEntryKind.UPLOAD_FINISHED.value: _upload_finished,
    LogEntryKind.UPLOAD_FAILED.value: _upload_failed,
    LogEntryKind.RECORDING_UNUSABLE.value: _recording_unusable,
    LogEntryKind.CRASHED.value: _crashed,
    LogEntryKind.CRASH_DATA.value: _crash_data,
    LogEntryKind.CRASH_UPLOADED.value: _crash_uploaded,
    LogEntryKind.PROCESSING_STARTED.value: _processing_started,
    LogEntryKind.PROCESSING_FINISHED.value: _processing_finished,
    LogEntryKind.PROCESSING_FAILED.value: _processing_failed,
}


def fold_entries(entries: Iterable[LogEntry]) -> dict[str, Recording]:
    """Build recordings from entries already sorted by kind priority.

    Args:
        entries: Log entries in fold order.

    Returns:
        Recordings keyed by id.

    Raises:
        UnknownRecordingError: If an entry references a recording that was
            never created.
        InvalidLogEntryError: If an entry lacks a field its kind requires.
    """
    state = _Fold()
    for entry in entries:
        handler = _FOLD_HANDLERS.get(entry.kind)
        if handler is None:
            logger.debug(f"Ignoring log entry of unknown kind {entry.kind!r}")
            continue
        handler(state, entry)
    return state.recordings
