"""Models used by the recording log store and the upload pipeline."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LogEntryKind(str, Enum):
    """Kinds of entries written to the recording log."""

    CREATE_RECORDING = "createRecording"
    ADD_METADATA = "addMetadata"
    WRITE_STARTED = "writeStarted"
    SOURCEMAP_ADDED = "sourcemapAdded"
    ORIGINAL_SOURCE_ADDED = "originalSourceAdded"
    WRITE_FINISHED = "writeFinished"
    UPLOAD_STARTED = "uploadStarted"
    UPLOAD_FINISHED = "uploadFinished"
    UPLOAD_FAILED = "uploadFailed"
    RECORDING_UNUSABLE = "recordingUnusable"
    CRASHED = "crashed"
    CRASH_DATA = "crashData"
    CRASH_UPLOADED = "crashUploaded"
    PROCESSING_STARTED = "processingStarted"
    PROCESSING_FINISHED = "processingFinished"
    PROCESSING_FAILED = "processingFailed"


# Entries are folded in this order regardless of where they appear in the file,
# since several writers may interleave lines.
KIND_PRIORITY: dict[str, int] = {
    LogEntryKind.CREATE_RECORDING.value: 0,
    LogEntryKind.ADD_METADATA.value: 1,
    LogEntryKind.WRITE_STARTED.value: 2,
    LogEntryKind.SOURCEMAP_ADDED.value: 3,
    LogEntryKind.ORIGINAL_SOURCE_ADDED.value: 4,
    LogEntryKind.WRITE_FINISHED.value: 5,
    LogEntryKind.UPLOAD_STARTED.value: 6,
    LogEntryKind.UPLOAD_FINISHED.value: 7,
    LogEntryKind.UPLOAD_FAILED.value: 8,
    LogEntryKind.RECORDING_UNUSABLE.value: 9,
    LogEntryKind.CRASHED.value: 10,
    LogEntryKind.CRASH_DATA.value: 11,
    LogEntryKind.CRASH_UPLOADED.value: 12,
    LogEntryKind.PROCESSING_STARTED.value: 13,
    LogEntryKind.PROCESSING_FINISHED.value: 14,
    LogEntryKind.PROCESSING_FAILED.value: 15,
}


def kind_priority(kind: str) -> int:
    """Return the fold priority of a kind; unknown kinds sort first."""
    return KIND_PRIORITY.get(str(kind), -1)


class RecordingStatus(str, Enum):
    """Lifecycle of the recorded trace itself.

    State transitions:
    - RECORDING -> FINISHED | CRASHED | UNUSABLE
    - FINISHED -> CRASHED | UNUSABLE (reported after the write finished)
    - CRASHED <-> UNUSABLE
    Nothing returns to RECORDING and nothing becomes FINISHED once crashed
    or unusable.
    """

    RECORDING = "recording"
    FINISHED = "finished"
    CRASHED = "crashed"
    UNUSABLE = "unusable"


class UploadStatus(str, Enum):
    """Upload state; ``None`` on a recording means the upload never started."""

    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    FAILED = "failed"


class ProcessingStatus(str, Enum):
    """Server-side processing state."""

    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class ProcessType(str, Enum):
    """Browser process that produced a recording."""

    DEVTOOLS = "devtools"
    EXTENSION = "extension"
    IFRAME = "iframe"
    ROOT = "root"


class LogEntry(BaseModel):
    """One line of the recording log.

    Field names on disk are camelCase; unknown fields are kept so a rewritten
    log preserves everything the recorder wrote.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    kind: str
    timestamp: int | float = 0
    build_id: str | None = Field(default=None, alias="buildId")
    driver_version: str | None = Field(default=None, alias="driverVersion")
    metadata: dict[str, Any] | None = None
    path: str | None = None
    data: Any = None
    reason: str | None = None
    recording_id: str | None = Field(default=None, alias="recordingId")
    parent_id: str | None = Field(default=None, alias="parentId")
    parent_offset: int | None = Field(default=None, alias="parentOffset")
    base_url: str | None = Field(default=None, alias="baseURL")
    target_content_hash: str | None = Field(default=None, alias="targetContentHash")
    target_url_hash: str | None = Field(default=None, alias="targetURLHash")
    target_map_url_hash: str | None = Field(default=None, alias="targetMapURLHash")
    server: str | None = None

    @classmethod
    def from_line(cls, line: str) -> LogEntry:
        """Parse a single JSON line.

        Raises:
            ValueError: If the line is not a JSON object describing an entry.
        """
        return cls.model_validate(json.loads(line))

    def to_dict(self) -> dict[str, Any]:
        """Return the entry as written on disk, keeping only fields that were set."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)

    def to_line(self) -> str:
        """Serialize the entry as one log line (without the newline)."""
        return json.dumps(self.to_dict())

    @property
    def owner_id(self) -> str:
        """Id of the recording this entry belongs to.

        Source-map entries carry their own id and point at the recording
        through ``recordingId``.
        """
        if self.kind in (
            LogEntryKind.SOURCEMAP_ADDED.value,
            LogEntryKind.ORIGINAL_SOURCE_ADDED.value,
        ):
            return self.recording_id or ""
        return self.id


@dataclass
class OriginalSource:
    """An original source file referenced by a source map."""

    path: str
    parent_offset: int


@dataclass
class SourceMap:
    """A source map captured alongside a recording."""

    id: str
    path: str
    base_url: str
    target_map_url_hash: str
    target_content_hash: str | None = None
    target_url_hash: str | None = None
    original_sources: list[OriginalSource] = field(default_factory=list)


@dataclass
class RecordingMetadata:
    """Metadata gathered from ``addMetadata`` entries.

    ``raw`` holds every key the recorder wrote, merged in fold order; the
    remaining attributes are the values derived from it.
    """

    host: str | None = None
    title: str | None = None
    uri: str | None = None
    argv: list[str] | None = None
    process_group_id: str | None = None
    process_type: str | None = None
    source_maps: list[SourceMap] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class Recording:
    """A captured trace tracked locally until uploaded."""

    id: str
    build_id: str | None
    create_time: datetime
    driver_version: str | None = None
    path: str | None = None
    duration: int | float | None = None
    recording_status: RecordingStatus = RecordingStatus.RECORDING
    upload_status: UploadStatus | None = None
    processing_status: ProcessingStatus | None = None
    metadata: RecordingMetadata = field(default_factory=RecordingMetadata)
    crash_data: list[Any] | None = None
    unusable_reason: str | None = None
    upload_error: BaseException | None = None

    @classmethod
    def from_create_entry(cls, entry: LogEntry) -> Recording:
        """Build a new recording from a ``createRecording`` entry."""
        return cls(
            id=entry.id,
            build_id=entry.build_id,
            create_time=datetime.fromtimestamp(entry.timestamp / 1000, tz=timezone.utc),
            driver_version=entry.driver_version,
        )

    def mark_recording_status(self, status: RecordingStatus) -> bool:
        """Move to ``status`` unless that would reverse a terminal state.

        Returns:
            True if the status changed.
        """
        current = self.recording_status
        if status == current:
            return False
        if status == RecordingStatus.RECORDING:
            return False
        if status == RecordingStatus.FINISHED and current in (
            RecordingStatus.CRASHED,
            RecordingStatus.UNUSABLE,
        ):
            return False
        self.recording_status = status
        return True

    def mark_upload_status(self, status: UploadStatus) -> bool:
        """Move to ``status``; an uploaded recording stays uploaded.

        Returns:
            True if the status changed.
        """
        if self.upload_status == UploadStatus.UPLOADED:
            return False
        if status == self.upload_status:
            return False
        self.upload_status = status
        return True

    def mark_processing_status(self, status: ProcessingStatus) -> bool:
        """Move to ``status``; processing may be re-entered after a failure.

        Returns:
            True if the status changed.
        """
        if status == self.processing_status:
            return False
        self.processing_status = status
        return True


class ProcessingBehavior(str, Enum):
    """What to do after a recording has been uploaded."""

    START_PROCESSING = "start-processing"
    WAIT_FOR_PROCESSING = "wait-for-processing-to-finish"
    DO_NOT_PROCESS = "do-not-process"
