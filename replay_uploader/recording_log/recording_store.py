"""Read, append to and prune the local recording log."""

from __future__ import annotations

import logging
import re
import time
from collections import Counter
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from replay_uploader.const import RECORDING_FILE_PREFIXES, RECORDING_LOG_FILENAME
from replay_uploader.exceptions import UnknownRecordingError
from replay_uploader.models import (
    LogEntry,
    LogEntryKind,
    Recording,
    RecordingStatus,
)
from replay_uploader.recording_log.fold import fold_entries
from replay_uploader.recording_log.log_reader import read_recording_log

logger = logging.getLogger(__name__)

_MAP_SUFFIX = re.compile(r"\.map$")


def can_upload(recording: Recording) -> bool:
    """Whether ``recording`` is ready and has not been uploaded yet."""
    return (
        bool(recording.path)
        and recording.upload_status is None
        and recording.recording_status
        in (RecordingStatus.CRASHED, RecordingStatus.FINISHED)
    )


def _asset_usage(recordings: list[Recording]) -> Counter[str]:
    usage: Counter[str] = Counter()
    for recording in recordings:
        for source_map in recording.metadata.source_maps:
            usage[source_map.path] += 1
            for original_source in source_map.original_sources:
                usage[original_source.path] += 1
    return usage


async def _remove_file(path: str | Path) -> None:
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        logger.debug(f"File already gone: {path}")


class RecordingStore:
    """Event-sourced view of the recordings in a recordings directory.

    The log is append-only: ``update_recording_log`` adds one line and never
    rewrites existing ones. Only ``remove_from_disk`` rewrites the file, after
    dropping the lines of the removed recording. Recordings are rebuilt from
    the log on every read.
    """

    def __init__(self, recordings_dir: Path | str) -> None:
        """Initialise the store.

        Args:
            recordings_dir: Directory holding the log and the recording files.
        """
        self.recordings_dir = Path(recordings_dir)
        self.log_path = self.recordings_dir / RECORDING_LOG_FILENAME

    async def read_entries(self) -> list[LogEntry]:
        """Return all log entries in fold order."""
        return await read_recording_log(self.log_path)

    async def get_recordings(
        self, process_group_id: str | None = None
    ) -> list[Recording]:
        """Rebuild recordings from the log.

        Finished recordings without a host (empty tabs) are left out; crashed
        and unusable ones are always returned so they can be reported.

        Args:
            process_group_id: Only return recordings of this process group.

        Returns:
            Recordings, newest first.
        """
        entries = await self.read_entries()
        recordings = list(fold_entries(entries).values())
        logger.debug(f"Found {len(recordings)} recordings in {self.log_path}")

        def keep(recording: Recording) -> bool:
            if (
                process_group_id
                and recording.metadata.process_group_id != process_group_id
            ):
                return False
            if recording.recording_status == RecordingStatus.FINISHED:
                return bool(recording.metadata.host)
            return True

        return sorted(
            filter(keep, recordings),
            key=lambda recording: recording.create_time,
            reverse=True,
        )

    async def update_recording_log(
        self, recording: Recording, kind: LogEntryKind | str, **fields: Any
    ) -> LogEntry:
        """Append one entry for ``recording``.

        Args:
            recording: The recording the entry belongs to.
            kind: Entry kind.
            **fields: Kind-specific fields, using their on-disk names.

        Returns:
            The appended entry.
        """
        kind_value = kind.value if isinstance(kind, LogEntryKind) else kind
        entry = LogEntry.model_validate(
            {
                **fields,
                "kind": kind_value,
                "id": recording.id,
                "recordingId": recording.id,
                "timestamp": int(time.time() * 1000),
            }
        )
        logger.debug(f"Appending {kind_value} entry for recording {recording.id}")

        self.recordings_dir.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.log_path, "a", encoding="utf-8") as f:
            # Framing newlines keep a torn previous line from swallowing this one.
            await f.write(f"\n{entry.to_line()}\n")
        return entry

    async def find_recordings_with_short_ids(
        self, short_ids: list[str]
    ) -> list[Recording]:
        """Resolve id prefixes to recordings.

        Raises:
            UnknownRecordingError: If a prefix matches no recording.
        """
        recordings = await self.get_recordings()
        found = []
        for short_id in short_ids:
            match = next((r for r in recordings if r.id.startswith(short_id)), None)
            if match is None:
                raise UnknownRecordingError(short_id, "lookup")
            found.append(match)
        return found

    async def get_recording_unusable_reason(
        self, process_group_id: str | None = None
    ) -> str | None:
        """Reason of the most recent unusable recording, if any."""
        for recording in await self.get_recordings(process_group_id):
            if (
                recording.recording_status == RecordingStatus.UNUSABLE
                and recording.unusable_reason
            ):
                return recording.unusable_reason
        return None

    async def remove_from_disk(self, recording_id: str) -> bool:
        """Delete a recording's files and its log lines.

        Source-map and original-source files are only deleted when no other
        recording references the same path.

        Args:
            recording_id: Id or id prefix of the recording.

        Returns:
            True if a recording was found and removed.
        """
        logger.debug(f"Removing recording {recording_id}")
        entries = await self.read_entries()
        recordings = list(fold_entries(entries).values())
        recording = next(
            (r for r in recordings if r.id.startswith(recording_id)), None
        )
        if recording is None:
            logger.info(f"Recording {recording_id} not found")
            return False

        usage = _asset_usage(recordings)
        for source_map in recording.metadata.source_maps:
            if usage[source_map.path] == 1:
                logger.debug(f"Removing source map file {source_map.path}")
                await _remove_file(source_map.path)
                await _remove_file(_MAP_SUFFIX.sub(".lookup", source_map.path))
            for original_source in source_map.original_sources:
                if usage[original_source.path] == 1:
                    logger.debug(
                        f"Removing original source file {original_source.path}"
                    )
                    await _remove_file(original_source.path)

        if recording.path:
            logger.debug(f"Removing recording data file {recording.path}")
            await _remove_file(recording.path)

        remaining = [entry for entry in entries if entry.owner_id != recording.id]
        async with aiofiles.open(self.log_path, "w", encoding="utf-8") as f:
            await f.write("".join(f"{entry.to_line()}\n" for entry in remaining))
        return True

    async def remove_all_from_disk(self) -> None:
        """Delete every recording, source-map and original-source file and the log."""
        logger.debug("Removing all recordings")
        try:
            names = await aiofiles.os.listdir(self.recordings_dir)
        except FileNotFoundError:
            return
        for name in names:
            if any(prefix in name for prefix in RECORDING_FILE_PREFIXES):
                await _remove_file(self.recordings_dir / name)
        await _remove_file(self.log_path)
