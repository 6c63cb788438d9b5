"""Event-sourced store of local recordings backed by an NDJSON log."""

from replay_uploader.recording_log.fold import fold_entries
from replay_uploader.recording_log.log_reader import (
    parse_log_text,
    read_recording_log,
    split_merged_line,
)
from replay_uploader.recording_log.recording_store import RecordingStore, can_upload

__all__ = [
    "RecordingStore",
    "can_upload",
    "fold_entries",
    "parse_log_text",
    "read_recording_log",
    "split_merged_line",
]
