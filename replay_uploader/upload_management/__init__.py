"""Upload coordinator: single-shot and multipart transfers with retries."""

from replay_uploader.upload_management.crash_uploader import upload_crash_data
from replay_uploader.upload_management.recording_uploader import upload_recording
from replay_uploader.upload_management.source_map_uploader import upload_source_maps
from replay_uploader.upload_management.upload_manager import UploadManager
from replay_uploader.upload_management.upload_worker import UploadWorker

__all__ = [
    "UploadManager",
    "UploadWorker",
    "upload_crash_data",
    "upload_recording",
    "upload_source_maps",
]
