"""Collaborators shared by every recording in one upload batch."""

from __future__ import annotations

from dataclasses import dataclass

import aiohttp

from replay_uploader.async_utils import WorkQueue
from replay_uploader.config_manager import UploaderConfig
from replay_uploader.const import MULTIPART_MIN_SIZE_THRESHOLD
from replay_uploader.protocol import ProtocolClient
from replay_uploader.recording_log import RecordingStore
from replay_uploader.upload_management.file_transfer import FileTransfer


@dataclass
class UploadContext:
    """Everything a single recording upload needs besides the recording.

    Attributes:
        client: Authenticated protocol client shared by the batch.
        store: Log store the upload progress is written to.
        transfer: PUT helper running on the shared transfer queue.
        source_map_queue: Queue bounding concurrent source-map uploads.
        server_url: Server recorded in ``uploadStarted`` entries.
        multipart_chunk_size: Upper bound for part sizes, if configured.
        multipart_min_size: Files larger than this may use multipart uploads.
    """

    client: ProtocolClient
    store: RecordingStore
    transfer: FileTransfer
    source_map_queue: WorkQueue
    server_url: str
    multipart_chunk_size: int | None = None
    multipart_min_size: int = MULTIPART_MIN_SIZE_THRESHOLD

    @classmethod
    def create(
        cls,
        client: ProtocolClient,
        client_session: aiohttp.ClientSession,
        store: RecordingStore,
        config: UploaderConfig,
        transfer_queue: WorkQueue,
        source_map_queue: WorkQueue,
    ) -> UploadContext:
        """Build a context from the resolved configuration."""
        return cls(
            client=client,
            store=store,
            transfer=FileTransfer(client_session, transfer_queue),
            source_map_queue=source_map_queue,
            server_url=config.server_url,
            multipart_chunk_size=config.multipart_chunk_size,
            multipart_min_size=config.multipart_min_size,
        )
