"""Pydantic model for uploader configuration."""

from pathlib import Path

from pydantic import BaseModel, Field

from replay_uploader.const import (
    DEFAULT_RECORDINGS_DIR,
    DEFAULT_SERVER_URL,
    DEFAULT_SOURCE_MAP_CONCURRENCY,
    DEFAULT_TRANSFER_CONCURRENCY,
    MULTIPART_MIN_SIZE_THRESHOLD,
    RECORDING_LOG_FILENAME,
)


class UploaderConfig(BaseModel):
    """Configuration options for the recording uploader.

    Attributes:
        server_url: websocket URL of the protocol server.
        api_key: access token sent when the connection opens.
        recordings_dir: directory holding the recording log and files.
        multipart_chunk_size: upper bound for multipart part sizes, in bytes;
            the server decides when unset.
        multipart_min_size: files larger than this use multipart uploads.
        transfer_concurrency: maximum concurrent PUT requests.
        source_map_concurrency: maximum concurrent source-map uploads.
    """

    server_url: str = DEFAULT_SERVER_URL
    api_key: str | None = None
    recordings_dir: Path = Field(default_factory=lambda: DEFAULT_RECORDINGS_DIR)
    multipart_chunk_size: int | None = None
    multipart_min_size: int = MULTIPART_MIN_SIZE_THRESHOLD
    transfer_concurrency: int = DEFAULT_TRANSFER_CONCURRENCY
    source_map_concurrency: int = DEFAULT_SOURCE_MAP_CONCURRENCY

    @property
    def recording_log_path(self) -> Path:
        """Location of the recording log."""
        return self.recordings_dir / RECORDING_LOG_FILENAME
