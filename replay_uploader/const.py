"""Constants for the recording uploader."""

from pathlib import Path

DEFAULT_SERVER_URL = "wss://dispatch.replay.io"
DEFAULT_RECORDINGS_DIR = Path.home() / ".replay"
RECORDING_LOG_FILENAME = "recordings.log"

BYTES_PER_MIB = 1024 * 1024
MULTIPART_MIN_SIZE_THRESHOLD = 5 * BYTES_PER_MIB
MULTIPART_FEATURE_FLAG = "cli-multipart-upload"

DEFAULT_TRANSFER_CONCURRENCY = 10
DEFAULT_SOURCE_MAP_CONCURRENCY = 10

# Read size used when streaming a file (or a byte range of it) into a PUT body
STREAM_READ_SIZE = 1024 * 1024

DEFAULT_RETRY_ATTEMPTS = 5
RETRY_BASE_DELAY_SECONDS = 0.1
RETRY_JITTER_SECONDS = 0.1

TASK_QUEUE_FLUSH_TIMEOUT_SECONDS = 0.5

AUTHENTICATION_REQUIRED_ERROR_CODE = 49

API_KEY_ENV_VARS = ("REPLAY_API_KEY", "RECORD_REPLAY_API_KEY")

# Recordings directory entries that belong to this tool
RECORDING_FILE_PREFIXES = ("recording-", "sourcemap-", "original-")

# Tasks fall back to anonymous execution when identity resolution takes longer
AUTH_INFO_TIMEOUT_SECONDS = 10.0
