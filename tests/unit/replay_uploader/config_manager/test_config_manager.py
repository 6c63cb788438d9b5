"""Tests for resolving the uploader configuration."""

from __future__ import annotations

from pathlib import Path

from replay_uploader.config_manager import ConfigManager, UploaderConfig
from replay_uploader.const import (
    DEFAULT_SERVER_URL,
    DEFAULT_TRANSFER_CONCURRENCY,
    MULTIPART_MIN_SIZE_THRESHOLD,
)


def test_defaults_without_environment() -> None:
    config = ConfigManager(environ={}).resolve_effective_config()

    assert config == UploaderConfig()
    assert config.server_url == DEFAULT_SERVER_URL
    assert config.api_key is None
    assert config.multipart_chunk_size is None
    assert config.multipart_min_size == MULTIPART_MIN_SIZE_THRESHOLD
    assert config.transfer_concurrency == DEFAULT_TRANSFER_CONCURRENCY


def test_environment_overrides_defaults(tmp_path: Path) -> None:
    environ = {
        "REPLAY_SERVER": "ws://localhost:8000",
        "REPLAY_API_KEY": "key",
        "RECORD_REPLAY_DIRECTORY": str(tmp_path),
        "REPLAY_MULTIPART_UPLOAD_CHUNK": "8mb",
        "REPLAY_UPLOAD_CONCURRENCY": "3",
    }

    config = ConfigManager(environ=environ).resolve_effective_config()

    assert config.server_url == "ws://localhost:8000"
    assert config.api_key == "key"
    assert config.recordings_dir == tmp_path
    assert config.recording_log_path == tmp_path / "recordings.log"
    assert config.multipart_chunk_size == 8 * 1024 * 1024
    assert config.transfer_concurrency == 3


def test_first_listed_variable_wins() -> None:
    manager = ConfigManager(
        environ={"REPLAY_API_KEY": "new", "RECORD_REPLAY_API_KEY": "legacy"}
    )

    assert manager.resolve_effective_config().api_key == "new"
    assert manager.api_key_source() == "REPLAY_API_KEY"


def test_legacy_api_key_variable_is_reported() -> None:
    manager = ConfigManager(environ={"RECORD_REPLAY_API_KEY": "legacy"})

    assert manager.resolve_effective_config().api_key == "legacy"
    assert manager.api_key_source() == "RECORD_REPLAY_API_KEY"
    assert ConfigManager(environ={}).api_key_source() is None


def test_invalid_values_are_ignored() -> None:
    environ = {
        "REPLAY_MULTIPART_MIN_SIZE": "lots",
        "REPLAY_SOURCEMAP_CONCURRENCY": "many",
    }

    config = ConfigManager(environ=environ).resolve_effective_config()

    assert config.multipart_min_size == MULTIPART_MIN_SIZE_THRESHOLD
    assert config.source_map_concurrency == UploaderConfig().source_map_concurrency


def test_explicit_overrides_take_precedence() -> None:
    manager = ConfigManager(environ={"REPLAY_API_KEY": "from-env"})

    config = manager.resolve_effective_config({"api_key": "explicit"})

    assert config.api_key == "explicit"
