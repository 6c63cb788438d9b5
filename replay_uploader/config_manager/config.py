"""Resolve uploader configuration from defaults, environment, and overrides."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from replay_uploader.config_manager.helpers import parse_bytes
from replay_uploader.config_manager.uploader_config import UploaderConfig
from replay_uploader.const import API_KEY_ENV_VARS

logger = logging.getLogger(__name__)

# Earlier variables win when several are set for one field.
_ENV_MAP: dict[str, tuple[str, ...]] = {
    "server_url": ("RECORD_REPLAY_SERVER", "REPLAY_SERVER"),
    "api_key": API_KEY_ENV_VARS,
    "recordings_dir": ("RECORD_REPLAY_DIRECTORY",),
    "multipart_chunk_size": ("REPLAY_MULTIPART_UPLOAD_CHUNK",),
    "multipart_min_size": ("REPLAY_MULTIPART_MIN_SIZE",),
    "transfer_concurrency": ("REPLAY_UPLOAD_CONCURRENCY",),
    "source_map_concurrency": ("REPLAY_SOURCEMAP_CONCURRENCY",),
}

_BYTE_FIELDS = {"multipart_chunk_size", "multipart_min_size"}
_INT_FIELDS = {"transfer_concurrency", "source_map_concurrency"}


class ConfigManager:
    """Build the effective uploader configuration."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        """Initialise ConfigManager.

        Args:
            environ: Environment to read; defaults to ``os.environ``.
        """
        self._environ: Mapping[str, str] = (
            environ if environ is not None else os.environ
        )

    def _read_env_overrides(self) -> dict[str, Any]:
        """Read configuration overrides from environment variables.

        Returns:
            A dictionary of configuration field names to override values.
        """
        overrides: dict[str, Any] = {}

        for field_name, env_var_names in _ENV_MAP.items():
            env_value = next(
                (
                    self._environ[name]
                    for name in env_var_names
                    if self._environ.get(name)
                ),
                None,
            )
            if env_value is None:
                continue

            if field_name in _BYTE_FIELDS:
                try:
                    overrides[field_name] = parse_bytes(env_value)
                except ValueError:
                    logger.warning(f"Ignoring invalid byte size {env_value!r}")
                    continue
            elif field_name in _INT_FIELDS:
                try:
                    overrides[field_name] = int(env_value)
                except ValueError:
                    logger.warning(f"Ignoring invalid integer {env_value!r}")
                    continue
            elif field_name == "recordings_dir":
                overrides[field_name] = Path(env_value).expanduser()
            else:
                overrides[field_name] = env_value

        return overrides

    def api_key_source(self) -> str | None:
        """Name of the environment variable the API key comes from, if any."""
        for name in _ENV_MAP["api_key"]:
            if self._environ.get(name):
                return name
        return None

    def resolve_effective_config(
        self, overrides: dict[str, Any] | None = None
    ) -> UploaderConfig:
        """Resolve the effective configuration for this run.

        Args:
            overrides: Explicit values that take precedence over the
                environment.

        Returns:
            The resolved ``UploaderConfig``.
        """
        merged_config = UploaderConfig().model_copy(update=self._read_env_overrides())

        if overrides is not None:
            merged_config = merged_config.model_copy(update=overrides)

        return merged_config
