"""Sanitize recording metadata before it is sent to the server."""

from __future__ import annotations

import logging
from typing import Any

from replay_uploader.models import Recording

logger = logging.getLogger(__name__)

# Keys derived locally; the server gets them through recordingData instead.
_LOCAL_KEYS = {"host", "uri"}


def _validate_block(key: str, value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f'"{key}" metadata must be an object')
    return {key: value}


def sanitize_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Keep only the metadata blocks the server accepts.

    ``x-`` prefixed and null blocks pass through, ``source`` and ``test``
    blocks must be objects, and anything else is dropped.
    """
    sanitized: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is not None and not isinstance(value, (dict, list)):
            logger.debug(
                f'Ignoring metadata key "{key}". Expected an object but received '
                f"{type(value).__name__}"
            )
            continue

        if value is None or key.startswith("x-"):
            sanitized[key] = value
        elif key in ("source", "test"):
            try:
                sanitized.update(_validate_block(key, value))
            except ValueError as e:
                logger.debug(f"{key.capitalize()} validation failed: {e}")
        else:
            logger.debug(
                f'Ignoring metadata key "{key}". Custom metadata blocks must be '
                f'prefixed by "x-". Try "x-{key}" instead.'
            )
    return sanitized


def validate_recording_metadata(
    recording: Recording,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Build the ``setRecordingMetadata`` payload for ``recording``.

    Returns:
        The sanitized metadata and the recording data.
    """
    raw = {
        key: value
        for key, value in recording.metadata.raw.items()
        if key not in _LOCAL_KEYS
    }
    metadata = sanitize_metadata(raw)
    recording_data = {
        "duration": recording.duration or 0,
        "id": recording.id,
        "url": recording.metadata.uri or "",
        "title": recording.metadata.host or "",
        "operations": {"scriptDomains": []},
        "lastScreenData": "",
        "lastScreenMimeType": "",
    }
    return metadata, recording_data
