"""Best-effort upload of the source maps captured with a recording.

Resources are content addressed: the server is asked whether identical bytes
are already stored before any content is sent.
"""

from __future__ import annotations

import hashlib
import logging

import aiofiles

from replay_uploader.async_utils import WorkGroup
from replay_uploader.models import OriginalSource, Recording, SourceMap
from replay_uploader.protocol import ProtocolClient, api
from replay_uploader.upload_management.upload_context import UploadContext

logger = logging.getLogger(__name__)


def hash_value(value: str) -> str:
    """Hex sha256 of ``value``."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


async def ensure_resource(client: ProtocolClient, content: str) -> dict[str, str]:
    """Return a resource for ``content``, uploading it only if the server lacks it."""
    token = await api.get_resource_token(client, f"sha256:{hash_value(content)}")
    resource = {"token": token, "saltedHash": f"sha256:{hash_value(token + content)}"}
    if await api.check_if_resource_exists(client, resource):
        return resource
    return await api.create_resource(client, content)


async def _read_text(path: str) -> str:
    async with aiofiles.open(path, encoding="utf-8") as f:
        return await f.read()


async def _upload_original_source(
    client: ProtocolClient,
    recording: Recording,
    source_map: SourceMap,
    source_map_id: str,
    source: OriginalSource,
) -> None:
    logger.debug(
        f"Uploading original source {source.path} for source map "
        f"{source_map.path} for recording {recording.id}"
    )
    try:
        content = await _read_text(source.path)
        await api.add_original_source(
            client,
            {
                "recordingId": recording.id,
                "parentId": source_map_id,
                "parentOffset": source.parent_offset,
                "resource": await ensure_resource(client, content),
            },
        )
    except Exception as e:
        logger.debug(
            f"Failed to upload original source {source.path} for source map "
            f"{source_map.path} for recording {recording.id}: {e}"
        )


async def _upload_source_map(
    client: ProtocolClient,
    group: WorkGroup,
    recording: Recording,
    source_map: SourceMap,
) -> None:
    logger.debug(f"Uploading source map {source_map.path} for recording {recording.id}")
    try:
        content = await _read_text(source_map.path)
        params = {
            "recordingId": recording.id,
            "baseURL": source_map.base_url,
            "targetContentHash": source_map.target_content_hash,
            "targetURLHash": source_map.target_url_hash,
            "targetMapURLHash": source_map.target_map_url_hash,
            "resource": await ensure_resource(client, content),
        }
        result = await api.add_source_map(client, params)
        source_map_id = result["id"]
    except Exception as e:
        logger.debug(
            f"Failed to upload source map {source_map.path} "
            f"for recording {recording.id}: {e}"
        )
        return

    # Original sources need the id of their uploaded parent.
    for source in source_map.original_sources:
        group.add(
            lambda source=source: _upload_original_source(
                client, recording, source_map, source_map_id, source
            )
        )


async def upload_source_maps(context: UploadContext, recording: Recording) -> None:
    """Upload every source map of ``recording`` and their original sources.

    Failures are logged and never raised.
    """
    group = context.source_map_queue.fork()
    for source_map in recording.metadata.source_maps:
        group.add(
            lambda source_map=source_map: _upload_source_map(
                context.client, group, recording, source_map
            )
        )
    await group.wait_until_idle()
