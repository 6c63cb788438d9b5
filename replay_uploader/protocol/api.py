"""Typed wrappers around the protocol methods used by the uploader.

Every wrapper except ``set_access_token`` waits for the client to be
authenticated before sending.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from replay_uploader.protocol.protocol_client import ProtocolClient


async def _send(
    client: ProtocolClient, method: str, params: dict[str, Any]
) -> dict[str, Any]:
    await client.wait_until_authenticated()
    return await client.send_command(method, params)


async def set_access_token(client: ProtocolClient, access_token: str) -> None:
    """Authenticate the connection; sent by the client itself on connect."""
    await client.send_command(
        "Authentication.setAccessToken", {"accessToken": access_token}
    )


async def begin_recording_upload(
    client: ProtocolClient, recording_id: str, build_id: str | None, recording_size: int
) -> dict[str, Any]:
    """Start a single-shot upload.

    Returns:
        ``{"recordingId", "uploadLink"}``.
    """
    return await _send(
        client,
        "Internal.beginRecordingUpload",
        {
            "recordingId": recording_id,
            "buildId": build_id,
            "recordingSize": recording_size,
        },
    )


async def end_recording_upload(client: ProtocolClient, recording_id: str) -> None:
    """Finish a single-shot upload."""
    await _send(client, "Internal.endRecordingUpload", {"recordingId": recording_id})


async def begin_recording_multipart_upload(
    client: ProtocolClient,
    recording_id: str,
    build_id: str | None,
    recording_size: int,
    max_chunk_size: int | None = None,
) -> dict[str, Any]:
    """Start a multipart upload.

    Args:
        client: Connected protocol client.
        recording_id: Id of the recording.
        build_id: Recorder build id.
        recording_size: Size of the recording file in bytes.
        max_chunk_size: Upper bound for the part size; the server decides
            when omitted.

    Returns:
        ``{"chunkSize", "partLinks", "recordingId", "uploadId"}``.
    """
    params: dict[str, Any] = {
        "recordingId": recording_id,
        "buildId": build_id,
        "recordingSize": recording_size,
    }
    if max_chunk_size is not None:
        params["chunkSize"] = max_chunk_size
    return await _send(client, "Internal.beginRecordingMultipartUpload", params)


async def end_recording_multipart_upload(
    client: ProtocolClient, recording_id: str, upload_id: str, part_ids: list[str]
) -> None:
    """Finish a multipart upload with the part ETags in part order."""
    await _send(
        client,
        "Internal.endRecordingMultipartUpload",
        {"recordingId": recording_id, "uploadId": upload_id, "partIds": part_ids},
    )


async def set_recording_metadata(
    client: ProtocolClient, metadata: dict[str, Any], recording_data: dict[str, Any]
) -> None:
    """Attach sanitized metadata and recording data to an upload."""
    await _send(
        client,
        "Internal.setRecordingMetadata",
        {"metadata": metadata, "recordingData": recording_data},
    )


async def process_recording(client: ProtocolClient, recording_id: str) -> None:
    """Ask the server to process an uploaded recording."""
    await _send(client, "Recording.processRecording", {"recordingId": recording_id})


async def add_source_map(
    client: ProtocolClient, params: dict[str, Any]
) -> dict[str, Any]:
    """Attach a source map resource to a recording.

    Returns:
        ``{"id"}`` of the stored source map.
    """
    return await _send(client, "Recording.addSourceMap", params)


async def add_original_source(client: ProtocolClient, params: dict[str, Any]) -> None:
    """Attach an original source resource to a source map."""
    await _send(client, "Recording.addOriginalSource", params)


async def check_if_resource_exists(
    client: ProtocolClient, resource: dict[str, str]
) -> bool:
    """Whether the server already stores ``resource``."""
    result = await _send(client, "Resource.exists", {"resource": resource})
    return bool(result.get("exists"))


async def create_resource(client: ProtocolClient, content: str) -> dict[str, str]:
    """Upload resource content.

    Returns:
        The stored resource ``{"token", "saltedHash"}``.
    """
    result = await _send(client, "Resource.create", {"content": content})
    return result["resource"]


async def get_resource_token(client: ProtocolClient, content_hash: str) -> str:
    """Get the token used to salt a resource hash."""
    result = await _send(client, "Resource.token", {"hash": content_hash})
    return result["token"]


async def report_crash(client: ProtocolClient, data: Any) -> None:
    """Report one crash diagnostic blob."""
    await _send(client, "Internal.reportCrash", {"data": data})
