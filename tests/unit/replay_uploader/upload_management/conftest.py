"""Fixtures wiring the fake protocol and storage servers into an upload backend."""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any

import aiohttp
import pytest
import pytest_asyncio

from replay_uploader.async_utils import WorkQueue
from replay_uploader.config_manager import UploaderConfig
from replay_uploader.models import Recording
from replay_uploader.protocol import ProtocolClient
from replay_uploader.recording_log import RecordingStore
from replay_uploader.upload_management.upload_context import UploadContext

# =============================================================================
# TEST CONFIGURATION
# =============================================================================

TEST_ACCESS_TOKEN = "test-token"
TEST_RESOURCE_TOKEN = "resource-token"
TEST_MULTIPART_MIN_SIZE = 1024
TEST_DEFAULT_CHUNK_SIZE = 4096

# =============================================================================
# FAKE BACKEND
# =============================================================================


class FakeBackend:
    """Protocol handlers that hand out upload links on the storage server."""

    def __init__(self, protocol_server, storage_server) -> None:
        self.protocol = protocol_server
        self.storage = storage_server
        self.known_resources: set[str] = set()
        self.created_resources: list[str] = []
        self._source_map_count = 0

        handlers = protocol_server.handlers
        handlers["Internal.beginRecordingUpload"] = self._begin_upload
        handlers["Internal.beginRecordingMultipartUpload"] = self._begin_multipart
        handlers["Resource.token"] = lambda params: {"token": TEST_RESOURCE_TOKEN}
        handlers["Resource.exists"] = self._resource_exists
        handlers["Resource.create"] = self._create_resource
        handlers["Recording.addSourceMap"] = self._add_source_map

    def fail(self, method: str, code: int = 1, message: str = "failed") -> None:
        """Answer every ``method`` command with a protocol error."""

        def handler(params: dict[str, Any]) -> None:
            raise self.protocol.Fault(code, message)

        self.protocol.handlers[method] = handler

    def params(self, method: str) -> list[dict[str, Any]]:
        return [command["params"] for command in self.protocol.commands(method)]

    def _begin_upload(self, params: dict[str, Any]) -> dict[str, Any]:
        recording_id = params["recordingId"]
        return {
            "recordingId": recording_id,
            "uploadLink": self.storage.link(recording_id),
        }

    def _begin_multipart(self, params: dict[str, Any]) -> dict[str, Any]:
        recording_id = params["recordingId"]
        chunk_size = params.get("chunkSize") or TEST_DEFAULT_CHUNK_SIZE
        part_count = math.ceil(params["recordingSize"] / chunk_size)
        return {
            "recordingId": recording_id,
            "uploadId": f"upload-{recording_id}",
            "chunkSize": chunk_size,
            "partLinks": [
                self.storage.link(f"{recording_id}-part{index}")
                for index in range(part_count)
            ],
        }

    def _resource_exists(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"exists": params["resource"]["saltedHash"] in self.known_resources}

    def _create_resource(self, params: dict[str, Any]) -> dict[str, Any]:
        self.created_resources.append(params["content"])
        return {"resource": {"token": TEST_RESOURCE_TOKEN, "saltedHash": "created"}}

    def _add_source_map(self, params: dict[str, Any]) -> dict[str, Any]:
        self._source_map_count += 1
        return {"id": f"server-sm-{self._source_map_count}"}


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def backend(protocol_server, storage_server) -> FakeBackend:
    """Fake backend on top of the running fake servers."""
    return FakeBackend(protocol_server, storage_server)


@pytest.fixture
def uploader_config(protocol_server, recordings_dir: Path) -> UploaderConfig:
    """Configuration pointing at the fake protocol server."""
    return UploaderConfig(
        server_url=protocol_server.url,
        api_key=TEST_ACCESS_TOKEN,
        recordings_dir=recordings_dir,
        multipart_min_size=TEST_MULTIPART_MIN_SIZE,
        transfer_concurrency=4,
        source_map_concurrency=2,
    )


@pytest_asyncio.fixture
async def client_session():
    """Create an aiohttp ClientSession for the test."""
    async with aiohttp.ClientSession() as session:
        yield session


@pytest_asyncio.fixture
async def client(protocol_server, backend, client_session):
    """Connected protocol client."""
    client = ProtocolClient(protocol_server.url, TEST_ACCESS_TOKEN, client_session)
    await client.connect()
    await client.wait_until_authenticated()
    yield client
    await client.close()


@pytest.fixture
def upload_context(
    client, client_session, store: RecordingStore, uploader_config: UploaderConfig
) -> UploadContext:
    """Upload context sharing one transfer queue and one source-map queue."""
    return UploadContext.create(
        client,
        client_session,
        store,
        uploader_config,
        WorkQueue(uploader_config.transfer_concurrency),
        WorkQueue(uploader_config.source_map_concurrency),
    )


@pytest.fixture
def make_recording(store: RecordingStore, recordings_dir: Path, write_log):
    """Write recordings to disk and the log, then load them back from the store.

    Call with a list of ``(recording_id, size)`` pairs, optionally followed by
    extra raw log entries.
    """
    entries: list[dict[str, Any]] = []

    async def make(
        sizes: list[tuple[str, int]],
        extra_entries: list[dict[str, Any]] | None = None,
    ) -> dict[str, Recording]:
        for index, (recording_id, size) in enumerate(sizes):
            path = recordings_dir / f"recording-{recording_id}.dat"
            path.write_bytes(bytes(i % 251 for i in range(size)))
            entries.extend(
                [
                    {
                        "id": recording_id,
                        "kind": "createRecording",
                        "timestamp": 1_700_000_000_000 + index,
                        "buildId": "linux-chromium-20240101",
                    },
                    {
                        "id": recording_id,
                        "kind": "addMetadata",
                        "metadata": {
                            "uri": f"https://{recording_id}.example.com/",
                            "x-ci": {"job": recording_id},
                            "source": {"branch": "main"},
                            "rogue": {"dropped": True},
                        },
                    },
                    {"id": recording_id, "kind": "writeStarted", "path": str(path)},
                    {"id": recording_id, "kind": "writeFinished", "timestamp": 5},
                ]
            )
        entries.extend(extra_entries or [])
        write_log(entries)
        return {r.id: r for r in await store.get_recordings()}

    return make
