"""Tests for the websocket protocol client against an in-process server."""

from __future__ import annotations

import asyncio

import aiohttp
import pytest
import pytest_asyncio

from replay_uploader.exceptions import (
    AuthenticationError,
    ConnectionClosedError,
    ProtocolError,
    UnknownCommandError,
)
from replay_uploader.protocol import ProtocolClient
from replay_uploader.protocol.api import (
    begin_recording_multipart_upload,
    check_if_resource_exists,
)

# =============================================================================
# TEST CONFIGURATION
# =============================================================================

TEST_TIMEOUT_SECONDS = 5.0
TEST_ACCESS_TOKEN = "test-token"

# =============================================================================
# FIXTURES
# =============================================================================


@pytest_asyncio.fixture
async def client(protocol_server):
    """Connected client; closed after the test."""
    client = ProtocolClient(protocol_server.url, TEST_ACCESS_TOKEN)
    await client.connect()
    yield client
    await client.close()


# =============================================================================
# TESTS
# =============================================================================


@pytest.mark.asyncio
async def test_authenticates_with_access_token(client, protocol_server) -> None:
    assert await asyncio.wait_for(client.wait_until_authenticated(), 5) is True

    [command] = protocol_server.commands("Authentication.setAccessToken")
    assert command["params"] == {"accessToken": TEST_ACCESS_TOKEN}
    assert command["id"] == 1


@pytest.mark.asyncio
async def test_responses_resolve_their_own_commands(client, protocol_server) -> None:
    count = 5
    all_received = asyncio.Event()

    async def echo(params):
        if len(protocol_server.commands("Test.echo")) == count:
            all_received.set()
        await all_received.wait()
        # Answer in reverse order of arrival.
        await asyncio.sleep(0.01 * (count - params["n"]))
        return {"n": params["n"]}

    protocol_server.handlers["Test.echo"] = echo
    await client.wait_until_authenticated()

    results = await asyncio.wait_for(
        asyncio.gather(
            *(client.send_command("Test.echo", {"n": n}) for n in range(count))
        ),
        TEST_TIMEOUT_SECONDS,
    )

    assert results == [{"n": n} for n in range(count)]
    ids = [c["id"] for c in protocol_server.commands("Test.echo")]
    assert len(set(ids)) == count
    assert client.pending_commands == {}


@pytest.mark.asyncio
async def test_error_response_raises_protocol_error(client, protocol_server) -> None:
    def fail(params):
        raise protocol_server.Fault(7, "bad params")

    protocol_server.handlers["Test.fail"] = fail
    await client.wait_until_authenticated()

    with pytest.raises(ProtocolError) as exc_info:
        await client.send_command("Test.fail")

    assert exc_info.value.protocol_code == 7
    assert exc_info.value.protocol_message == "bad params"
    assert not exc_info.value.is_authentication_required


@pytest.mark.asyncio
async def test_events_reach_listeners(client, protocol_server, wait_for) -> None:
    received = []
    unsubscribe = client.listen_for_message("Recording.progress", received.append)
    await client.wait_until_authenticated()

    await protocol_server.push("Recording.progress", {"percent": 50})
    await wait_for(lambda: received == [{"percent": 50}])

    unsubscribe()
    await protocol_server.push("Recording.progress", {"percent": 100})
    await client.send_command("Test.sync")
    assert received == [{"percent": 50}]


@pytest.mark.asyncio
async def test_session_error_rejects_only_that_session(
    client, protocol_server
) -> None:
    protocol_server.handlers["Test.hang"] = lambda params: protocol_server.no_reply
    await client.wait_until_authenticated()

    first = client.send_command("Test.hang", {}, "s1")
    second = client.send_command("Test.hang", {}, "s1")
    other = client.send_command("Test.hang", {}, "s2")
    await protocol_server.wait_for_commands("Test.hang", 3)

    await protocol_server.push(
        "Recording.sessionError",
        {"sessionId": "s1", "code": 12, "message": "session crashed"},
    )

    for deferred in (first, second):
        with pytest.raises(ProtocolError) as exc_info:
            await asyncio.wait_for(deferred, TEST_TIMEOUT_SECONDS)
        assert exc_info.value.protocol_code == 12
        assert exc_info.value.protocol_data == {"sessionId": "s1"}
    assert other.is_pending
    still_pending = [d for d in client.pending_commands.values() if d.is_pending]
    assert [d.data["session_id"] for d in still_pending] == ["s2"]

    await client.close()
    with pytest.raises(ConnectionClosedError):
        await other


@pytest.mark.asyncio
async def test_pending_commands_reject_when_server_closes(
    client, protocol_server
) -> None:
    protocol_server.handlers["Test.hang"] = lambda params: protocol_server.no_reply
    await client.wait_until_authenticated()

    pending = client.send_command("Test.hang")
    await protocol_server.wait_for_commands("Test.hang", 1)
    for ws in protocol_server.sockets:
        await ws.close()

    with pytest.raises(ConnectionClosedError):
        await asyncio.wait_for(pending, TEST_TIMEOUT_SECONDS)
    await asyncio.wait_for(client.closed, TEST_TIMEOUT_SECONDS)
    with pytest.raises(ConnectionClosedError):
        await client.send_command("Test.afterClose")


@pytest.mark.asyncio
async def test_non_object_frames_are_ignored(client, protocol_server) -> None:
    await client.wait_until_authenticated()

    await protocol_server.send_raw([])
    await protocol_server.send_raw(42)

    result = await asyncio.wait_for(
        client.send_command("Test.sync"), TEST_TIMEOUT_SECONDS
    )
    assert result == {}
    assert client.closed.is_pending


@pytest.mark.asyncio
async def test_unknown_response_id_closes_connection(client, protocol_server) -> None:
    await client.wait_until_authenticated()

    await protocol_server.send_raw({"id": 999, "result": {}})

    error = await asyncio.wait_for(client.closed, TEST_TIMEOUT_SECONDS)
    assert isinstance(error, UnknownCommandError)


@pytest.mark.asyncio
async def test_rejected_token_fails_authentication(protocol_server) -> None:
    def reject(params):
        raise protocol_server.Fault(49, "Authentication required")

    protocol_server.handlers["Authentication.setAccessToken"] = reject
    client = ProtocolClient(protocol_server.url, "expired")
    await client.connect()

    try:
        with pytest.raises(ProtocolError) as exc_info:
            await asyncio.wait_for(
                client.wait_until_authenticated(), TEST_TIMEOUT_SECONDS
            )
        assert exc_info.value.is_authentication_required
        # API calls wait for authentication and fail the same way.
        with pytest.raises(ProtocolError):
            await check_if_resource_exists(client, {"hash": "h"})
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_missing_token_fails_authentication(protocol_server) -> None:
    client = ProtocolClient(protocol_server.url, None)
    await client.connect()

    try:
        with pytest.raises(AuthenticationError, match="No access token"):
            await asyncio.wait_for(
                client.wait_until_authenticated(), TEST_TIMEOUT_SECONDS
            )
        assert protocol_server.commands("Authentication.setAccessToken") == []
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_connection_failure_rejects_authentication() -> None:
    client = ProtocolClient("http://127.0.0.1:1/", TEST_ACCESS_TOKEN)

    await client.connect()

    with pytest.raises((aiohttp.ClientError, OSError)):
        await client.wait_until_authenticated()
    assert not client.closed.is_pending
    await client.close()


@pytest.mark.asyncio
async def test_api_wrapper_sends_method_and_params(client, protocol_server) -> None:
    protocol_server.handlers["Internal.beginRecordingMultipartUpload"] = (
        lambda params: {"recordingId": params["recordingId"], "uploadId": "u1"}
    )

    result = await begin_recording_multipart_upload(
        client, "rec-1", "build-1", 1024, max_chunk_size=256
    )

    assert result["uploadId"] == "u1"
    [command] = protocol_server.commands("Internal.beginRecordingMultipartUpload")
    assert command["params"] == {
        "recordingId": "rec-1",
        "buildId": "build-1",
        "recordingSize": 1024,
        "chunkSize": 256,
    }
