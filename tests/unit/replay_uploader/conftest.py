"""Shared fixtures for replay_uploader tests."""

from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

import replay_uploader.event_emitter as em_module
from replay_uploader.event_emitter import init_emitter
from replay_uploader.recording_log import RecordingStore

# Returned by a protocol handler to leave a command unanswered.
NO_REPLY = object()


@pytest_asyncio.fixture(scope="function", autouse=True)
async def initialize_emitter():
    """Initialize the emitter for each test with the current event loop."""
    loop = asyncio.get_event_loop()

    em_module._emitter = None

    emitter = init_emitter(loop=loop)

    yield emitter

    emitter.remove_all_listeners()

    em_module._emitter = None


# =============================================================================
# RECORDING LOG
# =============================================================================


@pytest.fixture
def recordings_dir(tmp_path: Path) -> Path:
    """Empty recordings directory."""
    directory = tmp_path / "recordings"
    directory.mkdir()
    return directory


@pytest.fixture
def store(recordings_dir: Path) -> RecordingStore:
    """Log store over the temporary recordings directory."""
    return RecordingStore(recordings_dir)


@pytest.fixture
def write_log(store: RecordingStore) -> Callable[[list[dict[str, Any]]], Path]:
    """Write raw entries to the recording log, one JSON object per line."""

    def write(entries: list[dict[str, Any]]) -> Path:
        store.log_path.write_text(
            "".join(json.dumps(entry) + "\n" for entry in entries), encoding="utf-8"
        )
        return store.log_path

    return write


def finished_recording_entries(
    recording_id: str,
    path: str,
    timestamp: int = 1_700_000_000_000,
    uri: str = "https://example.com/page",
) -> list[dict[str, Any]]:
    """Log lines for a finished recording with host metadata."""
    return [
        {
            "id": recording_id,
            "kind": "createRecording",
            "timestamp": timestamp,
            "buildId": "linux-chromium-20240101",
            "driverVersion": "1.0",
        },
        {
            "id": recording_id,
            "kind": "addMetadata",
            "timestamp": timestamp + 1,
            "metadata": {"uri": uri, "processGroupId": "group-1"},
        },
        {
            "id": recording_id,
            "kind": "writeStarted",
            "timestamp": timestamp + 2,
            "path": path,
        },
        {"id": recording_id, "kind": "writeFinished", "timestamp": timestamp + 1002},
    ]


@pytest.fixture
def finished_entries() -> Callable[..., list[dict[str, Any]]]:
    """Factory for the log lines of a finished recording."""
    return finished_recording_entries


# =============================================================================
# FAKE SERVERS
# =============================================================================


class ProtocolFault(Exception):
    """Raised by a handler to answer a command with a protocol error."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


Handler = Callable[[dict[str, Any]], Any]


class FakeProtocolServer:
    """In-process websocket endpoint speaking the JSON RPC protocol.

    Each command is answered from its own task, so handlers may delay or
    withhold responses to exercise ordering.
    """

    Fault = ProtocolFault
    no_reply = NO_REPLY

    def __init__(self) -> None:
        self.handlers: dict[str, Handler] = {
            "Authentication.setAccessToken": lambda params: {},
        }
        self.received: list[dict[str, Any]] = []
        self.sockets: list[web.WebSocketResponse] = []
        self._tasks: set[asyncio.Task] = set()
        app = web.Application()
        app.router.add_get("/", self._handle_socket)
        self.server = TestServer(app)

    @property
    def url(self) -> str:
        return str(self.server.make_url("/"))

    def methods(self) -> list[str]:
        return [command["method"] for command in self.received]

    def commands(self, method: str) -> list[dict[str, Any]]:
        return [c for c in self.received if c["method"] == method]

    async def push(self, method: str, params: dict[str, Any]) -> None:
        for ws in self.sockets:
            await ws.send_str(json.dumps({"method": method, "params": params}))

    async def send_raw(self, message: Any) -> None:
        for ws in self.sockets:
            await ws.send_str(json.dumps(message))

    async def wait_for_commands(self, method: str, count: int) -> None:
        while len(self.commands(method)) < count:
            await asyncio.sleep(0.005)

    async def _handle_socket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.sockets.append(ws)
        async for message in ws:
            if message.type == WSMsgType.TEXT:
                command = json.loads(message.data)
                self.received.append(command)
                task = asyncio.ensure_future(self._respond(ws, command))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        return ws

    async def _respond(
        self, ws: web.WebSocketResponse, command: dict[str, Any]
    ) -> None:
        handler = self.handlers.get(command["method"], lambda params: {})
        try:
            result = handler(command.get("params") or {})
            if inspect.isawaitable(result):
                result = await result
        except ProtocolFault as fault:
            reply: dict[str, Any] = {
                "id": command["id"],
                "error": {"code": fault.code, "message": fault.message},
            }
        else:
            if result is NO_REPLY:
                return
            reply = {"id": command["id"], "result": result}
        if not ws.closed:
            await ws.send_str(json.dumps(reply))

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        for ws in self.sockets:
            await ws.close()
        await self.server.close()


class FakeStorageServer:
    """Accepts PUTs of recording bytes and answers with ETags."""

    def __init__(self) -> None:
        self.bodies: dict[str, bytes] = {}
        self.requests: list[web.Request] = []
        self.attempts: dict[str, int] = {}
        # name -> callable(attempt) returning an HTTP status to fail with, or None
        self.failures: dict[str, Callable[[int], int | None]] = {}
        self.delays: dict[str, float] = {}
        self.omit_etag = False
        app = web.Application(client_max_size=64 * 1024 * 1024)
        app.router.add_put("/upload/{name}", self._handle_put)
        self.server = TestServer(app)

    def link(self, name: str) -> str:
        return str(self.server.make_url(f"/upload/{name}"))

    async def _handle_put(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        self.requests.append(request)
        self.attempts[name] = self.attempts.get(name, 0) + 1
        body = await request.read()

        if name in self.delays:
            await asyncio.sleep(self.delays[name])

        failure = self.failures.get(name)
        status = failure(self.attempts[name]) if failure else None
        if status is not None:
            return web.Response(status=status, text="nope")

        self.bodies[name] = body
        headers = {} if self.omit_etag else {"ETag": f'"etag-{name}"'}
        return web.Response(status=200, headers=headers)

    async def close(self) -> None:
        await self.server.close()


@pytest_asyncio.fixture
async def protocol_server():
    """Running fake protocol server."""
    server = FakeProtocolServer()
    await server.server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def storage_server():
    """Running fake storage server."""
    server = FakeStorageServer()
    await server.server.start_server()
    yield server
    await server.close()


async def eventually(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Wait until ``predicate`` holds."""

    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def wait_for() -> Callable[[Callable[[], bool]], Awaitable[None]]:
    """Poll a predicate until it holds."""
    return eventually
