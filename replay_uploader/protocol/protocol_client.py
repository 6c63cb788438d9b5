"""Persistent websocket client for the recording ingestion protocol.

Outbound commands are ``{id, method, params, sessionId?}``. Inbound messages
are either responses ``{id, result}`` / ``{id, error}`` matched against the
pending commands by correlation id, or events ``{method, params}`` dispatched
to listeners.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

import aiohttp
from pyee.asyncio import AsyncIOEventEmitter

from replay_uploader.async_utils import Deferred
from replay_uploader.exceptions import (
    AuthenticationError,
    ConnectionClosedError,
    ProtocolError,
    ReplayUploaderError,
    UnknownCommandError,
)
from replay_uploader.protocol.api import set_access_token

logger = logging.getLogger(__name__)

SESSION_ERROR_EVENT = "Recording.sessionError"


class ProtocolClient:
    """One websocket connection carrying request/response RPC and events.

    Construct and use it from a running event loop. ``connect`` opens the
    socket and starts the access-token handshake; API calls wait for
    ``wait_until_authenticated`` before sending.
    """

    def __init__(
        self,
        server_url: str,
        access_token: str | None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialise the client.

        Args:
            server_url: Websocket URL of the protocol server.
            access_token: Token sent with ``Authentication.setAccessToken``.
            session: Optional shared HTTP session. A private one is created
                and closed with the client otherwise.
        """
        self.server_url = server_url
        self._access_token = access_token
        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task | None = None
        self._auth_task: asyncio.Task | None = None

        self._next_message_id = 1
        self._pending_commands: dict[int, Deferred[Any, dict[str, Any]]] = {}
        self._authenticated: Deferred[bool, None] = Deferred()
        self._closed: Deferred[BaseException | None, None] = Deferred()
        self._events = AsyncIOEventEmitter(loop=asyncio.get_running_loop())

        self.listen_for_message(SESSION_ERROR_EVENT, self._on_session_error)

    @property
    def pending_commands(self) -> dict[int, Deferred[Any, dict[str, Any]]]:
        """Commands still waiting for a response, keyed by correlation id."""
        return self._pending_commands

    @property
    def closed(self) -> Deferred[BaseException | None, None]:
        """Resolved when the connection ends, with the error that ended it if any."""
        return self._closed

    async def connect(self) -> None:
        """Open the websocket and start authenticating.

        Connection failures do not raise here; they reject
        ``wait_until_authenticated``.
        """
        if self._owns_session:
            self._session = aiohttp.ClientSession()
        assert self._session is not None

        logger.debug(f"Creating WebSocket for {self.server_url}")
        try:
            self._ws = await self._session.ws_connect(self.server_url)
        except (aiohttp.ClientError, OSError) as e:
            logger.debug(f"Socket error: {e}")
            self._authenticated.reject_if_pending(e)
            self._closed.resolve_if_pending(e)
            await self._close_session()
            return

        self._reader_task = asyncio.create_task(self._read_loop())
        self._auth_task = asyncio.create_task(self._authenticate())

    async def wait_until_authenticated(self) -> bool:
        """Wait for the access-token handshake to succeed.

        Raises:
            AuthenticationError: If no access token is available.
            ProtocolError: If the server rejected the token.
            ConnectionClosedError: If the socket closed first.
        """
        return await self._authenticated

    def listen_for_message(
        self, method: str, callback: Callable[[Any], Any]
    ) -> Callable[[], None]:
        """Register ``callback`` for server events named ``method``.

        Returns:
            A callable that removes the listener.
        """
        self._events.add_listener(method, callback)

        def unsubscribe() -> None:
            self._events.remove_listener(method, callback)

        return unsubscribe

    def send_command(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> Deferred[Any, dict[str, Any]]:
        """Send a command; the returned deferred settles with its response.

        Args:
            method: Protocol method name.
            params: Method parameters.
            session_id: Session the command belongs to, if any.

        Returns:
            A deferred resolved with the ``result`` object of the response.
            It rejects with ``ProtocolError`` if the server answered with an
            error or the command's session failed, and with
            ``ConnectionClosedError`` if the connection closed first.

        Raises:
            ConnectionClosedError: If the socket is not open.
        """
        if self._ws is None or self._ws.closed:
            raise ConnectionClosedError(f"Cannot send {method}: socket is not open")

        message_id = self._next_message_id
        self._next_message_id += 1

        command: dict[str, Any] = {
            "id": message_id,
            "method": method,
            "params": params or {},
        }
        if session_id is not None:
            command["sessionId"] = session_id

        deferred: Deferred[Any, dict[str, Any]] = Deferred(
            {"method": method, "params": params, "session_id": session_id}
        )
        self._pending_commands[message_id] = deferred

        logger.debug(f"Sending command {message_id} {method}")
        # Writes are scheduled in id order, so they reach the socket in id order.
        deferred.task = asyncio.ensure_future(
            self._write(self._ws, message_id, json.dumps(command))
        )
        return deferred

    async def _write(
        self, ws: aiohttp.ClientWebSocketResponse, message_id: int, payload: str
    ) -> None:
        try:
            await ws.send_str(payload)
        except (ConnectionError, RuntimeError, aiohttp.ClientError) as e:
            logger.debug(f"Received socket error: {e}")
            deferred = self._pending_commands.pop(message_id, None)
            if deferred is not None:
                deferred.reject_if_pending(ConnectionClosedError(str(e)))

    async def close(self) -> None:
        """Close the socket and release the HTTP session."""
        if self._auth_task is not None and not self._auth_task.done():
            self._auth_task.cancel()
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._reader_task is not None:
            await asyncio.gather(self._reader_task, return_exceptions=True)
        self._on_socket_closed(None)
        await self._close_session()

    async def _close_session(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _authenticate(self) -> None:
        try:
            if not self._access_token:
                raise AuthenticationError("No access token found")
            await set_access_token(self, self._access_token)
            self._authenticated.resolve_if_pending(True)
        except asyncio.CancelledError:
            self._authenticated.reject_if_pending(
                ConnectionClosedError("Client closed before authentication completed")
            )
            raise
        except Exception as e:
            logger.debug(f"Error authenticating: {e}")
            self._authenticated.reject_if_pending(e)
            if self._ws is not None:
                await self._ws.close()

    async def _read_loop(self) -> None:
        assert self._ws is not None
        error: BaseException | None = None
        try:
            async for message in self._ws:
                if message.type == aiohttp.WSMsgType.TEXT:
                    self._on_message(message.data)
                elif message.type == aiohttp.WSMsgType.ERROR:
                    error = self._ws.exception()
                    logger.debug(f"Socket error: {error}")
                    break
        except UnknownCommandError as e:
            logger.error(str(e))
            error = e
            await self._ws.close()
        finally:
            self._on_socket_closed(error)

    def _on_message(self, contents: str) -> None:
        try:
            message = json.loads(contents)
        except ValueError:
            logger.warning(f"Received a message that is not JSON: {contents[:200]}")
            return
        if not isinstance(message, dict):
            logger.warning(
                f"Received a message that is not an object: {contents[:200]}"
            )
            return

        message_id = message.get("id")
        if message_id is not None:
            deferred = self._pending_commands.pop(message_id, None)
            if deferred is None:
                raise UnknownCommandError(
                    f"Received message with unknown id: {message_id}"
                )
            if "result" in message:
                logger.debug(f"Resolving response {message_id}")
                deferred.resolve_if_pending(message["result"])
            elif message.get("error"):
                logger.debug(f"Received error for {message_id}: {message['error']}")
                deferred.reject_if_pending(ProtocolError.from_payload(message["error"]))
            else:
                logger.debug(f"Received error for {message_id}: {contents[:200]}")
                deferred.reject_if_pending(
                    ReplayUploaderError(f"Channel error: {contents}")
                )
            return

        method = message.get("method")
        if method and self._events.listeners(method):
            logger.debug(f"Received event {method}")
            self._events.emit(method, message.get("params"))
        else:
            logger.debug(f"Received message without a handler: {contents[:200]}")

    def _on_session_error(self, params: dict[str, Any] | None) -> None:
        params = params or {}
        session_id = params.get("sessionId")
        if not session_id:
            return
        for deferred in list(self._pending_commands.values()):
            data = deferred.data or {}
            if deferred.is_pending and data.get("session_id") == session_id:
                deferred.reject(
                    ProtocolError(
                        code=int(params.get("code", 0)),
                        message=str(params.get("message", "")),
                        data={"sessionId": session_id},
                    )
                )

    def _on_socket_closed(self, error: BaseException | None) -> None:
        self._authenticated.reject_if_pending(
            error
            or ConnectionClosedError("Socket closed before authentication completed")
        )
        for message_id, deferred in list(self._pending_commands.items()):
            deferred.reject_if_pending(
                ConnectionClosedError(
                    f"Connection closed while {deferred.data['method']} was pending"
                    if deferred.data
                    else "Connection closed"
                )
            )
            self._pending_commands.pop(message_id, None)
        self._closed.resolve_if_pending(error)
