"""WebSocket client for the Music Assistant server."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Callable, Sequence
from typing import Any, Self

import aiohttp

from .const import (
    AUTH_COMMANDS,
    COMMAND_ARTIST_ALBUMS,
    COMMAND_AUTH,
    COMMAND_AUTH_CREATE_TOKEN,
    COMMAND_AUTH_LOGIN,
    COMMAND_AUTH_ME,
    COMMAND_FAVORITES_ADD,
    COMMAND_FAVORITES_REMOVE,
    COMMAND_PLAYLIST_TRACKS,
    COMMAND_RECENTLY_PLAYED,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CONNECTION_TIMEOUT,
    DEFAULT_HEARTBEAT,
    DEFAULT_TOKEN_NAME,
    MA_AUTH_SCHEMA_VERSION,
    CommandMessage,
    ServerInfoMessage,
    UserInfo,
    sanitize_token,
)
from .exceptions import (
    MAAuthError,
    MACommandError,
    MAConnectionError,
    MANotConnectedError,
    MASSLError,
    MATimeoutError,
)
from .http_client import default_headers
from .models import ServerInfo
from .url_helpers import build_ws_url

_LOGGER = logging.getLogger(__name__)

EventCallback = Callable[[str, str | None, Any], None]


class MusicAssistantClient:
    """Socket connection to one Music Assistant server.

    Commands are correlated with their replies by ``message_id``. The
    server sends its info message first; only after that the connection
    counts as open.

    Attributes:
        server_url: HTTP(S) URL of the server, including a custom port.
        ws_url: The derived WebSocket URL.
    """

    def __init__(
        self,
        server_url: str,
        session: aiohttp.ClientSession | None = None,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        connection_timeout: float = DEFAULT_CONNECTION_TIMEOUT,
        heartbeat: float = DEFAULT_HEARTBEAT,
        verify_ssl: bool = True,
    ) -> None:
        """Initialize the client.

        Args:
            server_url: Normalized server URL.
            session: Optional aiohttp session to reuse.
            command_timeout: Timeout for a single command.
            connection_timeout: Timeout for opening the socket and the handshake.
            heartbeat: Interval of WebSocket pings.
            verify_ssl: Whether to verify TLS certificates.
        """
        self.server_url = server_url
        self.ws_url = build_ws_url(server_url)
        self._session = session
        self._owns_session = session is None
        self._command_timeout = command_timeout
        self._connection_timeout = connection_timeout
        self._heartbeat = heartbeat
        self._verify_ssl = verify_ssl
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._receive_task: asyncio.Task[None] | None = None
        self._pending: dict[str, tuple[str, asyncio.Future[Any]]] = {}
        self._partial: dict[str, list[Any]] = {}
        self._server_info: ServerInfo | None = None
        self._authenticated = False
        self._event_callbacks: list[EventCallback] = []

    async def __aenter__(self) -> Self:
        """Enter async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager."""
        await self.async_disconnect()

    @property
    def connected(self) -> bool:
        """Return True once the socket is open and the handshake was received."""
        return self._ws is not None and not self._ws.closed and self._server_info is not None

    @property
    def server_info(self) -> ServerInfo | None:
        """Return the handshake information of the server."""
        return self._server_info

    @property
    def auth_required(self) -> bool:
        """Return True if the server requires in-band authentication."""
        info = self._server_info
        if info is None:
            return False
        return (
            info.needs_auth
            or info.auth_enabled
            or (info.schema_version is not None and info.schema_version >= MA_AUTH_SCHEMA_VERSION)
        )

    @property
    def authenticated(self) -> bool:
        """Return True if regular commands may be sent."""
        return self.connected and (self._authenticated or not self.auth_required)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def async_connect(self, headers: dict[str, str] | None = None) -> ServerInfo:
        """Open the socket and wait for the server info message.

        Args:
            headers: Extra headers for the upgrade request (proxy auth).

        Returns:
            The server info from the handshake.

        Raises:
            MAAuthError: A proxy rejected the upgrade request (401/403).
            MASSLError: TLS certificate error.
            MATimeoutError: No handshake within the connection timeout.
            MAConnectionError: The socket could not be opened.
        """
        if self.connected and self._server_info is not None:
            return self._server_info

        request_headers = default_headers()
        if headers:
            request_headers.update(headers)

        _LOGGER.debug(
            "Connecting to %s (%s)",
            self.ws_url,
            "with proxy auth" if headers else "no proxy auth",
        )
        session = self._get_session()

        try:
            async with asyncio.timeout(self._connection_timeout):
                self._ws = await session.ws_connect(
                    self.ws_url,
                    headers=request_headers,
                    heartbeat=self._heartbeat,
                    ssl=self._verify_ssl,
                )
                msg = await self._ws.receive()

        except aiohttp.WSServerHandshakeError as err:
            await self._async_close_socket()
            if err.status in (401, 403):
                raise MAAuthError(
                    f"Connection rejected by server: {err.status}", strategy="proxy"
                ) from err
            raise MAConnectionError(
                f"WebSocket handshake failed: {err.status}", url=self.ws_url
            ) from err

        except aiohttp.ClientSSLError as err:
            await self._async_close_socket()
            raise MASSLError(f"SSL certificate error: {err}", url=self.ws_url) from err

        except TimeoutError as err:
            await self._async_close_socket()
            raise MATimeoutError(
                f"No server info within {self._connection_timeout}s", url=self.ws_url
            ) from err

        except aiohttp.ClientError as err:
            await self._async_close_socket()
            raise MAConnectionError(f"Failed to connect to {self.ws_url}: {err}", url=self.ws_url) from err

        self._process_message(msg)
        if self._server_info is None:
            await self._async_close_socket()
            raise MAConnectionError("Server did not send its info message", url=self.ws_url)

        _LOGGER.info(
            "Connected to Music Assistant %s (schema %s, auth %s)",
            self._server_info.server_version,
            self._server_info.schema_version,
            "required" if self.auth_required else "not required",
        )
        self._receive_task = asyncio.create_task(self._async_receive_loop())
        return self._server_info

    async def async_disconnect(self) -> None:
        """Close the socket and fail all pending commands."""
        task, self._receive_task = self._receive_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._async_close_socket()
        self._fail_pending(MANotConnectedError("Connection closed"))

        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            self._session = None
        _LOGGER.debug("Disconnected from %s", self.ws_url)

    async def _async_close_socket(self) -> None:
        ws, self._ws = self._ws, None
        self._server_info = None
        self._authenticated = False
        if ws is not None and not ws.closed:
            await ws.close()

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        self._partial.clear()
        for _command, future in pending.values():
            if not future.done():
                future.set_exception(error)

    def add_event_listener(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback for server events.

        Args:
            callback: Called with ``(event, object_id, data)``.

        Returns:
            Function removing the callback.
        """
        self._event_callbacks.append(callback)

        def _remove() -> None:
            if callback in self._event_callbacks:
                self._event_callbacks.remove(callback)

        return _remove

    def _process_message(self, msg: aiohttp.WSMessage) -> None:
        """Process a received WebSocket message.

        Args:
            msg: The WebSocket message to process.
        """
        if msg.type != aiohttp.WSMsgType.TEXT:
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
                _LOGGER.info("WebSocket connection closed by server")
            elif msg.type == aiohttp.WSMsgType.ERROR:
                _LOGGER.error("WebSocket error received: %s", msg.data)
            return

        try:
            data = json.loads(msg.data)
        except json.JSONDecodeError:
            _LOGGER.warning("Received malformed JSON from WebSocket: %s", str(msg.data)[:100])
            return
        if not isinstance(data, dict):
            return

        if "server_version" in data:
            info: ServerInfoMessage = data  # type: ignore[assignment]
            self._server_info = ServerInfo.from_message(info)
            return

        message_id = data.get("message_id")
        if message_id is not None and message_id in self._pending:
            self._resolve(str(message_id), data)
            return

        event = data.get("event")
        if event is not None:
            _LOGGER.debug("Received event: %s", event)
            for callback in list(self._event_callbacks):
                callback(str(event), data.get("object_id"), data.get("data"))

    def _resolve(self, message_id: str, data: dict[str, Any]) -> None:
        command, future = self._pending[message_id]

        if "error_code" in data:
            self._pending.pop(message_id)
            self._partial.pop(message_id, None)
            error = MACommandError(command, int(data["error_code"]), str(data.get("details") or ""))
            _LOGGER.debug("Command error: %s", error)
            if not future.done():
                future.set_exception(error)
            return

        result = data.get("result")
        if data.get("partial"):
            # Large lists arrive in chunks before the final reply
            self._partial.setdefault(message_id, []).extend(result or [])
            return

        self._pending.pop(message_id)
        chunks = self._partial.pop(message_id, None)
        if chunks is not None:
            result = chunks + list(result or [])
        if not future.done():
            future.set_result(result)

    async def _async_receive_loop(self) -> None:
        """Receive and process messages until the connection closes."""
        ws = self._ws
        if ws is None:
            return

        async for msg in ws:
            self._process_message(msg)
            if msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                break

        _LOGGER.info("Connection to %s lost", self.ws_url)
        self._fail_pending(MAConnectionError("Connection closed", url=self.ws_url))

    async def async_send_command(self, command: str, **args: Any) -> Any:
        """Send a command and wait for its result.

        Args:
            command: Command name, e.g. ``music/favorites/add_item``.
            **args: Command arguments.

        Returns:
            The ``result`` of the reply.

        Raises:
            MANotConnectedError: No open connection.
            MAAuthError: The server requires authentication first.
            MACommandError: The server answered with an error code.
            MATimeoutError: No reply within the command timeout.
            MAConnectionError: The connection broke while sending.
        """
        if not self.connected or self._ws is None:
            raise MANotConnectedError()
        if command not in AUTH_COMMANDS and not self.authenticated:
            raise MAAuthError(f"Not authenticated, cannot send {command}", strategy="music_assistant")

        message_id = uuid.uuid4().hex
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[message_id] = (command, future)

        message: CommandMessage = {"message_id": message_id, "command": command}
        if args:
            message["args"] = args

        _LOGGER.debug("Sending command %s (%s)", command, message_id)
        try:
            await self._ws.send_json(message)
            async with asyncio.timeout(self._command_timeout):
                return await future

        except TimeoutError as err:
            raise MATimeoutError(f"Command timed out: {command}", url=self.ws_url) from err

        except (aiohttp.ClientError, ConnectionResetError) as err:
            raise MAConnectionError(f"Failed to send {command}: {err}", url=self.ws_url) from err

        finally:
            self._pending.pop(message_id, None)
            self._partial.pop(message_id, None)

    # Authentication
    async def async_authenticate_with_token(self, token: str) -> bool:
        """Authenticate the connection with an access or long-lived token.

        Returns:
            True if the server accepted the token.
        """
        _LOGGER.debug("Authenticating with token %s", sanitize_token(token))
        try:
            result = await self.async_send_command(COMMAND_AUTH, token=token)
        except MACommandError as err:
            _LOGGER.warning("Token rejected: %s", err)
            self._authenticated = False
            return False

        if isinstance(result, dict) and result.get("authenticated") is False:
            self._authenticated = False
            return False

        self._authenticated = True
        return True

    async def async_login_with_credentials(self, username: str, password: str) -> str | None:
        """Log in with username and password, then authenticate the connection.

        Returns:
            The issued access token, or None if the login was rejected.
        """
        _LOGGER.debug("Logging in as %s", username)
        try:
            result = await self.async_send_command(
                COMMAND_AUTH_LOGIN, username=username, password=password
            )
        except MACommandError as err:
            _LOGGER.warning("Login rejected: %s", err)
            return None

        token = result.get("access_token") if isinstance(result, dict) else None
        if not token:
            _LOGGER.warning("No access token in login response")
            return None

        if not await self.async_authenticate_with_token(token):
            return None
        return str(token)

    async def async_create_long_lived_token(self, name: str = DEFAULT_TOKEN_NAME) -> str | None:
        """Create a long-lived token for later sessions.

        Returns:
            The token, or None if the server refused to create one.
        """
        if not self.authenticated:
            _LOGGER.debug("Cannot create token, not authenticated")
            return None
        try:
            result = await self.async_send_command(COMMAND_AUTH_CREATE_TOKEN, name=name)
        except MACommandError as err:
            _LOGGER.warning("Could not create long-lived token: %s", err)
            return None

        if isinstance(result, str):
            return result or None
        if isinstance(result, dict) and result.get("token"):
            return str(result["token"])
        return None

    async def async_get_current_user(self) -> UserInfo | None:
        """Return the profile of the authenticated user."""
        try:
            result = await self.async_send_command(COMMAND_AUTH_ME)
        except MACommandError as err:
            _LOGGER.debug("auth/me failed: %s", err)
            return None
        if isinstance(result, dict):
            return result  # type: ignore[return-value]
        return None

    # Library
    async def async_get_playlist_tracks(self, provider: str, item_id: str) -> list[dict[str, Any]]:
        """Return the tracks of a playlist."""
        result = await self.async_send_command(
            COMMAND_PLAYLIST_TRACKS,
            item_id=item_id,
            provider_instance_id_or_domain=provider,
        )
        return list(result or [])

    async def async_get_artist_albums(
        self,
        provider: str,
        item_id: str,
        in_library_only: bool = False,
    ) -> list[dict[str, Any]]:
        """Return the albums of an artist."""
        result = await self.async_send_command(
            COMMAND_ARTIST_ALBUMS,
            item_id=item_id,
            provider_instance_id_or_domain=provider,
            in_library_only=in_library_only,
        )
        return list(result or [])

    async def async_get_recently_played(
        self,
        limit: int = 10,
        media_types: Sequence[str] = ("album",),
    ) -> list[dict[str, Any]]:
        """Return recently played items."""
        result = await self.async_send_command(
            COMMAND_RECENTLY_PLAYED, limit=limit, media_types=list(media_types)
        )
        return list(result or [])

    async def async_add_favorite(self, uri: str) -> None:
        """Add an item to the favorites."""
        await self.async_send_command(COMMAND_FAVORITES_ADD, item=uri)

    async def async_remove_favorite(self, media_type: str, library_item_id: int) -> None:
        """Remove a library item from the favorites."""
        await self.async_send_command(
            COMMAND_FAVORITES_REMOVE, media_type=media_type, library_item_id=library_item_id
        )


__all__ = ["EventCallback", "MusicAssistantClient"]
