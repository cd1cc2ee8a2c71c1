"""Tests for the Music Assistant WebSocket client."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from maclient.api import MusicAssistantClient
from maclient.exceptions import (
    MAAuthError,
    MACommandError,
    MAConnectionError,
    MANotConnectedError,
    MATimeoutError,
)

OPEN_SERVER = {"server_id": "abc", "server_version": "2.5.0", "schema_version": 25}
AUTH_SERVER = {"server_id": "abc", "server_version": "2.7.0", "schema_version": 28, "needs_auth": True}

Responder = Callable[[dict[str, Any]], list[dict[str, Any]]]


def _text(data: dict[str, Any]) -> aiohttp.WSMessage:
    return aiohttp.WSMessage(aiohttp.WSMsgType.TEXT, json.dumps(data), None)


async def _flush() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class FakeWebSocket:
    """Socket double that answers commands through a responder."""

    def __init__(self, first: dict[str, Any], responder: Responder | None = None) -> None:
        """Initialize the fake socket."""
        self.closed = False
        self.sent: list[dict[str, Any]] = []
        self.responder = responder
        self._first = first
        self._queue: asyncio.Queue[aiohttp.WSMessage | None] = asyncio.Queue()

    async def receive(self) -> aiohttp.WSMessage:
        return _text(self._first)

    async def send_json(self, data: dict[str, Any]) -> None:
        self.sent.append(data)
        if self.responder is not None:
            for reply in self.responder(data):
                self.push(reply)

    def push(self, data: dict[str, Any]) -> None:
        self._queue.put_nowait(_text(data))

    def server_close(self) -> None:
        self.closed = True
        self._queue.put_nowait(None)

    async def close(self) -> None:
        self.server_close()

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> aiohttp.WSMessage:
        msg = await self._queue.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


def responder(results: dict[str, Any]) -> Responder:
    """Build a responder answering each command from a table.

    Exceptions in the table become error replies; lists of lists are sent
    as partial chunks followed by an empty final reply.
    """

    def _respond(message: dict[str, Any]) -> list[dict[str, Any]]:
        message_id = message["message_id"]
        result = results.get(message["command"])
        if isinstance(result, MACommandError):
            return [{"message_id": message_id, "error_code": result.error_code, "details": result.details}]
        if isinstance(result, tuple):
            chunks = [{"message_id": message_id, "result": chunk, "partial": True} for chunk in result]
            return [*chunks, {"message_id": message_id, "result": []}]
        return [{"message_id": message_id, "result": result}]

    return _respond


def make_ws_session(ws: FakeWebSocket | None = None, error: BaseException | None = None) -> MagicMock:
    """Create a session whose ws_connect returns the fake socket."""
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    session.ws_connect = AsyncMock(return_value=ws, side_effect=error)
    return session


async def connected_client(
    first: dict[str, Any] = OPEN_SERVER,
    results: dict[str, Any] | None = None,
    **kwargs: Any,
) -> tuple[MusicAssistantClient, FakeWebSocket]:
    """Return a client connected to a fake socket."""
    ws = FakeWebSocket(first, responder(results or {}))
    client = MusicAssistantClient("http://192.168.1.10:8095", make_ws_session(ws), **kwargs)
    await client.async_connect()
    return client, ws


class TestConnect:
    """Tests for opening the connection."""

    @pytest.mark.asyncio
    async def test_handshake(self) -> None:
        """Test the server info message completes the connection."""
        ws = FakeWebSocket(OPEN_SERVER)
        session = make_ws_session(ws)
        client = MusicAssistantClient("http://192.168.1.10:8095", session)

        info = await client.async_connect({"Authorization": "Basic abc"})

        assert info.server_version == "2.5.0"
        assert client.connected is True
        assert client.auth_required is False
        assert client.authenticated is True
        args, kwargs = session.ws_connect.call_args
        assert args == ("ws://192.168.1.10:8095/ws",)
        assert kwargs["headers"]["Authorization"] == "Basic abc"
        assert "User-Agent" in kwargs["headers"]
        assert kwargs["ssl"] is True
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_auth_required(self) -> None:
        """Test newer servers require in-band auth."""
        client, _ = await connected_client(AUTH_SERVER)
        assert client.auth_required is True
        assert client.authenticated is False
        await client.async_disconnect()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_proxy_rejects_upgrade(self, status: int) -> None:
        """Test a proxy refusing the upgrade is an auth error."""
        error = aiohttp.WSServerHandshakeError(MagicMock(), (), status=status, message="Unauthorized")
        client = MusicAssistantClient("https://music.example.com", make_ws_session(error=error))

        with pytest.raises(MAAuthError) as exc_info:
            await client.async_connect()
        assert exc_info.value.strategy == "proxy"
        assert client.connected is False

    @pytest.mark.asyncio
    async def test_handshake_server_error(self) -> None:
        """Test other handshake failures are connection errors."""
        error = aiohttp.WSServerHandshakeError(MagicMock(), (), status=502, message="Bad Gateway")
        client = MusicAssistantClient("https://music.example.com", make_ws_session(error=error))

        with pytest.raises(MAConnectionError):
            await client.async_connect()

    @pytest.mark.asyncio
    async def test_connection_refused(self) -> None:
        """Test an unreachable server."""
        error = aiohttp.ClientConnectorError(MagicMock(), OSError(111, "refused"))
        client = MusicAssistantClient("http://192.168.1.10", make_ws_session(error=error))

        with pytest.raises(MAConnectionError):
            await client.async_connect()

    @pytest.mark.asyncio
    async def test_handshake_timeout(self) -> None:
        """Test a server that never sends its info message."""

        async def _hang(*args: Any, **kwargs: Any) -> None:
            await asyncio.sleep(10)

        session = make_ws_session()
        session.ws_connect = AsyncMock(side_effect=_hang)
        client = MusicAssistantClient("http://192.168.1.10", session, connection_timeout=0.05)

        with pytest.raises(MATimeoutError):
            await client.async_connect()

    @pytest.mark.asyncio
    async def test_missing_server_info(self) -> None:
        """Test a first message without server info is rejected."""
        ws = FakeWebSocket({"event": "player_updated"})
        client = MusicAssistantClient("http://192.168.1.10", make_ws_session(ws))

        with pytest.raises(MAConnectionError, match="info message"):
            await client.async_connect()
        assert ws.closed is True

    @pytest.mark.asyncio
    async def test_shared_session_kept_open(self) -> None:
        """Test disconnect leaves a passed-in session open."""
        ws = FakeWebSocket(OPEN_SERVER)
        session = make_ws_session(ws)
        async with MusicAssistantClient("http://192.168.1.10", session) as client:
            await client.async_connect()
        session.close.assert_not_called()
        assert ws.closed is True


class TestCommands:
    """Tests for sending commands."""

    @pytest.mark.asyncio
    async def test_result(self) -> None:
        """Test a reply is matched to its command."""
        client, ws = await connected_client(results={"music/recently_played_items": [{"item_id": "1"}]})

        result = await client.async_send_command("music/recently_played_items", limit=5)

        assert result == [{"item_id": "1"}]
        assert ws.sent[0]["command"] == "music/recently_played_items"
        assert ws.sent[0]["args"] == {"limit": 5}
        assert len(ws.sent[0]["message_id"]) == 32
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_no_args_omitted(self) -> None:
        """Test commands without arguments carry no args key."""
        client, ws = await connected_client(results={"info": {}})
        await client.async_send_command("info")
        assert "args" not in ws.sent[0]
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_error_code(self) -> None:
        """Test error replies raise MACommandError."""
        client, _ = await connected_client(results={"music/favorites/add_item": MACommandError("x", 999, "boom")})

        with pytest.raises(MACommandError) as exc_info:
            await client.async_send_command("music/favorites/add_item", item="library://track/1")

        assert exc_info.value.error_code == 999
        assert exc_info.value.details == "boom"
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_partial_results_joined(self) -> None:
        """Test chunked replies are concatenated."""
        client, _ = await connected_client(
            results={"music/playlists/playlist_tracks": ([{"n": 1}, {"n": 2}], [{"n": 3}])}
        )
        result = await client.async_send_command("music/playlists/playlist_tracks")
        assert result == [{"n": 1}, {"n": 2}, {"n": 3}]
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_not_connected(self) -> None:
        """Test commands need an open socket."""
        client = MusicAssistantClient("http://192.168.1.10", make_ws_session())
        with pytest.raises(MANotConnectedError):
            await client.async_send_command("info")

    @pytest.mark.asyncio
    async def test_not_authenticated(self) -> None:
        """Test regular commands are refused before auth."""
        client, ws = await connected_client(AUTH_SERVER)
        with pytest.raises(MAAuthError):
            await client.async_send_command("music/recently_played_items")
        assert ws.sent == []
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_command_timeout(self) -> None:
        """Test a command without reply times out."""
        client, ws = await connected_client(command_timeout=0.05)
        ws.responder = None
        with pytest.raises(MATimeoutError):
            await client.async_send_command("info")
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_fails_pending(self) -> None:
        """Test pending commands fail when the client disconnects."""
        client, ws = await connected_client()
        ws.responder = None
        task = asyncio.create_task(client.async_send_command("info"))
        await _flush()

        await client.async_disconnect()

        with pytest.raises(MANotConnectedError):
            await task
        assert client.connected is False

    @pytest.mark.asyncio
    async def test_connection_lost_fails_pending(self) -> None:
        """Test pending commands fail when the server goes away."""
        client, ws = await connected_client()
        ws.responder = None
        task = asyncio.create_task(client.async_send_command("info"))
        await _flush()

        ws.server_close()

        with pytest.raises(MAConnectionError):
            await task
        assert client.connected is False
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_events(self) -> None:
        """Test server events reach listeners until removed."""
        client, ws = await connected_client()
        callback = MagicMock()
        remove = client.add_event_listener(callback)

        ws.push({"event": "media_item_updated", "object_id": "library://album/1", "data": {"favorite": True}})
        await _flush()
        remove()
        ws.push({"event": "media_item_updated", "object_id": "library://album/2", "data": {}})
        await _flush()

        callback.assert_called_once_with("media_item_updated", "library://album/1", {"favorite": True})
        await client.async_disconnect()


class TestAuthentication:
    """Tests for in-band authentication."""

    @pytest.mark.asyncio
    async def test_token_accepted(self) -> None:
        """Test a valid token authenticates the connection."""
        client, ws = await connected_client(AUTH_SERVER, {"auth": {"authenticated": True}})

        assert await client.async_authenticate_with_token("long-lived-token") is True
        assert client.authenticated is True
        assert ws.sent[0]["args"] == {"token": "long-lived-token"}
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_token_rejected(self) -> None:
        """Test an invalid token leaves the connection unauthenticated."""
        client, _ = await connected_client(AUTH_SERVER, {"auth": MACommandError("auth", 20, "Invalid token")})

        assert await client.async_authenticate_with_token("stale") is False
        assert client.authenticated is False
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_token_rejected_in_result(self) -> None:
        """Test an explicit authenticated flag of False."""
        client, _ = await connected_client(AUTH_SERVER, {"auth": {"authenticated": False}})
        assert await client.async_authenticate_with_token("stale") is False
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_login_with_credentials(self) -> None:
        """Test login issues an access token and authenticates with it."""
        client, ws = await connected_client(
            AUTH_SERVER,
            {"auth/login": {"access_token": "access-123"}, "auth": {"authenticated": True}},
        )

        assert await client.async_login_with_credentials("alex", "secret") == "access-123"
        assert [m["command"] for m in ws.sent] == ["auth/login", "auth"]
        assert ws.sent[0]["args"] == {"username": "alex", "password": "secret"}
        assert ws.sent[1]["args"] == {"token": "access-123"}
        assert client.authenticated is True
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_login_rejected(self) -> None:
        """Test wrong credentials return None."""
        client, _ = await connected_client(
            AUTH_SERVER, {"auth/login": MACommandError("auth/login", 20, "Invalid credentials")}
        )
        assert await client.async_login_with_credentials("alex", "wrong") is None
        assert client.authenticated is False
        await client.async_disconnect()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("result", ["long-lived", {"token": "long-lived"}])
    async def test_create_long_lived_token(self, result: Any) -> None:
        """Test both token reply shapes."""
        client, ws = await connected_client(results={"auth/create_token": result})
        assert await client.async_create_long_lived_token("desk") == "long-lived"
        assert ws.sent[0]["args"] == {"name": "desk"}
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_create_token_needs_auth(self) -> None:
        """Test no token is requested on an unauthenticated connection."""
        client, ws = await connected_client(AUTH_SERVER)
        assert await client.async_create_long_lived_token() is None
        assert ws.sent == []
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_current_user(self) -> None:
        """Test the profile of the logged-in user."""
        client, _ = await connected_client(results={"auth/me": {"username": "alex", "display_name": "Alex"}})
        assert await client.async_get_current_user() == {"username": "alex", "display_name": "Alex"}
        await client.async_disconnect()


class TestLibraryCommands:
    """Tests for the library RPC wrappers."""

    @pytest.mark.asyncio
    async def test_playlist_tracks(self) -> None:
        """Test the playlist tracks arguments."""
        client, ws = await connected_client(results={"music/playlists/playlist_tracks": [{"item_id": "t1"}]})
        assert await client.async_get_playlist_tracks("spotify", "pl1") == [{"item_id": "t1"}]
        assert ws.sent[0]["args"] == {"item_id": "pl1", "provider_instance_id_or_domain": "spotify"}
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_artist_albums(self) -> None:
        """Test the artist albums arguments."""
        client, ws = await connected_client(results={"music/artists/artist_albums": None})
        assert await client.async_get_artist_albums("library", "7", in_library_only=True) == []
        assert ws.sent[0]["args"]["in_library_only"] is True
        await client.async_disconnect()

    @pytest.mark.asyncio
    async def test_favorites(self) -> None:
        """Test adding by URI and removing by library ID."""
        client, ws = await connected_client(
            results={"music/favorites/add_item": None, "music/favorites/remove_item": None}
        )
        await client.async_add_favorite("spotify://album/abc")
        await client.async_remove_favorite("album", 42)
        assert ws.sent[0]["args"] == {"item": "spotify://album/abc"}
        assert ws.sent[1]["args"] == {"media_type": "album", "library_item_id": 42}
        await client.async_disconnect()
