"""Fixtures for maclient tests."""

from __future__ import annotations

from collections.abc import Callable
from http.cookies import SimpleCookie
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from maclient.models import ServerInfo
from maclient.settings import MemoryBackend, SettingsStore


def make_response(
    status: int = 200,
    text: str = "",
    headers: dict[str, str] | None = None,
    cookies: dict[str, str] | None = None,
) -> MagicMock:
    """Create a mock aiohttp response usable as an async context manager."""
    mock_response = MagicMock()
    mock_response.status = status
    mock_response.text = AsyncMock(return_value=text)
    mock_response.headers = dict(headers or {})
    jar: SimpleCookie = SimpleCookie()
    for name, value in (cookies or {}).items():
        jar[name] = value
    mock_response.cookies = jar
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)
    return mock_response


def make_session(*responses: MagicMock | BaseException) -> MagicMock:
    """Create a mock aiohttp session answering requests in order."""
    mock_session = MagicMock()
    mock_session.request = MagicMock(side_effect=list(responses))
    mock_session.closed = False
    mock_session.close = AsyncMock()
    return mock_session


@pytest.fixture
def mock_session_factory() -> Callable[..., MagicMock]:
    """Return the mock session factory."""
    return make_session


@pytest.fixture
def settings_backend() -> MemoryBackend:
    """Return an empty plain settings backend."""
    return MemoryBackend()


@pytest.fixture
def secret_backend() -> MemoryBackend:
    """Return an empty secret backend."""
    return MemoryBackend()


@pytest.fixture
def store(settings_backend: MemoryBackend, secret_backend: MemoryBackend) -> SettingsStore:
    """Return a settings store over memory backends."""
    return SettingsStore(settings_backend, secret_backend)


class FakeTransport:
    """In-memory stand-in for MusicAssistantClient.

    Attributes:
        valid_tokens: Tokens the fake server accepts.
        users: username -> password pairs the fake server accepts.
    """

    def __init__(
        self,
        server_url: str,
        *,
        auth_required: bool = False,
        valid_tokens: set[str] | None = None,
        users: dict[str, str] | None = None,
        long_lived_token: str | None = "long-lived-token",
        user_info: dict[str, Any] | None = None,
        connect_error: BaseException | None = None,
        stays_disconnected: bool = False,
    ) -> None:
        """Initialize the fake."""
        self.server_url = server_url
        self.valid_tokens = set(valid_tokens or ())
        self.users = dict(users or {})
        self.long_lived_token = long_lived_token
        self.user_info = user_info
        self.connect_error = connect_error
        self.stays_disconnected = stays_disconnected
        self.headers: dict[str, str] | None = None
        self._auth_required = auth_required
        self._connected = False
        self._authenticated = False
        self.async_authenticate_with_token = AsyncMock(side_effect=self._authenticate)
        self.async_login_with_credentials = AsyncMock(side_effect=self._login)
        self.async_create_long_lived_token = AsyncMock(side_effect=self._create_token)
        self.async_get_current_user = AsyncMock(side_effect=lambda: self.user_info)
        self.async_disconnect = AsyncMock(side_effect=self._disconnect)

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def auth_required(self) -> bool:
        return self._auth_required

    @property
    def authenticated(self) -> bool:
        return self._connected and (self._authenticated or not self._auth_required)

    @property
    def server_info(self) -> ServerInfo:
        return ServerInfo(server_version="2.5.0", schema_version=28 if self._auth_required else 25)

    async def async_connect(self, headers: dict[str, str] | None = None) -> ServerInfo:
        self.headers = headers
        if self.connect_error is not None:
            raise self.connect_error
        self._connected = not self.stays_disconnected
        return self.server_info

    async def _disconnect(self) -> None:
        self._connected = False
        self._authenticated = False

    async def _authenticate(self, token: str) -> bool:
        self._authenticated = token in self.valid_tokens
        return self._authenticated

    async def _login(self, username: str, password: str) -> str | None:
        if self.users.get(username) != password:
            return None
        token = f"access-{username}"
        self.valid_tokens.add(token)
        self._authenticated = True
        return token

    async def _create_token(self, name: str = "maclient") -> str | None:
        if not self._authenticated or self.long_lived_token is None:
            return None
        self.valid_tokens.add(self.long_lived_token)
        return self.long_lived_token


@pytest.fixture
def fake_transport_factory() -> Callable[..., Callable[[str], FakeTransport]]:
    """Return a builder of transport factories that record created transports."""

    def _builder(**kwargs: Any) -> Callable[[str], FakeTransport]:
        created: list[FakeTransport] = []

        def _factory(server_url: str) -> FakeTransport:
            transport = FakeTransport(server_url, **kwargs)
            created.append(transport)
            return transport

        _factory.created = created  # type: ignore[attr-defined]
        return _factory

    return _builder
