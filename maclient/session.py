"""Authentication session manager.

Drives the login lifecycle of one server connection:

    idle -> detecting -> undetected | detected
    detected -> authenticating -> failed (rolled back to detected) | authenticated
    authenticated -> connected

Basic and Authelia logins happen at the HTTP layer before the socket opens,
because the reverse proxy gates the socket itself. Native Music Assistant
logins happen in-band after the socket is open.

Every detect, login and connect is tagged with the request generation and
target URL it started with. A result arriving after the target changed is
discarded without touching the session or the stores.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Self

import aiohttp

from .api import MusicAssistantClient
from .config import ClientConfig, validate_login_input, validate_server_input
from .const import UserInfo, sanitize_token
from .detector import AuthStrategyDetector
from .exceptions import (
    MAAuthError,
    MAConnectionError,
    MADetectionError,
    MAError,
    MAValidationError,
)
from .models import (
    AuthStrategy,
    AuthStrategyKind,
    Credentials,
    Session,
    SessionState,
    TokenOrigin,
)
from .retry import RetryPolicy
from .settings import SettingsStore
from .strategies import StrategyHandler, get_handler
from .url_helpers import build_server_url, normalize_server_url

_LOGGER = logging.getLogger(__name__)

TransportFactory = Callable[[str], MusicAssistantClient]


@dataclass(frozen=True, slots=True)
class _Ticket:
    """Identity of an in-flight request."""

    generation: int
    target: str


@dataclass(frozen=True, slots=True)
class _NativeAuthResult:
    token: str | None
    origin: TokenOrigin | None


class AuthSessionManager:
    """Owns the single live Session and the transport it authenticates.

    Example:
        ```python
        store = SettingsStore.from_directory("~/.config/maclient")
        async with AuthSessionManager(store) as manager:
            if await manager.async_connect_flow("music.example.com", "me", "secret"):
                tracks = await manager.transport.async_get_playlist_tracks("library", "1")
        ```
    """

    def __init__(
        self,
        settings: SettingsStore,
        detector: AuthStrategyDetector | None = None,
        transport_factory: TransportFactory | None = None,
        session: aiohttp.ClientSession | None = None,
        config: ClientConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            settings: Settings and secret store.
            detector: Strategy detector. Built from the config if omitted.
            transport_factory: Creates a transport for a server URL.
            session: Optional aiohttp session shared by all HTTP requests.
            config: Timeouts and limits.
            retry_policy: Policy for waiting until the transport is connected.
            logger: Logger to use instead of the module logger.
        """
        self._config = config or ClientConfig()
        self._settings = settings
        self._http_session = session
        self._owns_http_session = session is None
        self._owns_detector = detector is None
        self._detector = detector or AuthStrategyDetector(
            session,
            probe_timeout=self._config.probe_timeout,
            root_probe_timeout=self._config.root_probe_timeout,
            deadline=self._config.detection_deadline,
            verify_ssl=self._config.verify_ssl,
        )
        self._transport_factory = transport_factory or self._default_transport
        self._retry = retry_policy or RetryPolicy(
            max_attempts=self._config.connect_attempts,
            interval=self._config.connect_interval,
        )
        self._logger = logger or _LOGGER
        self._session = Session()
        self._generation = 0
        self._transport: MusicAssistantClient | None = None

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
        await self.close()

    @property
    def session(self) -> Session:
        """Return the live session. Read-only for callers."""
        return self._session

    @property
    def transport(self) -> MusicAssistantClient | None:
        """Return the current transport, if any."""
        return self._transport

    @property
    def is_authenticated(self) -> bool:
        """Return the gate the rest of the app checks before issuing requests."""
        return self._session.is_authenticated

    def _default_transport(self, server_url: str) -> MusicAssistantClient:
        return MusicAssistantClient(
            server_url,
            session=self._http_session,
            command_timeout=self._config.command_timeout,
            connection_timeout=self._config.connection_timeout,
            verify_ssl=self._config.verify_ssl,
        )

    def _get_http_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession()
            self._owns_http_session = True
        return self._http_session

    def _handler(self, kind: AuthStrategyKind) -> StrategyHandler:
        return get_handler(
            kind,
            self._get_http_session(),
            timeout=self._config.login_timeout,
            verify_ssl=self._config.verify_ssl,
        )

    async def close(self) -> None:
        """Disconnect and release owned resources."""
        await self._async_drop_transport()
        if self._owns_detector:
            await self._detector.close()
        if self._owns_http_session and self._http_session is not None:
            await self._http_session.close()
        self._http_session = None

    # Stale-response guard
    def _retarget(self, target: str) -> _Ticket:
        """Start a new request generation for a target URL and reset the session."""
        self._generation += 1
        self._session.reset(target)
        return _Ticket(self._generation, target)

    def _ticket(self, target: str) -> _Ticket:
        """Tag a request, retargeting the session if the URL changed."""
        if target != self._session.server_url:
            return self._retarget(target)
        return _Ticket(self._generation, target)

    def _is_stale(self, ticket: _Ticket) -> bool:
        stale = ticket.generation != self._generation or ticket.target != self._session.server_url
        if stale:
            self._logger.debug("Discarding stale result for %s", ticket.target)
        return stale

    def _fail(self, err: Exception) -> None:
        """Record a failure and roll the session back to its last stable state."""
        self._session.last_error = err
        self._session.state = SessionState.FAILED
        self._session.is_authenticated = False
        self._session.state = (
            SessionState.DETECTED if self._session.detected_strategy else SessionState.IDLE
        )

    # Detection
    async def async_detect(self, server_url: str) -> AuthStrategy:
        """Detect the auth strategy of a server and retarget the session to it.

        Raises:
            MAValidationError: The address is empty or malformed.
            MADetectionError: The server is unreachable or unrecognized.
        """
        target = normalize_server_url(server_url)
        ticket = self._retarget(target)
        self._session.state = SessionState.DETECTING
        await self._async_drop_transport()

        try:
            result = await self._detector.async_detect(target)
        except MADetectionError as err:
            if not self._is_stale(ticket):
                self._session.last_error = err
                self._session.state = SessionState.UNDETECTED
                self._logger.warning("Detection failed for %s: %s", target, err)
            raise

        if self._is_stale(ticket):
            return result.strategy

        self._session.server_url = result.base_url
        self._session.detected_strategy = result.strategy
        self._session.state = SessionState.DETECTED
        return result.strategy

    # Login
    async def async_login(
        self,
        server_url: str,
        username: str,
        password: str,
        strategy: AuthStrategy | AuthStrategyKind,
        auth_server_url: str | None = None,
        port: int | None = None,
    ) -> bool:
        """Log in with the given strategy.

        ``none`` succeeds without any network call. ``basic`` and ``authelia``
        log in at the HTTP layer against ``auth_server_url`` or the server
        itself. Native auth connects first and authenticates in-band.

        Nothing is persisted unless the login succeeds.

        Args:
            server_url: Server address.
            username: Username.
            password: Password; for Authelia optionally ``password|||totp``.
            strategy: Detected strategy.
            auth_server_url: Authelia portal URL when on another host.
            port: Custom port, used by native auth to open the socket.

        Returns:
            True on success. On failure ``session.last_error`` holds the error.

        Raises:
            MAValidationError: Required input is missing.
        """
        if isinstance(strategy, AuthStrategyKind):
            strategy = AuthStrategy(strategy, auth_server_url=auth_server_url)
        target = normalize_server_url(server_url)

        if strategy.kind is AuthStrategyKind.NONE:
            self._ticket(target)
            self._session.detected_strategy = strategy
            self._session.state = SessionState.AUTHENTICATED
            self._session.is_authenticated = True
            return True

        validated = validate_login_input(username, password, auth_server_url)
        auth_target = validated.get("auth_server_url") or strategy.auth_server_url
        if auth_target:
            auth_target = normalize_server_url(auth_target)

        login = Credentials(validated["username"], validated["password"])
        ticket = self._ticket(target)
        self._session.detected_strategy = strategy
        self._session.state = SessionState.AUTHENTICATING
        self._logger.debug("Logging in to %s with %s auth", target, strategy.name)

        try:
            if strategy.pre_connect:
                success = await self._async_login_pre_connect(ticket, strategy, login, auth_target)
            else:
                success = await self._async_login_native(ticket, login, port)
        except MAValidationError:
            raise
        except MAError as err:
            if self._is_stale(ticket):
                return False
            self._logger.warning("Login to %s failed: %s", target, err)
            await self._async_drop_transport()
            self._fail(err)
            return False

        if success:
            self._logger.info("Logged in to %s with %s auth", target, strategy.name)
        return success

    async def _async_login_pre_connect(
        self,
        ticket: _Ticket,
        strategy: AuthStrategy,
        login: Credentials,
        auth_server_url: str | None,
    ) -> bool:
        handler = self._handler(strategy.kind)
        credentials = await handler.async_login(
            auth_server_url or ticket.target, login.username, login.password
        )
        if self._is_stale(ticket):
            return False

        await self._settings.set_auth_credentials(credentials)
        await self._settings.set_username(login.username)
        await self._settings.set_password(login.password)
        if strategy.kind is AuthStrategyKind.AUTHELIA:
            await self._settings.set_auth_server_url(auth_server_url)

        self._session.stored_credentials = credentials
        self._session.is_authenticated = True
        self._session.state = SessionState.AUTHENTICATED
        return True

    async def _async_login_native(
        self,
        ticket: _Ticket,
        login: Credentials,
        port: int | None,
    ) -> bool:
        transport = await self._async_open_transport(build_server_url(ticket.target, port))
        result = await self._async_native_auth(transport, login.username, login.password)
        if self._is_stale(ticket):
            return False
        if result is None:
            raise MAAuthError("Music Assistant rejected the credentials", strategy="music_assistant")

        await self._async_store_native_result(result, login.username, login.password)
        self._session.is_authenticated = True
        self._session.state = SessionState.AUTHENTICATED
        return True

    async def _async_native_auth(
        self,
        transport: MusicAssistantClient,
        username: str | None,
        password: str | None,
    ) -> _NativeAuthResult | None:
        """Authenticate in-band: stored token, then credentials, then token upgrade.

        Returns:
            The token used and where it came from, or None if every step failed.
        """
        if not transport.auth_required:
            return _NativeAuthResult(None, None)

        stored_token = await self._settings.get_ma_auth_token()
        if stored_token:
            self._logger.debug("Trying stored token %s", sanitize_token(stored_token))
            if await transport.async_authenticate_with_token(stored_token):
                return _NativeAuthResult(stored_token, TokenOrigin.STORED)
            self._logger.warning("Stored token rejected, clearing it")
            await self._settings.clear_ma_auth_token()

        if username is None or password is None:
            username = await self._settings.get_username()
            password = await self._settings.get_password()
        if not username or not password:
            self._logger.debug("No credentials available for native login")
            return None

        access_token = await transport.async_login_with_credentials(username, password)
        if access_token is None:
            return None

        long_lived = await transport.async_create_long_lived_token(self._config.token_name)
        if long_lived:
            return _NativeAuthResult(long_lived, TokenOrigin.LONG_LIVED)
        return _NativeAuthResult(access_token, TokenOrigin.FRESHLY_ISSUED)

    async def _async_store_native_result(
        self,
        result: _NativeAuthResult,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        if result.token and result.origin is not TokenOrigin.STORED:
            await self._settings.set_ma_auth_token(result.token)
        if username and password:
            await self._settings.set_username(username)
            await self._settings.set_password(password)
        self._session.active_token = result.token
        self._session.token_origin = result.origin

    # Connection
    async def _async_open_transport(self, connect_url: str) -> MusicAssistantClient:
        """Open (or reuse) the transport and wait until it reports connected.

        Raises:
            MAConnectionError: The transport did not connect within the retry budget.
            MAAuthError: A proxy rejected the connection.
        """
        transport = self._transport
        if transport is not None and transport.server_url == connect_url and transport.connected:
            return transport

        await self._async_drop_transport()
        transport = self._transport_factory(connect_url)
        self._transport = transport
        await transport.async_connect(self.connection_headers())

        if not await self._retry.async_wait_for(lambda: transport.connected):
            raise MAConnectionError(
                f"Not connected after {self._retry.max_attempts} attempts", url=connect_url
            )
        return transport

    async def _async_drop_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.async_disconnect()

    def connection_headers(self) -> dict[str, str]:
        """Return the headers the socket and streaming requests must carry."""
        strategy = self._session.detected_strategy
        if strategy is None or not strategy.pre_connect:
            return {}
        return self._handler(strategy.kind).build_headers(self._session.stored_credentials)

    async def async_connect(self, server_url: str | None = None, port: int | None = None) -> bool:
        """Connect the transport and finish in-band auth if the server needs it.

        Args:
            server_url: Server address. Defaults to the session target or the
                saved server URL.
            port: Custom port.

        Returns:
            True when connected, False if a newer request superseded this one.

        Raises:
            MAValidationError: No server address or an invalid port.
            MAConnectionError: The transport could not connect in time.
            MAAuthError: The server or its proxy rejected the credentials.
        """
        raw_url = server_url or self._session.server_url or await self._settings.get_server_url()
        validated = validate_server_input(raw_url, port)
        target = normalize_server_url(validated["server_url"])
        port = validated.get("port")
        ticket = self._ticket(target)

        try:
            transport = await self._async_open_transport(build_server_url(target, port))
            if transport.auth_required and not transport.authenticated:
                self._session.state = SessionState.AUTHENTICATING
                result = await self._async_native_auth(transport, None, None)
                if result is None:
                    raise MAAuthError(
                        "Authentication required. Please log in again.",
                        strategy="music_assistant",
                    )
                if not self._is_stale(ticket):
                    await self._async_store_native_result(result)
            user = await transport.async_get_current_user() if transport.auth_required else None

        except MAError as err:
            if self._is_stale(ticket):
                return False
            self._logger.warning("Connection to %s failed: %s", target, err)
            await self._async_drop_transport()
            self._fail(err)
            raise

        if self._is_stale(ticket):
            return False

        await self._async_store_profile(user)
        await self._settings.set_server_url(target)
        await self._settings.set_websocket_port(port)

        self._session.is_authenticated = True
        self._session.state = SessionState.CONNECTED
        self._session.last_error = None
        self._logger.info("Connected to %s", target)
        return True

    async def _async_store_profile(self, user: UserInfo | None) -> None:
        if not user:
            return
        name = user.get("display_name") or user.get("username")
        if name:
            await self._settings.set_owner_name(name)

    async def async_connect_flow(
        self,
        server_url: str,
        username: str | None = None,
        password: str | None = None,
        port: int | None = None,
        auth_server_url: str | None = None,
    ) -> bool:
        """Detect, log in if needed, and connect.

        Returns:
            True when connected. On failure ``session.last_error`` holds the error.

        Raises:
            MAValidationError: Required input is missing.
        """
        validate_server_input(server_url, port)
        try:
            strategy = await self.async_detect(server_url)
        except MADetectionError:
            return False
        target = self._session.server_url or server_url

        if strategy.kind is AuthStrategyKind.NONE:
            self._logger.debug("No auth required for %s", target)
        elif strategy.post_connect and not (username and password):
            self._logger.debug("No credentials given, relying on stored token")
        elif not await self.async_login(
            target, username or "", password or "", strategy, auth_server_url, port
        ):
            return False

        try:
            return await self.async_connect(target, port)
        except (MAAuthError, MAConnectionError):
            return False

    async def async_restore(self) -> bool:
        """Reconnect with the saved server URL and credentials on app start.

        Returns:
            True when connected again.
        """
        server_url = await self._settings.get_server_url()
        if not server_url:
            return False
        port = await self._settings.get_websocket_port()
        credentials = await self._settings.get_auth_credentials()

        if credentials is not None:
            ticket = self._retarget(normalize_server_url(server_url))
            self._session.detected_strategy = AuthStrategy(
                credentials.strategy,
                auth_server_url=await self._settings.get_auth_server_url(),
            )
            self._session.stored_credentials = credentials
            self._session.state = SessionState.DETECTED
            if not await self.async_validate() and not await self._async_relogin(ticket, port):
                return False
        else:
            try:
                await self.async_detect(server_url)
            except MADetectionError:
                return False

        try:
            return await self.async_connect(self._session.server_url, port)
        except (MAAuthError, MAConnectionError):
            return False

    async def _async_relogin(self, ticket: _Ticket, port: int | None) -> bool:
        """Replay a pre-connect login with the saved username and password."""
        username = await self._settings.get_username()
        password = await self._settings.get_password()
        strategy = self._session.detected_strategy
        if not username or not password or strategy is None or self._is_stale(ticket):
            return False
        self._logger.info("Saved session expired, logging in again")
        return await self.async_login(
            ticket.target, username, password, strategy, strategy.auth_server_url, port
        )

    async def async_validate(self) -> bool:
        """Check that the current credentials are still accepted.

        Returns:
            True if the pre-connect credentials are still valid, or the
            transport is authenticated for native auth.
        """
        strategy = self._session.detected_strategy
        target = self._session.server_url
        if strategy is None or target is None:
            return False
        if strategy.kind is AuthStrategyKind.NONE:
            return True
        if strategy.post_connect:
            return self._transport is not None and self._transport.authenticated

        credentials = self._session.stored_credentials
        if credentials is None or credentials.strategy is not strategy.kind:
            return False
        return await self._handler(strategy.kind).async_validate(
            strategy.auth_server_url or target, credentials
        )

    async def async_logout(self) -> None:
        """Disconnect, forget all credentials and tokens, and reset to idle."""
        self._generation += 1
        await self._async_drop_transport()
        await self._settings.async_clear_login()
        await self._settings.set_auth_server_url(None)
        self._session.reset(None)
        self._logger.info("Logged out")


__all__ = ["AuthSessionManager", "TransportFactory"]
