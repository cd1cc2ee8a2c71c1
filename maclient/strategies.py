"""HTTP-layer login strategies.

Each handler knows how to log in against one kind of authentication layer,
how to check that stored credentials are still accepted, and which headers
the socket and streaming requests must carry afterwards.

Native Music Assistant auth happens in-band over the socket and is driven
by the session manager; its handler only contributes empty headers.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import ClassVar

import aiohttp

from .const import (
    AUTHELIA_DEFAULT_COOKIE,
    AUTHELIA_FIRST_FACTOR,
    AUTHELIA_SECOND_FACTOR_LEGACY,
    AUTHELIA_SECOND_FACTOR_TOTP,
    AUTHELIA_VERIFY,
    DEFAULT_LOGIN_TIMEOUT,
    DEFAULT_VALIDATE_TIMEOUT,
    TOTP_SEPARATOR,
)
from .exceptions import MAAuthError, MAConnectionError
from .http_client import HttpReply, async_http_request
from .models import AuthStrategyKind, StoredCredentials
from .url_helpers import join_endpoint

_LOGGER = logging.getLogger(__name__)

_SET_COOKIE_PAIR = re.compile(r"(?:^|,\s*)([A-Za-z0-9_\-]+)=([^;]+)")


class StrategyHandler(ABC):
    """Base class for login strategies.

    Attributes:
        kind: The strategy kind handled.
    """

    kind: ClassVar[AuthStrategyKind]

    def __init__(
        self,
        session: aiohttp.ClientSession,
        timeout: float = DEFAULT_LOGIN_TIMEOUT,
        validate_timeout: float = DEFAULT_VALIDATE_TIMEOUT,
        verify_ssl: bool = True,
    ) -> None:
        """Initialize the handler.

        Args:
            session: aiohttp session used for login requests.
            timeout: Timeout for each login request.
            validate_timeout: Timeout for credential validation.
            verify_ssl: Whether to verify TLS certificates.
        """
        self._session = session
        self._timeout = timeout
        self._validate_timeout = validate_timeout
        self._verify_ssl = verify_ssl

    @property
    def name(self) -> str:
        """Return the strategy tag."""
        return self.kind.value

    @abstractmethod
    async def async_login(self, server_url: str, username: str, password: str) -> StoredCredentials:
        """Log in and return the credential descriptor to persist.

        Raises:
            MAAuthError: Credentials were rejected.
            MAConnectionError: The auth layer could not be reached.
        """

    @abstractmethod
    async def async_validate(self, server_url: str, credentials: StoredCredentials) -> bool:
        """Check that stored credentials are still accepted."""

    @abstractmethod
    def build_headers(self, credentials: StoredCredentials | None) -> dict[str, str]:
        """Return headers for socket and streaming requests."""


class NoAuthHandler(StrategyHandler):
    """Server without any authentication layer."""

    kind = AuthStrategyKind.NONE

    async def async_login(self, server_url: str, username: str, password: str) -> StoredCredentials:
        """Nothing to do; always succeeds."""
        return StoredCredentials(AuthStrategyKind.NONE)

    async def async_validate(self, server_url: str, credentials: StoredCredentials) -> bool:
        """Always valid."""
        return True

    def build_headers(self, credentials: StoredCredentials | None) -> dict[str, str]:
        """No headers needed."""
        return {}


class MusicAssistantAuthHandler(NoAuthHandler):
    """Native auth; the token travels in-band over the socket."""

    kind = AuthStrategyKind.MUSIC_ASSISTANT

    async def async_login(self, server_url: str, username: str, password: str) -> StoredCredentials:
        """Native login needs an open socket and is run by the session manager."""
        raise MAAuthError("Native login requires an open connection", strategy=self.name)


class BasicAuthHandler(StrategyHandler):
    """HTTP Basic auth enforced by a reverse proxy."""

    kind = AuthStrategyKind.BASIC

    async def async_login(self, server_url: str, username: str, password: str) -> StoredCredentials:
        """Validate the credentials against the proxy.

        The proxy accepts the credentials when it stops answering 401/403.
        """
        authorization = aiohttp.BasicAuth(username, password).encode()
        _LOGGER.debug("Attempting basic auth login to %s", server_url)

        reply = await async_http_request(
            self._session,
            "GET",
            server_url,
            timeout=self._timeout,
            headers={"Authorization": authorization},
            allow_redirects=False,
            verify_ssl=self._verify_ssl,
        )
        if reply.status in (401, 403):
            raise MAAuthError(f"Basic auth rejected: {reply.status}", strategy=self.name)
        if reply.status >= 500:
            raise MAConnectionError(f"Server error during login: {reply.status}", url=server_url)

        _LOGGER.debug("Basic auth accepted by %s", server_url)
        return StoredCredentials(
            AuthStrategyKind.BASIC,
            {"username": username, "authorization": authorization},
        )

    async def async_validate(self, server_url: str, credentials: StoredCredentials) -> bool:
        """Re-probe the server with the stored header."""
        authorization = credentials.data.get("authorization")
        if not authorization:
            return False
        try:
            reply = await async_http_request(
                self._session,
                "GET",
                server_url,
                timeout=self._validate_timeout,
                headers={"Authorization": authorization},
                allow_redirects=False,
                verify_ssl=self._verify_ssl,
            )
        except MAConnectionError as err:
            _LOGGER.debug("Basic auth validation failed: %s", err)
            return False
        return reply.status < 400

    def build_headers(self, credentials: StoredCredentials | None) -> dict[str, str]:
        """Send the stored Authorization header."""
        if credentials is None or "authorization" not in credentials.data:
            return {}
        return {"Authorization": credentials.data["authorization"]}


class AutheliaHandler(StrategyHandler):
    """Authelia portal in front of the server.

    Supports single-factor login and TOTP second factor. A TOTP code can be
    appended to the password as ``password|||123456``.
    """

    kind = AuthStrategyKind.AUTHELIA

    async def async_login(self, server_url: str, username: str, password: str) -> StoredCredentials:
        """Log in through the portal and capture its session cookie."""
        password, totp_code = split_totp(password)
        first_factor_url = join_endpoint(server_url, AUTHELIA_FIRST_FACTOR)
        _LOGGER.debug("Attempting Authelia login to %s", first_factor_url)

        reply = await self._async_post(
            first_factor_url,
            {"username": username, "password": password, "keepMeLoggedIn": True},
        )
        if reply.status != 200:
            raise MAAuthError(f"Authelia first factor failed: {reply.status}", strategy=self.name)

        if totp_code or needs_second_factor(reply):
            if not totp_code:
                raise MAAuthError(
                    "Two-factor authentication required; append |||<code> to the password",
                    strategy=self.name,
                )
            session_cookie = extract_session_cookie(reply)
            if session_cookie is None:
                raise MAAuthError("No session cookie after first factor", strategy=self.name)
            reply = await self._async_second_factor(server_url, totp_code, session_cookie)

        session_cookie = extract_session_cookie(reply)
        if session_cookie is None:
            raise MAAuthError("No session cookie in Authelia response", strategy=self.name)

        cookie_name, cookie_value = session_cookie
        _LOGGER.debug("Authelia login succeeded, cookie %s", cookie_name)
        return StoredCredentials(
            AuthStrategyKind.AUTHELIA,
            {"session_cookie": cookie_value, "cookie_name": cookie_name, "username": username},
        )

    async def _async_second_factor(
        self,
        server_url: str,
        totp_code: str,
        session_cookie: tuple[str, str],
    ) -> HttpReply:
        body = {"token": totp_code, "keepMeLoggedIn": True}
        cookie_header = {"Cookie": f"{session_cookie[0]}={session_cookie[1]}"}

        reply = await self._async_post(
            join_endpoint(server_url, AUTHELIA_SECOND_FACTOR_TOTP), body, cookie_header
        )
        if reply.status == 404:
            # Older Authelia releases only expose the legacy endpoint
            reply = await self._async_post(
                join_endpoint(server_url, AUTHELIA_SECOND_FACTOR_LEGACY), body, cookie_header
            )
        if reply.status != 200:
            raise MAAuthError(f"Authelia second factor failed: {reply.status}", strategy=self.name)

        # The portal may not rotate the cookie on the second factor
        if extract_session_cookie(reply) is None:
            reply.cookies[session_cookie[0]] = session_cookie[1]
        return reply

    async def _async_post(
        self,
        url: str,
        body: dict[str, object],
        headers: dict[str, str] | None = None,
    ) -> HttpReply:
        return await async_http_request(
            self._session,
            "POST",
            url,
            timeout=self._timeout,
            headers=headers,
            json_body=body,
            verify_ssl=self._verify_ssl,
        )

    async def async_validate(self, server_url: str, credentials: StoredCredentials) -> bool:
        """Ask the portal's verify endpoint whether the cookie is still valid."""
        if "session_cookie" not in credentials.data:
            return False
        try:
            reply = await async_http_request(
                self._session,
                "GET",
                join_endpoint(server_url, AUTHELIA_VERIFY),
                timeout=self._validate_timeout,
                headers=self.build_headers(credentials),
                verify_ssl=self._verify_ssl,
            )
        except MAConnectionError as err:
            _LOGGER.debug("Authelia validation failed: %s", err)
            return False
        return reply.status == 200

    def build_headers(self, credentials: StoredCredentials | None) -> dict[str, str]:
        """Send the portal session cookie."""
        if credentials is None or "session_cookie" not in credentials.data:
            return {}
        name = credentials.data.get("cookie_name") or AUTHELIA_DEFAULT_COOKIE
        return {"Cookie": f"{name}={credentials.data['session_cookie']}"}


def split_totp(password: str) -> tuple[str, str | None]:
    """Split ``password|||123456`` into password and TOTP code."""
    if TOTP_SEPARATOR not in password:
        return password, None
    actual, _, code = password.partition(TOTP_SEPARATOR)
    code = code.strip()
    return actual, code or None


def extract_session_cookie(reply: HttpReply) -> tuple[str, str] | None:
    """Find the portal session cookie in a response.

    The cookie name is configurable in Authelia, so a cookie whose name
    contains ``session`` is preferred and the first cookie is the fallback.

    Returns:
        ``(name, value)`` or None if the response set no cookie.
    """
    pairs = [(name, morsel.value) for name, morsel in reply.cookies.items() if morsel.value]
    if not pairs:
        for raw in reply.headers.getall("Set-Cookie", []):
            pairs.extend(_SET_COOKIE_PAIR.findall(raw))
    for name, value in pairs:
        if "session" in name.lower():
            return name, value
    return pairs[0] if pairs else None


def needs_second_factor(reply: HttpReply) -> bool:
    """Guess whether the portal wants a second factor after the first one."""
    body = reply.json()
    if isinstance(body, dict):
        if "available_methods" in body:
            return True
        data = body.get("data")
        if isinstance(data, dict) and (
            "available_methods" in data
            or "methods" in data
            or data.get("second_factor") is True
            or data.get("two_factor") is True
        ):
            return True
    return extract_session_cookie(reply) is None


_HANDLERS: dict[AuthStrategyKind, type[StrategyHandler]] = {
    AuthStrategyKind.NONE: NoAuthHandler,
    AuthStrategyKind.BASIC: BasicAuthHandler,
    AuthStrategyKind.AUTHELIA: AutheliaHandler,
    AuthStrategyKind.MUSIC_ASSISTANT: MusicAssistantAuthHandler,
}


def get_handler(
    kind: AuthStrategyKind,
    session: aiohttp.ClientSession,
    **kwargs: object,
) -> StrategyHandler:
    """Create the handler for a strategy kind."""
    return _HANDLERS[kind](session, **kwargs)  # type: ignore[arg-type]


__all__ = [
    "AutheliaHandler",
    "BasicAuthHandler",
    "MusicAssistantAuthHandler",
    "NoAuthHandler",
    "StrategyHandler",
    "extract_session_cookie",
    "get_handler",
    "needs_second_factor",
    "split_totp",
]