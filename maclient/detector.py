"""Authentication strategy detection.

Probes a server URL without credentials and classifies what kind of
authentication stands between the client and the Music Assistant socket.

Recognition heuristic for Authelia (in order):

* a redirect whose ``Location`` mentions ``authelia``;
* any ``X-Authelia-*`` response header;
* a response body mentioning ``authelia`` (the portal login page);
* any other non-2xx answer that is neither a Basic nor a Bearer challenge,
  since an authenticating reverse proxy is the common case there.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Self
from urllib.parse import urljoin

import aiohttp

from .const import (
    AUTHELIA_HEADER_PREFIX,
    AUTHELIA_MARKER,
    COMMAND_INFO,
    DEFAULT_DETECTION_DEADLINE,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_ROOT_PROBE_TIMEOUT,
    ENDPOINT_API,
    MA_ERROR_AUTH_REQUIRED,
)
from .exceptions import (
    MAConnectionError,
    MADetectionError,
    MADetectionTimeoutError,
    MATimeoutError,
)
from .http_client import HttpReply, async_http_request
from .models import AuthStrategy, AuthStrategyKind, DetectionResult
from .url_helpers import host_of, is_local_host, join_endpoint, normalize_server_url, origin_of

_LOGGER = logging.getLogger(__name__)

NONE = AuthStrategy(AuthStrategyKind.NONE)
BASIC = AuthStrategy(AuthStrategyKind.BASIC)
NATIVE = AuthStrategy(AuthStrategyKind.MUSIC_ASSISTANT)


def has_authelia_marker(reply: HttpReply) -> bool:
    """Check a response for signs of an Authelia portal."""
    if any(name.lower().startswith(AUTHELIA_HEADER_PREFIX) for name in reply.headers):
        return True
    if AUTHELIA_MARKER in (reply.location or "").lower():
        return True
    return AUTHELIA_MARKER in reply.text.lower()


def authelia_strategy(base_url: str, location: str | None) -> AuthStrategy:
    """Build an Authelia strategy, keeping the portal origin if it is on another host."""
    if location:
        target = urljoin(base_url, location)
        if host_of(target) and host_of(target) != host_of(base_url):
            return AuthStrategy(AuthStrategyKind.AUTHELIA, auth_server_url=origin_of(target))
    return AuthStrategy(AuthStrategyKind.AUTHELIA)


def _is_https_upgrade(base_url: str, location: str | None) -> bool:
    """Return True for a plain http to https redirect on the same host."""
    if not location or not base_url.startswith("http://"):
        return False
    target = urljoin(base_url, location)
    return target.startswith("https://") and host_of(target) == host_of(base_url)


def classify_native_reply(reply: HttpReply) -> AuthStrategy | None:
    """Classify the answer to the ``info`` command on the HTTP API.

    Returns:
        NONE or NATIVE when the reply comes from Music Assistant itself,
        None when it is inconclusive (proxy in between, not a Music
        Assistant server, unparseable body).
    """
    if has_authelia_marker(reply) or reply.is_redirect:
        return None

    challenge = reply.headers.get("WWW-Authenticate", "").lower()
    if reply.status in (401, 403):
        if "basic" in challenge:
            return None
        _LOGGER.debug("Music Assistant API returned %s - auth required", reply.status)
        return NATIVE

    if "authentication required" in reply.text.lower():
        return NATIVE

    if reply.status == 200:
        body = reply.json()
        if isinstance(body, dict):
            result = body.get("result")
            if isinstance(result, dict) and result.get("server_version"):
                _LOGGER.debug(
                    "Music Assistant server %s (schema %s)",
                    result.get("server_version"),
                    result.get("schema_version"),
                )
                return NONE
            if body.get("error_code") == MA_ERROR_AUTH_REQUIRED:
                return NATIVE
    return None


def classify_root_reply(base_url: str, reply: HttpReply) -> AuthStrategy | None:
    """Classify the unauthenticated answer of the server root URL.

    Returns:
        The detected strategy, or None when the answer is inconclusive.
    """
    if reply.is_redirect and _is_https_upgrade(base_url, reply.location):
        _LOGGER.debug("Server upgrades %s to https, probe inconclusive", base_url)
        return None

    if has_authelia_marker(reply):
        return authelia_strategy(base_url, reply.location)

    if 200 <= reply.status < 300:
        return NONE

    if reply.status == 401:
        challenge = reply.headers.get("WWW-Authenticate", "").lower()
        if "basic" in challenge:
            return BASIC
        if "bearer" in challenge:
            return NATIVE

    if reply.status >= 300:
        _LOGGER.debug(
            "Server requires authentication (status %s), assuming Authelia", reply.status
        )
        return authelia_strategy(base_url, reply.location)

    return None


class AuthStrategyDetector:
    """Detects the authentication strategy of a server.

    Detection never logs in and never persists anything, so it can be
    repeated freely.

    Example:
        ```python
        async with AuthStrategyDetector() as detector:
            result = await detector.async_detect("music.example.com")
            print(result.strategy.kind, result.base_url)
        ```
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        root_probe_timeout: float = DEFAULT_ROOT_PROBE_TIMEOUT,
        deadline: float = DEFAULT_DETECTION_DEADLINE,
        verify_ssl: bool = True,
    ) -> None:
        """Initialize the detector.

        Args:
            session: Optional aiohttp session to reuse.
            probe_timeout: Timeout for the native API probe.
            root_probe_timeout: Timeout for the root URL probe.
            deadline: Overall deadline for one detection.
            verify_ssl: Whether to verify TLS certificates.
        """
        self._session = session
        self._owns_session = session is None
        self._probe_timeout = probe_timeout
        self._root_probe_timeout = root_probe_timeout
        self._deadline = deadline
        self._verify_ssl = verify_ssl

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

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the session if this detector created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def async_detect(self, server_url: str) -> DetectionResult:
        """Detect the auth strategy of a server.

        Tries the normalized URL and, if an ``https://`` URL gives no
        answer, its ``http://`` variant.

        Args:
            server_url: Server address as typed by the user.

        Returns:
            The detected strategy and the URL that answered.

        Raises:
            MAValidationError: The address is empty or malformed.
            MADetectionTimeoutError: Detection did not finish in time.
            MADetectionError: The server is unreachable or unrecognized.
        """
        base_url = normalize_server_url(server_url)
        _LOGGER.debug("Detecting auth strategy for %s", base_url)
        errors: list[MAConnectionError] = []

        try:
            async with asyncio.timeout(self._deadline):
                candidates = [base_url]
                if base_url.startswith("https://"):
                    candidates.append("http://" + base_url.removeprefix("https://"))

                for candidate in candidates:
                    strategy = await self._async_try_detect(candidate, errors)
                    if strategy is not None:
                        _LOGGER.info(
                            "Detected %s auth for %s", strategy.kind.value, candidate
                        )
                        return DetectionResult(strategy=strategy, base_url=candidate)
                    _LOGGER.debug("No answer from %s", candidate)

        except TimeoutError as err:
            raise MADetectionTimeoutError(
                f"Detection timed out after {self._deadline}s", url=base_url
            ) from err

        last_error = errors[-1] if errors else None
        if isinstance(last_error, MATimeoutError):
            raise MADetectionTimeoutError(str(last_error), url=base_url)
        if last_error is not None:
            raise MADetectionError(f"Server unreachable: {last_error}", url=base_url)
        raise MADetectionError("Could not determine the auth method", url=base_url)

    async def _async_try_detect(
        self, base_url: str, errors: list[MAConnectionError]
    ) -> AuthStrategy | None:
        local = is_local_host(host_of(base_url))

        strategy = await self._async_probe_native(base_url, local, errors)
        if strategy is not None:
            return strategy

        return await self._async_probe_root(base_url, local, errors)

    async def _async_probe_native(
        self, base_url: str, local: bool, errors: list[MAConnectionError]
    ) -> AuthStrategy | None:
        session = await self._get_session()
        try:
            reply = await async_http_request(
                session,
                "POST",
                join_endpoint(base_url, ENDPOINT_API),
                timeout=self._probe_timeout,
                json_body={"command": COMMAND_INFO},
                # Local servers redirecting to https would fail on self-signed certificates
                allow_redirects=not local,
                verify_ssl=self._verify_ssl,
            )
        except MAConnectionError as err:
            errors.append(err)
            _LOGGER.debug("Native probe failed for %s: %s", base_url, err)
            return None
        return classify_native_reply(reply)

    async def _async_probe_root(
        self, base_url: str, local: bool, errors: list[MAConnectionError]
    ) -> AuthStrategy | None:
        session = await self._get_session()
        try:
            reply = await async_http_request(
                session,
                "GET",
                base_url,
                timeout=self._root_probe_timeout,
                allow_redirects=False,
                verify_ssl=self._verify_ssl,
            )
        except MAConnectionError as err:
            errors.append(err)
            _LOGGER.debug("Root probe failed for %s: %s", base_url, err)
            return None

        if local and reply.is_redirect and (reply.location or "").startswith("https://"):
            _LOGGER.warning("Local server %s redirects to https, skipping", base_url)
            return None
        return classify_root_reply(base_url, reply)


__all__ = [
    "AuthStrategyDetector",
    "classify_native_reply",
    "classify_root_reply",
    "has_authelia_marker",
]
