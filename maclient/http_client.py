"""HTTP request helper shared by detection and login strategies."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from http.cookies import SimpleCookie
from typing import Any

import aiohttp
from multidict import CIMultiDict

from .const import USER_AGENT_TEMPLATE, __version__
from .exceptions import MAConnectionError, MASSLError, MATimeoutError

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class HttpReply:
    """Fully read HTTP response.

    Attributes:
        status: HTTP status code.
        headers: Response headers (case-insensitive).
        text: Response body.
        cookies: Cookies set by the response.
    """

    status: int
    headers: CIMultiDict[str] = field(default_factory=CIMultiDict)
    text: str = ""
    cookies: SimpleCookie = field(default_factory=SimpleCookie)

    @property
    def location(self) -> str | None:
        """Return the redirect target, if any."""
        return self.headers.get("Location")

    @property
    def is_redirect(self) -> bool:
        """Return True for 3xx responses."""
        return 300 <= self.status < 400

    def json(self) -> Any:
        """Parse the body as JSON.

        Returns:
            The decoded value, or None if the body is not JSON.
        """
        try:
            return json.loads(self.text)
        except ValueError:
            return None


def default_headers() -> dict[str, str]:
    """Return headers sent with every request."""
    return {"User-Agent": USER_AGENT_TEMPLATE.format(version=__version__)}


async def async_http_request(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    timeout: float,
    headers: dict[str, str] | None = None,
    json_body: Any = None,
    allow_redirects: bool = True,
    verify_ssl: bool = True,
) -> HttpReply:
    """Make an HTTP request and read the whole response.

    Args:
        session: The aiohttp session to use.
        method: HTTP method.
        url: Full URL.
        timeout: Total timeout in seconds.
        headers: Extra request headers.
        json_body: Optional JSON payload.
        allow_redirects: Whether to follow redirects.
        verify_ssl: Whether to verify TLS certificates.

    Returns:
        The read response. HTTP error statuses are returned, not raised.

    Raises:
        MASSLError: TLS certificate error.
        MATimeoutError: Request timed out.
        MAConnectionError: Connection failed.
    """
    request_headers = default_headers()
    if headers:
        request_headers.update(headers)

    _LOGGER.debug("HTTP request: %s %s (redirects=%s)", method, url, allow_redirects)

    try:
        async with session.request(
            method,
            url,
            headers=request_headers,
            json=json_body,
            allow_redirects=allow_redirects,
            ssl=verify_ssl,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            text = await response.text(errors="replace")
            _LOGGER.debug("HTTP response: %s for %s %s", response.status, method, url)
            return HttpReply(
                status=response.status,
                headers=CIMultiDict(response.headers),
                text=text,
                cookies=SimpleCookie(response.cookies),
            )

    except aiohttp.ClientSSLError as err:
        _LOGGER.error("SSL error for %s %s: %s", method, url, err)
        raise MASSLError(f"SSL certificate error: {err}", url=url) from err

    except TimeoutError as err:
        _LOGGER.error("Timeout for %s %s", method, url)
        raise MATimeoutError(f"Request timed out after {timeout}s", url=url) from err

    except aiohttp.ClientConnectorError as err:
        _LOGGER.error("Connection error for %s %s: %s", method, url, err)
        raise MAConnectionError(f"Failed to connect to {url}: {err}", url=url) from err

    except aiohttp.ClientError as err:
        _LOGGER.error("Client error for %s %s: %s", method, url, err)
        raise MAConnectionError(f"Client error: {err}", url=url) from err


__all__ = ["HttpReply", "async_http_request", "default_headers"]
