"""URL helpers for server addresses entered by the user.

The normalization rules are persisted implicitly through saved settings, so
they must stay stable: a URL saved by one release has to resolve to the same
server in the next one.
"""

from __future__ import annotations

import ipaddress
from urllib.parse import urlsplit, urlunsplit

from .const import (
    DEFAULT_HTTP_PORT,
    DEFAULT_HTTPS_PORT,
    DEFAULT_SERVER_PORT,
    ENDPOINT_WS,
    LOCAL_HOST_PREFIXES,
    LOCALHOST,
)
from .exceptions import MAValidationError

_SCHEMES = ("http://", "https://")


def normalize_server_url(raw: str) -> str:
    """Normalize a server address typed by the user.

    Trims whitespace, strips trailing slashes and, when no scheme is given,
    defaults to ``http://`` for private/loopback looking inputs and
    ``https://`` for everything else.

    Args:
        raw: Raw server address.

    Returns:
        The normalized URL.

    Raises:
        MAValidationError: The address is empty or has no host.
    """
    url = (raw or "").strip().rstrip("/")
    if not url:
        raise MAValidationError("Server address is required", field="server_url")

    if not url.startswith(_SCHEMES):
        if url.startswith(LOCAL_HOST_PREFIXES) or url == LOCALHOST:
            url = f"http://{url}"
        else:
            url = f"https://{url}"

    if not host_of(url):
        raise MAValidationError(f"Invalid server address: {raw!r}", field="server_url")
    return url


def default_port(scheme: str) -> int:
    """Return the implicit port for a URL scheme."""
    return DEFAULT_HTTPS_PORT if scheme in ("https", "wss") else DEFAULT_HTTP_PORT


def build_server_url(url: str, port: int | None) -> str:
    """Append a custom port to a normalized URL.

    The port is left out when it equals the scheme default (80 for http,
    443 for https) or when the URL already names a port.

    Args:
        url: Normalized server URL.
        port: Port entered by the user, if any.

    Returns:
        The URL used to reach the server.

    Raises:
        MAValidationError: The URL carries an invalid port.
    """
    if port is None:
        return url

    parts = urlsplit(url)
    try:
        explicit = parts.port
    except ValueError as err:
        raise MAValidationError(f"Invalid port in {url!r}", field="port") from err

    if explicit is not None or port == default_port(parts.scheme):
        return url

    return urlunsplit(
        (parts.scheme, f"{parts.netloc}:{port}", parts.path, parts.query, parts.fragment)
    )


def host_of(url: str) -> str:
    """Return the lower-cased hostname of a URL, or an empty string."""
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""


def origin_of(url: str) -> str:
    """Return ``scheme://netloc`` for a URL."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def join_endpoint(url: str, endpoint: str) -> str:
    """Replace the path of a URL with an endpoint, keeping scheme, host and port."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, endpoint, "", ""))


def is_local_host(host: str) -> bool:
    """Check if a hostname points at a local/private address.

    Args:
        host: Hostname or IP address.

    Returns:
        True for private and loopback addresses, localhost and mDNS names.
    """
    host = host.lower()
    if host == LOCALHOST or host.endswith(".local"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_private or address.is_loopback


def build_ws_url(server_url: str) -> str:
    """Build the WebSocket URL for a server URL.

    An explicit port is kept. Plain ``ws`` without a port uses the Music
    Assistant default port, while ``wss`` keeps the implicit 443 so that
    TLS-terminating proxies in front of the server keep working.

    Args:
        server_url: Normalized server URL (with port, if any).

    Returns:
        The ``ws://`` or ``wss://`` URL of the server socket.
    """
    parts = urlsplit(server_url)
    secure = parts.scheme == "https"
    scheme = "wss" if secure else "ws"

    netloc = parts.netloc
    if parts.port is None and not secure:
        netloc = f"{netloc}:{DEFAULT_SERVER_PORT}"

    return urlunsplit((scheme, netloc, ENDPOINT_WS, "", ""))


__all__ = [
    "build_server_url",
    "build_ws_url",
    "default_port",
    "host_of",
    "is_local_host",
    "join_endpoint",
    "normalize_server_url",
    "origin_of",
]
