"""Constants for the Music Assistant client core."""

from __future__ import annotations

from typing import Final, NotRequired, TypedDict

# Version for User-Agent header and token names
__version__: Final = "0.1.0"

USER_AGENT_TEMPLATE: Final = "maclient/{version}"

# Default ports
DEFAULT_HTTP_PORT: Final = 80
DEFAULT_HTTPS_PORT: Final = 443
DEFAULT_SERVER_PORT: Final = 8095

# Timeouts (seconds)
DEFAULT_PROBE_TIMEOUT: Final = 5.0
DEFAULT_ROOT_PROBE_TIMEOUT: Final = 10.0
DEFAULT_DETECTION_DEADLINE: Final = 20.0
DEFAULT_LOGIN_TIMEOUT: Final = 10.0
DEFAULT_VALIDATE_TIMEOUT: Final = 5.0
DEFAULT_CONNECTION_TIMEOUT: Final = 10.0
DEFAULT_COMMAND_TIMEOUT: Final = 30.0
DEFAULT_HEARTBEAT: Final = 30.0

# Wait-for-connected polling: 10 x 0.5s
DEFAULT_CONNECT_ATTEMPTS: Final = 10
DEFAULT_CONNECT_INTERVAL: Final = 0.5

# Response cache
DEFAULT_CACHE_TTL: Final = 600.0
DEFAULT_CACHE_MAX_ENTRIES: Final = 200

# Name given to long-lived tokens created by this client
DEFAULT_TOKEN_NAME: Final = "maclient"

# Music Assistant HTTP / WebSocket endpoints
ENDPOINT_API: Final = "/api"
ENDPOINT_WS: Final = "/ws"

# Authelia endpoints
AUTHELIA_FIRST_FACTOR: Final = "/api/firstfactor"
AUTHELIA_SECOND_FACTOR_TOTP: Final = "/api/secondfactor/totp"
AUTHELIA_SECOND_FACTOR_LEGACY: Final = "/api/secondfactor"
AUTHELIA_VERIFY: Final = "/api/verify"
AUTHELIA_DEFAULT_COOKIE: Final = "authelia_session"
AUTHELIA_MARKER: Final = "authelia"
AUTHELIA_HEADER_PREFIX: Final = "x-authelia"

# Separator for an optional TOTP code typed into the password field
TOTP_SEPARATOR: Final = "|||"

# Music Assistant error code for "authentication required"
MA_ERROR_AUTH_REQUIRED: Final = 50

# Schema version from which servers enforce native auth
MA_AUTH_SCHEMA_VERSION: Final = 28

# WebSocket commands
COMMAND_INFO: Final = "info"
COMMAND_AUTH: Final = "auth"
COMMAND_AUTH_LOGIN: Final = "auth/login"
COMMAND_AUTH_ME: Final = "auth/me"
COMMAND_AUTH_CREATE_TOKEN: Final = "auth/create_token"
COMMAND_PLAYLIST_TRACKS: Final = "music/playlists/playlist_tracks"
COMMAND_ARTIST_ALBUMS: Final = "music/artists/artist_albums"
COMMAND_RECENTLY_PLAYED: Final = "music/recently_played_items"
COMMAND_FAVORITES_ADD: Final = "music/favorites/add_item"
COMMAND_FAVORITES_REMOVE: Final = "music/favorites/remove_item"

AUTH_COMMANDS: Final = frozenset({COMMAND_AUTH, COMMAND_AUTH_LOGIN})

# Prefixes that mark a host as local for scheme defaulting
LOCAL_HOST_PREFIXES: Final = ("192.", "10.", "172.", "127.")
LOCALHOST: Final = "localhost"

# Settings keys
SETTING_SERVER_URL: Final = "server_url"
SETTING_AUTH_SERVER_URL: Final = "auth_server_url"
SETTING_WEBSOCKET_PORT: Final = "websocket_port"
SETTING_OWNER_NAME: Final = "owner_name"
SETTING_USERNAME: Final = "username"
SETTING_PREFERENCES: Final = "preferences"

# Secret keys
SECRET_PASSWORD: Final = "password"
SECRET_MA_AUTH_TOKEN: Final = "ma_auth_token"
SECRET_AUTH_CREDENTIALS: Final = "auth_credentials"


class ServerInfoMessage(TypedDict):
    """Handshake message sent by the server right after the socket opens."""

    server_id: NotRequired[str]
    server_version: str
    schema_version: NotRequired[int]
    min_supported_schema_version: NotRequired[int]
    base_url: NotRequired[str]
    homeassistant_addon: NotRequired[bool]
    needs_auth: NotRequired[bool]
    auth_enabled: NotRequired[bool]


class CommandMessage(TypedDict):
    """Outgoing command frame."""

    message_id: str
    command: str
    args: NotRequired[dict[str, object]]


class ResultMessage(TypedDict):
    """Reply frame for a command."""

    message_id: str
    result: NotRequired[object]
    error_code: NotRequired[int]
    details: NotRequired[str]


class UserInfo(TypedDict):
    """Response of auth/me."""

    user_id: NotRequired[str]
    username: NotRequired[str]
    display_name: NotRequired[str]
    role: NotRequired[str]


def sanitize_token(token: str | None) -> str:
    """Sanitize a token or secret for safe logging.

    Args:
        token: The full token.

    Returns:
        Truncated token safe for logging (first 4 + last 2 chars).
    """
    if not token:
        return "N/A"
    if len(token) <= 6:
        return "***"
    return f"{token[:4]}...{token[-2:]}"
