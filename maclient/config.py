"""Configuration and input validation for the client core."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

import voluptuous as vol

from .const import (
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_CACHE_TTL,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CONNECT_ATTEMPTS,
    DEFAULT_CONNECT_INTERVAL,
    DEFAULT_CONNECTION_TIMEOUT,
    DEFAULT_DETECTION_DEADLINE,
    DEFAULT_LOGIN_TIMEOUT,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_ROOT_PROBE_TIMEOUT,
    DEFAULT_TOKEN_NAME,
)
from .exceptions import MAValidationError

_LOGGER = logging.getLogger(__name__)

CONF_SERVER_URL = "server_url"
CONF_PORT = "port"
CONF_USERNAME = "username"
CONF_PASSWORD = "password"
CONF_AUTH_SERVER_URL = "auth_server_url"

_positive = vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False))


def _non_empty(value: Any) -> str:
    """Validate a stripped, non-empty string."""
    text = vol.Coerce(str)(value).strip()
    if not text:
        raise vol.Invalid("must not be empty")
    return text


CONFIG_SCHEMA = vol.Schema(
    {
        vol.Optional("probe_timeout", default=DEFAULT_PROBE_TIMEOUT): _positive,
        vol.Optional("root_probe_timeout", default=DEFAULT_ROOT_PROBE_TIMEOUT): _positive,
        vol.Optional("detection_deadline", default=DEFAULT_DETECTION_DEADLINE): _positive,
        vol.Optional("login_timeout", default=DEFAULT_LOGIN_TIMEOUT): _positive,
        vol.Optional("connection_timeout", default=DEFAULT_CONNECTION_TIMEOUT): _positive,
        vol.Optional("command_timeout", default=DEFAULT_COMMAND_TIMEOUT): _positive,
        vol.Optional("connect_attempts", default=DEFAULT_CONNECT_ATTEMPTS): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=100)
        ),
        vol.Optional("connect_interval", default=DEFAULT_CONNECT_INTERVAL): _positive,
        vol.Optional("cache_ttl", default=DEFAULT_CACHE_TTL): _positive,
        vol.Optional("cache_max_entries", default=DEFAULT_CACHE_MAX_ENTRIES): vol.All(
            vol.Coerce(int), vol.Range(min=1)
        ),
        vol.Optional("verify_ssl", default=True): bool,
        vol.Optional("token_name", default=DEFAULT_TOKEN_NAME): _non_empty,
    }
)

SERVER_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_SERVER_URL): _non_empty,
        vol.Optional(CONF_PORT): vol.Any(
            None, vol.All(vol.Coerce(int), vol.Range(min=1, max=65535))
        ),
    },
    extra=vol.ALLOW_EXTRA,
)

LOGIN_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_USERNAME): _non_empty,
        vol.Required(CONF_PASSWORD): _non_empty,
        vol.Optional(CONF_AUTH_SERVER_URL): vol.Any(None, vol.Coerce(str)),
    },
    extra=vol.ALLOW_EXTRA,
)


def _validate(schema: vol.Schema, data: dict[str, Any]) -> dict[str, Any]:
    """Run a schema and convert voluptuous errors to validation errors."""
    try:
        return schema(data)  # type: ignore[no-any-return]
    except vol.MultipleInvalid as err:
        first = err.errors[0]
        field = str(first.path[0]) if first.path else "base"
        raise MAValidationError(f"Invalid {field}: {first.msg}", field=field) from err


def validate_server_input(server_url: str | None, port: int | str | None = None) -> dict[str, Any]:
    """Validate the server address and optional port.

    Raises:
        MAValidationError: A field is missing or out of range.
    """
    data: dict[str, Any] = {CONF_SERVER_URL: server_url or ""}
    if port not in (None, ""):
        data[CONF_PORT] = port
    return _validate(SERVER_SCHEMA, data)


def validate_login_input(
    username: str | None,
    password: str | None,
    auth_server_url: str | None = None,
) -> dict[str, Any]:
    """Validate login fields.

    Raises:
        MAValidationError: Username or password is missing.
    """
    data: dict[str, Any] = {
        CONF_USERNAME: username or "",
        CONF_PASSWORD: password or "",
    }
    if auth_server_url:
        data[CONF_AUTH_SERVER_URL] = auth_server_url.strip()
    return _validate(LOGIN_SCHEMA, data)


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """Tunable timeouts and limits for the client core.

    Attributes:
        probe_timeout: Timeout for the native API probe.
        root_probe_timeout: Timeout for the root URL probe.
        detection_deadline: Overall deadline for strategy detection.
        login_timeout: Timeout for each HTTP login request.
        connection_timeout: Timeout for the socket handshake.
        command_timeout: Timeout for a single socket command.
        connect_attempts: Polls of the connected flag before giving up.
        connect_interval: Delay between polls.
        cache_ttl: Time to live of response cache entries.
        cache_max_entries: Maximum number of cached responses.
        verify_ssl: Whether to verify TLS certificates.
        token_name: Name given to long-lived tokens.
    """

    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    root_probe_timeout: float = DEFAULT_ROOT_PROBE_TIMEOUT
    detection_deadline: float = DEFAULT_DETECTION_DEADLINE
    login_timeout: float = DEFAULT_LOGIN_TIMEOUT
    connection_timeout: float = DEFAULT_CONNECTION_TIMEOUT
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    connect_attempts: int = DEFAULT_CONNECT_ATTEMPTS
    connect_interval: float = DEFAULT_CONNECT_INTERVAL
    cache_ttl: float = DEFAULT_CACHE_TTL
    cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES
    verify_ssl: bool = True
    token_name: str = DEFAULT_TOKEN_NAME

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None = None) -> ClientConfig:
        """Build a config from a mapping, applying defaults.

        Raises:
            MAValidationError: A value is out of range or of the wrong type.
        """
        validated = _validate(CONFIG_SCHEMA, dict(data or {}))
        _LOGGER.debug("Client config: %s", validated)
        return cls(**validated)

    def as_dict(self) -> dict[str, Any]:
        """Return the config as a plain dictionary."""
        return asdict(self)


__all__ = [
    "CONFIG_SCHEMA",
    "LOGIN_SCHEMA",
    "SERVER_SCHEMA",
    "ClientConfig",
    "validate_login_input",
    "validate_server_input",
]
