"""Exceptions for the Music Assistant client core."""

from __future__ import annotations


class MAError(Exception):
    """Base exception for the client core.

    Attributes:
        translation_key: Key for looking up a user-facing message.
        translation_placeholders: Values to substitute in that message.
    """

    def __init__(
        self,
        message: str,
        translation_key: str | None = None,
        translation_placeholders: dict[str, str] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: The error message (English, for logs).
            translation_key: Optional key for the user-facing message.
            translation_placeholders: Optional placeholders for that message.
        """
        super().__init__(message)
        self.translation_key = translation_key
        self.translation_placeholders = translation_placeholders or {}


class MAValidationError(MAError):
    """Raised when required input is missing or malformed.

    Always raised before any network activity.
    """

    def __init__(self, message: str, field: str = "base") -> None:
        """Initialize validation error.

        Args:
            message: The error message.
            field: Name of the offending input field.
        """
        super().__init__(
            message,
            translation_key="invalid_input",
            translation_placeholders={"field": field},
        )
        self.field = field


class MADetectionError(MAError):
    """Raised when the auth strategy of a server cannot be determined.

    Covers unreachable servers and unrecognized probe responses.
    """

    def __init__(self, message: str, url: str = "") -> None:
        """Initialize detection error.

        Args:
            message: The error message.
            url: The URL that was probed.
        """
        super().__init__(
            message,
            translation_key="detection_failed",
            translation_placeholders={"url": url},
        )
        self.url = url


class MADetectionTimeoutError(MADetectionError):
    """Raised when detection does not finish within its deadline."""

    def __init__(self, message: str, url: str = "") -> None:
        """Initialize detection timeout error."""
        super().__init__(message, url=url)
        self.translation_key = "detection_timeout"


class MAAuthError(MAError):
    """Raised when credentials are rejected or a token exchange fails."""

    def __init__(self, message: str, strategy: str = "") -> None:
        """Initialize authentication error.

        Args:
            message: The error message.
            strategy: Name of the auth strategy that failed.
        """
        super().__init__(
            message,
            translation_key="authentication_failed",
            translation_placeholders={"strategy": strategy},
        )
        self.strategy = strategy


class MAConnectionError(MAError):
    """Raised when the transport cannot reach the server.

    This includes network errors, DNS failures and exhausting the
    wait-for-connected retry budget.
    """

    def __init__(self, message: str, url: str = "") -> None:
        """Initialize connection error.

        Args:
            message: The error message.
            url: The server URL.
        """
        super().__init__(
            message,
            translation_key="connection_failed",
            translation_placeholders={"url": url},
        )
        self.url = url


class MATimeoutError(MAConnectionError):
    """Raised when a request times out."""

    def __init__(self, message: str, url: str = "") -> None:
        """Initialize timeout error."""
        super().__init__(message, url=url)
        self.translation_key = "timeout"


class MASSLError(MAConnectionError):
    """Raised for SSL/TLS certificate errors."""

    def __init__(self, message: str, url: str = "") -> None:
        """Initialize SSL error."""
        super().__init__(message, url=url)
        self.translation_key = "ssl_error"


class MANotConnectedError(MAConnectionError):
    """Raised when a command is sent without an open connection."""

    def __init__(self, message: str = "Not connected to Music Assistant server") -> None:
        """Initialize not connected error."""
        super().__init__(message)
        self.translation_key = "not_connected"


class MACommandError(MAError):
    """Raised when the server answers a command with an error code."""

    def __init__(self, command: str, error_code: int, details: str = "") -> None:
        """Initialize command error.

        Args:
            command: The command that failed.
            error_code: Error code returned by the server.
            details: Error details returned by the server.
        """
        super().__init__(
            f"{command} failed: {error_code} {details}".rstrip(),
            translation_key="command_failed",
            translation_placeholders={"command": command, "code": str(error_code)},
        )
        self.command = command
        self.error_code = error_code
        self.details = details


_USER_MESSAGES: dict[str, str] = {
    "invalid_input": "Please check the {field} field.",
    "detection_failed": "Could not reach the server or recognize its login method.",
    "detection_timeout": "The server did not answer in time.",
    "authentication_failed": "Authentication failed. Please check your credentials.",
    "connection_failed": "Could not connect to server. Please check the address and try again.",
    "timeout": "The connection timed out.",
    "ssl_error": "The server certificate could not be verified.",
    "not_connected": "Not connected to the server.",
    "command_failed": "The server rejected the request.",
}


def user_message(err: BaseException) -> str:
    """Return a short user-facing message for an error.

    Args:
        err: The error to describe.

    Returns:
        A message suitable for showing on the login screen.
    """
    if isinstance(err, MAError) and err.translation_key in _USER_MESSAGES:
        template = _USER_MESSAGES[err.translation_key]
        try:
            return template.format(**err.translation_placeholders)
        except KeyError:
            return template
    return "Something went wrong. Please try again."
