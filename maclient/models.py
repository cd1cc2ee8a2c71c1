"""Data models for the Music Assistant client core."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from .exceptions import MAValidationError

if TYPE_CHECKING:
    from .const import ServerInfoMessage


class AuthStrategyKind(StrEnum):
    """How a server expects clients to authenticate.

    The values double as the strategy tag in persisted credential blobs.
    """

    NONE = "none"
    BASIC = "basic"
    AUTHELIA = "authelia"
    MUSIC_ASSISTANT = "music_assistant"


class SessionState(StrEnum):
    """Lifecycle state of a Session."""

    IDLE = "idle"
    DETECTING = "detecting"
    UNDETECTED = "undetected"
    DETECTED = "detected"
    AUTHENTICATING = "authenticating"
    FAILED = "failed"
    AUTHENTICATED = "authenticated"
    CONNECTED = "connected"


class TokenOrigin(StrEnum):
    """Where the active native token came from."""

    STORED = "stored"
    FRESHLY_ISSUED = "freshly_issued"
    LONG_LIVED = "long_lived"


@dataclass(frozen=True, slots=True)
class AuthStrategy:
    """Detected authentication requirement of a server.

    Immutable: re-detection produces a new value.

    Attributes:
        kind: The strategy kind.
        auth_server_url: Authelia portal origin when it lives on another host.
    """

    kind: AuthStrategyKind
    auth_server_url: str | None = None

    @property
    def name(self) -> str:
        """Return the strategy tag."""
        return self.kind.value

    @property
    def requires_credentials(self) -> bool:
        """Return True if a username and password are needed."""
        return self.kind is not AuthStrategyKind.NONE

    @property
    def pre_connect(self) -> bool:
        """Return True if login happens at the HTTP layer before connecting."""
        return self.kind in (AuthStrategyKind.BASIC, AuthStrategyKind.AUTHELIA)

    @property
    def post_connect(self) -> bool:
        """Return True if login happens in-band after connecting."""
        return self.kind is AuthStrategyKind.MUSIC_ASSISTANT


@dataclass(frozen=True, slots=True)
class Credentials:
    """Username and password entered by the user. Held in memory only."""

    username: str
    password: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class StoredCredentials:
    """Serialized credential descriptor persisted after a successful login.

    Holds the strategy tag plus the minimal data needed to replay the
    login (a session cookie or an authorization header).
    """

    strategy: AuthStrategyKind
    data: dict[str, str] = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted blob format."""
        return {"strategy": self.strategy.value, "data": dict(self.data)}

    @classmethod
    def from_dict(cls, blob: dict[str, Any]) -> StoredCredentials:
        """Restore from the persisted blob format.

        Args:
            blob: Mapping with ``strategy`` and ``data`` keys.

        Returns:
            The restored credentials.

        Raises:
            MAValidationError: The blob is malformed or names an unknown strategy.
        """
        strategy = blob.get("strategy")
        data = blob.get("data")
        if not isinstance(strategy, str) or not isinstance(data, dict):
            raise MAValidationError("Malformed stored credentials", field="auth_credentials")
        try:
            kind = AuthStrategyKind(strategy)
        except ValueError as err:
            raise MAValidationError(
                f"Unknown auth strategy {strategy!r}", field="auth_credentials"
            ) from err
        return cls(strategy=kind, data={str(k): str(v) for k, v in data.items()})


@dataclass(frozen=True, slots=True)
class DetectionResult:
    """Outcome of strategy detection.

    Attributes:
        strategy: The detected strategy.
        base_url: URL that answered the probes (may be an http fallback).
    """

    strategy: AuthStrategy
    base_url: str


@dataclass(slots=True)
class ServerInfo:
    """Handshake information sent by the server when the socket opens."""

    server_version: str
    schema_version: int | None = None
    server_id: str | None = None
    base_url: str | None = None
    needs_auth: bool = False
    auth_enabled: bool = False

    @classmethod
    def from_message(cls, data: ServerInfoMessage) -> ServerInfo:
        """Create from the raw handshake message."""
        return cls(
            server_version=str(data.get("server_version", "")),
            schema_version=data.get("schema_version"),
            server_id=data.get("server_id"),
            base_url=data.get("base_url"),
            needs_auth=bool(data.get("needs_auth", False)),
            auth_enabled=bool(data.get("auth_enabled", False)),
        )


@dataclass(slots=True)
class Session:
    """Live authentication state for one server connection.

    Mutated only by the session manager.
    """

    server_url: str | None = None
    detected_strategy: AuthStrategy | None = None
    state: SessionState = SessionState.IDLE
    is_authenticated: bool = False
    active_token: str | None = field(default=None, repr=False)
    token_origin: TokenOrigin | None = None
    stored_credentials: StoredCredentials | None = None
    last_error: Exception | None = None

    def reset(self, server_url: str | None = None) -> None:
        """Return to a fresh, empty session for a server URL."""
        self.server_url = server_url
        self.detected_strategy = None
        self.state = SessionState.IDLE
        self.is_authenticated = False
        self.active_token = None
        self.token_origin = None
        self.stored_credentials = None
        self.last_error = None


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cached value and when it was fetched (monotonic seconds)."""

    key: str
    value: object
    fetched_at: float


@dataclass(slots=True)
class LibraryItem:
    """Minimal view of a library item the client can favorite.

    Attributes:
        item_id: Provider specific item ID.
        provider: Provider instance ID or domain.
        media_type: Media type (track, album, artist, playlist, ...).
        name: Display name.
        favorite: Whether the item is in the user's favorites.
        library_item_id: Numeric ID in the server library, if known.
    """

    item_id: str
    provider: str
    media_type: str
    name: str = ""
    favorite: bool = False
    library_item_id: int | None = None

    @property
    def uri(self) -> str:
        """Return the Music Assistant item URI."""
        return f"{self.provider}://{self.media_type}/{self.item_id}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LibraryItem:
        """Create from a server item payload."""
        library_id = data.get("item_id") if data.get("provider") == "library" else None
        return cls(
            item_id=str(data.get("item_id", "")),
            provider=str(data.get("provider", "")),
            media_type=str(data.get("media_type", "")),
            name=str(data.get("name", "")),
            favorite=bool(data.get("favorite", False)),
            library_item_id=int(library_id) if library_id is not None else None,
        )
