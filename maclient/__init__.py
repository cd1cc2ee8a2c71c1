"""Music Assistant client session core.

Detects how a server expects clients to authenticate, runs the matching
login sequence, keeps the connection and its tokens, and serves list views
from a response cache that refreshes in the background.
"""

from __future__ import annotations

from .api import MusicAssistantClient
from .cache import CacheEvent, CacheEventType, CacheScope, ResponseCache, make_cache_key
from .config import ClientConfig, validate_login_input, validate_server_input
from .const import __version__
from .detector import AuthStrategyDetector
from .exceptions import (
    MAAuthError,
    MACommandError,
    MAConnectionError,
    MADetectionError,
    MADetectionTimeoutError,
    MAError,
    MANotConnectedError,
    MASSLError,
    MATimeoutError,
    MAValidationError,
    user_message,
)
from .library import LibraryService
from .models import (
    AuthStrategy,
    AuthStrategyKind,
    CacheEntry,
    Credentials,
    DetectionResult,
    LibraryItem,
    ServerInfo,
    Session,
    SessionState,
    StoredCredentials,
    TokenOrigin,
)
from .retry import RetryPolicy
from .session import AuthSessionManager
from .settings import JsonFileBackend, MemoryBackend, SettingsStore
from .url_helpers import build_server_url, build_ws_url, normalize_server_url

__all__ = [
    "AuthSessionManager",
    "AuthStrategy",
    "AuthStrategyDetector",
    "AuthStrategyKind",
    "CacheEntry",
    "CacheEvent",
    "CacheEventType",
    "CacheScope",
    "ClientConfig",
    "Credentials",
    "DetectionResult",
    "JsonFileBackend",
    "LibraryItem",
    "LibraryService",
    "MAAuthError",
    "MACommandError",
    "MAConnectionError",
    "MADetectionError",
    "MADetectionTimeoutError",
    "MAError",
    "MANotConnectedError",
    "MASSLError",
    "MATimeoutError",
    "MAValidationError",
    "MemoryBackend",
    "MusicAssistantClient",
    "ResponseCache",
    "RetryPolicy",
    "ServerInfo",
    "Session",
    "SessionState",
    "SettingsStore",
    "StoredCredentials",
    "TokenOrigin",
    "__version__",
    "build_server_url",
    "build_ws_url",
    "make_cache_key",
    "normalize_server_url",
    "user_message",
    "validate_login_input",
    "validate_server_input",
]
