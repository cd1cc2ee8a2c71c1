"""Persistent settings and secret storage.

Plain settings (server URL, port, owner name, UI preferences) and secrets
(password, native token, serialized credentials) live in separate backends,
so that secrets can be kept in a file with restricted permissions or in a
platform keychain without dragging UI preferences along.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from .const import (
    SECRET_AUTH_CREDENTIALS,
    SECRET_MA_AUTH_TOKEN,
    SECRET_PASSWORD,
    SETTING_AUTH_SERVER_URL,
    SETTING_OWNER_NAME,
    SETTING_PREFERENCES,
    SETTING_SERVER_URL,
    SETTING_USERNAME,
    SETTING_WEBSOCKET_PORT,
)
from .exceptions import MAValidationError
from .models import StoredCredentials

_LOGGER = logging.getLogger(__name__)

_JSON_VERSION = 1


class SettingsBackend(Protocol):
    """Storage backend holding one JSON-serializable mapping."""

    async def async_load(self) -> dict[str, Any]:
        """Load the stored mapping."""

    async def async_save(self, data: dict[str, Any]) -> None:
        """Replace the stored mapping."""


class MemoryBackend:
    """In-memory backend, used for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        """Initialize with optional initial data."""
        self._data: dict[str, Any] = json.loads(json.dumps(initial or {}))
        self.save_count = 0

    async def async_load(self) -> dict[str, Any]:
        """Return a copy of the stored mapping."""
        return json.loads(json.dumps(self._data))

    async def async_save(self, data: dict[str, Any]) -> None:
        """Store a copy of the mapping."""
        self._data = json.loads(json.dumps(data))
        self.save_count += 1


class JsonFileBackend:
    """JSON file backend with atomic replace.

    Attributes:
        path: Location of the JSON file.
        mode: Permission bits applied to the file.
    """

    def __init__(self, path: str | os.PathLike[str], mode: int = 0o644) -> None:
        """Initialize the backend.

        Args:
            path: File to read and write.
            mode: Permission bits, e.g. 0o600 for secrets.
        """
        self.path = Path(path)
        self.mode = mode

    async def async_load(self) -> dict[str, Any]:
        """Load the mapping, returning an empty one if the file is missing."""
        return await asyncio.to_thread(self._read)

    async def async_save(self, data: dict[str, Any]) -> None:
        """Atomically replace the file contents."""
        await asyncio.to_thread(self._write, data)

    def _read(self) -> dict[str, Any]:
        try:
            raw = json.loads(self.path.read_text("utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            _LOGGER.warning("Settings file %s is corrupt, starting empty", self.path)
            return {}
        if not isinstance(raw, dict):
            return {}
        data = raw.get("data", {})
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent,
            prefix=f".{self.path.stem}.",
            suffix=".tmp",
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump({"version": _JSON_VERSION, "data": data}, handle, sort_keys=True)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_path, self.mode)
            os.replace(tmp_path, self.path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise


class SettingsStore:
    """Typed accessors over a settings backend and a secret backend.

    Every write goes straight through to its backend.
    """

    def __init__(
        self,
        backend: SettingsBackend | None = None,
        secret_backend: SettingsBackend | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            backend: Backend for plain settings. Defaults to memory.
            secret_backend: Backend for secrets. Defaults to memory.
        """
        self._backend = backend or MemoryBackend()
        self._secret_backend = secret_backend or MemoryBackend()
        self._settings: dict[str, Any] | None = None
        self._secrets: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_directory(cls, directory: str | os.PathLike[str]) -> SettingsStore:
        """Create a store persisting to ``settings.json`` and ``secrets.json``."""
        base = Path(directory)
        return cls(
            JsonFileBackend(base / "settings.json"),
            JsonFileBackend(base / "secrets.json", mode=0o600),
        )

    async def _async_ensure_loaded(self) -> tuple[dict[str, Any], dict[str, Any]]:
        if self._settings is None:
            self._settings = await self._backend.async_load()
        if self._secrets is None:
            self._secrets = await self._secret_backend.async_load()
        return self._settings, self._secrets

    async def _async_get(self, key: str, *, secret: bool = False) -> Any:
        async with self._lock:
            settings, secrets = await self._async_ensure_loaded()
            return (secrets if secret else settings).get(key)

    async def _async_set(self, key: str, value: Any, *, secret: bool = False) -> None:
        async with self._lock:
            settings, secrets = await self._async_ensure_loaded()
            target = secrets if secret else settings
            if value is None:
                if key not in target:
                    return
                del target[key]
            else:
                if target.get(key) == value:
                    return
                target[key] = value
            backend = self._secret_backend if secret else self._backend
            await backend.async_save(target)

    async def async_snapshot(self) -> dict[str, Any]:
        """Return a copy of all settings and secrets."""
        async with self._lock:
            settings, secrets = await self._async_ensure_loaded()
            return json.loads(json.dumps({"settings": settings, "secrets": secrets}))

    # Server
    async def get_server_url(self) -> str | None:
        """Return the saved server URL."""
        return await self._async_get(SETTING_SERVER_URL)

    async def set_server_url(self, url: str | None) -> None:
        """Save the server URL."""
        await self._async_set(SETTING_SERVER_URL, url)

    async def get_auth_server_url(self) -> str | None:
        """Return the saved Authelia portal URL."""
        return await self._async_get(SETTING_AUTH_SERVER_URL)

    async def set_auth_server_url(self, url: str | None) -> None:
        """Save the Authelia portal URL; empty values remove it."""
        await self._async_set(SETTING_AUTH_SERVER_URL, url or None)

    async def get_websocket_port(self) -> int | None:
        """Return the saved port."""
        value = await self._async_get(SETTING_WEBSOCKET_PORT)
        return int(value) if value is not None else None

    async def set_websocket_port(self, port: int | None) -> None:
        """Save the port."""
        await self._async_set(SETTING_WEBSOCKET_PORT, port)

    async def get_owner_name(self) -> str | None:
        """Return the profile name of the logged-in user."""
        return await self._async_get(SETTING_OWNER_NAME)

    async def set_owner_name(self, name: str | None) -> None:
        """Save the profile name of the logged-in user."""
        await self._async_set(SETTING_OWNER_NAME, name)

    async def get_username(self) -> str | None:
        """Return the saved username."""
        return await self._async_get(SETTING_USERNAME)

    async def set_username(self, username: str | None) -> None:
        """Save the username."""
        await self._async_set(SETTING_USERNAME, username)

    # Secrets
    async def get_password(self) -> str | None:
        """Return the saved password."""
        return await self._async_get(SECRET_PASSWORD, secret=True)

    async def set_password(self, password: str | None) -> None:
        """Save the password."""
        await self._async_set(SECRET_PASSWORD, password, secret=True)

    async def get_ma_auth_token(self) -> str | None:
        """Return the saved native token."""
        return await self._async_get(SECRET_MA_AUTH_TOKEN, secret=True)

    async def set_ma_auth_token(self, token: str | None) -> None:
        """Save the native token."""
        await self._async_set(SECRET_MA_AUTH_TOKEN, token, secret=True)

    async def clear_ma_auth_token(self) -> None:
        """Remove the native token."""
        await self._async_set(SECRET_MA_AUTH_TOKEN, None, secret=True)

    async def get_auth_credentials(self) -> StoredCredentials | None:
        """Return the saved credential descriptor, dropping corrupt blobs."""
        blob = await self._async_get(SECRET_AUTH_CREDENTIALS, secret=True)
        if blob is None:
            return None
        try:
            return StoredCredentials.from_dict(blob)
        except MAValidationError as err:
            _LOGGER.warning("Discarding stored credentials: %s", err)
            await self.clear_auth_credentials()
            return None

    async def set_auth_credentials(self, credentials: StoredCredentials) -> None:
        """Save the credential descriptor."""
        await self._async_set(SECRET_AUTH_CREDENTIALS, credentials.to_dict(), secret=True)

    async def clear_auth_credentials(self) -> None:
        """Remove the credential descriptor."""
        await self._async_set(SECRET_AUTH_CREDENTIALS, None, secret=True)

    async def async_clear_login(self) -> None:
        """Remove everything a login stored."""
        await self.set_username(None)
        await self.set_password(None)
        await self.clear_ma_auth_token()
        await self.clear_auth_credentials()

    # UI preferences share the store but are not used by the core
    async def get_preference(self, key: str, default: Any = None) -> Any:
        """Return a UI preference."""
        preferences = await self._async_get(SETTING_PREFERENCES) or {}
        return preferences.get(key, default)

    async def set_preference(self, key: str, value: Any) -> None:
        """Save a UI preference."""
        preferences = dict(await self._async_get(SETTING_PREFERENCES) or {})
        preferences[key] = value
        await self._async_set(SETTING_PREFERENCES, preferences)


__all__ = ["JsonFileBackend", "MemoryBackend", "SettingsBackend", "SettingsStore"]
