"""Response cache for list-heavy views.

Reads are instant: a cached value is returned without waiting for the
network while a background refresh replaces it and notifies listeners.
Concurrent refreshes of one key share a single fetch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

from .config import ClientConfig
from .const import DEFAULT_CACHE_MAX_ENTRIES, DEFAULT_CACHE_TTL
from .models import CacheEntry

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CacheScope(StrEnum):
    """Key namespaces, invalidated as a whole."""

    HOME = "home"
    PLAYLIST_TRACKS = "playlist_tracks"
    ARTIST_ALBUMS = "artist_albums"


class CacheEventType(StrEnum):
    """What happened to a cache key."""

    UPDATED = "updated"
    REFRESH_FAILED = "refresh_failed"
    INVALIDATED = "invalidated"


@dataclass(frozen=True, slots=True)
class CacheEvent:
    """Notification sent to cache listeners."""

    type: CacheEventType
    key: str
    value: object = None
    error: BaseException | None = None


CacheListener = Callable[[CacheEvent], None]


def make_cache_key(scope: CacheScope | str, provider: str, item_id: str) -> str:
    """Build a composite key, e.g. ``playlist_tracks:spotify_37i9dQ``."""
    return f"{scope}:{provider}_{item_id}"


class ResponseCache:
    """In-memory cache with TTL, LRU cap and background refresh.

    Every invalidation bumps the generation of the affected keys. A refresh
    that started under an older generation still completes for whoever
    awaits it, but its value is not written back.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL,
        max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl_seconds: Time to live for cache entries in seconds.
            max_entries: Maximum number of entries to store.
            clock: Monotonic clock, replaceable in tests.
            logger: Logger to use instead of the module logger.
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._logger = logger or _LOGGER
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._refreshing: dict[str, asyncio.Task[object]] = {}
        self._key_generations: dict[str, int] = {}
        self._epoch = 0
        self._listeners: list[CacheListener] = []
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._refreshes = 0
        self._coalesced = 0
        self._refresh_failures = 0

    @classmethod
    def from_config(cls, config: ClientConfig, **kwargs: Any) -> ResponseCache:
        """Build a cache using the TTL and size limit of a client config."""
        return cls(ttl_seconds=config.cache_ttl, max_entries=config.cache_max_entries, **kwargs)

    def __len__(self) -> int:
        """Return the number of stored entries, expired ones included."""
        return len(self._cache)

    def _expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.fetched_at > self._ttl

    def get_entry(self, key: str) -> CacheEntry | None:
        """Return the live entry for a key, or None on a miss.

        Expired entries are dropped and count as misses.
        """
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None

        if self._expired(entry):
            del self._cache[key]
            self._misses += 1
            return None

        self._cache.move_to_end(key)
        self._hits += 1
        return entry

    def peek(self, key: str) -> CacheEntry | None:
        """Return the live entry for a key without touching stats or LRU order."""
        entry = self._cache.get(key)
        if entry is None or self._expired(entry):
            return None
        return entry

    def get(self, key: str) -> object | None:
        """Get a value from the cache without any I/O.

        Args:
            key: The cache key.

        Returns:
            The cached value or None if not found or expired.
        """
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: object) -> None:
        """Set a value in the cache, evicting the least recently used entries.

        Args:
            key: The cache key.
            value: The value to cache.
        """
        self._cache.pop(key, None)
        while len(self._cache) >= self._max_entries:
            evicted, _ = self._cache.popitem(last=False)
            self._evictions += 1
            self._logger.debug("Evicted cache entry %s", evicted)

        self._cache[key] = CacheEntry(key=key, value=value, fetched_at=self._clock())

    def replace(self, key: str, value: object) -> bool:
        """Swap the value of an existing entry, keeping its fetch time.

        Returns:
            True if the key was present.
        """
        entry = self._cache.get(key)
        if entry is None:
            return False
        self._cache[key] = CacheEntry(key=key, value=value, fetched_at=entry.fetched_at)
        return True

    def keys(self) -> list[str]:
        """Return the stored keys, least recently used first."""
        return list(self._cache)

    def _bump(self, key: str) -> None:
        # Generations only matter while a refresh of the key is in flight
        if key in self._refreshing:
            self._key_generations[key] = self._key_generations.get(key, 0) + 1

    def _generation(self, key: str) -> tuple[int, int]:
        return self._epoch, self._key_generations.get(key, 0)

    def delete(self, key: str) -> bool:
        """Delete a specific cache entry.

        Args:
            key: The cache key to delete.

        Returns:
            True if an entry was removed.
        """
        self._bump(key)
        return self._cache.pop(key, None) is not None

    def invalidate(self, target: str | CacheScope) -> int:
        """Invalidate one key or a whole scope.

        Args:
            target: An exact key, or a CacheScope to drop all of its keys.

        Returns:
            Number of entries removed.
        """
        if isinstance(target, CacheScope):
            return self.invalidate_prefix(f"{target}:")

        removed = int(self.delete(target))
        self._notify(CacheEvent(CacheEventType.INVALIDATED, target))
        return removed

    def invalidate_prefix(self, prefix: str) -> int:
        """Invalidate all cache entries with keys starting with prefix.

        Args:
            prefix: The key prefix to invalidate.

        Returns:
            Number of entries removed.
        """
        keys = {k for k in self._cache if k.startswith(prefix)}
        keys.update(k for k in self._refreshing if k.startswith(prefix))
        removed = 0
        for key in sorted(keys):
            removed += int(self.delete(key))
            self._notify(CacheEvent(CacheEventType.INVALIDATED, key))
        self._logger.debug("Invalidated %d entries with prefix %s", removed, prefix)
        return removed

    def clear(self) -> None:
        """Clear all cache entries."""
        self._epoch += 1
        self._key_generations.clear()
        self._cache.clear()

    def add_listener(self, callback: CacheListener) -> Callable[[], None]:
        """Register a callback for cache events.

        Returns:
            Function removing the callback.
        """
        self._listeners.append(callback)

        def _remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _remove

    def _notify(self, event: CacheEvent) -> None:
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                self._logger.exception("Cache listener failed for %s", event.key)

    def refresh_task(self, key: str) -> asyncio.Task[object] | None:
        """Return the in-flight refresh of a key, if any."""
        return self._refreshing.get(key)

    def schedule_refresh(self, key: str, fetcher: Callable[[], Awaitable[object]]) -> asyncio.Task[object]:
        """Start a background refresh, or join the one already in flight.

        Args:
            key: The cache key.
            fetcher: Coroutine function fetching the fresh value.

        Returns:
            The refresh task. Its result is the fetched value and its
            exception is the fetch failure.
        """
        task = self._refreshing.get(key)
        if task is not None and not task.done():
            self._coalesced += 1
            self._logger.debug("Joining in-flight refresh for %s", key)
            return task

        self._refreshes += 1
        task = asyncio.get_running_loop().create_task(
            self._async_refresh(key, fetcher, self._generation(key)),
            name=f"cache-refresh-{key}",
        )
        self._refreshing[key] = task
        task.add_done_callback(lambda done: self._refresh_done(key, done))
        return task

    async def _async_refresh(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[object]],
        generation: tuple[int, int],
    ) -> object:
        try:
            value = await fetcher()
        except Exception as err:
            self._refresh_failures += 1
            self._logger.warning("Refresh of %s failed: %s", key, err)
            self._notify(CacheEvent(CacheEventType.REFRESH_FAILED, key, error=err))
            raise

        if self._generation(key) != generation:
            self._logger.debug("Dropping refresh of %s, invalidated meanwhile", key)
            return value

        self.set(key, value)
        self._notify(CacheEvent(CacheEventType.UPDATED, key, value=value))
        return value

    def _refresh_done(self, key: str, task: asyncio.Task[object]) -> None:
        if self._refreshing.get(key) is task:
            del self._refreshing[key]
            self._key_generations.pop(key, None)
        if not task.cancelled():
            # Failures were logged and delivered to listeners already
            task.exception()

    async def async_fetch_with_cache(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        force_refresh: bool = False,
    ) -> T:
        """Return the cached value at once and refresh it in the background.

        On a hit the fetcher does not run before the caller's next await
        point. On a miss, or with ``force_refresh``, the fetch is awaited
        and its failure raised to the caller.

        Args:
            key: The cache key.
            fetcher: Coroutine function fetching the fresh value.
            force_refresh: Skip the cached value.

        Returns:
            The cached or freshly fetched value.
        """
        if not force_refresh:
            entry = self.get_entry(key)
            if entry is not None:
                self.schedule_refresh(key, fetcher)
                return entry.value  # type: ignore[return-value]

        task = self.schedule_refresh(key, fetcher)
        return await asyncio.shield(task)  # type: ignore[return-value]

    def get_stats(self) -> dict[str, int]:
        """Get cache statistics.

        Returns:
            Dictionary with hit, miss, eviction and refresh counters and the
            current entry count.
        """
        return {
            "hits": self._hits,
            "misses": self._misses,
            "entries": len(self._cache),
            "evictions": self._evictions,
            "refreshes": self._refreshes,
            "coalesced": self._coalesced,
            "refresh_failures": self._refresh_failures,
            "in_flight": len(self._refreshing),
            "tracked_generations": len(self._key_generations),
        }


__all__ = [
    "CacheEvent",
    "CacheEventType",
    "CacheListener",
    "CacheScope",
    "ResponseCache",
    "make_cache_key",
]
