"""Cached library views and favorite toggling."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .api import MusicAssistantClient
from .cache import CacheScope, ResponseCache, make_cache_key
from .exceptions import MAError, MANotConnectedError, MAValidationError
from .models import LibraryItem

_LOGGER = logging.getLogger(__name__)

TransportGetter = Callable[[], MusicAssistantClient | None]


def _matches(data: object, item: LibraryItem) -> bool:
    if not isinstance(data, dict):
        return False
    if data.get("uri") == item.uri:
        return True
    return (
        str(data.get("item_id")) == item.item_id
        and data.get("provider") == item.provider
        and data.get("media_type", item.media_type) == item.media_type
    )


class LibraryService:
    """Library fetches served through the response cache.

    The transport is looked up on every call, so the service keeps working
    across reconnects.
    """

    def __init__(self, get_transport: TransportGetter, cache: ResponseCache) -> None:
        """Initialize the service.

        Args:
            get_transport: Returns the current transport, or None when offline.
            cache: Response cache shared by all views.
        """
        self._get_transport = get_transport
        self._cache = cache

    @property
    def cache(self) -> ResponseCache:
        """Return the response cache."""
        return self._cache

    def _transport(self) -> MusicAssistantClient:
        transport = self._get_transport()
        if transport is None:
            raise MANotConnectedError()
        return transport

    async def async_get_playlist_tracks(
        self,
        provider: str,
        item_id: str,
        force_refresh: bool = False,
    ) -> list[dict[str, Any]]:
        """Return the tracks of a playlist, cached per provider and item."""
        key = make_cache_key(CacheScope.PLAYLIST_TRACKS, provider, item_id)
        return await self._cache.async_fetch_with_cache(
            key,
            lambda: self._transport().async_get_playlist_tracks(provider, item_id),
            force_refresh=force_refresh,
        )

    async def async_get_artist_albums(
        self,
        provider: str,
        item_id: str,
        force_refresh: bool = False,
    ) -> list[dict[str, Any]]:
        """Return the albums of an artist, cached per provider and item."""
        key = make_cache_key(CacheScope.ARTIST_ALBUMS, provider, item_id)
        return await self._cache.async_fetch_with_cache(
            key,
            lambda: self._transport().async_get_artist_albums(provider, item_id),
            force_refresh=force_refresh,
        )

    async def async_get_recent_albums(
        self,
        limit: int = 10,
        force_refresh: bool = False,
    ) -> list[dict[str, Any]]:
        """Return recently played albums for the home view."""
        key = make_cache_key(CacheScope.HOME, "recent_albums", str(limit))
        return await self._cache.async_fetch_with_cache(
            key,
            lambda: self._transport().async_get_recently_played(limit, ("album",)),
            force_refresh=force_refresh,
        )

    def _apply_favorite(self, item: LibraryItem, favorite: bool) -> None:
        """Set the favorite flag on the item and on every cached copy of it."""
        item.favorite = favorite
        for key in self._cache.keys():
            entry = self._cache.peek(key)
            if entry is None or not isinstance(entry.value, list):
                continue
            if not any(_matches(data, item) for data in entry.value):
                continue
            self._cache.replace(
                key,
                [
                    {**data, "favorite": favorite} if _matches(data, item) else data
                    for data in entry.value
                ],
            )

    async def async_set_favorite(self, item: LibraryItem, favorite: bool) -> None:
        """Add or remove a favorite with an optimistic local update.

        The flag is applied locally first. If the server rejects the change
        the inverse is applied and the error re-raised; on success the home
        views are invalidated.

        Raises:
            MAValidationError: Removing an item that is not in the library.
            MAError: The server request failed.
        """
        if item.favorite == favorite:
            return
        if not favorite and item.library_item_id is None:
            raise MAValidationError(
                f"{item.name or item.uri} is not in the library", field="library_item_id"
            )

        previous = item.favorite
        self._apply_favorite(item, favorite)
        try:
            transport = self._transport()
            if favorite:
                await transport.async_add_favorite(item.uri)
            else:
                await transport.async_remove_favorite(
                    item.media_type, item.library_item_id  # type: ignore[arg-type]
                )
        except MAError as err:
            _LOGGER.warning("Favorite update for %s failed, reverting: %s", item.uri, err)
            self._apply_favorite(item, previous)
            raise

        _LOGGER.debug("%s %s favorites", item.uri, "added to" if favorite else "removed from")
        self._cache.invalidate(CacheScope.HOME)


__all__ = ["LibraryService", "TransportGetter"]
