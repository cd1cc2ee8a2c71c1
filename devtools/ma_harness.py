"""Live test harness for the Music Assistant client core.

Usage::

    export MA_URL="music.example.com"
    export MA_USERNAME="me"          # optional
    export MA_PASSWORD="secret"      # optional, "secret|||123456" for TOTP

    python -m devtools.ma_harness --detect-only
    python -m devtools.ma_harness --playlist library:12

The script is **optional** and only runs if ``MA_URL`` is set. Settings and
secrets are kept in ``--state-dir`` so a second run exercises the restore path.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

from maclient import (
    AuthSessionManager,
    AuthStrategyDetector,
    ClientConfig,
    LibraryService,
    MAError,
    ResponseCache,
    SettingsStore,
    user_message,
)


async def _amain() -> int:
    server_url = os.getenv("MA_URL")
    if not server_url:
        print("MA_URL environment variable not set - nothing to do.")
        return 1

    parser = argparse.ArgumentParser(description="Quick Music Assistant client harness")
    parser.add_argument("--detect-only", action="store_true", help="Only detect the auth strategy")
    parser.add_argument("--port", type=int, default=None, help="Custom server port")
    parser.add_argument("--playlist", help="provider:item_id of a playlist to list", default=None)
    parser.add_argument("--state-dir", default=".ma_harness", help="Where settings are stored")
    parser.add_argument("--logout", action="store_true", help="Forget the stored login")
    parser.add_argument("--cache-ttl", type=float, default=None, help="Response cache TTL in seconds")
    parser.add_argument("--cache-size", type=int, default=None, help="Response cache entry limit")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.detect_only:
        async with AuthStrategyDetector() as detector:
            result = await detector.async_detect(server_url)
        print(f"Strategy: {result.strategy.name}  base URL: {result.base_url}")
        if result.strategy.auth_server_url:
            print(f"Auth portal: {result.strategy.auth_server_url}")
        return 0

    overrides = {"cache_ttl": args.cache_ttl, "cache_max_entries": args.cache_size}
    config = ClientConfig.from_dict({k: v for k, v in overrides.items() if v is not None})
    store = SettingsStore.from_directory(args.state_dir)
    async with AuthSessionManager(store, config=config) as manager:
        if args.logout:
            await manager.async_logout()
            print("Logged out.")
            return 0

        connected = await manager.async_restore()
        if not connected:
            connected = await manager.async_connect_flow(
                server_url,
                os.getenv("MA_USERNAME"),
                os.getenv("MA_PASSWORD"),
                port=args.port,
            )
        if not connected:
            error = manager.session.last_error
            print(f"Connection failed: {user_message(error) if error else 'unknown error'}")
            return 2

        info = manager.transport.server_info if manager.transport else None
        print(f"Connected to {manager.session.server_url} ({manager.session.state})")
        if info is not None:
            print(f"Server version {info.server_version}, schema {info.schema_version}")
        print(f"Owner: {await store.get_owner_name()}")

        if args.playlist:
            provider, _, item_id = args.playlist.partition(":")
            library = LibraryService(lambda: manager.transport, ResponseCache.from_config(config))
            tracks = await library.async_get_playlist_tracks(provider, item_id)
            print(f"Playlist tracks: {len(tracks)}")
            for track in tracks[:20]:
                print(f" - {track.get('item_id')}  {track.get('name')}")
    return 0


def main() -> None:
    try:
        sys.exit(asyncio.run(_amain()))
    except MAError as err:
        print(f"Error: {user_message(err)} ({err})")
        sys.exit(2)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
