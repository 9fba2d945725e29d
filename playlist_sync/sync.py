#!/usr/bin/env python3
"""Playlist Sync - Command Line Entry Point"""

import argparse
import getpass
import json
import logging
import os
import sys
import time
from datetime import timedelta
from pathlib import Path

from playlist_sync.admin import AdminConsole
from playlist_sync.clients.cloudflare import CloudflarePurger
from playlist_sync.clients.feed import FeedClient
from playlist_sync.clients.websub import WebSubNotifier
from playlist_sync.clients.youtube import YouTubeAuthError, YouTubeClient
from playlist_sync.config import Config
from playlist_sync.core.cache import ReadThroughCache
from playlist_sync.core.item_store import JsonItemStore
from playlist_sync.core.models import (
    AdminAuthError, ConfigError, LastSyncResult, StateStoreError, utcnow,
)
from playlist_sync.core.state_store import JsonStateStore
from playlist_sync.core.status import playlist_status, summarize, write_running_status, write_status
from playlist_sync.core.sync_engine import SyncEngine, SyncSettings, poll_interval

LOG_NAME = "playlist_sync.log"
STATUS_NAME = "sync_status.json"

logger = logging.getLogger(__name__)


def setup_logging(data_dir: Path) -> None:
    level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    file_error = None
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(data_dir / LOG_NAME, encoding="utf-8"))
    except OSError as e:
        file_error = e
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers
    )
    if file_error:
        logger.warning(f"Logging to stderr only, cannot open {data_dir / LOG_NAME}: {file_error}")


def build_feed(config: Config):
    if config.feed_url_template:
        return FeedClient(config.feed_url_template, timeout=config.http_timeout_seconds)
    return YouTubeClient(
        api_key=config.youtube_api_key,
        refresh_token=config.youtube_refresh_token,
        secrets_file=config.data_dir / "client_secrets.json",
    )


def build_engine(config: Config, feed=None) -> SyncEngine:
    settings = SyncSettings(
        lease_ttl=timedelta(seconds=config.lease_ttl_seconds),
        removal_grace=timedelta(seconds=config.removal_grace_seconds),
        idle_batch_size=config.idle_batch_size,
        active_window=timedelta(seconds=config.active_window_seconds),
    )
    return SyncEngine(
        store=JsonStateStore(config.data_dir / "state.json"),
        feed=feed if feed is not None else build_feed(config),
        items=JsonItemStore(config.data_dir / "items.json"),
        notifier=WebSubNotifier(
            config.frontend_domain,
            hub_url=config.websub_hub_url,
            feed_path=config.websub_feed_path,
            max_workers=config.notify_workers,
            timeout=config.http_timeout_seconds,
        ),
        purger=build_purger(config),
        settings=settings,
    )


def build_purger(config: Config) -> CloudflarePurger:
    return CloudflarePurger(config.cloudflare_zone_id, config.cloudflare_api_token,
                            timeout=config.http_timeout_seconds)


def build_console(config: Config, engine: SyncEngine) -> AdminConsole:
    cache = ReadThroughCache(config.cache_max_entries, config.cache_ttl_seconds)
    admin_id = config.admin_user or getpass.getuser()
    return AdminConsole(engine, build_purger(config), cache, admin_id, config.playlists)


def run_cycle(engine: SyncEngine, config: Config, playlist_ids: list[str],
              idle: bool = False) -> dict[str, LastSyncResult | None]:
    """Run one sync (or idle check) per playlist and write the status file."""
    status_file = config.data_dir / STATUS_NAME
    write_running_status(playlist_ids, status_file)

    results: dict[str, LastSyncResult | None] = {}
    for playlist_id in playlist_ids:
        results[playlist_id] = engine.check_idle(playlist_id) if idle else engine.sync(playlist_id)

    if config.channel_id and not idle:
        results[f"channel:{config.channel_id}"] = engine.sync_uploads(config.channel_id)

    statuses = {
        key: playlist_status(engine.store.get(key).playlist, skipped=result is None)
        for key, result in results.items()
    }
    write_status(statuses, status_file)

    succeeded, failed, skipped = summarize(results)
    logger.info(f"Cycle finished: {succeeded} ok, {failed} failed, {skipped} skipped")
    return results


def next_delay(engine: SyncEngine, config: Config, playlist_ids: list[str]) -> float:
    now = utcnow()
    default = timedelta(seconds=config.poll_seconds)
    hot = timedelta(seconds=config.hot_poll_seconds)
    delays = [poll_interval(engine.store.get(pid).playlist, now, default, hot) for pid in playlist_ids]
    return min(delays, default=default).total_seconds()


def watch(engine: SyncEngine, config: Config, playlist_ids: list[str]) -> int:
    logger.info(f"Watching {len(playlist_ids)} playlists")
    try:
        while True:
            run_cycle(engine, config, playlist_ids)
            for pid in playlist_ids:
                if engine.store.get(pid).scratch.idle_order:
                    engine.check_idle(pid)
            delay = next_delay(engine, config, playlist_ids)
            logger.info(f"Next poll in {delay:.0f}s")
            time.sleep(delay)
    except KeyboardInterrupt:
        logger.info("Stopped")
        return 0


def _print(body) -> None:
    print(json.dumps(body, indent=2, default=str))


def parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="playlist-sync", description="Keep playlist items in sync")
    commands = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("sync", "sync playlists once"),
        ("idle-check", "finalize removals past the grace window"),
        ("verify-counts", "compare stored item counts with upstream"),
        ("status", "show the last recorded result"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("playlist_ids", nargs="*", help="defaults to PLAYLIST_IDS")

    commands.add_parser("watch", help="poll until interrupted")

    purge = commands.add_parser("purge", help="purge CDN cache tags")
    purge.add_argument("tags", nargs="+")

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        config = Config.from_env()
    except ConfigError as e:
        setup_logging(Path(os.environ.get("DATA_DIR") or "/config/playlist_sync"))
        logger.error(str(e))
        return 1

    setup_logging(config.data_dir)
    playlist_ids = getattr(args, "playlist_ids", None) or config.playlist_ids

    try:
        engine = build_engine(config)

        if args.command == "sync":
            results = run_cycle(engine, config, playlist_ids)
            _, failed, _ = summarize(results)
            return 1 if failed else 0

        if args.command == "idle-check":
            results = run_cycle(engine, config, playlist_ids, idle=True)
            _, failed, _ = summarize(results)
            return 1 if failed else 0

        if args.command == "watch":
            return watch(engine, config, playlist_ids)

        console = build_console(config, engine)
        if args.command == "verify-counts":
            body = console.verify_counts(playlist_ids)
        elif args.command == "purge":
            body = console.purge(args.tags)
        else:
            # Without explicit ids, report everything the state file knows about
            keys = args.playlist_ids or sorted(set(config.playlist_ids) | set(engine.store.keys()))
            body = [console.last_result(key) for key in keys]
            _print(body)
            return 1 if any("error" in b for b in body) else 0

        _print(body)
        return 0 if body["success"] else 1

    except YouTubeAuthError as e:
        logger.error(f"YouTube auth failed: {e}")
        return 1
    except AdminAuthError as e:
        logger.error(f"Admin auth failed: {e}")
        return 1
    except StateStoreError as e:
        logger.error(f"State store error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
