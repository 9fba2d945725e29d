"""Environment-driven configuration"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from playlist_sync.clients.websub import DEFAULT_FEED_PATH, DEFAULT_HUB_URL
from playlist_sync.core.models import ConfigError, DisplayedPlaylist

DEFAULT_DATA_DIR = "/config/playlist_sync"


def _int(env: dict, name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _parse_playlists(raw: str) -> list[DisplayedPlaylist]:
    """``id`` or ``id:Title`` entries, comma separated."""
    playlists = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        playlist_id, _, title = entry.partition(":")
        playlists.append(DisplayedPlaylist(playlist_id=playlist_id.strip(),
                                           title=title.strip() or playlist_id.strip()))
    return playlists


@dataclass
class Config:
    playlists: list[DisplayedPlaylist]
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    feed_url_template: str | None = None
    youtube_api_key: str | None = None
    youtube_refresh_token: str | None = None
    channel_id: str | None = None
    lease_ttl_seconds: int = 60
    removal_grace_seconds: int = 900
    idle_batch_size: int = 50
    frontend_domain: str | None = None
    websub_hub_url: str = DEFAULT_HUB_URL
    websub_feed_path: str = DEFAULT_FEED_PATH
    notify_workers: int = 4
    cloudflare_zone_id: str | None = None
    cloudflare_api_token: str | None = field(default=None, repr=False)
    active_window_seconds: int = 0
    poll_seconds: int = 900
    hot_poll_seconds: int = 900
    cache_max_entries: int = 500
    cache_ttl_seconds: int = 30
    http_timeout_seconds: int = 8
    admin_user: str | None = None

    @property
    def playlist_ids(self) -> list[str]:
        return [p.playlist_id for p in self.playlists]

    @classmethod
    def from_env(cls, env: dict | None = None) -> "Config":
        env = dict(os.environ if env is None else env)

        missing = []
        playlists = _parse_playlists(env.get("PLAYLIST_IDS", ""))
        if not playlists:
            missing.append("PLAYLIST_IDS")

        feed_url_template = env.get("FEED_URL_TEMPLATE") or None
        api_key = env.get("YOUTUBE_API_KEY") or None
        refresh_token = env.get("YOUTUBE_REFRESH_TOKEN") or None
        if not (feed_url_template or api_key or refresh_token):
            missing.append("FEED_URL_TEMPLATE or YOUTUBE_API_KEY or YOUTUBE_REFRESH_TOKEN")

        if missing:
            raise ConfigError(f"Missing config: {', '.join(missing)}")

        if feed_url_template and "{playlist_id}" not in feed_url_template:
            raise ConfigError("FEED_URL_TEMPLATE must contain {playlist_id}")

        poll_seconds = _int(env, "POLL_SECONDS", 900, minimum=1)

        return cls(
            playlists=playlists,
            data_dir=Path(env.get("DATA_DIR") or DEFAULT_DATA_DIR),
            feed_url_template=feed_url_template,
            youtube_api_key=api_key,
            youtube_refresh_token=refresh_token,
            channel_id=env.get("YOUTUBE_CHANNEL_ID") or None,
            lease_ttl_seconds=_int(env, "LEASE_TTL_SECONDS", 60, minimum=1),
            removal_grace_seconds=_int(env, "REMOVAL_GRACE_SECONDS", 900),
            idle_batch_size=_int(env, "IDLE_BATCH_SIZE", 50, minimum=1),
            frontend_domain=env.get("FRONTEND_DOMAIN") or None,
            websub_hub_url=env.get("WEBSUB_HUB_URL") or DEFAULT_HUB_URL,
            websub_feed_path=env.get("WEBSUB_FEED_PATH") or DEFAULT_FEED_PATH,
            notify_workers=_int(env, "NOTIFY_WORKERS", 4, minimum=1),
            cloudflare_zone_id=env.get("CLOUDFLARE_ZONE_ID") or None,
            cloudflare_api_token=env.get("CLOUDFLARE_API_TOKEN") or None,
            active_window_seconds=_int(env, "ACTIVE_WINDOW_SECONDS", 0),
            poll_seconds=poll_seconds,
            hot_poll_seconds=_int(env, "HOT_POLL_SECONDS", poll_seconds, minimum=1),
            cache_max_entries=_int(env, "CACHE_MAX_ENTRIES", 500, minimum=1),
            cache_ttl_seconds=_int(env, "CACHE_TTL_SECONDS", 30),
            http_timeout_seconds=_int(env, "HTTP_TIMEOUT_SECONDS", 8, minimum=1),
            admin_user=env.get("ADMIN_USER") or None,
        )
