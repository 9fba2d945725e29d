"""Tests for environment configuration"""

from pathlib import Path

import pytest

from playlist_sync.config import Config
from playlist_sync.core.models import ConfigError, DisplayedPlaylist

BASE = {"PLAYLIST_IDS": "PL1", "FEED_URL_TEMPLATE": "https://feeds.example.com/{playlist_id}.json"}


def test_defaults():
    config = Config.from_env(BASE)

    assert config.playlist_ids == ["PL1"]
    assert config.data_dir == Path("/config/playlist_sync")
    assert config.lease_ttl_seconds == 60
    assert config.removal_grace_seconds == 900
    assert config.idle_batch_size == 50
    assert config.websub_hub_url == "https://pubsubhubbub.appspot.com/"
    assert config.active_window_seconds == 0
    assert config.hot_poll_seconds == config.poll_seconds == 900
    assert config.cache_max_entries == 500
    assert config.cache_ttl_seconds == 30


def test_playlist_titles():
    config = Config.from_env({**BASE, "PLAYLIST_IDS": "PL1:Morning Shows, PL2 ,"})

    assert config.playlists == [
        DisplayedPlaylist("PL1", "Morning Shows"),
        DisplayedPlaylist("PL2", "PL2"),
    ]


def test_overrides():
    config = Config.from_env({
        **BASE,
        "DATA_DIR": "/tmp/ps",
        "LEASE_TTL_SECONDS": "120",
        "POLL_SECONDS": "300",
        "CLOUDFLARE_ZONE_ID": "zone",
        "CLOUDFLARE_API_TOKEN": "secret-token",
        "YOUTUBE_CHANNEL_ID": "UC1",
    })

    assert config.data_dir == Path("/tmp/ps")
    assert config.lease_ttl_seconds == 120
    assert config.hot_poll_seconds == 300
    assert config.channel_id == "UC1"
    assert "secret-token" not in repr(config)


def test_missing_required_values():
    with pytest.raises(ConfigError, match="Missing config: PLAYLIST_IDS, FEED_URL_TEMPLATE"):
        Config.from_env({})


def test_youtube_key_satisfies_feed_requirement():
    config = Config.from_env({"PLAYLIST_IDS": "PL1", "YOUTUBE_API_KEY": "key"})
    assert config.feed_url_template is None


def test_template_needs_placeholder():
    with pytest.raises(ConfigError, match="playlist_id"):
        Config.from_env({**BASE, "FEED_URL_TEMPLATE": "https://feeds.example.com/all.json"})


@pytest.mark.parametrize("name,value", [
    ("LEASE_TTL_SECONDS", "soon"),
    ("LEASE_TTL_SECONDS", "0"),
    ("IDLE_BATCH_SIZE", "-1"),
])
def test_invalid_integers(name, value):
    with pytest.raises(ConfigError, match=name):
        Config.from_env({**BASE, name: value})
