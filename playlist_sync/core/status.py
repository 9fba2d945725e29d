"""Status file writer for dashboards and health checks"""

import logging
from datetime import datetime, timezone
from pathlib import Path

from playlist_sync.core.models import LastSyncResult, PlaylistSyncState
from playlist_sync.core.state_store import _atomic_write

logger = logging.getLogger(__name__)


def playlist_status(state: PlaylistSyncState, skipped: bool = False) -> dict:
    result = state.last_sync_result
    if skipped:
        status = "skipped"
    elif result is None:
        status = "never"
    else:
        status = "success" if result.success else "failed"
    return {
        "status": status,
        "last_sync_time": result.at.isoformat() if result else None,
        "videos_added": result.videos_added if result else 0,
        "videos_updated": result.videos_updated if result else 0,
        "videos_removed": result.videos_removed if result else 0,
        "last_error": result.error if result else None,
        "item_count": state.item_count,
    }


def write_status(statuses: dict[str, dict], status_file: Path) -> bool:
    data = {
        "updated_at": datetime.now(timezone.utc).isoformat(),
        "playlists": statuses,
    }
    try:
        _atomic_write(status_file, data)
    except OSError as e:
        logger.error(f"Status write failed: {e}")
        return False
    return True


def write_running_status(playlist_ids: list[str], status_file: Path) -> bool:
    now = datetime.now(timezone.utc).isoformat()
    running = {
        playlist_id: {
            "status": "running",
            "last_sync_time": now,
            "videos_added": 0,
            "videos_updated": 0,
            "videos_removed": 0,
            "last_error": None,
        }
        for playlist_id in playlist_ids
    }
    return write_status(running, status_file)


def summarize(results: dict[str, LastSyncResult | None]) -> tuple[int, int, int]:
    """Return (succeeded, failed, skipped) counts for a batch of runs."""
    succeeded = sum(1 for r in results.values() if r is not None and r.success)
    failed = sum(1 for r in results.values() if r is not None and not r.success)
    skipped = sum(1 for r in results.values() if r is None)
    return succeeded, failed, skipped
