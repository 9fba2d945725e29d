"""
Admin trigger surface

Maps an authenticated admin request onto one core operation and returns a
JSON-serialisable outcome. ``success`` is never true while ``error`` is set.
"""

import logging
from dataclasses import asdict
from typing import Iterable

from playlist_sync.core.cache import ReadThroughCache
from playlist_sync.core.models import AdminAuthError, DisplayedPlaylist, LastSyncResult
from playlist_sync.core.sync_engine import PurgerProtocol, SyncEngine

logger = logging.getLogger(__name__)


def _result_body(result: LastSyncResult) -> dict:
    body = result.to_dict()
    body["success"] = result.success
    return body


class AdminConsole:
    def __init__(self, engine: SyncEngine, purger: PurgerProtocol | None,
                 cache: ReadThroughCache, admin_id: str | None,
                 playlists: Iterable[DisplayedPlaylist] = ()):
        if not admin_id:
            raise AdminAuthError("Admin identity required")
        self._engine = engine
        self._purger = purger
        self._cache = cache
        self._admin_id = admin_id
        self._playlists = list(playlists)

    def _audit(self, action: str, **details) -> None:
        logger.info(f"[admin:{self._admin_id}] {action} {details}")

    def run_sync(self, playlist_id: str) -> dict:
        self._audit("SYNC_PLAYLIST", playlist_id=playlist_id)
        result = self._engine.sync(playlist_id)
        if result is None:
            return {
                "success": False,
                "action": "sync",
                "playlistId": playlist_id,
                "skipped": True,
                "error": "Sync already in progress",
            }
        body = _result_body(result)
        body.update(action="sync", playlistId=playlist_id, skipped=False)
        return body

    def run_idle_check(self, playlist_id: str) -> dict:
        self._audit("IDLE_CHECK", playlist_id=playlist_id)
        result = self._engine.check_idle(playlist_id)
        if result is None:
            return {
                "success": False,
                "action": "idle-check",
                "playlistId": playlist_id,
                "skipped": True,
                "error": "Sync already in progress",
            }
        body = _result_body(result)
        body.update(action="idle-check", playlistId=playlist_id, skipped=False)
        return body

    def clear_cache(self) -> dict:
        self._audit("CLEAR_CACHE")
        cleared = self._cache.clear()
        return {"success": True, "action": "clear-cache", "cleared": cleared}

    def verify_counts(self, playlist_ids: Iterable[str]) -> dict:
        self._audit("VERIFY_COUNTS")
        results = [self._engine.verify_count(playlist_id) for playlist_id in playlist_ids]
        errors = [f"{r.playlist_id}: {r.error}" for r in results if r.error]
        body = {
            "success": not errors,
            "action": "verify-counts",
            "corrected": sum(1 for r in results if r.corrected),
            "results": [asdict(r) for r in results],
        }
        if errors:
            body["error"] = "; ".join(errors)
        return body

    def purge(self, tags: Iterable[str]) -> dict:
        tags = list(tags)
        self._audit("PURGE", tags=tags)
        if self._purger is None:
            return {"success": False, "action": "purge", "error": "No purger configured"}

        outcome = self._purger.purge(tags)
        body = {
            "success": outcome.success and not outcome.skipped,
            "action": "purge",
            "requested": outcome.requested,
            "purged": outcome.purged,
            "skipped": outcome.skipped,
        }
        if outcome.skipped:
            body["error"] = "CDN credentials not configured"
        elif not outcome.success:
            body["error"] = f"{outcome.failed_batches} purge batches failed"
        return body

    def last_result(self, playlist_id: str) -> dict:
        state = self._engine.store.get(playlist_id).playlist
        body = {
            "action": "status",
            "playlistId": playlist_id,
            "syncInProgress": state.sync_in_progress,
            "itemCount": state.item_count,
            "lastSyncResult": state.last_sync_result.to_dict() if state.last_sync_result else None,
        }
        result = state.last_sync_result
        body["success"] = result is not None and result.success
        if result is not None and result.error:
            body["error"] = result.error
        return body

    def displayed_playlists(self) -> list[dict]:
        def load():
            return [{"playlistId": p.playlist_id, "title": p.title} for p in self._playlists]
        return self._cache.get_or_load("displayed-playlists", load)

    def last_updated(self, playlist_id: str) -> str | None:
        """Completion time of the last sync, as served to sitemap readers."""
        def load():
            result = self._engine.store.get(playlist_id).playlist.last_sync_result
            return result.at.isoformat() if result else None
        return self._cache.get_or_load(("last-updated", playlist_id), load)
