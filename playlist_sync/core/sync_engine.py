"""
Sync Engine

Orchestrates one sync attempt for a playlist feed and keeps the item store,
the persisted sync state and downstream caches in step with it.

Run sequence
------------
1. Acquire the playlist lease; a denied lease skips the run entirely.
2. Fetch the feed with the stored ETag / Last-Modified.
3. Short-circuit when nothing changed (one fetch, one comparison).
4. Diff against the stored items: new ids are additions, changed content is
   an update, ids that vanished go to the idle queue instead of being removed.
5. Removals are finalized only for queued ids past the grace window that a
   dedicated re-check confirms are gone.
6. Apply every change on its own; failures are collected, not fatal.
7. Record LastSyncResult and the new markers, then notify and purge for the
   changed ids. Neither can turn a recorded result into a failure.
8. Release the lease on every exit path.

Conditional markers and the fingerprint only advance after a clean run, so
an item whose apply failed is retried on the next cycle.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Protocol

from playlist_sync.core.fingerprint import compute_fingerprint, has_markers, should_sync
from playlist_sync.core.idle import IdleTracker
from playlist_sync.core.lease import LeaseManager, new_owner_id
from playlist_sync.core.models import (
    CountVerification, FeedError, FeedItem, FeedResponse, ItemDiff, LastSyncResult,
    PlaylistSyncState, PurgeResult, StateStoreError, utcnow,
)
from playlist_sync.core.state_store import StateStore

logger = logging.getLogger(__name__)


class FeedSourceProtocol(Protocol):
    def fetch(self, playlist_id: str, etag: str | None = None,
              last_modified: str | None = None) -> FeedResponse: ...
    def recheck(self, playlist_id: str, item_ids: list[str]) -> set[str]: ...
    def count_items(self, playlist_id: str) -> int: ...


class ItemStoreProtocol(Protocol):
    def list_items(self, playlist_id: str) -> dict[str, FeedItem]: ...
    def add_item(self, playlist_id: str, item: FeedItem) -> None: ...
    def update_item(self, playlist_id: str, item: FeedItem) -> None: ...
    def remove_item(self, playlist_id: str, item_id: str) -> None: ...


class NotifierProtocol(Protocol):
    def notify(self, item_ids: Iterable[str]) -> list[tuple[str, bool]]: ...


class PurgerProtocol(Protocol):
    def purge(self, tags: Iterable[str]) -> PurgeResult: ...


@dataclass
class SyncSettings:
    lease_ttl: timedelta = timedelta(seconds=60)
    removal_grace: timedelta = timedelta(minutes=15)
    idle_batch_size: int = 50
    active_window: timedelta = timedelta(0)


@dataclass
class _Applied:
    added: int = 0
    updated: int = 0
    removed: int = 0
    changed_ids: list[str] = field(default_factory=list)


def diff_items(known: dict[str, FeedItem], fetched: list[FeedItem]) -> ItemDiff:
    """Compare stored items with a fetched feed. Duplicate ids keep their first entry."""
    diff = ItemDiff()
    seen = set()

    for item in fetched:
        if item.item_id in seen:
            continue
        seen.add(item.item_id)

        previous = known.get(item.item_id)
        if previous is None:
            diff.added.append(item)
        elif previous.content_key() != item.content_key():
            diff.updated.append(item)

    diff.missing = [item_id for item_id in known if item_id not in seen]
    return diff


def purge_tags(playlist_id: str, item_ids: Iterable[str]) -> list[str]:
    return [f"playlist:{playlist_id}"] + [f"video:{item_id}" for item_id in sorted(set(item_ids))]


def poll_interval(state: PlaylistSyncState, now: datetime,
                  default: timedelta, hot: timedelta) -> timedelta:
    """Polling cadence for an external scheduler: ``hot`` inside the active window."""
    return hot if state.is_hot(now) else default


class SyncEngine:
    """Runs lease-guarded, change-detecting playlist syncs."""

    def __init__(self, store: StateStore, feed: FeedSourceProtocol, items: ItemStoreProtocol,
                 notifier: NotifierProtocol | None = None, purger: PurgerProtocol | None = None,
                 settings: SyncSettings | None = None, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._feed = feed
        self._items = items
        self._notifier = notifier
        self._purger = purger
        self._settings = settings or SyncSettings()
        self._clock = clock
        self._lease = LeaseManager(store, clock)

    @property
    def store(self) -> StateStore:
        return self._store

    def sync(self, playlist_id: str) -> LastSyncResult | None:
        """Perform one sync. Returns None when another run holds the lease."""
        return self._leased(playlist_id, "sync", self._run_sync)

    def check_idle(self, playlist_id: str) -> LastSyncResult | None:
        """Finalize due removals without fetching the whole feed."""
        return self._leased(playlist_id, "idle check", self._run_idle_check)

    def _leased(self, playlist_id: str, name: str,
                run: Callable[[str], tuple[LastSyncResult, list[str]]]) -> LastSyncResult | None:
        owner_id = new_owner_id()
        if not self._lease.try_acquire(playlist_id, owner_id, self._settings.lease_ttl):
            logger.info(f"Lease for {playlist_id} is held elsewhere, skipping {name}")
            return None

        start = time.monotonic()
        logger.info("=" * 50)
        logger.info(f"Starting {name} for {playlist_id}")

        try:
            try:
                result, changed_ids = run(playlist_id)
            except Exception as e:
                logger.exception(f"Unexpected error during {name} of {playlist_id}: {e}")
                result, changed_ids = LastSyncResult.failure(f"Unexpected error: {e}", self._clock()), []
                self._record_safely(playlist_id, result)

            if changed_ids:
                self._dispatch(playlist_id, changed_ids)

            duration = time.monotonic() - start
            status = "ok" if result.success else f"error: {result.error}"
            logger.info(f"Completed {name} in {duration:.1f}s: +{result.videos_added} "
                        f"~{result.videos_updated} -{result.videos_removed} ({status})")
            logger.info("=" * 50)
            return result
        finally:
            self._release(playlist_id, owner_id, name)

    def _release(self, playlist_id: str, owner_id: str, name: str) -> None:
        try:
            released = self._lease.release(playlist_id, owner_id)
        except StateStoreError as e:
            logger.error(f"Could not release lease on {playlist_id}, it will lapse at TTL: {e}")
            return
        if not released:
            logger.warning(f"Lease on {playlist_id} expired before the {name} finished; "
                           f"consider a longer lease TTL")

    def _run_sync(self, playlist_id: str) -> tuple[LastSyncResult, list[str]]:
        record = self._store.get(playlist_id)
        state = record.playlist

        try:
            response = self._feed.fetch(playlist_id, etag=state.etag, last_modified=state.last_modified)
        except FeedError as e:
            logger.error(f"Fetch failed for {playlist_id}: {e}")
            result = LastSyncResult.failure(f"Fetch failed: {e}", self._clock())
            self._record(playlist_id, result)
            return result, []

        if not should_sync(state, response):
            logger.info(f"Playlist {playlist_id} unchanged")
            now = self._clock()
            result = LastSyncResult(0, 0, 0, at=now)
            fingerprinted = not response.not_modified and not has_markers(response)
            self._record(playlist_id, result, fingerprint_at=now if fingerprinted else None)
            return result, []

        now = self._clock()
        known = self._items.list_items(playlist_id)
        diff = diff_items(known, response.items)
        logger.info(f"Diff for {playlist_id}: {len(diff.added)} new, {len(diff.updated)} changed, "
                    f"{len(diff.missing)} missing")

        tracker = IdleTracker(record.scratch)
        for item in response.items:
            tracker.mark_checked(item.item_id, now)
        for item_id in diff.missing:
            tracker.enqueue(item_id, noticed_at=now)

        errors: list[str] = []
        removals = self._confirm_removals(playlist_id, tracker, known, now, errors)
        applied = self._apply(playlist_id, diff, removals, tracker, errors)

        result = LastSyncResult(
            videos_added=applied.added,
            videos_updated=applied.updated,
            videos_removed=applied.removed,
            at=self._clock(),
            error="; ".join(errors) if errors else None,
        )

        with self._store.transaction(playlist_id) as current:
            st = current.playlist
            st.last_sync_result = result
            st.item_count = len(known) + applied.added - applied.removed
            st.last_fingerprint_at = _latest(st.last_fingerprint_at, now)
            if not errors:
                st.etag = response.etag
                st.last_modified = response.last_modified
                st.fingerprint = compute_fingerprint(response.item_ids)
            if applied.changed_ids and self._settings.active_window > timedelta(0):
                st.active_window_until = now + self._settings.active_window
            current.scratch = record.scratch

        if errors:
            logger.warning(f"Sync of {playlist_id} finished with {len(errors)} errors")
        return result, applied.changed_ids

    def _run_idle_check(self, playlist_id: str) -> tuple[LastSyncResult, list[str]]:
        record = self._store.get(playlist_id)
        tracker = IdleTracker(record.scratch)
        if not len(tracker):
            logger.info(f"No items awaiting re-check for {playlist_id}")
            return LastSyncResult(0, 0, 0, at=self._clock()), []

        now = self._clock()
        known = self._items.list_items(playlist_id)
        errors: list[str] = []
        removals = self._confirm_removals(playlist_id, tracker, known, now, errors)
        applied = self._apply(playlist_id, ItemDiff(), removals, tracker, errors)

        result = LastSyncResult(
            videos_added=0,
            videos_updated=0,
            videos_removed=applied.removed,
            at=self._clock(),
            error="; ".join(errors) if errors else None,
        )
        # A quiet check leaves the last sync outcome in place.
        with self._store.transaction(playlist_id) as current:
            if applied.removed or errors:
                current.playlist.last_sync_result = result
            current.playlist.item_count = len(known) - applied.removed
            current.scratch = record.scratch
        return result, applied.changed_ids

    def _confirm_removals(self, playlist_id: str, tracker: IdleTracker, known: dict[str, FeedItem],
                          now: datetime, errors: list[str]) -> list[str]:
        """Second phase of removal: re-check the due queue entries upstream."""
        due = tracker.take_due(now, self._settings.removal_grace, self._settings.idle_batch_size)
        for item_id in [i for i in due if i not in known]:
            tracker.forget(item_id)
        due = [i for i in due if i in known]
        if not due:
            return []

        try:
            still_present = self._feed.recheck(playlist_id, due)
        except FeedError as e:
            logger.error(f"Re-check failed for {playlist_id}: {e}")
            errors.append(f"Re-check failed: {e}")
            for item_id in due:
                tracker.enqueue(item_id)
            return []

        confirmed = []
        for item_id in due:
            if item_id in still_present:
                logger.debug(f"{item_id} still exists upstream, keeping it")
                tracker.mark_checked(item_id, now)
            else:
                confirmed.append(item_id)

        logger.info(f"Confirmed {len(confirmed)} of {len(due)} re-checked items as removed")
        return confirmed

    def _apply(self, playlist_id: str, diff: ItemDiff, removals: list[str],
               tracker: IdleTracker, errors: list[str]) -> _Applied:
        """Apply each change independently, collecting failures."""
        applied = _Applied()

        for item in diff.added:
            try:
                self._items.add_item(playlist_id, item)
                applied.added += 1
                applied.changed_ids.append(item.item_id)
            except Exception as e:
                logger.error(f"Failed to add {item.item_id}: {e}")
                errors.append(f"Failed to add {item.item_id}: {e}")

        for item in diff.updated:
            try:
                self._items.update_item(playlist_id, item)
                applied.updated += 1
                applied.changed_ids.append(item.item_id)
            except Exception as e:
                logger.error(f"Failed to update {item.item_id}: {e}")
                errors.append(f"Failed to update {item.item_id}: {e}")

        for item_id in removals:
            try:
                self._items.remove_item(playlist_id, item_id)
                applied.removed += 1
                applied.changed_ids.append(item_id)
                tracker.forget(item_id)
            except Exception as e:
                logger.error(f"Failed to remove {item_id}: {e}")
                errors.append(f"Failed to remove {item_id}: {e}")
                tracker.enqueue(item_id)

        return applied

    def _record(self, playlist_id: str, result: LastSyncResult,
                fingerprint_at: datetime | None = None) -> None:
        with self._store.transaction(playlist_id) as record:
            record.playlist.last_sync_result = result
            if fingerprint_at:
                record.playlist.last_fingerprint_at = _latest(record.playlist.last_fingerprint_at,
                                                              fingerprint_at)

    def _record_safely(self, playlist_id: str, result: LastSyncResult) -> None:
        try:
            self._record(playlist_id, result)
        except StateStoreError as e:
            logger.error(f"Could not record result for {playlist_id}: {e}")

    def _dispatch(self, playlist_id: str, changed_ids: list[str]) -> None:
        """Fire-and-forget notifications and cache purge for changed items."""
        if self._notifier:
            try:
                self._notifier.notify(changed_ids)
            except Exception as e:
                logger.error(f"Notification fan-out failed for {playlist_id}: {e}")

        if self._purger:
            try:
                outcome = self._purger.purge(purge_tags(playlist_id, changed_ids))
                if not outcome.success:
                    logger.warning(f"Cache purge for {playlist_id} had {outcome.failed_batches} failed batches")
            except Exception as e:
                logger.error(f"Cache purge failed for {playlist_id}: {e}")

    def verify_count(self, playlist_id: str) -> CountVerification:
        """Compare the stored item count with upstream and correct drift."""
        previous = self._store.get(playlist_id).playlist.item_count
        try:
            actual = self._feed.count_items(playlist_id)
        except FeedError as e:
            logger.error(f"Failed to count {playlist_id}: {e}")
            return CountVerification(playlist_id, previous, previous, 0, False, error=str(e))

        difference = actual - previous
        if difference:
            with self._store.transaction(playlist_id) as record:
                record.playlist.item_count = actual
            logger.info(f"Corrected {playlist_id}: {previous} -> {actual} ({difference:+d})")

        return CountVerification(playlist_id, previous, actual, difference, corrected=difference != 0)

    def sync_uploads(self, channel_id: str) -> LastSyncResult | None:
        """Sync a channel's uploads playlist, resolving its id once."""
        key = f"channel:{channel_id}"
        uploads_id = self._store.get(key).scratch.uploads_playlist_id

        if not uploads_id:
            resolver = getattr(self._feed, "get_uploads_playlist_id", None)
            if resolver is None:
                result = LastSyncResult.failure("Feed source cannot resolve uploads playlists", self._clock())
                self._record(key, result)
                return result
            try:
                uploads_id = resolver(channel_id)
            except FeedError as e:
                logger.error(f"Uploads lookup failed for {channel_id}: {e}")
                result = LastSyncResult.failure(f"Uploads lookup failed: {e}", self._clock())
                self._record(key, result)
                return result
            if not uploads_id:
                result = LastSyncResult.failure(f"No uploads playlist for channel {channel_id}", self._clock())
                self._record(key, result)
                return result
            with self._store.transaction(key) as record:
                record.scratch.uploads_playlist_id = uploads_id

        result = self.sync(uploads_id)

        uploads_state = self._store.get(uploads_id).playlist
        with self._store.transaction(key) as record:
            record.scratch.uploads_etag = uploads_state.etag
            record.scratch.uploads_last_modified = uploads_state.last_modified
            if result is not None:
                record.playlist.last_sync_result = result
        return result


def _latest(current: datetime | None, candidate: datetime) -> datetime:
    return candidate if current is None or candidate > current else current
