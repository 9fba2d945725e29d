"""Data models for playlist sync state and results."""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any


class ConfigError(Exception):
    """Required configuration is missing or invalid."""
    pass


class StateStoreError(Exception):
    """Persisted sync state could not be read or written."""
    pass


class AdminAuthError(Exception):
    """Admin operation invoked without an authenticated identity."""
    pass


class FeedError(Exception):
    """Upstream feed could not be fetched or parsed."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class FeedItem:
    """A video entry from the upstream playlist feed."""
    item_id: str
    title: str = ""
    description: str = ""
    position: int = 0
    published_at: str | None = None

    def content_key(self) -> tuple:
        """Fields whose change counts as an update."""
        return (self.title, self.description, self.position, self.published_at)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeedItem":
        return cls(
            item_id=str(data["item_id"]),
            title=data.get("title") or "",
            description=data.get("description") or "",
            position=int(data.get("position") or 0),
            published_at=data.get("published_at"),
        )


@dataclass
class FeedResponse:
    """One fetch of a playlist feed, with its conditional-fetch markers."""
    items: list[FeedItem] = field(default_factory=list)
    etag: str | None = None
    last_modified: str | None = None
    not_modified: bool = False

    @property
    def item_ids(self) -> list[str]:
        return [item.item_id for item in self.items]


@dataclass(frozen=True)
class LastSyncResult:
    """Outcome of the most recently completed sync run."""
    videos_added: int
    videos_updated: int
    videos_removed: int
    at: datetime
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, error: str, at: datetime | None = None) -> "LastSyncResult":
        """Create a failure result with no applied changes."""
        return cls(
            videos_added=0,
            videos_updated=0,
            videos_removed=0,
            at=at or utcnow(),
            error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        data = {
            "videosAdded": self.videos_added,
            "videosUpdated": self.videos_updated,
            "videosRemoved": self.videos_removed,
            "at": _to_iso(self.at),
        }
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LastSyncResult":
        return cls(
            videos_added=int(data.get("videosAdded", 0)),
            videos_updated=int(data.get("videosUpdated", 0)),
            videos_removed=int(data.get("videosRemoved", 0)),
            at=_from_iso(data.get("at")) or utcnow(),
            error=data.get("error"),
        )


@dataclass
class PlaylistSyncState:
    """Persisted per-playlist sync bookkeeping.

    ``sync_in_progress`` is only ever true together with a lease owner and
    expiry. A lease past ``sync_lease_until`` is void whatever the flag says.
    """
    etag: str | None = None
    last_modified: str | None = None
    fingerprint: str | None = None
    last_fingerprint_at: datetime | None = None
    sync_in_progress: bool = False
    sync_lease_until: datetime | None = None
    sync_lease_owner: str | None = None
    last_sync_result: LastSyncResult | None = None
    item_count: int = 0
    active_window_until: datetime | None = None

    def lease_held(self, now: datetime) -> bool:
        return (
            self.sync_in_progress
            and self.sync_lease_owner is not None
            and self.sync_lease_until is not None
            and self.sync_lease_until > now
        )

    def is_hot(self, now: datetime) -> bool:
        return self.active_window_until is not None and now < self.active_window_until

    def has_prior_state(self) -> bool:
        return (
            self.etag is not None
            or self.last_modified is not None
            or self.fingerprint is not None
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "etag": self.etag,
            "lastModified": self.last_modified,
            "fingerprint": self.fingerprint,
            "lastFingerprintAt": _to_iso(self.last_fingerprint_at),
            "syncInProgress": self.sync_in_progress,
            "syncLeaseUntil": _to_iso(self.sync_lease_until),
            "syncLeaseOwner": self.sync_lease_owner,
            "lastSyncResult": self.last_sync_result.to_dict() if self.last_sync_result else None,
            "itemCount": self.item_count,
            "activeWindowUntil": _to_iso(self.active_window_until),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlaylistSyncState":
        result = data.get("lastSyncResult")
        return cls(
            etag=data.get("etag"),
            last_modified=data.get("lastModified"),
            fingerprint=data.get("fingerprint"),
            last_fingerprint_at=_from_iso(data.get("lastFingerprintAt")),
            sync_in_progress=bool(data.get("syncInProgress", False)),
            sync_lease_until=_from_iso(data.get("syncLeaseUntil")),
            sync_lease_owner=data.get("syncLeaseOwner"),
            last_sync_result=LastSyncResult.from_dict(result) if result else None,
            item_count=int(data.get("itemCount", 0)),
            active_window_until=_from_iso(data.get("activeWindowUntil")),
        )


@dataclass
class SyncState:
    """Per-playlist scratch state; safe to rebuild from empty."""
    uploads_etag: str | None = None
    uploads_last_modified: str | None = None
    uploads_playlist_id: str | None = None
    last_idle_check: dict[str, datetime] = field(default_factory=dict)
    idle_order: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "uploadsEtag": self.uploads_etag,
            "uploadsLastModified": self.uploads_last_modified,
            "uploadsPlaylistId": self.uploads_playlist_id,
            "lastIdleCheck": {k: _to_iso(v) for k, v in self.last_idle_check.items()},
            "idleOrder": list(self.idle_order),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncState":
        checks = data.get("lastIdleCheck") or {}
        return cls(
            uploads_etag=data.get("uploadsEtag"),
            uploads_last_modified=data.get("uploadsLastModified"),
            uploads_playlist_id=data.get("uploadsPlaylistId"),
            last_idle_check={k: _from_iso(v) for k, v in checks.items() if v},
            idle_order=list(data.get("idleOrder") or []),
        )


@dataclass
class PlaylistRecord:
    """Everything persisted for one playlist key."""
    playlist: PlaylistSyncState = field(default_factory=PlaylistSyncState)
    scratch: SyncState = field(default_factory=SyncState)

    def to_dict(self) -> dict[str, Any]:
        return {"playlist": self.playlist.to_dict(), "sync": self.scratch.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlaylistRecord":
        return cls(
            playlist=PlaylistSyncState.from_dict(data.get("playlist") or {}),
            scratch=SyncState.from_dict(data.get("sync") or {}),
        )


@dataclass(frozen=True)
class DisplayedPlaylist:
    """Read-only projection for playlist selection."""
    playlist_id: str
    title: str


@dataclass
class ItemDiff:
    """Difference between stored items and a fetched feed."""
    added: list[FeedItem] = field(default_factory=list)
    updated: list[FeedItem] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.added or self.updated or self.missing)


@dataclass
class CountVerification:
    """Result of comparing a stored item count with the upstream count."""
    playlist_id: str
    previous_count: int
    actual_count: int
    difference: int
    corrected: bool
    error: str | None = None


@dataclass
class PurgeResult:
    """Outcome of a CDN tag purge."""
    requested: int
    purged: int = 0
    failed_batches: int = 0
    skipped: bool = False

    @property
    def success(self) -> bool:
        return self.failed_batches == 0
