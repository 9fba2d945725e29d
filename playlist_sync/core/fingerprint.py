"""Change detection for playlist feeds.

Conditional-fetch markers (ETag / Last-Modified) are authoritative when the
upstream sends them. Without markers we fall back to a fingerprint of the
item-id set, which ignores ordering but not membership.
"""

import hashlib
import logging
from typing import Iterable

from playlist_sync.core.models import FeedResponse, PlaylistSyncState

logger = logging.getLogger(__name__)


def compute_fingerprint(item_ids: Iterable[str]) -> str:
    """Stable sha256 digest over the sorted, de-duplicated id set."""
    digest = hashlib.sha256()
    for item_id in sorted(set(item_ids)):
        digest.update(item_id.encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


def has_markers(response: FeedResponse) -> bool:
    return bool(response.etag or response.last_modified)


def should_sync(state: PlaylistSyncState | None, response: FeedResponse) -> bool:
    """Decide whether a fetched feed represents a change worth diffing."""
    if response.not_modified:
        return False

    if state is None or not state.has_prior_state():
        return True

    if has_markers(response):
        if response.etag and response.etag != state.etag:
            logger.debug(f"ETag changed: {state.etag} -> {response.etag}")
            return True
        if response.last_modified and response.last_modified != state.last_modified:
            logger.debug(f"Last-Modified changed: {state.last_modified} -> {response.last_modified}")
            return True
        return False

    fingerprint = compute_fingerprint(response.item_ids)
    return fingerprint != state.fingerprint
