"""
JSON Playlist Feed Client

Fetches a playlist feed over HTTP with conditional-fetch headers. The feed
document is ``{"items": [...], "next": <url or null>}``; ``next`` is followed
until exhausted. Each item needs an ``id`` and may carry ``title``,
``description``, ``position`` and ``publishedAt``.
"""

import logging
import time
from typing import Callable, TypeVar

import requests

from playlist_sync.core.models import FeedError, FeedItem, FeedResponse

logger = logging.getLogger(__name__)

MAX_PAGES = 100
USER_AGENT = "playlist-sync/1.0"

T = TypeVar('T')


class FeedClient:
    def __init__(self, url_template: str, timeout: float = 8.0,
                 session: requests.Session | None = None):
        if "{playlist_id}" not in url_template:
            raise ValueError("url_template must contain {playlist_id}")
        self._url_template = url_template
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    def _retry(self, operation: Callable[[], T], name: str, max_retries: int = 3) -> T:
        """Execute operation, retrying server errors and network failures."""
        for attempt in range(max_retries):
            try:
                return operation()
            except requests.HTTPError as e:
                status = e.response.status_code if e.response is not None else 0
                if status >= 500 and attempt < max_retries - 1:
                    wait = 2 ** attempt
                    logger.warning(f"Server error {status} on {name}, retrying in {wait}s...")
                    time.sleep(wait)
                    continue
                raise FeedError(f"HTTP {status} on {name}")
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt < max_retries - 1:
                    wait = 2 ** attempt
                    logger.warning(f"Network error on {name}, retrying in {wait}s...")
                    time.sleep(wait)
                    continue
                raise FeedError(f"Network error on {name}: {e}")

        raise FeedError(f"{name} failed after {max_retries} attempts")

    def _get(self, url: str, headers: dict | None = None) -> requests.Response:
        response = self._session.get(url, headers=headers or {}, timeout=self._timeout)
        if response.status_code == 304:
            return response
        response.raise_for_status()
        return response

    def fetch(self, playlist_id: str, etag: str | None = None,
              last_modified: str | None = None) -> FeedResponse:
        """Fetch every page of the feed, short-circuiting on 304."""
        url = self._url_template.format(playlist_id=playlist_id)
        headers = {}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        first = self._retry(lambda: self._get(url, headers), f"fetch {playlist_id}")
        if first.status_code == 304:
            logger.debug(f"Feed {playlist_id} not modified")
            return FeedResponse(etag=etag, last_modified=last_modified, not_modified=True)

        items = []
        page = first
        for page_number in range(MAX_PAGES):
            items.extend(self._parse_page(page, playlist_id, offset=len(items)))
            next_url = self._next_url(page)
            if not next_url:
                break
            page = self._retry(lambda: self._get(next_url), f"fetch {playlist_id} page {page_number + 2}")
        else:
            logger.warning(f"Reached max pages for {playlist_id}, feed may be incomplete")

        logger.info(f"Retrieved {len(items)} items from feed {playlist_id}")
        return FeedResponse(
            items=items,
            etag=first.headers.get("ETag"),
            last_modified=first.headers.get("Last-Modified"),
        )

    def recheck(self, playlist_id: str, item_ids: list[str]) -> set[str]:
        """Unconditional re-fetch; returns which of ``item_ids`` still exist."""
        if not item_ids:
            return set()
        present = set(self.fetch(playlist_id).item_ids)
        return present.intersection(item_ids)

    def count_items(self, playlist_id: str) -> int:
        return len(self.fetch(playlist_id).items)

    def _parse_page(self, response: requests.Response, playlist_id: str,
                    offset: int = 0) -> list[FeedItem]:
        try:
            data = response.json()
        except ValueError as e:
            raise FeedError(f"Invalid JSON from feed {playlist_id}: {e}")
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise FeedError(f"Feed {playlist_id} response missing 'items'")

        items = []
        for index, raw in enumerate(data["items"]):
            try:
                item = self._extract_item(raw, offset + index)
            except (TypeError, ValueError, AttributeError) as e:
                raise FeedError(f"Malformed item {offset + index} in feed {playlist_id}: {e}")
            if item:
                items.append(item)
        return items

    def _next_url(self, response: requests.Response) -> str | None:
        try:
            return response.json().get("next")
        except ValueError:
            return None

    def _extract_item(self, raw: dict, index: int) -> FeedItem | None:
        if not isinstance(raw, dict):
            return None
        item_id = raw.get("id") or raw.get("videoId")
        if not item_id:
            logger.debug(f"Skipping feed entry without id: {raw}")
            return None
        return FeedItem(
            item_id=str(item_id),
            title=raw.get("title") or "",
            description=raw.get("description") or "",
            position=_position(raw.get("position"), index),
            published_at=raw.get("publishedAt"),
        )


def _position(value, default: int) -> int:
    """Feed position, falling back to the running index when absent or not numeric."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        logger.debug(f"Ignoring non-numeric position {value!r}")
        return default
