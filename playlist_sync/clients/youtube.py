"""
YouTube Data API v3 Client

Playlist feed source backed by the YouTube Data API. The first page's ETag
is sent back as If-None-Match so an unchanged playlist costs one request.
Includes retry logic for rate limiting and transient errors.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Callable, TypeVar

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from playlist_sync.core.models import FeedError, FeedItem, FeedResponse

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/youtube.readonly"]
PAGE_SIZE = 50
MAX_PAGES = 100

T = TypeVar('T')


class YouTubeAuthError(Exception):
    """YouTube authentication failed."""
    pass


class YouTubeAPIError(FeedError):
    """YouTube API operation failed."""
    pass


class YouTubeQuotaExceededError(FeedError):
    """YouTube API quota exceeded."""
    pass


class _NotModified(Exception):
    pass


def _load_client_credentials(secrets_file: Path | None = None) -> tuple[str, str]:
    """Load OAuth client credentials from env vars or client_secrets.json."""
    client_id = os.environ.get("GOOGLE_CLIENT_ID")
    client_secret = os.environ.get("GOOGLE_CLIENT_SECRET")

    if client_id and client_secret:
        return client_id, client_secret

    if secrets_file and secrets_file.exists():
        try:
            secrets = json.loads(secrets_file.read_text())
            creds = secrets.get("installed") or secrets.get("web")
            if creds:
                return creds["client_id"], creds["client_secret"]
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Failed to parse {secrets_file.name}: {e}")

    raise YouTubeAuthError(
        "OAuth credentials not found. Set GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET "
        "or provide client_secrets.json"
    )


class YouTubeClient:
    """YouTube Data API client with retry logic."""

    def __init__(self, api_key: str | None = None, refresh_token: str | None = None,
                 secrets_file: Path | None = None, service=None):
        if service is not None:
            self._service = service
            return

        try:
            if api_key:
                self._service = build("youtube", "v3", developerKey=api_key, cache_discovery=False)
            elif refresh_token:
                client_id, client_secret = _load_client_credentials(secrets_file)
                credentials = Credentials(
                    token=None,
                    refresh_token=refresh_token,
                    token_uri=TOKEN_URI,
                    client_id=client_id,
                    client_secret=client_secret,
                    scopes=SCOPES
                )
                self._service = build("youtube", "v3", credentials=credentials, cache_discovery=False)
            else:
                raise YouTubeAuthError("Either an API key or a refresh token is required")
            logger.info("YouTube client initialized")

        except YouTubeAuthError:
            raise
        except Exception as e:
            raise YouTubeAuthError(f"Failed to authenticate: {e}")

    def _retry(self, operation: Callable[[], T], name: str, max_retries: int = 3) -> T:
        """Execute operation with retry logic for transient errors."""
        for attempt in range(max_retries):
            try:
                return operation()
            except HttpError as e:
                status = e.resp.status if e.resp else 0
                error_str = str(e)

                if status == 304:
                    raise _NotModified()

                # Quota exceeded - don't retry
                if status == 403 and "quotaExceeded" in error_str:
                    raise YouTubeQuotaExceededError(f"Quota exceeded: {e}")

                # Rate limit - wait and retry once
                if status in (403, 429) and attempt == 0:
                    logger.warning(f"Rate limited on {name}, waiting 60s...")
                    time.sleep(60)
                    continue

                if status >= 500 and attempt < max_retries - 1:
                    wait = 2 ** attempt
                    logger.warning(f"Server error on {name}, retrying in {wait}s...")
                    time.sleep(wait)
                    continue

                raise YouTubeAPIError(f"API error on {name}: {e}")

            except (ConnectionError, TimeoutError, OSError) as e:
                if attempt < max_retries - 1:
                    wait = 2 ** attempt
                    logger.warning(f"Network error on {name}, retrying in {wait}s...")
                    time.sleep(wait)
                    continue
                raise YouTubeAPIError(f"Network error on {name}: {e}")

        raise YouTubeAPIError(f"{name} failed after {max_retries} attempts")

    def fetch(self, playlist_id: str, etag: str | None = None,
              last_modified: str | None = None) -> FeedResponse:
        """Get all items from a playlist, or a not-modified response."""
        items = []
        page_token = None
        first_etag = None

        for page_number in range(MAX_PAGES):
            def do_list():
                request = self._service.playlistItems().list(
                    part="snippet,contentDetails",
                    playlistId=playlist_id,
                    maxResults=PAGE_SIZE,
                    pageToken=page_token
                )
                if etag and page_token is None:
                    request.headers["If-None-Match"] = etag
                return request.execute()

            try:
                response = self._retry(do_list, f"list playlist {playlist_id}")
            except _NotModified:
                logger.debug(f"Playlist {playlist_id} not modified")
                return FeedResponse(etag=etag, last_modified=last_modified, not_modified=True)

            if first_etag is None:
                first_etag = response.get("etag")

            for raw in response.get("items", []):
                item = self._extract_item(raw, len(items))
                if item:
                    items.append(item)

            page_token = response.get("nextPageToken")
            if not page_token:
                break
        else:
            logger.warning(f"Reached max pages for {playlist_id}, list may be incomplete")

        logger.info(f"Retrieved {len(items)} items from YouTube playlist {playlist_id}")
        return FeedResponse(items=items, etag=first_etag)

    def recheck(self, playlist_id: str, item_ids: list[str]) -> set[str]:
        """Ask the API directly whether each video is still in the playlist."""
        present = set()
        for video_id in item_ids:
            def do_check():
                return self._service.playlistItems().list(
                    part="id",
                    playlistId=playlist_id,
                    videoId=video_id,
                    maxResults=1
                ).execute()

            response = self._retry(do_check, f"recheck {video_id}")
            if response.get("items"):
                present.add(video_id)
        return present

    def count_items(self, playlist_id: str) -> int:
        """Count playlist items by paging with minimal parts."""
        total = 0
        page_token = None

        for page_number in range(MAX_PAGES):
            def do_count():
                return self._service.playlistItems().list(
                    part="id",
                    playlistId=playlist_id,
                    maxResults=PAGE_SIZE,
                    pageToken=page_token,
                    fields="nextPageToken,items(id)"
                ).execute()

            response = self._retry(do_count, f"count playlist {playlist_id}")
            total += len(response.get("items", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        else:
            logger.warning(f"Reached max pages for {playlist_id}, count may be incomplete")

        return total

    def get_uploads_playlist_id(self, channel_id: str) -> str | None:
        def do_lookup():
            return self._service.channels().list(
                part="contentDetails",
                id=channel_id
            ).execute()

        response = self._retry(do_lookup, f"channel {channel_id}")
        items = response.get("items", [])
        if not items:
            return None
        return items[0].get("contentDetails", {}).get("relatedPlaylists", {}).get("uploads")

    def _extract_item(self, raw: dict, index: int) -> FeedItem | None:
        """Extract FeedItem from API response."""
        snippet = raw.get("snippet", {})
        content = raw.get("contentDetails", {})

        video_id = content.get("videoId") or snippet.get("resourceId", {}).get("videoId")
        if not video_id:
            return None

        return FeedItem(
            item_id=video_id,
            title=snippet.get("title", ""),
            description=snippet.get("description", ""),
            position=snippet.get("position", index),
            published_at=content.get("videoPublishedAt") or snippet.get("publishedAt"),
        )
