"""Cloudflare cache purge by tag"""

import logging
import time
from typing import Iterable

import requests

from playlist_sync.core.models import PurgeResult

logger = logging.getLogger(__name__)

API_BASE = "https://api.cloudflare.com/client/v4"
TAG_BATCH_SIZE = 30
BATCH_DELAY = 0.1


class CloudflarePurger:
    """
    Purges CDN entries by cache tag.

    Missing credentials are a configuration state: the purge is skipped and
    reported as such. API failures are logged per batch; nothing is retried
    and nothing is raised.
    """

    def __init__(self, zone_id: str | None, api_token: str | None,
                 timeout: float = 8.0, session: requests.Session | None = None):
        self._zone_id = zone_id
        self._api_token = api_token
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self._zone_id and self._api_token)

    def purge(self, tags: Iterable[str]) -> PurgeResult:
        unique_tags = sorted({t for t in tags if t})
        result = PurgeResult(requested=len(unique_tags))

        if not self.configured:
            logger.warning("Purge skipped: missing Cloudflare credentials")
            result.skipped = True
            return result
        if not unique_tags:
            return result

        logger.info(f"Purging {len(unique_tags)} cache tags")

        for start in range(0, len(unique_tags), TAG_BATCH_SIZE):
            batch = unique_tags[start:start + TAG_BATCH_SIZE]
            batch_number = start // TAG_BATCH_SIZE + 1

            if self._purge_batch(batch, batch_number):
                result.purged += len(batch)
            else:
                result.failed_batches += 1

            if start + TAG_BATCH_SIZE < len(unique_tags):
                time.sleep(BATCH_DELAY)

        return result

    def _purge_batch(self, batch: list[str], batch_number: int) -> bool:
        try:
            response = self._session.post(
                f"{API_BASE}/zones/{self._zone_id}/purge_cache",
                headers={
                    "Authorization": f"Bearer {self._api_token}",
                    "Content-Type": "application/json",
                },
                json={"tags": batch},
                timeout=self._timeout,
            )
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error purging tag batch {batch_number}: {e}")
            return False

        if not isinstance(data, dict) or not data.get("success"):
            errors = (data.get("errors") or []) if isinstance(data, dict) else [data]
            logger.error(f"Tag purge failed for batch {batch_number} "
                         f"(HTTP {response.status_code}): {errors}")
            for error in errors:
                if isinstance(error, dict):
                    logger.error(f"Cloudflare error {error.get('code')}: {error.get('message')}")
            return False

        logger.info(f"Purged batch {batch_number} ({len(batch)} tags)")
        return True
