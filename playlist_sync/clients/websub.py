"""WebSub hub publisher - pings one mini-feed per changed item"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable

import requests

logger = logging.getLogger(__name__)

DEFAULT_HUB_URL = "https://pubsubhubbub.appspot.com/"
DEFAULT_FEED_PATH = "/api/feeds/websub/{item_id}.xml"


class WebSubNotifier:
    """
    Best-effort, at-most-once publish notifications.

    Every item is pinged independently on a bounded thread pool; a failure is
    logged and reported in the outcome list but never retried or raised.
    """

    def __init__(self, frontend_domain: str | None, hub_url: str = DEFAULT_HUB_URL,
                 feed_path: str = DEFAULT_FEED_PATH, max_workers: int = 4,
                 timeout: float = 8.0, session: requests.Session | None = None):
        self._frontend_domain = frontend_domain
        self._hub_url = hub_url
        self._feed_path = feed_path
        self._max_workers = max(1, max_workers)
        self._timeout = timeout
        self._session = session or requests.Session()

    def feed_url(self, item_id: str) -> str:
        return f"https://{self._frontend_domain}{self._feed_path.format(item_id=item_id)}"

    def _ping(self, item_id: str) -> bool:
        feed_url = self.feed_url(item_id)
        try:
            response = self._session.post(
                self._hub_url,
                data={
                    "hub.mode": "publish",
                    "hub.url": feed_url,
                    "hub.topic": feed_url,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Error pinging {feed_url}: {e}")
            return False

        if not 200 <= response.status_code < 300:
            logger.error(f"Failed to ping {feed_url}: {response.status_code} {response.reason}")
            return False

        logger.debug(f"Pinged {feed_url}")
        return True

    def notify(self, item_ids: Iterable[str]) -> list[tuple[str, bool]]:
        """Ping the hub for every id. Returns ``(item_id, delivered)`` pairs."""
        unique_ids = sorted(set(item_ids))
        if not unique_ids:
            return []
        if not self._frontend_domain:
            logger.warning("WebSub notifications skipped: FRONTEND_DOMAIN not set")
            return []

        outcomes = []
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(unique_ids))) as executor:
            future_to_id = {executor.submit(self._ping, item_id): item_id for item_id in unique_ids}
            for future in as_completed(future_to_id):
                item_id = future_to_id[future]
                try:
                    outcomes.append((item_id, future.result()))
                except Exception as e:
                    logger.error(f"Notification task for {item_id} crashed: {e}")
                    outcomes.append((item_id, False))

        delivered = sum(1 for _, ok in outcomes if ok)
        logger.info(f"WebSub: {delivered}/{len(outcomes)} notifications delivered")
        return outcomes
