import asyncio
from typing import Any, Dict, Optional

from .client import WebGISClient
from .errors import FetchError
from .models import DetailRecord
from .utils.cache import SimpleCache
from .utils.logging import get_logger

logger = get_logger(__name__)


class DetailResolver:
    """Per-entity detail lookups with a session-long cache.

    Concurrent requests for the same id share one in-flight fetch.
    Failed fetches are not cached, so a later retry goes to the network.
    """

    def __init__(self, client: WebGISClient, max_size: Optional[int] = None):
        self.client = client
        self.cache = SimpleCache(max_size=max_size, ttl=None)
        self.fetch_count = 0
        self._in_flight: Dict[str, "asyncio.Task[DetailRecord]"] = {}

    async def resolve(self, entity_id: Any) -> DetailRecord:
        key = str(entity_id)

        cached = self.cache.get(key)
        if cached is not None:
            return cached

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(key))
            self._in_flight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            logger.debug("Joining in-flight detail fetch", extra={'entity_id': key})

        # A cancelled caller must not cancel the fetch other callers share
        return await asyncio.shield(task)

    async def _fetch(self, key: str) -> DetailRecord:
        self.fetch_count += 1
        try:
            record = await self.client.detail(key)
        except FetchError as exc:
            logger.error(f"Failed to load details for {key}: {exc}", extra={'entity_id': key})
            raise
        return self.cache.setdefault(key, record)

    def _forget(self, key: str, task: "asyncio.Task[DetailRecord]") -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled():
            # Mark the exception retrieved; waiters have already seen it
            task.exception()

    def is_cached(self, entity_id: Any) -> bool:
        return str(entity_id) in self.cache

    def cache_stats(self) -> Dict[str, Any]:
        return {**self.cache.get_stats(), 'fetches': self.fetch_count, 'in_flight': len(self._in_flight)}

    def clear(self) -> None:
        self.cache.clear()
