import hashlib
import math
from typing import Any, Dict, Optional

import orjson
from cachetools import Cache, LRUCache, TTLCache

from .logging import get_logger

logger = get_logger(__name__)


class SimpleCache:
    """Keyed response cache with hit/miss bookkeeping.

    With ``ttl`` set entries expire after that many seconds. Without it
    entries live until ``clear()``; ``max_size`` of ``None`` means the
    cache never evicts.
    """

    def __init__(self, max_size: Optional[int] = 1000, ttl: Optional[int] = None):
        if ttl is not None:
            self.cache: Cache = TTLCache(maxsize=max_size or 1000, ttl=ttl)
        elif max_size:
            self.cache = LRUCache(maxsize=max_size)
        else:
            self.cache = Cache(maxsize=math.inf)
        self.ttl = ttl
        self.stats = {
            'hits': 0,
            'misses': 0,
            'sets': 0
        }

    def _make_key(self, data: Any) -> str:
        """Create cache key from data."""
        if isinstance(data, dict):
            # Sort dict for consistent hashing
            serialized = orjson.dumps(data, option=orjson.OPT_SORT_KEYS)
        else:
            serialized = orjson.dumps(data)

        return hashlib.sha256(serialized).hexdigest()[:16]

    def get(self, key: Any) -> Optional[Any]:
        """Get value from cache."""
        cache_key = self._make_key(key)

        try:
            value = self.cache[cache_key]
        except KeyError:
            self.stats['misses'] += 1
            logger.debug(f"Cache miss for key: {cache_key}")
            return None

        self.stats['hits'] += 1
        logger.debug(f"Cache hit for key: {cache_key}")
        return value

    def set(self, key: Any, value: Any) -> None:
        """Set value in cache."""
        cache_key = self._make_key(key)
        self.cache[cache_key] = value
        self.stats['sets'] += 1
        logger.debug(f"Cache set for key: {cache_key}")

    def setdefault(self, key: Any, value: Any) -> Any:
        """Store ``value`` unless ``key`` is already cached; return the cached value."""
        cache_key = self._make_key(key)
        try:
            return self.cache[cache_key]
        except KeyError:
            self.cache[cache_key] = value
            self.stats['sets'] += 1
            return value

    def __contains__(self, key: Any) -> bool:
        return self._make_key(key) in self.cache

    def __len__(self) -> int:
        return len(self.cache)

    def clear(self) -> None:
        """Clear all cache entries."""
        self.cache.clear()
        logger.info("Cache cleared")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_requests = self.stats['hits'] + self.stats['misses']
        hit_rate = self.stats['hits'] / total_requests if total_requests > 0 else 0
        max_size = self.cache.maxsize

        return {
            **self.stats,
            'hit_rate': hit_rate,
            'size': len(self.cache),
            'max_size': None if max_size == math.inf else max_size,
            'ttl': self.ttl,
        }
