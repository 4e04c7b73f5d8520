from typing import Any
import redis
from cachetools import TTLCache
from .config import settings

# In-process cache for local dev and single-worker deployments.
_local_cache = TTLCache(maxsize=4096, ttl=settings.CACHE_TTL_SECONDS)

class Cache:
    """
    Thin abstraction over Redis/in-memory so swapping is one flag away.
    Holds fallback sweep aggregates and rate-limit counters.
    """
    def __init__(self):
        self.backend = None
        if settings.USE_REDIS:
            self.backend = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

    def get(self, key: str) -> Any | None:
        if self.backend:
            return self.backend.get(key)
        return _local_cache.get(key)

    def set(self, key: str, value: str) -> None:
        if self.backend:
            self.backend.setex(key, settings.CACHE_TTL_SECONDS, value)
        else:
            _local_cache[key] = value

cache = Cache()
