"""
Injectable key/value caches.

Three implementations share one interface (get / set / evict):
- InMemoryCache: bounded LRU with per-entry TTL, process local
- RedisCache: JSON values in Redis, shared across instances
- StoreLogoCache: the company_logo_cache table behind the JobStore

Callers treat every cache as best-effort: a miss or a backend error
simply means "compute it again".
"""
import os
import json
import time
import logging
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Optional, Tuple

import redis

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100
DEFAULT_TTL_SECONDS = 3600


class Cache(ABC):
    """Minimal cache interface used by the engines and endpoints."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def evict(self, key: str) -> None:
        pass


class InMemoryCache(Cache):
    """Bounded LRU cache; oldest entries are dropped once max_entries is reached."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES, ttl_seconds: Optional[int] = DEFAULT_TTL_SECONDS, clock=time.monotonic):
        self.max_entries = max(1, max_entries)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[Any, Optional[float]]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.ttl_seconds if ttl is None else ttl
        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            self._entries[key] = (value, expires_at)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def evict(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache(Cache):
    """JSON-serialized values in Redis under a key prefix."""

    def __init__(self, url: str, prefix: str = "pipeline:", ttl_seconds: Optional[int] = DEFAULT_TTL_SECONDS, client: Optional[redis.Redis] = None):
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds
        self.client = client or redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
        )

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            val = self.client.get(self._key(key))
        except redis.RedisError as e:
            logger.warning(f"[cache] Redis get failed for {key}: {e}")
            return None
        if val is None:
            return None
        try:
            return json.loads(val)
        except ValueError:
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.ttl_seconds if ttl is None else ttl
        try:
            serialized = json.dumps(value, default=str)
            if ttl:
                self.client.set(self._key(key), serialized, ex=ttl)
            else:
                self.client.set(self._key(key), serialized)
        except redis.RedisError as e:
            logger.warning(f"[cache] Redis set failed for {key}: {e}")

    def evict(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except redis.RedisError as e:
            logger.warning(f"[cache] Redis delete failed for {key}: {e}")


class StoreLogoCache(Cache):
    """
    Domain-keyed logo cache persisted in company_logo_cache.

    Values are dicts with logo_url, source and company_name. Entries do not
    expire; the logo backfill re-verifies them.
    """

    def __init__(self, store):
        self.store = store

    def get(self, key: str) -> Optional[Any]:
        return self.store.get_logo_cache(key)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self.store.upsert_logo_cache(
            domain=key,
            logo_url=value.get("logo_url"),
            source=value.get("source"),
            company_name=value.get("company_name"),
        )

    def evict(self, key: str) -> None:
        self.store.delete_logo_cache(key)


def build_cache(prefix: str = "pipeline:", max_entries: int = DEFAULT_MAX_ENTRIES, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> Cache:
    """Pick the cache backend from CACHE_BACKEND (memory | redis)."""
    backend = os.getenv("CACHE_BACKEND", "memory").lower()
    redis_url = os.getenv("REDIS_URL")
    if backend == "redis" and redis_url:
        logger.info(f"[cache] Using Redis cache with prefix {prefix}")
        return RedisCache(redis_url, prefix=prefix, ttl_seconds=ttl_seconds)
    if backend == "redis":
        logger.warning("[cache] CACHE_BACKEND=redis but REDIS_URL not set, using in-memory cache")
    return InMemoryCache(max_entries=max_entries, ttl_seconds=ttl_seconds)
