"""
Tests for the injectable caches in core/cache.py
"""

import json
import os
from unittest.mock import Mock, patch

import redis

from core.cache import InMemoryCache, RedisCache, StoreLogoCache, build_cache
from fakes import FakeStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestInMemoryCache:
    """LRU eviction and TTL expiry."""

    def test_get_set_evict(self):
        cache = InMemoryCache()
        cache.set("a", {"x": 1})
        assert cache.get("a") == {"x": 1}
        cache.evict("a")
        assert cache.get("a") is None

    def test_lru_drops_least_recently_used(self):
        cache = InMemoryCache(max_entries=2, ttl_seconds=None)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert cache.get("a") == 1
        assert cache.get("b") is None
        assert cache.get("c") == 3
        assert len(cache) == 2

    def test_entries_expire(self):
        clock = FakeClock()
        cache = InMemoryCache(ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        clock.now += 59
        assert cache.get("a") == 1
        clock.now += 1
        assert cache.get("a") is None

    def test_per_entry_ttl_override(self):
        clock = FakeClock()
        cache = InMemoryCache(ttl_seconds=60, clock=clock)
        cache.set("short", 1, ttl=5)
        cache.set("long", 2)
        clock.now += 10
        assert cache.get("short") is None
        assert cache.get("long") == 2


class TestRedisCache:
    """Redis backend with a mocked client."""

    def test_set_serializes_with_prefix_and_ttl(self):
        client = Mock()
        cache = RedisCache("redis://unused", prefix="pipeline:scrape:", ttl_seconds=3600, client=client)
        cache.set("https://a.com", {"content": "hi"})
        client.set.assert_called_once_with("pipeline:scrape:https://a.com", json.dumps({"content": "hi"}), ex=3600)

    def test_get_deserializes(self):
        client = Mock()
        client.get.return_value = '{"content": "hi"}'
        cache = RedisCache("redis://unused", prefix="p:", client=client)
        assert cache.get("k") == {"content": "hi"}
        client.get.assert_called_once_with("p:k")

    def test_redis_errors_are_misses(self):
        client = Mock()
        client.get.side_effect = redis.ConnectionError("down")
        client.set.side_effect = redis.ConnectionError("down")
        cache = RedisCache("redis://unused", client=client)
        assert cache.get("k") is None
        cache.set("k", 1)

    def test_evict(self):
        client = Mock()
        RedisCache("redis://unused", prefix="p:", client=client).evict("k")
        client.delete.assert_called_once_with("p:k")


class TestStoreLogoCache:
    def test_round_trip_through_store(self):
        store = FakeStore()
        cache = StoreLogoCache(store)
        cache.set("stripe.com", {"logo_url": "https://logo.clearbit.com/stripe.com", "source": "clearbit", "company_name": "Stripe"})
        assert cache.get("stripe.com")["logo_url"] == "https://logo.clearbit.com/stripe.com"
        cache.evict("stripe.com")
        assert cache.get("stripe.com") is None


class TestBuildCache:
    @patch.dict(os.environ, {"CACHE_BACKEND": "memory"})
    def test_memory_backend(self):
        assert isinstance(build_cache(), InMemoryCache)

    @patch.dict(os.environ, {"CACHE_BACKEND": "redis"}, clear=False)
    def test_redis_without_url_falls_back_to_memory(self):
        os.environ.pop("REDIS_URL", None)
        assert isinstance(build_cache(), InMemoryCache)

    @patch.dict(os.environ, {"CACHE_BACKEND": "redis", "REDIS_URL": "redis://localhost:6379/0"})
    def test_redis_backend(self):
        with patch("core.cache.redis.from_url") as from_url:
            cache = build_cache(prefix="x:")
        assert isinstance(cache, RedisCache)
        assert cache.prefix == "x:"
        from_url.assert_called_once()
