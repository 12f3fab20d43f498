"""Tests for the shared (Redis) and local (LRU) response caches."""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from core.config import CacheConfig, RedisConfig
from core.errors import ConfigurationError
from intelligence.adapters import cache as cache_module
from intelligence.adapters.cache import (
    KEY_PREFIX,
    STATS_KEY,
    LocalResponseCache,
    SharedResponseCache,
    build_cache,
    make_cache_key,
    normalize_prompt,
)
from intelligence.models import GenerationResponse, TokenUsage


def _response(content: str = "sunny", cost: float = 0.01) -> GenerationResponse:
    return GenerationResponse(
        content=content,
        usage=TokenUsage(prompt_tokens=5, completion_tokens=5, total_tokens=10, cost=cost),
        model="gpt-4",
    )


class _Clock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock(monkeypatch):
    clock = _Clock()
    monkeypatch.setattr(cache_module.time, "time", clock)
    return clock


class TestCacheKey:
    def test_normalization(self):
        assert normalize_prompt("  Get\n\tWeather  ") == "get weather"

    def test_equivalent_prompts_share_key(self):
        assert make_cache_key("Get Weather", "gpt-4") == make_cache_key("get   weather", "gpt-4")

    def test_key_format(self):
        key = make_cache_key("prompt", "gpt-4", {"temperature": 0.2})
        assert key.startswith(KEY_PREFIX)
        assert len(key) == len(KEY_PREFIX) + 64

    def test_param_order_irrelevant(self):
        a = make_cache_key("p", "m", {"temperature": 0.2, "max_tokens": 10})
        b = make_cache_key("p", "m", {"max_tokens": 10, "temperature": 0.2})
        assert a == b

    def test_model_and_params_distinguish(self):
        base = make_cache_key("p", "gpt-4", {"temperature": 0.2})
        assert make_cache_key("p", "gpt-3.5-turbo", {"temperature": 0.2}) != base
        assert make_cache_key("p", "gpt-4", {"temperature": 0.3}) != base


class TestLocalResponseCache:
    @pytest.mark.asyncio
    async def test_hit_after_set_with_equivalent_prompt(self):
        cache = LocalResponseCache()
        assert await cache.get("Get Weather", "gpt-4") is None
        await cache.set("Get Weather", "gpt-4", _response())

        cached = await cache.get("get   weather", "gpt-4")

        assert cached is not None
        assert cached.content == "sunny"
        stats = await cache.get_stats()
        assert stats.total_requests == 2
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(0.5)
        assert stats.cost_savings == pytest.approx(0.01)

    @pytest.mark.asyncio
    async def test_repeated_hits_approach_full_hit_rate(self):
        cache = LocalResponseCache()
        await cache.set("prompt", "gpt-4", _response())
        for _ in range(5):
            assert await cache.get("prompt", "gpt-4") is not None
        assert (await cache.get_stats()).hit_rate == 1.0

    @pytest.mark.asyncio
    async def test_lru_eviction(self):
        cache = LocalResponseCache(max_size=2)
        await cache.set("a", "m", _response("A"))
        await cache.set("b", "m", _response("B"))
        # Touch "a" so "b" is least recently used
        await cache.get("a", "m")
        await cache.set("c", "m", _response("C"))

        assert len(cache) == 2
        assert await cache.get("b", "m") is None
        assert (await cache.get("a", "m")).content == "A"
        assert (await cache.get("c", "m")).content == "C"

    @pytest.mark.asyncio
    async def test_overwrite_does_not_evict(self):
        cache = LocalResponseCache(max_size=2)
        await cache.set("a", "m", _response("A"))
        await cache.set("b", "m", _response("B"))
        await cache.set("a", "m", _response("A2"))

        assert len(cache) == 2
        assert (await cache.get("a", "m")).content == "A2"
        assert (await cache.get("b", "m")).content == "B"

    @pytest.mark.asyncio
    async def test_storage_used_ignores_hit_metadata(self, clock):
        cache = LocalResponseCache()
        await cache.set("a", "m", _response("A"))
        await cache.set("b", "m", _response("B"))
        for _ in range(12):
            await cache.get("a", "m")
        await cache.set("a", "m", _response("A"))

        reference = LocalResponseCache()
        await reference.set("a", "m", _response("A"))
        await reference.set("b", "m", _response("B"))

        assert (await cache.get_stats()).storage_used == (await reference.get_stats()).storage_used

    def test_rejects_non_positive_max_size(self):
        with pytest.raises(ConfigurationError):
            LocalResponseCache(max_size=0)

    @pytest.mark.asyncio
    async def test_expired_entry_is_miss(self, clock):
        cache = LocalResponseCache(ttl_sec=60)
        await cache.set("prompt", "m", _response())
        clock.now += 61

        assert await cache.get("prompt", "m") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_explicit_ttl_overrides_default(self, clock):
        cache = LocalResponseCache(ttl_sec=60)
        await cache.set("prompt", "m", _response(), ttl=600)
        clock.now += 120
        assert await cache.get("prompt", "m") is not None

    @pytest.mark.asyncio
    async def test_purge_expired(self, clock):
        cache = LocalResponseCache(ttl_sec=10)
        await cache.set("old", "m", _response())
        clock.now += 5
        await cache.set("new", "m", _response())
        clock.now += 6

        assert await cache.purge_expired() == 1
        assert cache.key_for("new", "m") in cache
        assert cache.key_for("old", "m") not in cache

    @pytest.mark.asyncio
    async def test_clear_all(self):
        cache = LocalResponseCache()
        await cache.set("a", "m", _response())
        await cache.set("b", "m", _response())
        await cache.clear()

        assert len(cache) == 0
        assert (await cache.get_stats()).storage_used == 0

    @pytest.mark.asyncio
    async def test_clear_by_digest_prefix(self):
        cache = LocalResponseCache()
        await cache.set("a", "m", _response())
        await cache.set("b", "m", _response())
        digest = cache.key_for("a", "m")[len(KEY_PREFIX):]

        await cache.clear(digest[:12])

        assert cache.key_for("a", "m") not in cache
        assert cache.key_for("b", "m") in cache

    @pytest.mark.asyncio
    async def test_sweeper_lifecycle(self):
        cache = LocalResponseCache(sweep_interval=0.01)
        async with cache:
            await asyncio.sleep(0.03)
        assert cache._sweeper is None

    @pytest.mark.asyncio
    async def test_similarity_threshold_ignored(self):
        cache = LocalResponseCache()
        await cache.set("Get Weather", "m", _response())
        assert await cache.get("Get weather now", "m", similarity_threshold=0.5) is None
        assert await cache.get("get weather", "m", similarity_threshold=0.5) is not None


class TestSharedResponseCache:
    @pytest.mark.asyncio
    async def test_set_and_get(self, fake_redis):
        cache = SharedResponseCache(ttl_sec=120, client=fake_redis)
        await cache.set("Get Weather", "gpt-4", _response())
        key = make_cache_key("Get Weather", "gpt-4")

        cached = await cache.get("get   weather", "gpt-4")

        assert cached.content == "sunny"
        # Initial write plus sliding-expiration rewrite on hit
        assert fake_redis.ttls[key] == [120, 120]
        assert (await cache.get_stats()).hits == 1

    @pytest.mark.asyncio
    async def test_set_uses_explicit_ttl(self, fake_redis):
        cache = SharedResponseCache(ttl_sec=120, client=fake_redis)
        await cache.set("p", "m", _response(), ttl=30)
        assert fake_redis.ttls[make_cache_key("p", "m")] == [30]

    @pytest.mark.asyncio
    async def test_hit_metadata_persisted(self, fake_redis):
        cache = SharedResponseCache(client=fake_redis)
        await cache.set("p", "m", _response())
        await cache.get("p", "m")
        await cache.get("p", "m")

        raw, _ = fake_redis.store[make_cache_key("p", "m")]
        assert '"hits":2' in raw

    @pytest.mark.asyncio
    async def test_corrupted_entry_purged_as_miss(self, fake_redis):
        cache = SharedResponseCache(client=fake_redis)
        key = make_cache_key("p", "m")
        await fake_redis.setex(key, 60, "{not json")

        assert await cache.get("p", "m") is None
        assert key not in fake_redis.store
        assert (await cache.get_stats()).misses == 1

    @pytest.mark.asyncio
    async def test_store_failure_is_miss(self):
        client = AsyncMock()
        client.get.side_effect = RedisConnectionError("down")
        client.setex.side_effect = RedisConnectionError("down")
        cache = SharedResponseCache(client=client)

        await cache.set("p", "m", _response())
        assert await cache.get("p", "m") is None
        assert (await cache.get_stats()).misses == 1

    @pytest.mark.asyncio
    async def test_store_timeout_is_miss(self):
        async def slow_get(key):
            await asyncio.sleep(1)

        client = AsyncMock()
        client.get.side_effect = slow_get
        cache = SharedResponseCache(client=client, operation_timeout=0.01)

        assert await cache.get("p", "m") is None

    @pytest.mark.asyncio
    async def test_clear_keeps_stats_key(self, fake_redis):
        cache = SharedResponseCache(client=fake_redis)
        await cache.set("a", "m", _response())
        await cache.set("b", "m", _response())
        await fake_redis.set(STATS_KEY, "{}")

        await cache.clear()

        assert list(fake_redis.store) == [STATS_KEY]

    @pytest.mark.asyncio
    async def test_stats_persist_across_connections(self, fake_redis):
        cache = SharedResponseCache(client=fake_redis)
        await cache.set("p", "m", _response())
        await cache.get("p", "m")
        await cache.close()
        assert fake_redis.closed

        reopened = SharedResponseCache(client=fake_redis)
        await reopened.connect()
        stats = await reopened.get_stats()
        assert stats.hits == 1
        assert stats.total_requests == 1

    @pytest.mark.asyncio
    async def test_lazy_connect_keeps_request_count(self, fake_redis):
        first = SharedResponseCache(client=fake_redis)
        await first.set("p", "m", _response())
        await first.get("p", "m")
        await first.close()

        with patch("intelligence.adapters.cache.aioredis.from_url", return_value=fake_redis):
            reopened = SharedResponseCache()
            assert await reopened.get("p", "m") is not None
            stats = await reopened.get_stats()
            assert stats.total_requests == 2
            assert stats.hits == 2
            assert stats.hit_rate == 1.0

            await reopened.close()
            assert await reopened.get("missing", "m") is None
            stats = await reopened.get_stats()

        assert stats.total_requests == 3
        assert stats.total_requests == stats.hits + stats.misses

    @pytest.mark.asyncio
    async def test_get_size(self, fake_redis):
        cache = SharedResponseCache(client=fake_redis)
        await cache.set("a", "m", _response())
        assert await cache.get_size() == {"keys": 1, "memory": "1.00M"}

    @pytest.mark.asyncio
    async def test_prune_least_recently_accessed(self, fake_redis, clock):
        cache = SharedResponseCache(client=fake_redis)
        for prompt in ("a", "b", "c"):
            await cache.set(prompt, "m", _response())
            clock.now += 1
        await cache.get("a", "m")

        assert await cache.prune(2) == 1
        assert make_cache_key("b", "m") not in fake_redis.store
        assert make_cache_key("a", "m") in fake_redis.store


class TestBuildCache:
    def test_local_without_redis(self):
        cache = build_cache(CacheConfig(local_max_size=5, ttl=10))
        assert isinstance(cache, LocalResponseCache)
        assert cache.default_ttl == 10

    def test_shared_with_redis(self):
        cache = build_cache(CacheConfig(redis=RedisConfig(host="cache", port=6380)))
        assert isinstance(cache, SharedResponseCache)
        assert cache._redis_url == "redis://cache:6380/0"

    def test_disabled_falls_back_to_local(self):
        cache = build_cache(CacheConfig(enabled=False, redis=RedisConfig()))
        assert isinstance(cache, LocalResponseCache)
