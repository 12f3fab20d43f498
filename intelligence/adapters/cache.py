from __future__ import annotations
"""Response caches for the adapter layer.

Both caches are keyed by a SHA256 of the normalized prompt, the model id and
the sampling parameters, so two requests that differ only in prompt case or
whitespace share an entry.

SharedResponseCache: Redis-backed store shared across processes.  Entries
carry a TTL that slides on every hit.  Store failures are logged and count
as misses.
LocalResponseCache: bounded, process-private LRU store with a periodic sweep
of expired entries.

Storage goes through three hooks (``_read``, ``_write``, ``_delete_matching``)
so further backends only implement those.
"""

import asyncio
import fnmatch
import hashlib
import json
import re
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, Mapping, Optional

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from core.config import CacheConfig
from core.errors import CacheCorruptionError, ConfigurationError
from core.logging import logger
from core import monitoring
from intelligence.models import (
    CacheEntry,
    CacheEntryMetadata,
    CacheStatistics,
    GenerationResponse,
)

__all__ = [
    "KEY_PREFIX",
    "normalize_prompt",
    "make_cache_key",
    "BaseResponseCache",
    "SharedResponseCache",
    "LocalResponseCache",
    "build_cache",
]

KEY_PREFIX = "mcpgen:cache:"
STATS_KEY = "mcpgen:cache:stats"
DEFAULT_TTL = 3600  # seconds

_WHITESPACE = re.compile(r"\s+")


def normalize_prompt(prompt: str) -> str:
    return _WHITESPACE.sub(" ", prompt.strip()).lower()


def make_cache_key(prompt: str, model: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Deterministic, process-independent key for a (prompt, model, params) tuple."""
    key_data = {
        "prompt": normalize_prompt(prompt),
        "model": model,
        "params": dict(params or {}),
    }
    canonical = json.dumps(key_data, sort_keys=True, separators=(",", ":"), default=str)
    return KEY_PREFIX + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _entry_size(entry: CacheEntry) -> int:
    return len(_serialize(entry))


def _serialize(entry: CacheEntry) -> str:
    return entry.model_dump_json(by_alias=True)


def _deserialize(raw: Any) -> CacheEntry:
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return CacheEntry.model_validate_json(raw)
    except (ValidationError, UnicodeDecodeError, TypeError, ValueError) as e:
        raise CacheCorruptionError(f"Unreadable cache entry: {e}") from e


class BaseResponseCache(ABC):
    """Get/set/stats/clear contract shared by every cache backend."""

    def __init__(self, ttl_sec: int = DEFAULT_TTL) -> None:
        self._ttl = ttl_sec
        self._stats = CacheStatistics()
        self._similarity_warned = False

    # Storage hooks -------------------------------------------------------
    @abstractmethod
    async def _read(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry, None when absent.

        Raises CacheCorruptionError when the stored value cannot be decoded.
        """

    @abstractmethod
    async def _write(self, key: str, entry: CacheEntry, ttl: int) -> None:
        ...

    @abstractmethod
    async def _delete_matching(self, pattern: str) -> None:
        """Delete every key matching the glob ``pattern``."""

    async def _delete(self, key: str) -> None:
        await self._delete_matching(key)

    # Lifecycle -----------------------------------------------------------
    async def connect(self) -> None:
        pass

    async def _ensure_ready(self) -> None:
        """Hook run before any statistics are read or updated."""

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> "BaseResponseCache":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # Public API ----------------------------------------------------------
    @property
    def default_ttl(self) -> int:
        return self._ttl

    def key_for(self, prompt: str, model: str, params: Optional[Mapping[str, Any]] = None) -> str:
        return make_cache_key(prompt, model, params)

    async def get(
        self,
        prompt: str,
        model: str,
        params: Optional[Mapping[str, Any]] = None,
        similarity_threshold: Optional[float] = None,
    ) -> Optional[GenerationResponse]:
        """Return the cached response or None.

        Only exact key matches are supported; ``similarity_threshold`` is
        accepted for interface compatibility and ignored.
        """
        if similarity_threshold is not None and not self._similarity_warned:
            logger.debug("Similarity matching is not implemented; using exact keys only")
            self._similarity_warned = True

        await self._ensure_ready()
        self._stats.total_requests += 1
        key = self.key_for(prompt, model, params)

        try:
            entry = await self._read(key)
        except CacheCorruptionError as e:
            logger.warning(f"Purging corrupted cache entry {key}: {e}")
            await self._delete(key)
            entry = None

        if entry is None:
            self._record_miss()
            return None

        entry.metadata.accessed = time.time()
        entry.metadata.hits += 1
        await self._on_hit(key, entry)

        self._stats.hits += 1
        self._stats.cost_savings += entry.metadata.cost
        self._update_hit_rate()
        monitoring.CACHE_REQUESTS.labels(result="hit").inc()
        return entry.value

    async def set(
        self,
        prompt: str,
        model: str,
        response: GenerationResponse,
        params: Optional[Mapping[str, Any]] = None,
        ttl: Optional[int] = None,
    ) -> None:
        await self._ensure_ready()
        key = self.key_for(prompt, model, params)
        now = time.time()
        entry = CacheEntry(
            key=key,
            value=response,
            metadata=CacheEntryMetadata(
                created=now,
                accessed=now,
                hits=0,
                cost=response.usage.cost,
            ),
        )
        await self._write(key, entry, ttl or self._ttl)

    async def get_stats(self) -> CacheStatistics:
        await self._ensure_ready()
        self._update_hit_rate()
        return self._stats.model_copy()

    async def clear(self, pattern: Optional[str] = None) -> None:
        """Remove all entries, or those whose digest starts with ``pattern``."""
        await self._ensure_ready()
        await self._delete_matching(f"{KEY_PREFIX}{pattern or ''}*")
        self._stats.storage_used = 0

    # Internals -----------------------------------------------------------
    async def _on_hit(self, key: str, entry: CacheEntry) -> None:
        """Hook run after a hit has updated the entry metadata."""

    def _record_miss(self) -> None:
        self._stats.misses += 1
        self._update_hit_rate()
        monitoring.CACHE_REQUESTS.labels(result="miss").inc()

    def _update_hit_rate(self) -> None:
        total = self._stats.total_requests
        self._stats.hit_rate = self._stats.hits / total if total > 0 else 0.0


# ---------------------------------------------------------------------------
# Shared cache (Redis)
# ---------------------------------------------------------------------------


class SharedResponseCache(BaseResponseCache):
    """Redis-backed response cache with sliding expiration."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        ttl_sec: int = DEFAULT_TTL,
        password: Optional[str] = None,
        operation_timeout: float = 5.0,
        client: Optional[Any] = None,
    ) -> None:
        super().__init__(ttl_sec)
        self._redis_url = redis_url
        self._password = password
        self._timeout = operation_timeout
        self._client = client
        self._stats_loaded = False

    # Lifecycle -----------------------------------------------------------
    async def connect(self) -> None:
        await self._ensure_ready()

    async def _ensure_ready(self) -> None:
        if self._client is None:
            self._client = aioredis.from_url(
                self._redis_url,
                password=self._password,
                socket_timeout=self._timeout,
                socket_connect_timeout=self._timeout,
            )
        # Persisted stats are adopted once, before the first local update;
        # reconnects keep the in-memory counters.
        if not self._stats_loaded:
            self._stats_loaded = True
            await self._load_stats()

    async def close(self) -> None:
        if self._client is None:
            return
        if self._stats_loaded:
            await self._save_stats()
        try:
            await self._client.aclose()
        except (RedisError, OSError) as e:
            logger.error(f"Error during Redis disconnect: {e}")
        self._client = None

    async def _call(self, method: str, *args: Any) -> Any:
        if self._client is None:
            await self._ensure_ready()
        return await asyncio.wait_for(getattr(self._client, method)(*args), timeout=self._timeout)

    # Storage hooks -------------------------------------------------------
    async def _read(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = await self._call("get", key)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Cache get error: {e}")
            return None
        if raw is None:
            return None
        return _deserialize(raw)

    async def _write(self, key: str, entry: CacheEntry, ttl: int) -> None:
        payload = _serialize(entry)
        try:
            await self._call("setex", key, ttl, payload)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Cache set error: {e}")
            return
        self._stats.storage_used += len(payload)

    async def _delete_matching(self, pattern: str) -> None:
        try:
            keys = await self._scan(pattern)
            if keys:
                await self._call("delete", *keys)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Cache clear error: {e}")

    async def _delete(self, key: str) -> None:
        try:
            await self._call("delete", key)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Cache delete error: {e}")

    async def _on_hit(self, key: str, entry: CacheEntry) -> None:
        # Sliding expiration: rewrite with a fresh TTL
        try:
            await self._call("setex", key, self._ttl, _serialize(entry))
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Error updating entry stats: {e}")

    async def _scan(self, pattern: str) -> list:
        if self._client is None:
            await self._ensure_ready()
        keys = []
        async for key in self._client.scan_iter(match=pattern):
            if key == STATS_KEY or key == STATS_KEY.encode():
                continue
            keys.append(key)
        return keys

    # Maintenance ---------------------------------------------------------
    async def get_size(self) -> Dict[str, Any]:
        """Number of cached keys and Redis memory usage."""
        try:
            keys = await self._scan(f"{KEY_PREFIX}*")
            info = await self._call("info", "memory")
            memory = info.get("used_memory_human", "unknown") if isinstance(info, dict) else "unknown"
            return {"keys": len(keys), "memory": str(memory)}
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Cache size error: {e}")
            return {"keys": 0, "memory": "unknown"}

    async def prune(self, max_entries: int) -> int:
        """Drop least recently accessed entries beyond ``max_entries``.

        Returns the number of removed entries.
        """
        try:
            keys = await self._scan(f"{KEY_PREFIX}*")
            if len(keys) <= max_entries:
                return 0

            entries = []
            for key in keys:
                raw = await self._call("get", key)
                if raw is None:
                    continue
                try:
                    entries.append((key, _deserialize(raw)))
                except CacheCorruptionError:
                    await self._call("delete", key)

            entries.sort(key=lambda item: item[1].metadata.accessed)
            to_remove = [key for key, _ in entries[: max(len(entries) - max_entries, 0)]]
            if to_remove:
                await self._call("delete", *to_remove)
            logger.info(f"Pruned {len(to_remove)} cache entries")
            return len(to_remove)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Cache prune error: {e}")
            return 0

    async def _load_stats(self) -> None:
        try:
            raw = await asyncio.wait_for(self._client.get(STATS_KEY), timeout=self._timeout)
            if raw:
                saved = CacheStatistics.model_validate_json(raw)
                self._stats = saved
        except (RedisError, OSError, asyncio.TimeoutError, ValidationError) as e:
            logger.error(f"Error loading cache stats: {e}")

    async def _save_stats(self) -> None:
        try:
            self._update_hit_rate()
            await asyncio.wait_for(
                self._client.set(STATS_KEY, self._stats.model_dump_json(by_alias=True)),
                timeout=self._timeout,
            )
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Error saving cache stats: {e}")


# ---------------------------------------------------------------------------
# Local cache (LRU)
# ---------------------------------------------------------------------------


class LocalResponseCache(BaseResponseCache):
    """Bounded in-process LRU cache with TTL and a periodic expiry sweep."""

    def __init__(
        self,
        max_size: int = 1000,
        ttl_sec: int = DEFAULT_TTL,
        sweep_interval: float = 300.0,
    ) -> None:
        if max_size < 1:
            raise ConfigurationError(f"max_size must be at least 1, got {max_size}")
        super().__init__(ttl_sec)
        self._max_size = max_size
        self._sweep_interval = sweep_interval
        # key -> (entry, expires_at, size in bytes at write time)
        self._store: "OrderedDict[str, tuple[CacheEntry, float, int]]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return key in self._store

    # Lifecycle -----------------------------------------------------------
    async def connect(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            removed = await self.purge_expired()
            if removed:
                logger.debug(f"Swept {removed} expired cache entries")

    # Storage hooks -------------------------------------------------------
    async def _read(self, key: str) -> Optional[CacheEntry]:
        async with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            entry, expires_at, _ = item
            if time.time() >= expires_at:
                self._evict(key)
                return None
            self._store.move_to_end(key)
            return entry

    async def _write(self, key: str, entry: CacheEntry, ttl: int) -> None:
        async with self._lock:
            if key in self._store:
                self._evict(key)
            elif len(self._store) >= self._max_size:
                # Evict least recently accessed
                oldest_key = next(iter(self._store))
                self._evict(oldest_key)
            size = _entry_size(entry)
            self._store[key] = (entry, entry.metadata.created + ttl, size)
            self._stats.storage_used += size

    async def _delete_matching(self, pattern: str) -> None:
        async with self._lock:
            for key in [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]:
                self._evict(key)

    async def purge_expired(self) -> int:
        """Remove every expired entry; returns how many were removed."""
        now = time.time()
        async with self._lock:
            expired = [key for key, (_, expires_at, _) in self._store.items() if now >= expires_at]
            for key in expired:
                self._evict(key)
        return len(expired)

    def _evict(self, key: str) -> None:
        item = self._store.pop(key, None)
        if item is not None:
            self._stats.storage_used = max(self._stats.storage_used - item[2], 0)


def build_cache(config: CacheConfig) -> BaseResponseCache:
    """Shared cache when Redis is configured and caching enabled, else local."""
    if config.enabled and config.redis is not None:
        return SharedResponseCache(
            redis_url=config.redis.to_url(),
            ttl_sec=config.ttl,
            password=config.redis.password,
            operation_timeout=config.operation_timeout,
        )
    return LocalResponseCache(
        max_size=config.local_max_size,
        ttl_sec=config.ttl,
        sweep_interval=config.sweep_interval,
    )
