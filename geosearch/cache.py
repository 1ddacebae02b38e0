"""Caching helpers with Redis primary and in-memory fallback.

Backends are byte-oriented and async. The Redis client is the synchronous
one, so blocking calls are pushed to a worker thread with
``asyncio.to_thread``. Backend failures surface as
:class:`~geosearch.errors.CacheError`; callers treat them as misses.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

import redis

from .config import Settings, settings as default_settings
from .errors import CacheError

logger = logging.getLogger(__name__)

SCAN_BATCH_SIZE = 500


class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[bytes]: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_by_prefix(self, prefix: str) -> int: ...


@dataclass
class RedisCache:
    client: redis.Redis

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await asyncio.to_thread(self.client.get, key)
        except redis.RedisError as exc:
            raise CacheError(f"Redis get failed for {key}: {exc}") from exc

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        try:
            await asyncio.to_thread(self.client.setex, key, ttl_seconds, value)
        except redis.RedisError as exc:
            raise CacheError(f"Redis set failed for {key}: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete, key)
        except redis.RedisError as exc:
            raise CacheError(f"Redis delete failed for {key}: {exc}") from exc

    async def delete_by_prefix(self, prefix: str) -> int:
        try:
            return await asyncio.to_thread(self._delete_matching, f"{prefix}*")
        except redis.RedisError as exc:
            raise CacheError(f"Redis prefix delete failed for {prefix}: {exc}") from exc

    def _delete_matching(self, pattern: str) -> int:
        # SCAN instead of KEYS so large keyspaces do not block the server
        deleted = 0
        batch: list = []
        for key in self.client.scan_iter(match=pattern, count=SCAN_BATCH_SIZE):
            batch.append(key)
            if len(batch) >= SCAN_BATCH_SIZE:
                deleted += self.client.delete(*batch)
                batch = []
        if batch:
            deleted += self.client.delete(*batch)
        return deleted


class InMemoryCache:
    """Process-local fallback holding at most ``max_entries`` keys.

    A full store first drops expired entries, then the oldest writes.
    """

    def __init__(self, clock: Callable[[], float] = time.time, max_entries: int = 10000) -> None:
        self._store: Dict[str, tuple[float, bytes]] = {}
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._clock = clock

    async def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            value = self._store.get(key)
            if not value:
                return None
            expires_at, payload = value
            if expires_at <= self._clock():
                self._store.pop(key, None)
                return None
            return payload

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            # Re-inserting moves the key to the back of the eviction order
            self._store.pop(key, None)
            if len(self._store) >= self.max_entries:
                self._purge_expired(now)
            while self._store and len(self._store) >= self.max_entries:
                oldest = next(iter(self._store))
                del self._store[oldest]
            self._store[key] = (now + ttl_seconds, value)

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._store.items() if expires_at <= now]
        for key in expired:
            del self._store[key]
        if expired:
            logger.debug("in-memory cache purged %s expired entries", len(expired))

    async def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    async def delete_by_prefix(self, prefix: str) -> int:
        with self._lock:
            matching = [key for key in self._store if key.startswith(prefix)]
            for key in matching:
                del self._store[key]
            return len(matching)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._store)


def create_redis_client(config: Settings | None = None) -> redis.Redis:
    cfg = config or default_settings
    return redis.Redis(host=cfg.redis_host, port=cfg.redis_port, decode_responses=False)


def get_cache(config: Settings | None = None) -> CacheStore:
    """Connect to Redis, or fall back to a process-local cache when it is down."""
    cfg = config or default_settings
    try:
        client = create_redis_client(cfg)
        client.ping()
        logger.info("Using Redis cache at %s:%s", cfg.redis_host, cfg.redis_port)
        return RedisCache(client)
    except redis.RedisError:
        logger.warning("Redis not available, using in-memory cache")
        return InMemoryCache(max_entries=cfg.memory_cache_max_entries)
