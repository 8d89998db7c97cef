"""Key-value store used for generation cache entries and rate-limit counters."""
from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable, Protocol

import redis.asyncio as redis

from app.core.config import settings
from app.core.errors import KeyValueStoreError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class KeyValueStore(Protocol):
    """Minimal async KV contract; ``ttl`` follows redis (-2 missing, -1 no expiry)."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def incr(self, key: str, amount: int = 1) -> int: ...

    async def expire(self, key: str, ttl: int) -> None: ...

    async def ttl(self, key: str) -> int: ...


class RedisKeyValueStore:
    """Redis-backed store, authoritative across process instances."""

    def __init__(self, url: str, client: redis.Redis | None = None) -> None:
        self._url = url
        self._client = client

    def _ensure_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> str | None:
        try:
            value = await self._ensure_client().get(key)
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"GET {key} failed: {exc}") from exc
        return str(value) if value is not None else None

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        try:
            if ttl:
                await self._ensure_client().set(key, value, ex=ttl)
            else:
                await self._ensure_client().set(key, value)
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"SET {key} failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._ensure_client().delete(key)
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"DEL {key} failed: {exc}") from exc

    async def incr(self, key: str, amount: int = 1) -> int:
        try:
            return int(await self._ensure_client().incr(key, amount))
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"INCR {key} failed: {exc}") from exc

    async def expire(self, key: str, ttl: int) -> None:
        try:
            await self._ensure_client().expire(key, ttl)
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"EXPIRE {key} failed: {exc}") from exc

    async def ttl(self, key: str) -> int:
        try:
            return int(await self._ensure_client().ttl(key))
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"TTL {key} failed: {exc}") from exc

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class InMemoryKeyValueStore:
    """Process-local store for single-instance deployments and tests.

    Expiry is evaluated lazily against ``clock`` on every access, which makes
    the store deterministic under a fake clock.
    """

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def incr(self, key: str, amount: int = 1) -> int:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                value, expires_at = 0, None
            else:
                value, expires_at = int(entry[0]), entry[1]
            value += amount
            self._data[key] = (str(value), expires_at)
            return value

    async def expire(self, key: str, ttl: int) -> None:
        entry = self._live(key)
        if entry is not None:
            self._data[key] = (entry[0], self._clock() + ttl)

    async def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return max(1, math.ceil(entry[1] - self._clock()))

    def clear(self) -> None:
        self._data.clear()


_kv_store: KeyValueStore | None = None


def get_kv_store() -> KeyValueStore:
    """Return the process-wide store, redis when configured."""
    global _kv_store
    if _kv_store is None:
        if settings.redis_enabled:
            logger.info("Using redis key-value store")
            _kv_store = RedisKeyValueStore(settings.REDIS_URL)
        else:
            logger.warning("No redis configured; using in-memory key-value store (single instance only)")
            _kv_store = InMemoryKeyValueStore()
    return _kv_store


async def close_kv_store() -> None:
    global _kv_store
    if isinstance(_kv_store, RedisKeyValueStore):
        await _kv_store.close()
    _kv_store = None


__all__ = [
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "RedisKeyValueStore",
    "close_kv_store",
    "get_kv_store",
]
