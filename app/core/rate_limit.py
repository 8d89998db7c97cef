"""Fixed-window rate limiting backed by the shared key-value store."""
from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, DefaultDict

from app.core.config import settings
from app.core.errors import KeyValueStoreError, RateLimitExceeded
from app.core.kv_store import KeyValueStore, get_kv_store

logger = logging.getLogger(__name__)

KEY_PREFIX = "rate_limit:"


@dataclass(slots=True, frozen=True)
class RateLimitResult:
    exceeded: bool
    remaining_seconds: int = 0


class RateLimiter:
    """Allow at most ``max_requests`` actions per ``window_seconds`` per key.

    The key-value store is authoritative. When it errors, the limiter degrades
    to a process-local sliding window (timestamps pruned on access) that is
    not shared between instances.
    """

    def __init__(
        self,
        store: KeyValueStore | None,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._attempts: DefaultDict[str, Deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self.fallback_activation_count = 0

    async def check_rate_limit(self, key: str) -> RateLimitResult:
        """Return whether ``key`` is over its limit and how long until it frees up."""
        store = self._store
        if store is not None:
            try:
                return await self._check_store(store, key)
            except KeyValueStoreError as exc:
                self._activate_fallback(key, exc)
        return await self._check_local(key)

    async def record_action(self, key: str) -> None:
        """Count one action for ``key`` in the current window."""
        store = self._store
        if store is not None:
            try:
                await self._record_store(store, key)
                return
            except KeyValueStoreError as exc:
                self._activate_fallback(key, exc)
        await self._record_local(key)

    async def clear(self, key: str) -> None:
        """Reset the window for ``key``."""
        if self._store is not None:
            try:
                await self._store.delete(KEY_PREFIX + key)
            except KeyValueStoreError as exc:
                self._activate_fallback(key, exc)
        async with self._lock:
            self._attempts.pop(key, None)

    async def enforce(self, key: str) -> None:
        """Count one action for ``key``, raising ``RateLimitExceeded`` when over the limit.

        The counter is incremented before the decision so concurrent callers,
        here or on another instance, each see a distinct count.
        """
        store = self._store
        result: RateLimitResult | None = None
        if store is not None:
            try:
                result = await self._enforce_store(store, key)
            except KeyValueStoreError as exc:
                self._activate_fallback(key, exc)
        if result is None:
            result = await self._enforce_local(key)

        if result.exceeded:
            logger.info(
                "Rate limit exceeded for %s (%ss remaining)", key, result.remaining_seconds
            )
            raise RateLimitExceeded(result.remaining_seconds)

    async def _check_store(self, store: KeyValueStore, key: str) -> RateLimitResult:
        raw = await store.get(KEY_PREFIX + key)
        count = int(raw) if raw else 0
        if count < self.max_requests:
            return RateLimitResult(exceeded=False)
        return RateLimitResult(exceeded=True, remaining_seconds=await self._store_remaining(store, key))

    async def _record_store(self, store: KeyValueStore, key: str) -> None:
        count = await store.incr(KEY_PREFIX + key)
        if count == 1:
            await store.expire(KEY_PREFIX + key, self.window_seconds)

    async def _enforce_store(self, store: KeyValueStore, key: str) -> RateLimitResult:
        count = await store.incr(KEY_PREFIX + key)
        if count == 1:
            await store.expire(KEY_PREFIX + key, self.window_seconds)
        if count <= self.max_requests:
            return RateLimitResult(exceeded=False)
        return RateLimitResult(exceeded=True, remaining_seconds=await self._store_remaining(store, key))

    async def _store_remaining(self, store: KeyValueStore, key: str) -> int:
        ttl = await store.ttl(KEY_PREFIX + key)
        if ttl == -1:
            # Counter lost its expiry (crash between INCR and EXPIRE); restart the window.
            await store.expire(KEY_PREFIX + key, self.window_seconds)
            ttl = self.window_seconds
        return min(max(ttl, 1), self.window_seconds)

    def _prune(self, bucket: Deque[float], now: float) -> None:
        window_start = now - self.window_seconds
        while bucket and bucket[0] <= window_start:
            bucket.popleft()

    def _local_remaining(self, bucket: Deque[float], now: float) -> int:
        remaining = math.ceil(bucket[0] + self.window_seconds - now)
        return min(max(remaining, 1), self.window_seconds)

    async def _check_local(self, key: str) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            bucket = self._attempts[key]
            self._prune(bucket, now)
            if len(bucket) < self.max_requests:
                return RateLimitResult(exceeded=False)
            return RateLimitResult(exceeded=True, remaining_seconds=self._local_remaining(bucket, now))

    async def _record_local(self, key: str) -> None:
        async with self._lock:
            now = self._clock()
            bucket = self._attempts[key]
            self._prune(bucket, now)
            bucket.append(now)
            self._drop_empty_buckets()

    async def _enforce_local(self, key: str) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            bucket = self._attempts[key]
            self._prune(bucket, now)
            if len(bucket) >= self.max_requests:
                return RateLimitResult(exceeded=True, remaining_seconds=self._local_remaining(bucket, now))
            bucket.append(now)
            self._drop_empty_buckets()
            return RateLimitResult(exceeded=False)

    def _drop_empty_buckets(self) -> None:
        for stale_key in [k for k, v in self._attempts.items() if not v]:
            del self._attempts[stale_key]

    def _activate_fallback(self, key: str, exc: Exception) -> None:
        self.fallback_activation_count += 1
        logger.warning(
            "Rate limit store unavailable, using in-memory fallback for %s (activations=%d): %s",
            key,
            self.fallback_activation_count,
            exc,
        )


_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Dependency returning the on-demand generation limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(
            get_kv_store(),
            max_requests=settings.RATE_LIMIT_MAX,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        )
    return _rate_limiter


__all__ = ["RateLimitResult", "RateLimiter", "get_rate_limiter"]
