import asyncio

import pytest

from app.core.errors import RateLimitExceeded
from app.core.kv_store import InMemoryKeyValueStore
from app.core.rate_limit import RateLimiter
from conftest import FailingStore


class RoundTripStore(InMemoryKeyValueStore):
    """In-memory store that yields to the event loop on every read and increment."""

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def incr(self, key, amount=1):
        await asyncio.sleep(0)
        return await super().incr(key, amount)


async def _enforce_concurrently(limiter: RateLimiter, key: str, attempts: int) -> tuple[int, int]:
    results = await asyncio.gather(
        *(limiter.enforce(key) for _ in range(attempts)), return_exceptions=True
    )
    allowed = sum(1 for result in results if result is None)
    rejected = sum(1 for result in results if isinstance(result, RateLimitExceeded))
    return allowed, rejected


@pytest.mark.asyncio
async def test_allows_max_then_rejects(store, clock) -> None:
    limiter = RateLimiter(store, max_requests=10, window_seconds=60, clock=clock.time)

    for _ in range(10):
        await limiter.enforce("insights:1")

    result = await limiter.check_rate_limit("insights:1")
    assert result.exceeded is True
    assert 0 < result.remaining_seconds <= 60

    with pytest.raises(RateLimitExceeded) as excinfo:
        await limiter.enforce("insights:1")
    assert 0 < excinfo.value.remaining_seconds <= 60


@pytest.mark.asyncio
async def test_remaining_seconds_counts_down(store, clock) -> None:
    limiter = RateLimiter(store, max_requests=2, window_seconds=60, clock=clock.time)
    await limiter.enforce("k")
    clock.advance(20)
    await limiter.enforce("k")

    result = await limiter.check_rate_limit("k")
    assert result.remaining_seconds == 40


@pytest.mark.asyncio
async def test_window_recovers(store, clock) -> None:
    limiter = RateLimiter(store, max_requests=3, window_seconds=60, clock=clock.time)
    for _ in range(3):
        await limiter.enforce("k")
    assert (await limiter.check_rate_limit("k")).exceeded

    clock.advance(61)

    assert not (await limiter.check_rate_limit("k")).exceeded
    await limiter.enforce("k")


@pytest.mark.asyncio
async def test_keys_are_independent(store, clock) -> None:
    limiter = RateLimiter(store, max_requests=1, window_seconds=60, clock=clock.time)
    await limiter.enforce("insights:1")

    assert (await limiter.check_rate_limit("insights:1")).exceeded
    assert not (await limiter.check_rate_limit("insights:2")).exceeded


@pytest.mark.asyncio
async def test_clear_resets_window(store, clock) -> None:
    limiter = RateLimiter(store, max_requests=1, window_seconds=60, clock=clock.time)
    await limiter.enforce("k")

    await limiter.clear("k")

    assert not (await limiter.check_rate_limit("k")).exceeded


@pytest.mark.asyncio
async def test_counter_without_expiry_gets_a_fresh_window(store, clock) -> None:
    await store.set("rate_limit:k", "5")
    limiter = RateLimiter(store, max_requests=5, window_seconds=60, clock=clock.time)

    result = await limiter.check_rate_limit("k")

    assert result.exceeded is True
    assert result.remaining_seconds == 60
    assert await store.ttl("rate_limit:k") == 60


@pytest.mark.asyncio
async def test_store_failure_falls_back_to_local_window(clock) -> None:
    limiter = RateLimiter(FailingStore(), max_requests=2, window_seconds=60, clock=clock.time)

    await limiter.enforce("k")
    await limiter.enforce("k")
    with pytest.raises(RateLimitExceeded) as excinfo:
        await limiter.enforce("k")

    assert excinfo.value.remaining_seconds == 60
    assert limiter.fallback_activation_count >= 3

    clock.advance(60)
    await limiter.enforce("k")


@pytest.mark.asyncio
async def test_local_only_limiter(clock) -> None:
    limiter = RateLimiter(None, max_requests=1, window_seconds=30, clock=clock.time)
    await limiter.enforce("k")

    result = await limiter.check_rate_limit("k")

    assert result.exceeded
    assert result.remaining_seconds == 30
    assert limiter.fallback_activation_count == 0


@pytest.mark.asyncio
async def test_concurrent_requests_respect_the_cap(clock) -> None:
    store = RoundTripStore(clock=clock.time)
    limiter = RateLimiter(store, max_requests=10, window_seconds=60, clock=clock.time)

    allowed, rejected = await _enforce_concurrently(limiter, "insights:1", 25)

    assert (allowed, rejected) == (10, 15)
    assert await store.ttl("rate_limit:insights:1") == 60


@pytest.mark.asyncio
async def test_concurrent_requests_respect_the_cap_on_fallback(clock) -> None:
    limiter = RateLimiter(FailingStore(), max_requests=10, window_seconds=60, clock=clock.time)

    allowed, rejected = await _enforce_concurrently(limiter, "insights:1", 25)

    assert (allowed, rejected) == (10, 15)
    assert limiter.fallback_activation_count == 25


@pytest.mark.asyncio
async def test_rejected_attempts_do_not_extend_the_window(store, clock) -> None:
    limiter = RateLimiter(store, max_requests=1, window_seconds=60, clock=clock.time)
    await limiter.enforce("k")
    clock.advance(30)
    with pytest.raises(RateLimitExceeded) as excinfo:
        await limiter.enforce("k")
    assert excinfo.value.remaining_seconds == 30

    clock.advance(31)

    await limiter.enforce("k")
