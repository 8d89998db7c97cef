import asyncio
import logging
from datetime import date, timedelta

import pytest

from app.core.kv_store import InMemoryKeyValueStore
from app.domain.insights.cache import GenerationCache, utcnow
from app.domain.insights.triggers import InsightTrigger
from conftest import seed_transactions, seed_user


class FakeService:
    """Records generation calls; fails the first ``failures`` of them."""

    def __init__(self, cache: GenerationCache, failures: int = 0) -> None:
        self.cache = cache
        self.failures = failures
        self.calls: list[tuple[int, bool]] = []

    async def generate_insights(self, user_id: int, force_regenerate: bool = False):
        self.calls.append((user_id, force_regenerate))
        if len(self.calls) <= self.failures:
            raise RuntimeError(f"generation failed #{len(self.calls)}")
        await self.cache.mark_generated(user_id)
        return []


@pytest.fixture
def real_time_cache() -> GenerationCache:
    # Transaction.created_at uses the wall clock, so the cache must too.
    return GenerationCache(InMemoryKeyValueStore(), ttl_seconds=3600)


def _trigger(service, session_factory, **kwargs) -> InsightTrigger:
    kwargs.setdefault("threshold", 10)
    kwargs.setdefault("retry_delay", 0)
    return InsightTrigger(service, session_factory, **kwargs)


async def _add_expenses(session_factory, user_id: int, count: int) -> None:
    await seed_transactions(
        session_factory, user_id, None, [(date(2026, 3, 1), 10)] * count
    )


@pytest.mark.asyncio
async def test_first_generation_always_triggers(session_factory, real_time_cache) -> None:
    user_id = await seed_user(session_factory)
    trigger = _trigger(FakeService(real_time_cache), session_factory)

    assert await trigger.should_trigger_generation(user_id) is True


@pytest.mark.asyncio
async def test_threshold_counts_transactions_since_last_run(session_factory, real_time_cache) -> None:
    user_id = await seed_user(session_factory)
    await real_time_cache.mark_generated(user_id, utcnow() - timedelta(seconds=5))
    trigger = _trigger(FakeService(real_time_cache), session_factory)

    await _add_expenses(session_factory, user_id, 9)
    assert await trigger.should_trigger_generation(user_id) is False

    await _add_expenses(session_factory, user_id, 1)
    assert await trigger.should_trigger_generation(user_id) is True


@pytest.mark.asyncio
async def test_fresh_cache_skips_generation(session_factory, real_time_cache) -> None:
    user_id = await seed_user(session_factory)
    await real_time_cache.mark_generated(user_id)
    await _add_expenses(session_factory, user_id, 25)
    service = FakeService(real_time_cache)

    task = await _trigger(service, session_factory).check_and_trigger_for_transaction_count(user_id)

    assert task is None
    assert service.calls == []


@pytest.mark.asyncio
async def test_stale_cache_with_enough_writes_generates(session_factory, real_time_cache) -> None:
    user_id = await seed_user(session_factory)
    await real_time_cache.mark_generated(user_id, utcnow() - timedelta(hours=2))
    await _add_expenses(session_factory, user_id, 10)
    service = FakeService(real_time_cache)

    task = await _trigger(service, session_factory).check_and_trigger_for_transaction_count(user_id)

    assert task is not None
    await task
    assert service.calls == [(user_id, False)]


@pytest.mark.asyncio
async def test_retries_until_success(session_factory, real_time_cache) -> None:
    user_id = await seed_user(session_factory)
    service = FakeService(real_time_cache, failures=2)
    trigger = _trigger(service, session_factory, max_attempts=3)

    task = await trigger.check_and_trigger_for_transaction_count(user_id)
    await task

    assert len(service.calls) == 3
    assert await real_time_cache.get_last_generated(user_id) is not None


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(session_factory, real_time_cache, caplog) -> None:
    user_id = await seed_user(session_factory)
    service = FakeService(real_time_cache, failures=99)
    trigger = _trigger(service, session_factory, max_attempts=2)

    with caplog.at_level(logging.ERROR, logger="app.domain.insights.triggers"):
        task = await trigger.check_and_trigger_for_transaction_count(user_id)
        await task

    assert task.exception() is None
    assert len(service.calls) == 2
    assert "failed after 2 attempt(s)" in caplog.text


@pytest.mark.asyncio
async def test_check_failure_is_swallowed(real_time_cache) -> None:
    def broken_session_factory():
        raise RuntimeError("database unavailable")

    trigger = _trigger(FakeService(real_time_cache), broken_session_factory)
    await real_time_cache.mark_generated(1, utcnow() - timedelta(hours=2))

    assert await trigger.check_and_trigger_for_transaction_count(1) is None


@pytest.mark.asyncio
async def test_dispatch_runs_detached(session_factory, real_time_cache) -> None:
    user_id = await seed_user(session_factory)
    service = FakeService(real_time_cache, failures=99)
    trigger = _trigger(service, session_factory, max_attempts=1)

    task = trigger.dispatch(user_id)
    assert isinstance(task, asyncio.Task)
    assert trigger.pending >= 1

    await trigger.drain()

    assert trigger.pending == 0
    assert service.calls == [(user_id, False)]
