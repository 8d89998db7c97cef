from dataclasses import dataclass
from datetime import date

import pytest
from sqlalchemy import func, select

from app.core.errors import DataAccessError
from app.domain.insights import services
from app.domain.insights.models import Insight
from app.domain.insights.repository import InsightRepository
from app.domain.insights.rules import InsightCandidate
from app.domain.insights.services import InsightService, build_candidates
from conftest import seed_category, seed_transactions, seed_user


def _service(session_factory, cache, clock) -> InsightService:
    return InsightService(session_factory, cache, lookback_months=2, clock=clock)


async def _seed_dining(session_factory, user_id: int) -> int:
    dining = await seed_category(session_factory, user_id, "Dining")
    await seed_transactions(
        session_factory,
        user_id,
        dining,
        [
            (date(2026, 2, 3), 200),
            (date(2026, 2, 20), 140),
            (date(2026, 3, 2), 300),
            (date(2026, 3, 10), 180),
        ],
    )
    return dining


async def _count_rows(session_factory, user_id: int) -> int:
    async with session_factory() as db:
        return await db.scalar(
            select(func.count()).select_from(Insight).where(Insight.user_id == user_id)
        )


@pytest.mark.asyncio
async def test_no_transactions_returns_empty_and_marks_cache(session_factory, cache, clock) -> None:
    user_id = await seed_user(session_factory)
    await seed_category(session_factory, user_id, "Dining")

    insights = await _service(session_factory, cache, clock).generate_insights(user_id)

    assert insights == []
    assert await cache.is_fresh(user_id)


@pytest.mark.asyncio
async def test_generates_spending_increase_for_dining(session_factory, cache, clock) -> None:
    user_id = await seed_user(session_factory)
    await _seed_dining(session_factory, user_id)

    insights = await _service(session_factory, cache, clock).generate_insights(user_id)

    increase = next(i for i in insights if i.type == "spending_increase")
    assert increase.priority == 4
    assert increase.title == "Dining spending increased 41%"
    assert increase.insight_metadata["percent_change"] == pytest.approx(41.2)
    assert [i.priority for i in insights] == sorted((i.priority for i in insights), reverse=True)
    assert await cache.get_last_generated(user_id) == clock.now


@pytest.mark.asyncio
async def test_income_and_uncategorized_transactions_are_ignored(session_factory, cache, clock) -> None:
    user_id = await seed_user(session_factory)
    dining = await seed_category(session_factory, user_id, "Dining")
    await seed_transactions(
        session_factory, user_id, dining, [(date(2026, 2, 3), 100), (date(2026, 3, 3), 900)], "income"
    )
    await seed_transactions(session_factory, user_id, None, [(date(2026, 3, 3), 900)])

    insights = await _service(session_factory, cache, clock).generate_insights(user_id)

    assert insights == []


@pytest.mark.asyncio
async def test_regeneration_replaces_the_full_set(session_factory, cache, clock) -> None:
    user_id = await seed_user(session_factory)
    await _seed_dining(session_factory, user_id)
    service = _service(session_factory, cache, clock)

    first = await service.generate_insights(user_id, force_regenerate=True)
    second = await service.generate_insights(user_id, force_regenerate=True)

    assert [(i.type, i.title) for i in first] == [(i.type, i.title) for i in second]
    assert await _count_rows(session_factory, user_id) == len(second)


@pytest.mark.asyncio
async def test_fresh_cache_serves_stored_insights(session_factory, cache, clock) -> None:
    user_id = await seed_user(session_factory)
    await _seed_dining(session_factory, user_id)
    service = _service(session_factory, cache, clock)
    generated = await service.generate_insights(user_id)

    async with session_factory() as db:
        await InsightRepository(db).set_dismissed(user_id, generated[0].id, True, clock.now)

    cached = await service.generate_insights(user_id)
    assert len(cached) == len(generated) - 1

    # A forced run starts over, dismissals included.
    regenerated = await service.generate_insights(user_id, force_regenerate=True)
    assert len(regenerated) == len(generated)
    assert not any(i.is_dismissed for i in regenerated)


@pytest.mark.asyncio
async def test_stale_cache_regenerates(session_factory, cache, clock) -> None:
    user_id = await seed_user(session_factory)
    service = _service(session_factory, cache, clock)
    assert await service.generate_insights(user_id) == []

    await _seed_dining(session_factory, user_id)
    assert await service.generate_insights(user_id) == []

    clock.advance(3601)
    assert len(await service.generate_insights(user_id)) > 0


@pytest.mark.asyncio
async def test_failed_write_leaves_cache_untouched(session_factory, cache, clock, monkeypatch) -> None:
    user_id = await seed_user(session_factory)
    await _seed_dining(session_factory, user_id)

    async def broken_replace(self, user_id, candidates):
        raise DataAccessError("disk full")

    monkeypatch.setattr(InsightRepository, "replace_insights", broken_replace)

    with pytest.raises(DataAccessError):
        await _service(session_factory, cache, clock).generate_insights(user_id)

    assert await cache.get_last_generated(user_id) is None


@pytest.mark.asyncio
async def test_user_without_categories_gets_no_insights(session_factory, cache, clock) -> None:
    user_id = await seed_user(session_factory)
    await seed_transactions(
        session_factory,
        user_id,
        None,
        [(date(2026, 2, 3), 100), (date(2026, 3, 3), 400), (date(2026, 3, 9), 250)],
    )

    insights = await _service(session_factory, cache, clock).generate_insights(user_id, True)

    assert insights == []
    assert await _count_rows(session_factory, user_id) == 0
    assert await cache.get_last_generated(user_id) == clock.now


@pytest.mark.asyncio
async def test_rejected_insert_keeps_previous_insights(session_factory, cache, clock, monkeypatch) -> None:
    user_id = await seed_user(session_factory)
    await _seed_dining(session_factory, user_id)
    service = _service(session_factory, cache, clock)
    previous = await service.generate_insights(user_id)
    generated_at = clock.now

    clock.advance(7200)
    out_of_range = InsightCandidate(user_id, "spending_increase", 9, "Broken", "Priority too high")
    monkeypatch.setattr(services, "build_candidates", lambda *args: [out_of_range])

    with pytest.raises(DataAccessError):
        await service.generate_insights(user_id, force_regenerate=True)

    async with session_factory() as db:
        stored = await InsightRepository(db).list_active_insights(user_id)
    assert sorted((i.type, i.title) for i in stored) == sorted((i.type, i.title) for i in previous)
    assert await cache.get_last_generated(user_id) == generated_at


@pytest.mark.asyncio
async def test_users_do_not_see_each_other(session_factory, cache, clock) -> None:
    ana = await seed_user(session_factory, "ana@example.com")
    ben = await seed_user(session_factory, "ben@example.com")
    await _seed_dining(session_factory, ana)

    service = _service(session_factory, cache, clock)
    await service.generate_insights(ana)
    assert await service.generate_insights(ben) == []
    assert await _count_rows(session_factory, ben) == 0


@dataclass
class _Row:
    id: int
    amount: float
    date: date
    category_id: int = 1


@dataclass
class _Category:
    id: int
    name: str


def test_build_candidates_orders_by_priority() -> None:
    rows = [_Row(id=day, amount=50, date=date(2026, 2, day)) for day in range(1, 10)]
    rows.append(_Row(id=10, amount=500, date=date(2026, 3, 3)))
    rows.append(_Row(id=11, amount=999, date=date(2026, 3, 4), category_id=2))

    candidates = build_candidates(1, rows, [_Category(1, "Travel")], {}, date(2026, 3, 15))

    assert [c.type for c in candidates] == ["unusual_expense", "budget_recommendation"]
