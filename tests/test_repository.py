from datetime import date

import pytest

from app.domain.insights.repository import InsightRepository
from conftest import seed_category, seed_transactions, seed_user


@pytest.mark.asyncio
@pytest.mark.filterwarnings("error::sqlalchemy.exc.SAWarning")
async def test_active_user_ids_are_distinct_and_capped(session_factory) -> None:
    user_ids = []
    for email in ("ana@example.com", "ben@example.com", "cai@example.com"):
        user_id = await seed_user(session_factory, email)
        category = await seed_category(session_factory, user_id, "Groceries")
        await seed_transactions(
            session_factory,
            user_id,
            category,
            [(date(2026, 3, 1), 20), (date(2026, 3, 2), 35), (date(2026, 3, 3), 12)],
        )
        user_ids.append(user_id)
    await seed_user(session_factory, "idle@example.com")

    async with session_factory() as db:
        repository = InsightRepository(db)
        everyone = await repository.distinct_active_user_ids(limit=10)
        capped = await repository.distinct_active_user_ids(limit=2)

    assert everyone == sorted(user_ids)
    assert capped == sorted(user_ids)[:2]
