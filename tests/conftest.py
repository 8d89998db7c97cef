"""Shared fixtures: a throwaway sqlite database, fake clocks and seed helpers."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

# Keep application imports away from ./pocketwise.db and any real redis.
_TMP_DIR = tempfile.mkdtemp(prefix="pocketwise-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/app.db"
os.environ["REDIS_URL"] = ""
os.environ["ENV"] = "test"
os.environ["INSIGHTS_SCHEDULER_ENABLED"] = "false"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from app.core.database import Base  # noqa: E402
from app.core.errors import KeyValueStoreError  # noqa: E402
from app.core.kv_store import InMemoryKeyValueStore  # noqa: E402
from app.domain.budgets.models import Budget  # noqa: E402
from app.domain.categories.models import Category  # noqa: E402
from app.domain.insights.cache import GenerationCache  # noqa: E402
from app.domain.insights.models import Insight  # noqa: E402, F401
from app.domain.transactions.models import Transaction  # noqa: E402
from app.domain.users.models import User  # noqa: E402


class FakeClock:
    """Settable UTC clock usable as both a datetime and an epoch-seconds source."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def time(self) -> float:
        return self.now.timestamp()

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FailingStore:
    """Store whose every call fails, as when redis is unreachable."""

    async def get(self, key):
        raise KeyValueStoreError("down")

    async def set(self, key, value, ttl=None):
        raise KeyValueStoreError("down")

    async def delete(self, key):
        raise KeyValueStoreError("down")

    async def incr(self, key, amount=1):
        raise KeyValueStoreError("down")

    async def expire(self, key, ttl):
        raise KeyValueStoreError("down")

    async def ttl(self, key):
        raise KeyValueStoreError("down")


@dataclass
class Txn:
    """Plain stand-in for a transaction row, enough for the rules."""

    id: int
    amount: float
    date: date


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock: FakeClock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock.time)


@pytest.fixture
def cache(store: InMemoryKeyValueStore, clock: FakeClock) -> GenerationCache:
    return GenerationCache(store, ttl_seconds=3600, clock=clock)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def seed_user(session_factory, email: str = "ana@example.com") -> int:
    async with session_factory() as db:
        user = User(email=email)
        db.add(user)
        await db.commit()
        return user.id


async def seed_category(session_factory, user_id: int, name: str, budget: float | None = None) -> int:
    async with session_factory() as db:
        category = Category(user_id=user_id, name=name, type="expense")
        db.add(category)
        await db.flush()
        if budget is not None:
            db.add(Budget(user_id=user_id, category_id=category.id, amount=Decimal(str(budget))))
        await db.commit()
        return category.id


async def seed_transactions(
    session_factory,
    user_id: int,
    category_id: int | None,
    entries: list[tuple[date, float]],
    type_: str = "expense",
) -> None:
    async with session_factory() as db:
        db.add_all(
            Transaction(
                user_id=user_id,
                category_id=category_id,
                amount=Decimal(str(amount)),
                type=type_,
                date=day,
            )
            for day, amount in entries
        )
        await db.commit()
