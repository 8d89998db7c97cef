"""Services for generating and storing financial insights."""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Callable, Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.core.kv_store import get_kv_store
from app.domain.categories.models import Category
from app.domain.transactions.models import Transaction

from .cache import GenerationCache, utcnow
from .models import Insight
from .repository import InsightRepository
from .rules import InsightCandidate, RuleInput, execute_rules_for_category, shift_month

logger = logging.getLogger(__name__)


def build_candidates(
    user_id: int,
    transactions: Sequence[Transaction],
    categories: Sequence[Category],
    budgets: Mapping[int, float],
    current_month: date,
) -> list[InsightCandidate]:
    """Run every rule over every category with activity, most urgent first.

    The sort is stable, so candidates of equal priority keep category order.
    """
    by_category: dict[int, list[Transaction]] = defaultdict(list)
    for transaction in transactions:
        if transaction.category_id is not None:
            by_category[transaction.category_id].append(transaction)

    candidates: list[InsightCandidate] = []
    for category in categories:
        category_transactions = by_category.get(category.id)
        if not category_transactions:
            continue
        candidates.extend(
            execute_rules_for_category(
                RuleInput(
                    user_id=user_id,
                    category_id=category.id,
                    category_name=category.name,
                    transactions=category_transactions,
                    current_month=current_month,
                    current_budget=budgets.get(category.id),
                )
            )
        )

    candidates.sort(key=lambda candidate: candidate.priority, reverse=True)
    return candidates


class InsightService:
    """Per-user insight generation: cache check, rule sweep, full replace.

    Each call opens its own session, so concurrent generations (batch
    fan-out, background triggers) never share one. There is no per-user lock:
    two overlapping runs for the same user both replace the set and the last
    commit wins.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: GenerationCache,
        *,
        lookback_months: int = 2,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.cache = cache
        self.lookback_months = lookback_months
        self._clock = clock

    async def generate_insights(self, user_id: int, force_regenerate: bool = False) -> list[Insight]:
        """Return the user's insights, regenerating unless a fresh run is cached.

        Persistence failures propagate as ``DataAccessError`` and leave the
        cache untouched so the next call recomputes.
        """
        if not force_regenerate and await self.cache.is_fresh(user_id):
            logger.debug("Insight cache hit for user %s", user_id)
            async with self._session_factory() as db:
                return await InsightRepository(db).list_active_insights(user_id)

        started_at = self._clock()
        current_month = started_at.date()
        window_start = shift_month(current_month, -self.lookback_months)
        window_end = shift_month(current_month, 1)

        async with self._session_factory() as db:
            repository = InsightRepository(db)
            transactions = await repository.fetch_expense_transactions(
                user_id, window_start, window_end
            )
            categories = await repository.fetch_categories(user_id)

            if not transactions or not categories:
                await repository.replace_insights(user_id, [])
                await self.cache.mark_generated(user_id, started_at)
                logger.info("No expense data for user %s; cleared insights", user_id)
                return []

            budgets = await repository.fetch_budgets(user_id)
            candidates = build_candidates(
                user_id, transactions, categories, budgets, current_month
            )
            insights = await repository.replace_insights(user_id, candidates)

        await self.cache.mark_generated(user_id, started_at)
        logger.info(
            "Generated %d insight(s) for user %s from %d transaction(s)",
            len(insights),
            user_id,
            len(transactions),
        )
        return insights


_insight_service: InsightService | None = None


def build_insight_service(clock: Callable[[], datetime] = utcnow) -> InsightService:
    """Service over the live database and KV store, configured from settings."""
    cache = GenerationCache(
        get_kv_store(),
        ttl_seconds=settings.INSIGHTS_CACHE_TTL_SECONDS,
        retention_seconds=settings.INSIGHTS_CACHE_RETENTION_SECONDS,
        clock=clock,
    )
    return InsightService(
        AsyncSessionLocal,
        cache,
        lookback_months=settings.INSIGHTS_LOOKBACK_MONTHS,
        clock=clock,
    )


def get_insight_service() -> InsightService:
    """Dependency returning the process-wide insight service."""
    global _insight_service
    if _insight_service is None:
        _insight_service = build_insight_service()
    return _insight_service


__all__ = ["InsightService", "build_candidates", "build_insight_service", "get_insight_service"]
