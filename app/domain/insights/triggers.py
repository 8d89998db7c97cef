"""Opportunistic insight regeneration after transaction writes.

The write path calls :meth:`InsightTrigger.dispatch` and returns immediately.
Whatever happens afterwards (the threshold check, generation, retries) runs
in detached tasks whose failures are logged and dropped. Callers get no
guarantee that insights reflect a write by the time its response is sent.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.core.errors import TriggerFailure

from .cache import GenerationCache
from .repository import InsightRepository
from .services import InsightService, get_insight_service

logger = logging.getLogger(__name__)


class InsightTrigger:
    def __init__(
        self,
        service: InsightService,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        threshold: int = 10,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
    ) -> None:
        self.service = service
        self._session_factory = session_factory
        self.threshold = threshold
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self._tasks: set[asyncio.Task] = set()

    @property
    def cache(self) -> GenerationCache:
        return self.service.cache

    async def should_trigger_generation(self, user_id: int) -> bool:
        """True when the user never generated, or wrote ``threshold``+ transactions since."""
        last_generated = await self.cache.get_last_generated(user_id)
        if last_generated is None:
            return True

        async with self._session_factory() as db:
            count = await InsightRepository(db).count_transactions_since(user_id, last_generated)
        return count >= self.threshold

    async def check_and_trigger_for_transaction_count(
        self, user_id: int
    ) -> Optional[asyncio.Task]:
        """Start a detached generation when the cache has lapsed and the threshold is met.

        Returns the started task (or ``None``); never raises.
        """
        try:
            if await self.cache.is_fresh(user_id):
                return None
            if not await self.should_trigger_generation(user_id):
                return None
        except Exception:  # noqa: BLE001
            logger.exception("Insight trigger check failed for user %s", user_id)
            return None

        logger.info(
            "User %s reached %d new transactions; generating insights in background",
            user_id,
            self.threshold,
        )
        return self._spawn(self._generate_with_retry(user_id), f"insights-generate-{user_id}")

    def dispatch(self, user_id: int) -> asyncio.Task:
        """Schedule the whole check off the caller's critical path."""
        return self._spawn(
            self.check_and_trigger_for_transaction_count(user_id),
            f"insights-check-{user_id}",
        )

    async def drain(self) -> None:
        """Wait for every detached task, including ones spawned while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _generate_with_retry(self, user_id: int) -> None:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.service.generate_insights(user_id, force_regenerate=False)
                return
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                logger.warning(
                    "Background insight generation for user %s failed (attempt %d/%d): %s",
                    user_id,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay * attempt)

        failure = TriggerFailure(user_id, self.max_attempts, last_error)
        logger.error("%s", failure, exc_info=last_error)


_insight_trigger: InsightTrigger | None = None


def get_insight_trigger() -> InsightTrigger:
    """Dependency returning the process-wide trigger."""
    global _insight_trigger
    if _insight_trigger is None:
        _insight_trigger = InsightTrigger(
            get_insight_service(),
            AsyncSessionLocal,
            threshold=settings.INSIGHTS_TRIGGER_TRANSACTION_THRESHOLD,
            max_attempts=settings.INSIGHTS_TRIGGER_MAX_ATTEMPTS,
            retry_delay=settings.INSIGHTS_TRIGGER_RETRY_DELAY_SECONDS,
        )
    return _insight_trigger


__all__ = ["InsightTrigger", "get_insight_trigger"]
