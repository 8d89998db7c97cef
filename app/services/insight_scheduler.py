"""Monthly insight sweep across all active users."""
from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.core.errors import AuthError
from app.domain.insights.cache import utcnow
from app.domain.insights.repository import InsightRepository
from app.domain.insights.services import InsightService, get_insight_service

logger = logging.getLogger(__name__)

GenerateFn = Callable[[int], Awaitable[Sequence[Any]]]
DiscoverFn = Callable[[int], Awaitable[list[int]]]


def verify_cron_secret(authorization: Optional[str], expected: str) -> None:
    """Raise ``AuthError`` unless ``authorization`` is ``Bearer <expected>``.

    An unset server-side secret rejects everything.
    """
    if not expected:
        raise AuthError("Scheduled endpoint secret is not configured")
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthError("Missing bearer token")
    if not secrets.compare_digest(token.strip().encode(), expected.encode()):
        raise AuthError("Invalid bearer token")


@dataclass(slots=True)
class SweepError:
    user_id: int
    error: str


@dataclass(slots=True)
class SweepReport:
    success: bool = True
    skipped: bool = False
    reason: Optional[str] = None
    users_processed: int = 0
    total_users: Optional[int] = None
    insights_generated: int = 0
    errors: list[SweepError] = field(default_factory=list)
    error_count: int = 0
    elapsed_ms: int = 0
    truncated: bool = False

    def to_payload(self, error_limit: int = 10) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "skipped": self.skipped,
            "usersProcessed": self.users_processed,
            "insightsGenerated": self.insights_generated,
            "errors": [
                {"userId": item.user_id, "error": item.error}
                for item in self.errors[:error_limit]
            ],
            "errorCount": self.error_count,
            "elapsedMs": self.elapsed_ms,
        }
        if self.reason is not None:
            payload["reason"] = self.reason
        if self.total_users is not None:
            payload["totalUsers"] = self.total_users
        if self.truncated:
            payload["truncated"] = True
        return payload


class MonthlyInsightSweep:
    """Generate insights for every active user on the first UTC day of a month.

    Users are processed in fixed-size batches: concurrently within a batch,
    sequentially across batches. One user's failure is recorded and never
    stops the run. With ``soft_deadline_seconds`` set, no new batch starts
    once that much time has elapsed; otherwise the host's request timeout is
    the only limit.
    """

    def __init__(
        self,
        generate: GenerateFn,
        discover_users: DiscoverFn,
        *,
        batch_size: int = 20,
        max_users: int = 1000,
        error_limit: int = 10,
        soft_deadline_seconds: float = 0,
        clock: Callable[[], datetime] = utcnow,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._generate = generate
        self._discover_users = discover_users
        self.batch_size = max(1, batch_size)
        self.max_users = max_users
        self.error_limit = error_limit
        self.soft_deadline_seconds = soft_deadline_seconds
        self._clock = clock
        self._timer = timer

    async def run(self, now: Optional[datetime] = None) -> SweepReport:
        started = self._timer()
        moment = now or self._clock()
        if moment.tzinfo is not None:
            moment = moment.astimezone(timezone.utc)

        if moment.day != 1:
            logger.info("Insight sweep skipped - not start of month (day %d)", moment.day)
            return SweepReport(
                skipped=True,
                reason=f"Not start of month (Day {moment.day})",
                elapsed_ms=self._elapsed_ms(started),
            )

        logger.info("Starting monthly insight generation for all users")
        user_ids = list(dict.fromkeys(await self._discover_users(self.max_users)))[: self.max_users]
        report = SweepReport(total_users=len(user_ids))
        if not user_ids:
            logger.info("No users found to process")
            report.elapsed_ms = self._elapsed_ms(started)
            return report

        for offset in range(0, len(user_ids), self.batch_size):
            if self._deadline_passed(started):
                report.truncated = True
                logger.warning(
                    "Insight sweep soft deadline of %.1fs reached; %d user(s) not started",
                    self.soft_deadline_seconds,
                    len(user_ids) - offset,
                )
                break
            batch = user_ids[offset : offset + self.batch_size]
            results = await asyncio.gather(*(self._process_user(user_id) for user_id in batch))
            for user_id, generated, error in results:
                if error is not None:
                    report.errors.append(SweepError(user_id=user_id, error=error))
                    report.error_count += 1
                else:
                    report.users_processed += 1
                    report.insights_generated += generated

        report.errors = report.errors[: self.error_limit]
        report.elapsed_ms = self._elapsed_ms(started)
        logger.info(
            "Insight sweep completed: %d/%d users, %d insights, %d errors, %dms",
            report.users_processed,
            len(user_ids),
            report.insights_generated,
            report.error_count,
            report.elapsed_ms,
        )
        return report

    async def _process_user(self, user_id: int) -> tuple[int, int, Optional[str]]:
        try:
            insights = await self._generate(user_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("Insight sweep failed for user %s: %s", user_id, exc, exc_info=exc)
            return user_id, 0, str(exc) or exc.__class__.__name__
        logger.debug("User %s: %d insights generated", user_id, len(insights))
        return user_id, len(insights), None

    def _deadline_passed(self, started: float) -> bool:
        if self.soft_deadline_seconds <= 0:
            return False
        return self._timer() - started >= self.soft_deadline_seconds

    def _elapsed_ms(self, started: float) -> int:
        return int((self._timer() - started) * 1000)


async def _discover_active_users(limit: int) -> list[int]:
    async with AsyncSessionLocal() as db:
        return await InsightRepository(db).distinct_active_user_ids(limit)


def monthly_sweep_for(
    service: InsightService,
    clock: Callable[[], datetime] = utcnow,
    discover_users: DiscoverFn = _discover_active_users,
) -> MonthlyInsightSweep:
    """Wire a sweep to ``service`` and the live database, with configured limits."""

    async def generate(user_id: int):
        return await service.generate_insights(user_id, force_regenerate=False)

    return MonthlyInsightSweep(
        generate,
        discover_users,
        batch_size=settings.INSIGHTS_BATCH_SIZE,
        max_users=settings.INSIGHTS_MAX_USERS_PER_RUN,
        error_limit=settings.INSIGHTS_ERROR_REPORT_LIMIT,
        soft_deadline_seconds=settings.INSIGHTS_BATCH_SOFT_DEADLINE_SECONDS,
        clock=clock,
    )


def build_monthly_sweep() -> MonthlyInsightSweep:
    """Dependency wiring the sweep to the live insight service."""
    return monthly_sweep_for(get_insight_service())


__all__ = [
    "MonthlyInsightSweep",
    "SweepError",
    "SweepReport",
    "build_monthly_sweep",
    "monthly_sweep_for",
    "verify_cron_secret",
]
