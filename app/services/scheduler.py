import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.services.insight_scheduler import MonthlyInsightSweep, build_monthly_sweep

logger = logging.getLogger(__name__)


class SchedulerManager:
    """Run the insight sweep daily at 00:00 UTC inside the app process.

    For hosts without an external cron hitting ``/api/cron/generate-insights``.
    The sweep itself skips every day but the first of the month.
    """

    def __init__(self, sweep: MonthlyInsightSweep | None = None) -> None:
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self._sweep = sweep

    async def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        sweep = self._sweep or build_monthly_sweep()
        try:
            report = await sweep.run()
        except Exception:  # noqa: BLE001
            logger.exception(f"scheduler_run: source={source} failed")
            return
        logger.info(
            f"scheduler_run: source={source} skipped={report.skipped} "
            f"users_processed={report.users_processed} errors={report.error_count}"
        )

    def start(self) -> None:
        trigger = CronTrigger(hour=0, minute=0, timezone="UTC")
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_00:00_utc"],
            id="insights_monthly_sweep",
            replace_existing=True,
            misfire_grace_time=3600,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("Scheduler started with daily 00:00 UTC insight sweep")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
