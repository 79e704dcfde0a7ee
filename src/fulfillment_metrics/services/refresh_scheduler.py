"""
Daily Refresh Scheduler using APScheduler.

Manages the scheduled metrics refresh:
- Daily refresh: At DAILY_REFRESH_HOUR:DAILY_REFRESH_MINUTE Eastern
  (00:30 by default), invalidating the same-day cache and recomputing
"""

from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from fulfillment_metrics.config.constants import DAILY_REFRESH_HOUR, DAILY_REFRESH_MINUTE
from fulfillment_metrics.core.business_calendar import EASTERN_TZ, utc_now
from fulfillment_metrics.core.logger import setup_logger
from fulfillment_metrics.services.metrics_service import DataStatus, MetricsService

logger = setup_logger(__name__)

DAILY_REFRESH_JOB_ID = "daily_metrics_refresh"


def daily_refresh_trigger() -> CronTrigger:
    return CronTrigger(
        hour=DAILY_REFRESH_HOUR,
        minute=DAILY_REFRESH_MINUTE,
        timezone=EASTERN_TZ,
    )


def next_refresh_time(now: Optional[datetime] = None) -> datetime:
    """Next daily refresh at or after now (aware, Eastern)."""
    now = now or utc_now()
    return daily_refresh_trigger().get_next_fire_time(None, now.astimezone(EASTERN_TZ))


def seconds_until_next_refresh(now: Optional[datetime] = None) -> float:
    now = now or utc_now()
    return (next_refresh_time(now) - now).total_seconds()


class RefreshScheduler:
    """Runs the daily metrics refresh using APScheduler."""

    def __init__(self, metrics_service: MetricsService):
        self.service = metrics_service
        self.scheduler = AsyncIOScheduler(timezone=EASTERN_TZ)
        self._started = False

    def start(self):
        """Start scheduler with the daily refresh job."""
        if self._started:
            logger.warning("Scheduler already started")
            return

        self.scheduler.add_job(
            self.run_daily_refresh,
            daily_refresh_trigger(),
            id=DAILY_REFRESH_JOB_ID,
            name="Daily Metrics Refresh",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info(
            f"Added daily refresh job (at {DAILY_REFRESH_HOUR:02d}:{DAILY_REFRESH_MINUTE:02d} Eastern)"
        )

        self.scheduler.start()
        self._started = True
        logger.info("Refresh scheduler started")

    def stop(self):
        """Stop scheduler; an in-flight refresh is not awaited."""
        if not self._started:
            return

        self.scheduler.shutdown(wait=False)
        self._started = False
        logger.info("Refresh scheduler stopped")

    async def run_daily_refresh(self) -> bool:
        """
        Invalidate the same-day cache and recompute.

        Returns:
            True if fresh metrics were produced
        """
        try:
            logger.info("Daily refresh triggered")
            await self.service.invalidate()
            result = await self.service.get_daily_metrics(force_refresh=True, trigger="scheduled")
        except Exception as e:
            logger.error(f"Daily refresh failed: {e}", exc_info=True)
            return False

        if result.status is DataStatus.OK:
            logger.info(
                f"Daily refresh completed: {result.orders_loaded} orders, "
                f"{len(result.metrics)} business days"
            )
            return True

        logger.warning(f"Daily refresh degraded: status={result.status.value}")
        return False

    def get_next_run_time(self) -> Optional[str]:
        """Next scheduled refresh as formatted string."""
        job = self.scheduler.get_job(DAILY_REFRESH_JOB_ID)
        if job and job.next_run_time:
            return job.next_run_time.strftime("%Y-%m-%d %H:%M:%S %Z")
        return None

    @property
    def is_running(self) -> bool:
        return self._started and self.scheduler.running
