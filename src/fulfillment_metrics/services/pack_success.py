"""
Pack Success Service.

Computes the share of due orders that shipped without a packing error for
a business day, caches it per Eastern date, and backfills recent
historical days in the background.

The backfill is guarded by an explicit BackfillGuard: at most one run in
flight, and at most one automatic run per Eastern calendar day. Cached
rates expire when the day rolls over, so the first refresh of each day
backfills again.
"""

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Mapping, Optional

from fulfillment_metrics.config.constants import (
    PACK_BACKFILL_BUSINESS_DAYS,
    PACK_BACKFILL_MAX_DAYS_BACK,
    PACK_BACKFILL_PAUSE_SECONDS,
    PACK_BACKFILL_STARTUP_DELAY_SECONDS,
    PACK_CACHE_MAX_AGE_HOURS,
    PACK_SUCCESS_KEY_PREFIX,
)
from fulfillment_metrics.core.business_calendar import (
    eastern_date,
    eastern_day_bounds,
    recent_business_days,
    utc_now,
)
from fulfillment_metrics.core.logger import setup_logger
from fulfillment_metrics.core.monitoring import capture_exception
from fulfillment_metrics.core.sla import InvalidTimestampError, parse_timestamp
from fulfillment_metrics.integrations.kv_store import JsonCache
from fulfillment_metrics.repositories.base import PackErrorSource
from fulfillment_metrics.services.aggregator import pack_success_percentage

logger = setup_logger(__name__)


def pack_success_key(day: date) -> str:
    return f"{PACK_SUCCESS_KEY_PREFIX}{day.isoformat()}"


class BackfillState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class BackfillGuard:
    """Reentrancy flag plus the Eastern date of the last automatic run."""
    state: BackfillState = BackfillState.IDLE
    last_run_on: Optional[date] = None

    def has_run_on(self, day: date) -> bool:
        return self.last_run_on == day


@dataclass
class BackfillResult:
    """Outcome of one backfill run."""
    business_days: int
    calculated: int
    already_cached: int


class PackSuccessService:
    """Calculates, caches and backfills pack success rates."""

    def __init__(
        self,
        source: PackErrorSource,
        cache: JsonCache,
        clock: Callable[[], datetime] = utc_now,
        guard: Optional[BackfillGuard] = None,
        business_days: int = PACK_BACKFILL_BUSINESS_DAYS,
        max_days_back: int = PACK_BACKFILL_MAX_DAYS_BACK,
        pause_seconds: float = PACK_BACKFILL_PAUSE_SECONDS,
        startup_delay_seconds: float = PACK_BACKFILL_STARTUP_DELAY_SECONDS,
    ):
        self.source = source
        self.cache = cache
        self.clock = clock
        self.guard = guard or BackfillGuard()
        self.business_days = business_days
        self.max_days_back = max_days_back
        self.pause_seconds = pause_seconds
        self.startup_delay_seconds = startup_delay_seconds
        self._task: Optional[asyncio.Task] = None

    async def get_cached_rate(self, day: date) -> Optional[float]:
        """
        Cached pack success rate for day, if still fresh.

        Entries computed on a different Eastern day, or more than
        PACK_CACHE_MAX_AGE_HOURS ago, are removed and reported as missing.
        """
        key = pack_success_key(day)
        data = await self.cache.get_json(key)
        if not data:
            return None

        try:
            calculated_at = parse_timestamp(data.get("last_calculated"))
            rate = float(data["pack_success_rate"])
        except (InvalidTimestampError, KeyError, TypeError, ValueError):
            logger.warning(f"Discarding unreadable pack success cache for {day}")
            await self.cache.remove(key)
            return None

        now = self.clock()
        if calculated_at is None or eastern_date(calculated_at) != eastern_date(now):
            logger.info(f"Cache for {day} is from a different day, expiring...")
            await self.cache.remove(key)
            return None

        if now - calculated_at > timedelta(hours=PACK_CACHE_MAX_AGE_HOURS):
            logger.info(f"Cache for {day} is older than {PACK_CACHE_MAX_AGE_HOURS}h, expiring...")
            await self.cache.remove(key)
            return None

        return rate

    async def get_cached_rates(self, days: List[date]) -> Dict[date, float]:
        rates = {}
        for day in days:
            rate = await self.get_cached_rate(day)
            if rate is not None:
                rates[day] = rate
        return rates

    async def calculate(self, day: date, order_count: int) -> float:
        """
        Pack success rate for day, from cache or from the pack error store.

        Query failures return 100 (no errors known) and are not cached.
        """
        cached = await self.get_cached_rate(day)
        if cached is not None:
            return cached

        start, end = eastern_day_bounds(day)
        try:
            errors = await self.source.get_pack_errors_between(start, end)
        except Exception as e:
            logger.error(f"Error fetching pack errors for {day}: {e}")
            return 100.0

        rate = pack_success_percentage(order_count, len(errors))
        logger.info(
            f"Pack success rate for {day}: {rate}% "
            f"({order_count} orders, {len(errors)} errors)"
        )

        await self.cache.set_json(pack_success_key(day), {
            "pack_success_rate": rate,
            "total_orders": order_count,
            "pack_errors_count": len(errors),
            "last_calculated": self.clock().isoformat(),
        })
        return rate

    async def backfill(self, order_counts: Mapping[date, int]) -> Optional[BackfillResult]:
        """
        Compute pack success for recent business days missing from cache.

        Walks back from yesterday. Returns None without doing anything if
        a backfill is already running.
        """
        if self.guard.state is BackfillState.RUNNING:
            logger.info("Pack success backfill already in progress, skipping")
            return None

        self.guard.state = BackfillState.RUNNING
        try:
            today = eastern_date(self.clock())
            days = list(reversed(recent_business_days(today, self.business_days, self.max_days_back)))

            calculated = 0
            already_cached = 0
            for index, day in enumerate(days):
                if await self.get_cached_rate(day) is not None:
                    already_cached += 1
                    continue

                await self.calculate(day, order_counts.get(day, 0))
                calculated += 1

                if index < len(days) - 1:
                    await asyncio.sleep(self.pause_seconds)

            logger.info(
                f"Pack success backfill covered {len(days)} business days "
                f"({calculated} calculated, {already_cached} cached)"
            )
            return BackfillResult(
                business_days=len(days),
                calculated=calculated,
                already_cached=already_cached,
            )
        finally:
            self.guard.state = BackfillState.IDLE

    def schedule_backfill(
        self,
        order_counts: Mapping[date, int],
        on_complete: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> Optional[asyncio.Task]:
        """
        Start the background backfill once per Eastern day, after a startup delay.

        Returns:
            The scheduled task, or None if already run today or running
        """
        today = eastern_date(self.clock())
        if self.guard.has_run_on(today) or self.guard.state is BackfillState.RUNNING:
            return None

        self.guard.last_run_on = today
        logger.info(f"Starting background pack success backfill for {today}...")
        self._task = asyncio.create_task(self._delayed_backfill(dict(order_counts), on_complete))
        return self._task

    async def _delayed_backfill(
        self,
        order_counts: Dict[date, int],
        on_complete: Optional[Callable[[], Awaitable[None]]],
    ) -> None:
        try:
            await asyncio.sleep(self.startup_delay_seconds)
            result = await self.backfill(order_counts)
            if result is not None and on_complete is not None:
                await on_complete()
            logger.info("Background pack success backfill completed")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Background pack success backfill failed: {e}", exc_info=True)
            capture_exception(e, context={"task": "pack_success_backfill"})

    def reset_session(self) -> None:
        """Allow the next schedule_backfill call to run again today."""
        self.guard.last_run_on = None

    async def clear_cache(self) -> int:
        """Remove every cached pack success rate."""
        removed = await self.cache.remove_prefix(PACK_SUCCESS_KEY_PREFIX)
        logger.info(f"Pack success rate cache cleared ({removed} entries)")
        return removed

    async def stop(self) -> None:
        """Cancel a pending or running background backfill."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
