"""
Metrics Service.

Cache and refresh policy for the daily metrics window:
- One computation per Eastern calendar day: a same-day cache entry is
  returned without recomputation.
- Forced refresh bypasses the cache and overwrites it.
- If the order fetch fails or returns nothing, the most recent cached
  entry is returned regardless of age and marked stale.
- invalidate() clears the same-day flag (daily 00:30 Eastern) while
  keeping the entry for the stale fallback.

State machine:
    NO_CACHE / STALE --(fetch succeeds)--> CACHED_TODAY
    CACHED_TODAY --(day rolls over / invalidate)--> STALE
    any --(refresh)--> RECOMPUTING --> CACHED_TODAY | STALE | NO_CACHE
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from fulfillment_metrics.config.constants import (
    METRICS_CACHE_DATE_KEY,
    METRICS_CACHE_KEY,
)
from fulfillment_metrics.core.business_calendar import eastern_date, utc_now
from fulfillment_metrics.core.logger import setup_logger
from fulfillment_metrics.core.monitoring import capture_exception, set_refresh_context
from fulfillment_metrics.integrations.kv_store import JsonCache
from fulfillment_metrics.models.metrics import DailyMetric, FillRateSnapshot, MetricsSummary
from fulfillment_metrics.models.order import Order
from fulfillment_metrics.repositories.base import OrderSource, OrderSourceError
from fulfillment_metrics.services.aggregator import (
    DailyAggregator,
    group_orders_by_ship_date,
    summarize,
)
from fulfillment_metrics.services.fill_rate import FillRateService
from fulfillment_metrics.services.pack_success import PackSuccessService

logger = setup_logger(__name__)


class CacheState(str, Enum):
    NO_CACHE = "no_cache"
    CACHED_TODAY = "cached_today"
    STALE = "stale"
    RECOMPUTING = "recomputing"


class DataStatus(str, Enum):
    """Freshness indicator shown to dashboard users."""
    OK = "ok"
    STALE = "stale"
    CONNECTION_ISSUE = "connection_issue"


@dataclass
class MetricsResult:
    """Daily metrics window plus freshness information."""
    metrics: List[DailyMetric]
    summary: MetricsSummary
    status: DataStatus
    computed_on: Optional[date] = None
    computed_at: Optional[datetime] = None
    from_cache: bool = False
    orders_loaded: int = 0
    skipped: Dict[str, int] = field(default_factory=dict)
    fill_rate_today: Optional[FillRateSnapshot] = None

    @property
    def stale(self) -> bool:
        return self.status is DataStatus.STALE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "stale": self.stale,
            "from_cache": self.from_cache,
            "computed_on": self.computed_on.isoformat() if self.computed_on else None,
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
            "orders_loaded": self.orders_loaded,
            "skipped": self.skipped,
            "summary": self.summary.model_dump(mode="json"),
            "fill_rate_today": (
                self.fill_rate_today.model_dump(mode="json") if self.fill_rate_today else None
            ),
            "metrics": [metric.model_dump(mode="json") for metric in self.metrics],
        }


class MetricsService:
    """Owns the daily metrics cache and decides when to recompute."""

    def __init__(
        self,
        order_source: OrderSource,
        cache: JsonCache,
        fill_rate_service: FillRateService,
        pack_success_service: PackSuccessService,
        aggregator: Optional[DailyAggregator] = None,
        clock: Callable[[], datetime] = utc_now,
        lookback_days: int = 45,
        fallback_days: int = 30,
        fallback_limit: int = 10000,
        query_timeout_seconds: float = 30.0,
    ):
        self.order_source = order_source
        self.cache = cache
        self.fill_rate_service = fill_rate_service
        self.pack_success_service = pack_success_service
        self.aggregator = aggregator or DailyAggregator()
        self.clock = clock
        self.lookback_days = lookback_days
        self.fallback_days = fallback_days
        self.fallback_limit = fallback_limit
        self.query_timeout_seconds = query_timeout_seconds

        self.state = CacheState.NO_CACHE
        self.recomputations = 0
        self.last_updated: Optional[datetime] = None

    async def fetch_orders(self, now: Optional[datetime] = None) -> List[Order]:
        """
        Fetch orders for the lookback window.

        Tries the full lookback first, then a shorter, limited query. Both
        attempts share one timeout.

        Raises:
            OrderSourceError: If both queries fail or the timeout expires
        """
        now = now or self.clock()

        async def query() -> List[Order]:
            try:
                return await self.order_source.get_orders_allocated_since(
                    now - timedelta(days=self.lookback_days)
                )
            except Exception as e:
                logger.warning(f"Order query failed, trying limited fallback: {e}")

            return await self.order_source.get_orders_allocated_since(
                now - timedelta(days=self.fallback_days),
                limit=self.fallback_limit,
            )

        try:
            return await asyncio.wait_for(query(), timeout=self.query_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise OrderSourceError(
                f"Order query timed out after {self.query_timeout_seconds}s"
            ) from e

    async def _load_entry(self) -> Optional[MetricsResult]:
        """Most recent cached metrics, whatever their age."""
        data = await self.cache.get_json(METRICS_CACHE_KEY)
        if not data:
            return None

        try:
            metrics = [DailyMetric.model_validate(item) for item in data["metrics"]]
            computed_on = date.fromisoformat(data["computed_on"])
            computed_at = datetime.fromisoformat(data["computed_at"]) if data.get("computed_at") else None
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(f"Discarding unreadable metrics cache: {e}")
            return None

        return MetricsResult(
            metrics=metrics,
            summary=summarize(metrics),
            status=DataStatus.OK,
            computed_on=computed_on,
            computed_at=computed_at,
            from_cache=True,
            orders_loaded=data.get("orders_loaded", 0),
            skipped=data.get("skipped", {}),
        )

    async def _store_entry(self, result: MetricsResult) -> None:
        stored = await self.cache.set_json(METRICS_CACHE_KEY, {
            "computed_on": result.computed_on.isoformat(),
            "computed_at": result.computed_at.isoformat(),
            "orders_loaded": result.orders_loaded,
            "skipped": result.skipped,
            "metrics": [metric.model_dump(mode="json") for metric in result.metrics],
        })
        if stored:
            await self.cache.set_text(METRICS_CACHE_DATE_KEY, result.computed_on.isoformat())
            logger.info(f"Cached metrics for {result.computed_on}")

    async def get_daily_metrics(
        self,
        force_refresh: bool = False,
        trigger: Optional[str] = None,
    ) -> MetricsResult:
        """
        Daily metrics window, from today's cache entry when available.

        Never raises for data problems: returns stale cached data or an
        empty window flagged as a connection issue instead.

        Args:
            force_refresh: Recompute even if today's entry is cached
            trigger: Label for error tracking ("request", "forced", "scheduled")
        """
        now = self.clock()
        today = eastern_date(now)
        entry = await self._load_entry()

        if not force_refresh and entry is not None:
            flag = await self.cache.get_text(METRICS_CACHE_DATE_KEY)
            if flag == today.isoformat() and entry.computed_on == today:
                logger.info(f"Using cached metrics from {today}")
                entry.fill_rate_today = await self.fill_rate_service.get_snapshot(today)
                self.state = CacheState.CACHED_TODAY
                return entry
            self.state = CacheState.STALE

        trigger = trigger or ("forced" if force_refresh else "request")
        return await self._recompute(now, entry, trigger)

    async def _recompute(
        self,
        now: datetime,
        fallback: Optional[MetricsResult],
        trigger: str,
    ) -> MetricsResult:
        today = eastern_date(now)
        self.state = CacheState.RECOMPUTING
        self.recomputations += 1
        set_refresh_context(trigger, today.isoformat())
        logger.info(f"Recomputing metrics for {today} (trigger={trigger})")

        try:
            orders = await self.fetch_orders(now)
        except Exception as e:
            logger.error(f"Error fetching orders: {e}")
            capture_exception(e, context={"trigger": trigger, "date": today.isoformat()})
            orders = []

        if not orders:
            return self._fallback(fallback)

        try:
            report = group_orders_by_ship_date(orders, now)
            window = self.aggregator.window(today)
            fill_rate_today = await self.fill_rate_service.get_today(orders)
            fill_rates = await self.fill_rate_service.get_snapshots(window)
            pack_rates = await self.pack_success_service.get_cached_rates(window)
            aggregation = self.aggregator.build(report, today, fill_rates, pack_rates)
        except Exception as e:
            logger.error(f"Error computing metrics: {e}", exc_info=True)
            capture_exception(e, context={"trigger": trigger, "date": today.isoformat()})
            return self._fallback(fallback)

        for day, snapshot in aggregation.derived_fill_rates.items():
            await self.fill_rate_service.store_snapshot(day, snapshot)

        result = MetricsResult(
            metrics=aggregation.metrics,
            summary=summarize(aggregation.metrics),
            status=DataStatus.OK,
            computed_on=today,
            computed_at=now,
            from_cache=False,
            orders_loaded=len(orders),
            skipped=report.skipped_summary(),
            fill_rate_today=fill_rate_today,
        )
        await self._store_entry(result)
        self.state = CacheState.CACHED_TODAY
        self.last_updated = now

        self.pack_success_service.schedule_backfill(
            report.order_counts(),
            on_complete=self.invalidate,
        )
        return result

    def _fallback(self, entry: Optional[MetricsResult]) -> MetricsResult:
        if entry is None:
            logger.warning("No orders and no cached metrics available")
            self.state = CacheState.NO_CACHE
            return MetricsResult(
                metrics=[],
                summary=MetricsSummary(),
                status=DataStatus.CONNECTION_ISSUE,
            )

        logger.warning(f"Using cached metrics from {entry.computed_on} as emergency fallback")
        self.state = CacheState.STALE
        entry.status = DataStatus.STALE
        return entry

    async def invalidate(self) -> None:
        """Clear the same-day flag so the next read recomputes."""
        await self.cache.remove(METRICS_CACHE_DATE_KEY)
        if self.state is CacheState.CACHED_TODAY:
            self.state = CacheState.STALE
        logger.info("Metrics cache invalidated")

    async def clear(self) -> None:
        """Remove the cached metrics entirely."""
        await self.cache.remove(METRICS_CACHE_DATE_KEY)
        await self.cache.remove(METRICS_CACHE_KEY)
        self.state = CacheState.NO_CACHE
        logger.info("Metrics cache cleared")

    async def get_fill_rate_today(self) -> FillRateSnapshot:
        """Today's fill rate, fetching orders only when not cached yet."""
        today = eastern_date(self.clock())
        cached = await self.fill_rate_service.get_snapshot(today)
        if cached is not None:
            return cached

        try:
            orders = await self.fetch_orders()
        except Exception as e:
            logger.error(f"Error fetching orders for fill rate: {e}")
            orders = []
        return await self.fill_rate_service.get_today(orders)
