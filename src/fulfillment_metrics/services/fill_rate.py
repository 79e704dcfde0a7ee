"""
Fill Rate Service.

Combines the problem-order count from the fill rate endpoint with the
number of orders due today (or overdue) and caches the figure per
Eastern calendar date. Endpoint failures degrade to a zeroed snapshot.
"""

from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional

from fulfillment_metrics.api.fill_rate_client import FillRateClient, FillRateError
from fulfillment_metrics.config.constants import FILL_RATE_KEY_PREFIX
from fulfillment_metrics.core.business_calendar import eastern_date, utc_now
from fulfillment_metrics.core.logger import setup_logger
from fulfillment_metrics.core.sla import InvalidTimestampError, required_ship_day
from fulfillment_metrics.integrations.kv_store import JsonCache
from fulfillment_metrics.models.metrics import FillRateSnapshot
from fulfillment_metrics.models.order import Order
from fulfillment_metrics.services.aggregator import (
    eligibility_skip_reason,
    round_percentage,
)

logger = setup_logger(__name__)


def fill_rate_key(day: date) -> str:
    return f"{FILL_RATE_KEY_PREFIX}{day.isoformat()}"


def count_orders_due(orders: Iterable[Order], today: date, now: Optional[datetime] = None) -> int:
    """Unshipped, eligible orders whose required ship day is today or earlier."""
    due = 0
    for order in orders:
        if eligibility_skip_reason(order) or order.shipped_at:
            continue
        try:
            ship_day = required_ship_day(order, now)
        except InvalidTimestampError:
            continue
        if ship_day is not None and ship_day <= today:
            due += 1
    return due


class FillRateService:
    """Fetches, computes and caches the daily fill rate."""

    def __init__(
        self,
        client: Optional[FillRateClient],
        cache: JsonCache,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            client: Fill rate endpoint client (None when not configured)
            cache: JSON cache for per-day snapshots
            clock: Returns the current aware UTC time
        """
        self.client = client
        self.cache = cache
        self.clock = clock

    async def get_snapshot(self, day: date) -> Optional[FillRateSnapshot]:
        data = await self.cache.get_json(fill_rate_key(day))
        if not data:
            return None
        try:
            return FillRateSnapshot.model_validate(data)
        except ValueError:
            logger.warning(f"Discarding unreadable fill rate cache for {day}")
            return None

    async def get_snapshots(self, days: List[date]) -> Dict[date, FillRateSnapshot]:
        snapshots = {}
        for day in days:
            snapshot = await self.get_snapshot(day)
            if snapshot is not None:
                snapshots[day] = snapshot
        return snapshots

    async def store_snapshot(self, day: date, snapshot: FillRateSnapshot) -> bool:
        return await self.cache.set_json(fill_rate_key(day), snapshot.model_dump(mode="json"))

    async def get_today(self, orders: List[Order]) -> FillRateSnapshot:
        """
        Today's fill rate.

        Returns the cached snapshot when one exists for today. Without
        loaded orders a zeroed snapshot is returned and nothing is cached.
        """
        now = self.clock()
        today = eastern_date(now)

        if not orders:
            logger.info("Orders not loaded yet, returning default fill rate")
            return FillRateSnapshot()

        cached = await self.get_snapshot(today)
        if cached is not None:
            logger.info(f"Using stored fill rate for {today}: {cached.fill_rate}%")
            return cached

        due = count_orders_due(orders, today, now)
        logger.info(f"Unshipped orders due today/overdue ({today}): {due}")

        if self.client is None:
            logger.warning("Fill rate endpoint not configured, using default fill rate")
            snapshot = FillRateSnapshot(total_orders_today=due, last_updated=now)
            await self.store_snapshot(today, snapshot)
            return snapshot

        try:
            report = await self.client.fetch_problem_orders()
        except FillRateError as e:
            logger.error(f"Error fetching fill rate: {e}")
            snapshot = FillRateSnapshot(total_orders_today=due, last_updated=now)
            await self.store_snapshot(today, snapshot)
            return snapshot

        active = report.active_issues
        fill_rate = round_percentage(due - active, due) if due > 0 else 100.0

        snapshot = FillRateSnapshot(
            fill_rate=fill_rate,
            backordered_count=active,
            new_backordered_count=report.problem_orders_count,
            tracked_issues_count=report.tracked_issues_count,
            total_orders_today=due,
            last_updated=now,
        )
        await self.store_snapshot(today, snapshot)
        logger.info(f"Fill rate calculated and stored: {fill_rate}% ({active} active issues)")
        return snapshot
