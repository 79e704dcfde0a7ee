import os
import tempfile

# Keep test log files out of the working tree; must be set before the
# package configures logging on import.
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "fulfillment-metrics-test-logs"))

from datetime import datetime, timezone
from typing import List, Optional

import pytest

from fulfillment_metrics.integrations.kv_store import InMemoryStore, JsonCache
from fulfillment_metrics.models.order import Order, PackErrorEvent
from fulfillment_metrics.repositories.base import (
    OrderSource,
    OrderSourceError,
    PackErrorSource,
)
from fulfillment_metrics.services.aggregator import DailyAggregator
from fulfillment_metrics.services.fill_rate import FillRateService
from fulfillment_metrics.services.metrics_service import MetricsService
from fulfillment_metrics.services.pack_success import BackfillGuard, PackSuccessService

# Wednesday 2025-07-30, 10:00 AM Eastern (daylight time)
NOW = datetime(2025, 7, 30, 14, 0, tzinfo=timezone.utc)


class FixedClock:
    """Injectable clock returning a settable instant."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeSource(OrderSource, PackErrorSource):
    """In-memory order and pack error source recording every query."""

    def __init__(
        self,
        orders: Optional[List[Order]] = None,
        pack_errors: Optional[List[PackErrorEvent]] = None,
    ):
        self.orders = list(orders or [])
        self.pack_errors = list(pack_errors or [])
        self.fail = False
        self.fail_primary = False
        self.calls = []
        self.pack_calls = []

    async def get_orders_allocated_since(self, threshold, limit=None):
        self.calls.append((threshold, limit))
        if self.fail or (self.fail_primary and limit is None):
            raise OrderSourceError("order store unavailable")
        return list(self.orders)

    async def get_pack_errors_between(self, start, end):
        self.pack_calls.append((start, end))
        if self.fail:
            raise OrderSourceError("pack error store unavailable")
        return [event for event in self.pack_errors if start <= event.received_at <= end]

    async def health_check(self) -> bool:
        return not self.fail


def make_order(number, allocated_at, shipped_at=None, **extra) -> Order:
    data = {"order_number": number, "allocated_at": allocated_at, **extra}
    if shipped_at is not None:
        data["shippedAt"] = shipped_at
    return Order.model_validate(data)


def sample_orders() -> List[Order]:
    """
    Ten countable orders over three business days (DST rules: cutoff
    12:00 UTC, ship by 20:00 UTC) plus four that are skipped.

    Fri 2025-07-25: 3 orders, 2 met
    Mon 2025-07-28: 4 orders, 2 met
    Tue 2025-07-29: 3 orders, 3 met
    """
    return [
        # Friday 07-25
        make_order(1, "2025-07-25T10:00:00", "2025-07-25T18:00:00Z"),
        make_order(2, "2025-07-24T15:00:00", "2025-07-25T21:00:00Z"),
        make_order(3, "2025-07-25T09:00:00", "2025-07-28T15:00:00Z"),
        # Monday 07-28 (Friday after cutoff and Saturday roll forward)
        make_order(4, "2025-07-25T15:00:00", "2025-07-28T14:00:00Z"),
        make_order(5, "2025-07-26T10:00:00", "2025-07-28T19:00:00Z"),
        make_order(6, "2025-07-28T09:00:00"),
        make_order(7, "2025-07-28T11:00:00", "2025-07-29T13:00:00Z"),
        # Tuesday 07-29 (last one ships 9 PM Eastern, same Eastern day)
        make_order(8, "2025-07-28T13:00:00", "2025-07-29T16:00:00Z"),
        make_order(9, "2025-07-29T08:00:00", "2025-07-29T23:30:00Z"),
        make_order(10, "2025-07-29T11:59:59", "2025-07-30T01:00:00Z"),
        # Skipped
        make_order(11, "2025-07-29T08:00:00", status="canceled"),
        make_order(12, "2025-07-29T08:00:00", ready_to_ship=False),
        make_order(13, None),
        make_order(14, "not-a-date"),
    ]


class BackfillDoneGuard(BackfillGuard):
    """Guard reporting every day as already backfilled."""

    def has_run_on(self, day) -> bool:
        return True


def build_service(source, cache, clock, backfill_done=True, **kwargs) -> MetricsService:
    """
    Metrics service over fake sources with a three-business-day window.

    backfill_done marks the pack success backfill as already run so no
    background task is started unless a test asks for it.
    """
    pack_service = PackSuccessService(
        source,
        cache,
        clock=clock,
        guard=BackfillDoneGuard() if backfill_done else BackfillGuard(),
        pause_seconds=0,
        startup_delay_seconds=0,
    )
    return MetricsService(
        order_source=source,
        cache=cache,
        fill_rate_service=FillRateService(None, cache, clock),
        pack_success_service=pack_service,
        aggregator=DailyAggregator(target_business_days=3, max_days_back=60),
        clock=clock,
        **kwargs,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def cache(store) -> JsonCache:
    return JsonCache(store)


@pytest.fixture
def source() -> FakeSource:
    return FakeSource(orders=sample_orders())
