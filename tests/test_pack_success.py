"""Tests for pack success calculation, caching and backfill."""

from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import NOW, FakeSource
from fulfillment_metrics.models.order import PackErrorEvent
from fulfillment_metrics.services.pack_success import (
    BackfillGuard,
    BackfillState,
    PackSuccessService,
    pack_success_key,
)

TUE = date(2025, 7, 29)


def pack_error(received_at: datetime) -> PackErrorEvent:
    return PackErrorEvent(received_at=received_at)


@pytest.fixture
def pack_source() -> FakeSource:
    return FakeSource(pack_errors=[
        pack_error(datetime(2025, 7, 29, 15, 0, tzinfo=timezone.utc)),
        # 11 PM Eastern, still Tuesday
        pack_error(datetime(2025, 7, 30, 3, 0, tzinfo=timezone.utc)),
        # 1 AM Eastern Wednesday
        pack_error(datetime(2025, 7, 30, 5, 0, tzinfo=timezone.utc)),
    ])


@pytest.fixture
def service(pack_source, cache, clock) -> PackSuccessService:
    return PackSuccessService(
        pack_source,
        cache,
        clock=clock,
        pause_seconds=0,
        startup_delay_seconds=0,
    )


class TestCalculate:

    @pytest.mark.asyncio
    async def test_zero_orders_is_100(self, service):
        assert await service.calculate(TUE, 0) == 100.0

    @pytest.mark.asyncio
    async def test_counts_errors_within_eastern_day(self, service, cache):
        rate = await service.calculate(TUE, 10)

        assert rate == 80.0
        stored = await cache.get_json(pack_success_key(TUE))
        assert stored["pack_errors_count"] == 2
        assert stored["total_orders"] == 10
        assert stored["pack_success_rate"] == 80.0

    @pytest.mark.asyncio
    async def test_uses_cached_rate(self, service, pack_source):
        await service.calculate(TUE, 10)
        await service.calculate(TUE, 10)

        assert len(pack_source.pack_calls) == 1

    @pytest.mark.asyncio
    async def test_source_failure_is_100_and_not_cached(self, service, pack_source, cache):
        pack_source.fail = True

        assert await service.calculate(TUE, 10) == 100.0
        assert await cache.get_json(pack_success_key(TUE)) is None


class TestCacheExpiration:

    @pytest.mark.asyncio
    async def test_fresh_entry_is_used(self, service, cache):
        await cache.set_json(pack_success_key(TUE), {
            "pack_success_rate": 95.5,
            "last_calculated": (NOW - timedelta(hours=1)).isoformat(),
        })

        assert await service.get_cached_rate(TUE) == 95.5

    @pytest.mark.asyncio
    async def test_entry_from_previous_day_expires(self, service, cache):
        await cache.set_json(pack_success_key(TUE), {
            "pack_success_rate": 95.5,
            "last_calculated": "2025-07-29T13:00:00+00:00",
        })

        assert await service.get_cached_rate(TUE) is None
        assert await cache.get_json(pack_success_key(TUE)) is None

    @pytest.mark.asyncio
    async def test_unreadable_entry_is_discarded(self, service, cache):
        await cache.set_json(pack_success_key(TUE), {"last_calculated": "yesterday"})

        assert await service.get_cached_rate(TUE) is None
        assert await cache.get_json(pack_success_key(TUE)) is None

    @pytest.mark.asyncio
    async def test_clear_cache_removes_every_day(self, service, cache):
        await service.calculate(TUE, 10)
        await service.calculate(date(2025, 7, 28), 5)
        await cache.set_json("fill_rate_2025-07-29", {"fill_rate": 90})

        removed = await service.clear_cache()

        assert removed == 2
        assert await cache.get_json("fill_rate_2025-07-29") == {"fill_rate": 90}


class TestBackfill:

    @pytest.mark.asyncio
    async def test_fills_ten_business_days_newest_first(self, service, pack_source):
        await service.calculate(TUE, 10)
        pack_source.pack_calls.clear()

        result = await service.backfill({TUE: 10})

        assert result.business_days == 10
        assert result.already_cached == 1
        assert result.calculated == 9
        assert len(pack_source.pack_calls) == 9
        first_start, _ = pack_source.pack_calls[0]
        assert first_start.date() == date(2025, 7, 28)
        assert service.guard.state is BackfillState.IDLE

    @pytest.mark.asyncio
    async def test_backfill_is_not_reentrant(self, pack_source, cache, clock):
        guard = BackfillGuard(state=BackfillState.RUNNING)
        service = PackSuccessService(pack_source, cache, clock=clock, guard=guard)

        assert await service.backfill({}) is None
        assert pack_source.pack_calls == []

    @pytest.mark.asyncio
    async def test_scheduled_once_per_day(self, service):
        completed = []

        async def on_complete():
            completed.append(True)

        task = service.schedule_backfill({TUE: 10}, on_complete=on_complete)
        assert task is not None
        assert service.schedule_backfill({TUE: 10}) is None

        await task

        assert completed == [True]
        assert service.guard.last_run_on == date(2025, 7, 30)
        assert await service.get_cached_rate(TUE) == 80.0

    @pytest.mark.asyncio
    async def test_reset_session_allows_another_run(self, service):
        task = service.schedule_backfill({})
        await task

        service.reset_session()

        second = service.schedule_backfill({})
        assert second is not None
        await second

    @pytest.mark.asyncio
    async def test_runs_again_on_next_eastern_day(self, service, clock):
        await service.schedule_backfill({})
        assert service.schedule_backfill({}) is None

        # 00:30 Eastern Thursday
        clock.now = datetime(2025, 7, 31, 4, 30, tzinfo=timezone.utc)

        task = service.schedule_backfill({})
        assert task is not None
        await task
        assert service.guard.last_run_on == date(2025, 7, 31)

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_backfill(self, pack_source, cache, clock):
        service = PackSuccessService(pack_source, cache, clock=clock, startup_delay_seconds=60)
        task = service.schedule_backfill({})

        await service.stop()

        assert task.cancelled()
        assert pack_source.pack_calls == []
