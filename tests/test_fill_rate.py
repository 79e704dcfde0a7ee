"""Tests for the fill rate client and service."""

import json
from datetime import date

import httpx
import pytest

from conftest import make_order
from fulfillment_metrics.api.fill_rate_client import FillRateClient, FillRateError
from fulfillment_metrics.models.metrics import FillRateSnapshot
from fulfillment_metrics.services.fill_rate import (
    FillRateService,
    count_orders_due,
    fill_rate_key,
)

URL = "https://fill-rate.example.test/problem-orders"
TODAY = date(2025, 7, 30)


def make_client(handler) -> FillRateClient:
    transport = httpx.MockTransport(handler)
    return FillRateClient(URL, client=httpx.AsyncClient(transport=transport))


def ok_handler(problem=1, tracked=0, total=None, calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        data = {"problemOrdersCount": problem, "trackedIssuesCount": tracked}
        if total is not None:
            data["totalActiveIssues"] = total
        return httpx.Response(200, json={"success": True, "data": data})

    return handler


def due_orders():
    """Three unshipped orders due by 2025-07-30 plus three that are not."""
    return [
        make_order(1, "2025-07-30T10:00:00"),
        make_order(2, "2025-07-29T13:00:00"),
        make_order(3, "2025-07-28T09:00:00"),
        make_order(4, "2025-07-30T13:00:00"),
        make_order(5, "2025-07-29T10:00:00", "2025-07-29T15:00:00Z"),
        make_order(6, "2025-07-29T10:00:00", status="canceled"),
    ]


class TestFillRateClient:

    @pytest.mark.asyncio
    async def test_posts_empty_json_body(self):
        calls = []
        client = make_client(ok_handler(problem=2, tracked=3, total=5, calls=calls))

        report = await client.fetch_problem_orders()

        assert calls[0].method == "POST"
        assert json.loads(calls[0].content) == {}
        assert report.problem_orders_count == 2
        assert report.tracked_issues_count == 3
        assert report.active_issues == 5

    @pytest.mark.asyncio
    async def test_active_issues_fall_back_to_new_problem_orders(self):
        client = make_client(ok_handler(problem=4, tracked=2, total=0))

        report = await client.fetch_problem_orders()

        assert report.active_issues == 4

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        client = make_client(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(FillRateError, match="500"):
            await client.fetch_problem_orders()

    @pytest.mark.asyncio
    async def test_success_false(self):
        client = make_client(
            lambda request: httpx.Response(200, json={"success": False, "error": "sheet locked"})
        )

        with pytest.raises(FillRateError, match="sheet locked"):
            await client.fetch_problem_orders()

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(FillRateError):
            await client.fetch_problem_orders()

    @pytest.mark.asyncio
    async def test_missing_problem_count(self):
        client = make_client(lambda request: httpx.Response(200, json={"success": True, "data": {}}))

        with pytest.raises(FillRateError):
            await client.fetch_problem_orders()

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        client = make_client(handler)

        with pytest.raises(FillRateError, match="timed out"):
            await client.fetch_problem_orders()


class TestCountOrdersDue:

    def test_counts_unshipped_due_and_overdue(self, clock):
        assert count_orders_due(due_orders(), TODAY, clock()) == 3

    def test_skips_invalid_and_unallocated(self, clock):
        orders = [make_order(1, "garbage"), make_order(2, None)]

        assert count_orders_due(orders, TODAY, clock()) == 0


class TestFillRateService:

    @pytest.mark.asyncio
    async def test_computes_and_caches_today(self, cache, clock):
        calls = []
        service = FillRateService(make_client(ok_handler(problem=1, calls=calls)), cache, clock)

        snapshot = await service.get_today(due_orders())

        assert snapshot.fill_rate == 66.7
        assert snapshot.backordered_count == 1
        assert snapshot.total_orders_today == 3
        assert snapshot.last_updated == clock()

        stored = await cache.get_json(fill_rate_key(TODAY))
        assert stored["fill_rate"] == 66.7

        again = await service.get_today(due_orders())
        assert again == snapshot
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_nothing_due_is_100(self, cache, clock):
        service = FillRateService(make_client(ok_handler(problem=0)), cache, clock)

        snapshot = await service.get_today([make_order(1, "2025-07-30T13:00:00")])

        assert snapshot.fill_rate == 100.0
        assert snapshot.total_orders_today == 0

    @pytest.mark.asyncio
    async def test_no_orders_loaded_is_not_cached(self, cache, clock):
        service = FillRateService(make_client(ok_handler()), cache, clock)

        snapshot = await service.get_today([])

        assert snapshot == FillRateSnapshot()
        assert await cache.get_json(fill_rate_key(TODAY)) is None

    @pytest.mark.asyncio
    async def test_endpoint_failure_caches_zeroed_snapshot(self, cache, clock):
        service = FillRateService(
            make_client(lambda request: httpx.Response(503)), cache, clock
        )

        snapshot = await service.get_today(due_orders())

        assert snapshot.fill_rate == 0.0
        assert snapshot.backordered_count == 0
        assert snapshot.total_orders_today == 3
        assert await service.get_snapshot(TODAY) == snapshot

    @pytest.mark.asyncio
    async def test_unconfigured_endpoint(self, cache, clock):
        service = FillRateService(None, cache, clock)

        snapshot = await service.get_today(due_orders())

        assert snapshot.fill_rate == 0.0
        assert snapshot.total_orders_today == 3

    @pytest.mark.asyncio
    async def test_get_snapshots_skips_missing_days(self, cache, clock):
        service = FillRateService(None, cache, clock)
        await service.store_snapshot(date(2025, 7, 28), FillRateSnapshot(fill_rate=95.0))

        snapshots = await service.get_snapshots([date(2025, 7, 28), date(2025, 7, 29)])

        assert list(snapshots) == [date(2025, 7, 28)]
        assert snapshots[date(2025, 7, 28)].fill_rate == 95.0
