"""Tests for cache stores, the JSON cache wrapper and the circuit breaker."""

import fnmatch

import pytest
import redis.asyncio as redis

from fulfillment_metrics.integrations.circuit_breaker import CacheCircuitBreaker
from fulfillment_metrics.integrations.kv_store import (
    CacheUnavailableError,
    InMemoryStore,
    JsonCache,
    RedisStore,
    create_store,
)


class DictRedis:
    """Minimal async Redis stand-in backed by a dict."""

    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value

    async def delete(self, key):
        self.data.pop(key, None)

    async def scan_iter(self, match=None):
        for key in list(self.data):
            if match is None or fnmatch.fnmatch(key, match):
                yield key

    async def ping(self):
        return True

    async def aclose(self):
        pass


class DownRedis(DictRedis):
    """Redis stand-in whose connection always fails."""

    def __init__(self):
        super().__init__()
        self.calls = 0

    async def get(self, key):
        self.calls += 1
        raise redis.ConnectionError("connection refused")

    async def set(self, key, value):
        self.calls += 1
        raise redis.ConnectionError("connection refused")

    async def ping(self):
        raise redis.ConnectionError("connection refused")


class TestInMemoryStore:

    @pytest.mark.asyncio
    async def test_set_get_remove(self):
        store = InMemoryStore()

        await store.set("a", "1")
        assert await store.get("a") == "1"

        await store.remove("a")
        assert await store.get("a") is None

    @pytest.mark.asyncio
    async def test_keys_by_prefix(self):
        store = InMemoryStore()
        await store.set("pack_success_rate_2025-07-28", "{}")
        await store.set("fill_rate_2025-07-28", "{}")

        assert await store.keys("pack_") == ["pack_success_rate_2025-07-28"]


class TestRedisStore:

    @pytest.mark.asyncio
    async def test_keys_are_namespaced(self):
        client = DictRedis()
        store = RedisStore(prefix="fm:", client=client)

        await store.set("sla_metrics_date", "2025-07-30")

        assert client.data == {"fm:sla_metrics_date": "2025-07-30"}
        assert await store.get("sla_metrics_date") == "2025-07-30"
        assert await store.keys("sla_") == ["sla_metrics_date"]

    @pytest.mark.asyncio
    async def test_connection_errors_open_the_circuit(self):
        client = DownRedis()
        store = RedisStore(client=client, circuit_breaker=CacheCircuitBreaker(threshold=2))

        for _ in range(3):
            with pytest.raises(CacheUnavailableError):
                await store.get("anything")

        assert client.calls == 2
        assert store.circuit_breaker.state == "open"

    @pytest.mark.asyncio
    async def test_health_check(self):
        assert await RedisStore(client=DictRedis()).health_check() is True
        assert await RedisStore(client=DownRedis()).health_check() is False

    def test_create_store(self):
        assert isinstance(create_store("memory"), InMemoryStore)
        assert isinstance(create_store("redis", host="localhost", prefix="fm:"), RedisStore)

        with pytest.raises(ValueError):
            create_store("memcached")


class TestJsonCache:

    @pytest.mark.asyncio
    async def test_round_trip(self):
        cache = JsonCache(InMemoryStore())

        assert await cache.set_json("k", {"rate": 97.5, "days": [1, 2]}) is True
        assert await cache.get_json("k") == {"rate": 97.5, "days": [1, 2]}

    @pytest.mark.asyncio
    async def test_corrupted_entry_is_a_miss_and_removed(self):
        store = InMemoryStore()
        await store.set("k", "{not json")
        cache = JsonCache(store)

        assert await cache.get_json("k") is None
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_backend_failures_are_swallowed(self):
        cache = JsonCache(RedisStore(client=DownRedis()))

        assert await cache.get_json("k") is None
        assert await cache.get_text("k") is None
        assert await cache.set_json("k", {}) is False
        assert await cache.set_text("k", "v") is False

    @pytest.mark.asyncio
    async def test_remove_prefix(self):
        cache = JsonCache(InMemoryStore())
        await cache.set_json("pack_success_rate_2025-07-28", {})
        await cache.set_json("pack_success_rate_2025-07-29", {})
        await cache.set_json("fill_rate_2025-07-29", {})

        assert await cache.remove_prefix("pack_success_rate_") == 2
        assert await cache.get_json("fill_rate_2025-07-29") == {}


class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        breaker = CacheCircuitBreaker(threshold=3)

        breaker.record_failure()
        breaker.record_failure()
        assert breaker.should_attempt()

        breaker.record_failure()
        assert breaker.state == "open"
        assert not breaker.should_attempt()

    def test_half_open_after_timeout(self):
        breaker = CacheCircuitBreaker(threshold=1, timeout=60)
        breaker.record_failure()
        breaker.opened_at -= 61

        assert breaker.should_attempt()
        assert breaker.state == "half_open"

        breaker.record_failure()
        assert breaker.state == "open"

    def test_success_closes_circuit(self):
        breaker = CacheCircuitBreaker(threshold=1)
        breaker.record_failure()

        breaker.record_success()

        assert breaker.get_state()["state"] == "closed"
        assert breaker.get_state()["failure_count"] == 0
