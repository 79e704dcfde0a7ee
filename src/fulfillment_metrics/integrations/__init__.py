"""Integrations module - Cache stores and the Redis circuit breaker."""

from fulfillment_metrics.integrations.kv_store import (
    InMemoryStore,
    JsonCache,
    KeyValueStore,
    RedisStore,
    create_store,
)

__all__ = ["InMemoryStore", "JsonCache", "KeyValueStore", "RedisStore", "create_store"]
