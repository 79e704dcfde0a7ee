"""Service wiring for the FastAPI application."""

from dataclasses import dataclass
from typing import Optional

from fulfillment_metrics.api.fill_rate_client import FillRateClient
from fulfillment_metrics.config.settings import Settings
from fulfillment_metrics.core.logger import setup_logger
from fulfillment_metrics.integrations.kv_store import JsonCache, KeyValueStore, create_store
from fulfillment_metrics.repositories.base import OrderSource
from fulfillment_metrics.repositories.firestore_repository import FirestoreRepository
from fulfillment_metrics.services.fill_rate import FillRateService
from fulfillment_metrics.services.metrics_service import MetricsService
from fulfillment_metrics.services.pack_success import PackSuccessService
from fulfillment_metrics.services.refresh_scheduler import RefreshScheduler

logger = setup_logger(__name__)


@dataclass
class ServiceContainer:
    """Everything the routes need, built once per application."""
    store: KeyValueStore
    order_source: OrderSource
    metrics_service: MetricsService
    fill_rate_service: FillRateService
    pack_success_service: PackSuccessService
    scheduler: Optional[RefreshScheduler] = None
    fill_rate_client: Optional[FillRateClient] = None

    async def close(self) -> None:
        """Stop background work and release connections."""
        if self.scheduler:
            self.scheduler.stop()

        await self.pack_success_service.stop()

        if self.fill_rate_client:
            await self.fill_rate_client.close()

        close_source = getattr(self.order_source, "close", None)
        if close_source:
            await close_source()

        await self.store.close()


def build_container(settings: Settings) -> ServiceContainer:
    """
    Build store, sources and services from settings.

    Steps:
    1. Cache store (Redis or in-memory) wrapped in a JSON cache
    2. Firestore repository for orders and pack errors
    3. Fill rate client (only when an endpoint URL is configured)
    4. Fill rate, pack success and metrics services
    5. Daily refresh scheduler (not started here)
    """
    store = create_store(
        settings.cache_backend,
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        prefix=settings.cache_key_prefix,
    )
    cache = JsonCache(store)

    repository = FirestoreRepository(
        credentials_path=settings.google_credentials_path,
        project_id=settings.firestore_project_id,
        orders_collection=settings.orders_collection,
        pack_errors_collection=settings.pack_errors_collection,
    )

    fill_rate_client = None
    if settings.fill_rate_url:
        fill_rate_client = FillRateClient(
            settings.fill_rate_url,
            timeout=settings.fill_rate_timeout_seconds,
        )
    else:
        logger.warning("FILL_RATE_URL not set, fill rate will use defaults")

    fill_rate_service = FillRateService(fill_rate_client, cache)
    pack_success_service = PackSuccessService(repository, cache)
    metrics_service = MetricsService(
        order_source=repository,
        cache=cache,
        fill_rate_service=fill_rate_service,
        pack_success_service=pack_success_service,
        lookback_days=settings.order_lookback_days,
        fallback_days=settings.order_fallback_days,
        fallback_limit=settings.order_fallback_limit,
        query_timeout_seconds=settings.order_query_timeout_seconds,
    )

    scheduler = RefreshScheduler(metrics_service) if settings.refresh_scheduler_enabled else None

    return ServiceContainer(
        store=store,
        order_source=repository,
        metrics_service=metrics_service,
        fill_rate_service=fill_rate_service,
        pack_success_service=pack_success_service,
        scheduler=scheduler,
        fill_rate_client=fill_rate_client,
    )
