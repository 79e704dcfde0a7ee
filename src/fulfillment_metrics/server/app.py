"""FastAPI application setup and configuration."""

import asyncio
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fulfillment_metrics.config.settings import settings
from fulfillment_metrics.core.logger import setup_logger
from fulfillment_metrics.core.monitoring import init_monitoring
from fulfillment_metrics.server.container import ServiceContainer, build_container

logger = setup_logger(__name__)

# Global variables for resource management
_pending_tasks = set()


def track_task(task: asyncio.Task) -> None:
    """
    Track a background task for graceful shutdown.

    Args:
        task: The asyncio Task to track
    """
    _pending_tasks.add(task)
    task.add_done_callback(_pending_tasks.discard)


def create_app(
    services: Optional[ServiceContainer] = None,
    warm_cache: bool = True,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        services: Pre-built services; built from settings on startup if omitted
        warm_cache: Load today's metrics in the background on startup

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="Fulfillment Metrics",
        version="1.0.0",
        description="SLA, fill rate and pack success metrics for the fulfillment dashboard",
    )
    app.state.services = services

    init_monitoring(settings.glitchtip_dsn, settings.environment)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from fulfillment_metrics.server import routes

    app.include_router(routes.router)
    app.include_router(routes.dashboard_router)

    @app.on_event("startup")
    async def startup():
        """Build services, start the daily refresh and warm the cache."""
        try:
            logger.info("=" * 60)
            logger.info("Starting Fulfillment Metrics service...")
            logger.info("=" * 60)

            if app.state.services is None:
                app.state.services = build_container(settings)
                logger.info(f"✓ Services initialized (cache backend: {settings.cache_backend})")

            container: ServiceContainer = app.state.services

            if container.scheduler:
                container.scheduler.start()
                logger.info(f"✓ Daily refresh scheduled, next run: {container.scheduler.get_next_run_time()}")
            else:
                logger.info("Daily refresh scheduler disabled")

            if warm_cache:
                track_task(asyncio.create_task(container.metrics_service.get_daily_metrics()))
                logger.info("✓ Initial metrics load started")

        except Exception as e:
            logger.error(f"Failed to start service: {e}", exc_info=True)
            raise

    @app.on_event("shutdown")
    async def shutdown():
        """Graceful shutdown: finish pending loads, then release resources."""
        logger.info("Starting graceful shutdown...")

        try:
            if _pending_tasks:
                logger.info(f"Waiting for {len(_pending_tasks)} pending tasks to complete...")
                await asyncio.gather(*_pending_tasks, return_exceptions=True)

            if app.state.services is not None:
                await app.state.services.close()

            logger.info("Graceful shutdown completed successfully")

        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)

    return app
