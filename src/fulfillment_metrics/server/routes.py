"""
API routes for the fulfillment metrics service.

`/health` is public; everything under /api/dashboard requires the
X-API-Key header.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Path, Query, Request

from fulfillment_metrics.core.business_calendar import eastern_date, federal_holidays
from fulfillment_metrics.core.logger import setup_logger
from fulfillment_metrics.server.auth import verify_api_key
from fulfillment_metrics.server.container import ServiceContainer

logger = setup_logger(__name__)

router = APIRouter()

# Router with /api/dashboard prefix
dashboard_router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


def get_services(request: Request) -> ServiceContainer:
    """Dependency returning the services built at startup."""
    return request.app.state.services


@router.get("/health")
async def health_check(services: ServiceContainer = Depends(get_services)) -> dict:
    """Health check endpoint for monitoring."""
    health_status = {
        "status": "healthy",
        "service": "fulfillment-metrics",
        "checks": {},
    }

    if await services.store.health_check():
        health_status["checks"]["cache"] = "ok"
    else:
        health_status["checks"]["cache"] = "unavailable"
        health_status["status"] = "degraded"

    if await services.order_source.health_check():
        health_status["checks"]["order_source"] = "ok"
    else:
        health_status["checks"]["order_source"] = "unavailable"
        health_status["status"] = "degraded"

    if services.scheduler is None:
        health_status["checks"]["scheduler"] = "disabled"
    else:
        health_status["checks"]["scheduler"] = "running" if services.scheduler.is_running else "stopped"

    return health_status


@dashboard_router.get("/metrics")
async def get_metrics(
    refresh: bool = Query(default=False, description="Bypass today's cached metrics"),
    services: ServiceContainer = Depends(get_services),
    _: bool = Depends(verify_api_key),
) -> Dict[str, Any]:
    """
    Get the rolling window of daily SLA, fill rate and pack success metrics.

    The status field is "ok", "stale" (served from an older cache after a
    failed refresh) or "connection_issue" (nothing to show).
    """
    result = await services.metrics_service.get_daily_metrics(force_refresh=refresh)
    return result.to_dict()


@dashboard_router.post("/refresh")
async def refresh_metrics(
    services: ServiceContainer = Depends(get_services),
    _: bool = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Manual retry: recompute metrics regardless of the cache."""
    logger.info("Manual metrics refresh requested")
    result = await services.metrics_service.get_daily_metrics(force_refresh=True)
    return result.to_dict()


@dashboard_router.get("/fill-rate")
async def get_fill_rate(
    services: ServiceContainer = Depends(get_services),
    _: bool = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Get today's fill rate snapshot."""
    snapshot = await services.metrics_service.get_fill_rate_today()
    return {
        "date": eastern_date(services.metrics_service.clock()).isoformat(),
        **snapshot.model_dump(mode="json"),
    }


@dashboard_router.get("/status")
async def get_status(
    services: ServiceContainer = Depends(get_services),
    _: bool = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Cache state, backfill state and next scheduled refresh."""
    metrics_service = services.metrics_service
    guard = services.pack_success_service.guard
    scheduler = services.scheduler
    breaker = getattr(services.store, "circuit_breaker", None)

    return {
        "cache_state": metrics_service.state.value,
        "cache_backend": breaker.get_state() if breaker else {"state": "local"},
        "last_updated": (
            metrics_service.last_updated.isoformat() if metrics_service.last_updated else None
        ),
        "backfill": {
            "state": guard.state.value,
            "last_run_on": guard.last_run_on.isoformat() if guard.last_run_on else None,
        },
        "scheduler": {
            "enabled": scheduler is not None,
            "running": scheduler.is_running if scheduler else False,
            "next_refresh": scheduler.get_next_run_time() if scheduler else None,
        },
    }


@dashboard_router.get("/holidays/{year}")
async def get_holidays(
    year: int = Path(..., ge=1900, le=2100, description="Calendar year"),
    _: bool = Depends(verify_api_key),
) -> Dict[str, Any]:
    """US federal holidays for a year, in date order."""
    holidays = federal_holidays(year)
    return {
        "year": year,
        "holidays": [
            {"date": day.isoformat(), "name": name, "day_name": f"{day:%a}"}
            for day, name in sorted(holidays.items())
        ],
    }


@dashboard_router.delete("/cache/pack-success")
async def clear_pack_success_cache(
    services: ServiceContainer = Depends(get_services),
    _: bool = Depends(verify_api_key),
) -> Dict[str, Any]:
    """
    Clear every cached pack success rate.

    The next metrics refresh recalculates them in a new background backfill.
    """
    removed = await services.pack_success_service.clear_cache()
    services.pack_success_service.reset_session()
    await services.metrics_service.invalidate()
    return {"success": True, "removed": removed}
