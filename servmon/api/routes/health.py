"""
Health check endpoint with database and Redis checks.
"""

import time

import structlog
from fastapi import APIRouter, Depends

from servmon.api.dependencies import get_database, get_redis_client
from servmon.api.models import ComponentHealth, HealthResponse
from servmon.storage.database import Database

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _check_database(db: Database) -> ComponentHealth:
    """Check database connectivity and measure latency."""
    start = time.perf_counter()
    try:
        healthy = await db.health_check()
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="healthy" if healthy else "unhealthy",
            latency_ms=round(latency_ms, 2),
        )
    except Exception as e:
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="unhealthy",
            latency_ms=round(latency_ms, 2),
            details={"error": str(e)},
        )


async def _check_redis(redis_client) -> ComponentHealth:
    """Check Redis connectivity and measure latency."""
    start = time.perf_counter()
    try:
        await redis_client.ping()
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="healthy",
            latency_ms=round(latency_ms, 2),
        )
    except Exception as e:
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="unhealthy",
            latency_ms=round(latency_ms, 2),
            details={"error": str(e)},
        )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Check the health of the service and its dependencies.",
)
async def health_check(
    db: Database = Depends(get_database),
    redis_client=Depends(get_redis_client),
) -> HealthResponse:
    """
    Check service health.

    Status logic:
    - unhealthy: database is down (no ingestion, no evaluation)
    - degraded: Redis is enabled but down (lifecycle events are dropped)
    - healthy: all components operational
    """
    components: dict[str, ComponentHealth] = {}

    db_health = await _check_database(db)
    components["database"] = db_health

    redis_down = False
    if redis_client is not None:
        redis_health = await _check_redis(redis_client)
        components["redis"] = redis_health
        redis_down = redis_health.status == "unhealthy"
    else:
        components["redis"] = ComponentHealth(status="disabled")

    if db_health.status == "unhealthy":
        status = "unhealthy"
    elif redis_down:
        status = "degraded"
    else:
        status = "healthy"

    if status != "healthy":
        logger.warning("Health check not healthy", status=status)

    return HealthResponse(status=status, components=components)
