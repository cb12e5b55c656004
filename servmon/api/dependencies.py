"""
Dependency injection for FastAPI endpoints.

Services are built once per process on first use and share one database
pool. Redis is only connected when ``REDIS_ENABLED`` is set; without it
alert lifecycle events are simply not published.
"""

import redis.asyncio as redis

from servmon.alerts.config import AlertConfig
from servmon.alerts.dispatcher import NotificationConfig, NotificationDispatcher
from servmon.alerts.events import AlertEventPublisher
from servmon.alerts.repository import AlertRepository, ThresholdRepository
from servmon.alerts.service import AlertService
from servmon.config.settings import get_settings
from servmon.ingestion.repository import MetricRepository
from servmon.ingestion.service import MetricIngestionService
from servmon.observability.metrics import get_metrics
from servmon.servers.repository import ServerRepository
from servmon.storage.database import Database

# Global service instances (initialized on first request)
_database: Database | None = None
_redis_client: redis.Redis | None = None
_alert_service: AlertService | None = None
_ingestion_service: MetricIngestionService | None = None


async def get_database() -> Database:
    """Get the shared, connected database."""
    global _database

    if _database is None:
        _database = Database()
        await _database.connect()

    return _database


async def get_redis_client() -> redis.Redis | None:
    """Get the shared Redis client, or None when Redis is disabled."""
    global _redis_client

    settings = get_settings()
    if not settings.redis_enabled:
        return None

    if _redis_client is None:
        _redis_client = redis.from_url(
            str(settings.redis_url),
            encoding="utf-8",
            decode_responses=True,
        )

    return _redis_client


async def get_alert_service() -> AlertService:
    """
    Get alert service instance.

    Wires repositories, the notification dispatcher and the event
    publisher from their settings classes.
    """
    global _alert_service

    if _alert_service is None:
        db = await get_database()
        config = AlertConfig()
        metrics = get_metrics()

        _alert_service = AlertService(
            config=config,
            threshold_repo=ThresholdRepository(db),
            alert_repo=AlertRepository(db),
            server_repo=ServerRepository(db),
            dispatcher=NotificationDispatcher.from_config(NotificationConfig(), metrics=metrics),
            events=AlertEventPublisher(
                redis_client=await get_redis_client(),
                channel=config.event_channel,
            ),
            metrics=metrics,
        )

    return _alert_service


async def get_ingestion_service() -> MetricIngestionService:
    """Get metric ingestion service instance (evaluates via the alert service)."""
    global _ingestion_service

    if _ingestion_service is None:
        db = await get_database()
        _ingestion_service = MetricIngestionService(
            metric_repo=MetricRepository(db),
            server_repo=ServerRepository(db),
            alert_service=await get_alert_service(),
            metrics=get_metrics(),
        )

    return _ingestion_service


async def cleanup_dependencies() -> None:
    """Clean up global dependencies on shutdown."""
    global _database, _redis_client, _alert_service, _ingestion_service

    _alert_service = None
    _ingestion_service = None

    if _database is not None:
        await _database.close()
        _database = None

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
