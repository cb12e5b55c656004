"""Shared fixtures for API tests."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from servmon.alerts.config import AlertConfig
from servmon.alerts.schemas import Alert, Threshold
from servmon.alerts.service import AlertService
from servmon.api.app import create_app
from servmon.api.auth import verify_api_key
from servmon.api.dependencies import (
    get_alert_service,
    get_database,
    get_ingestion_service,
    get_redis_client,
)
from servmon.ingestion.service import MetricIngestionService

TS = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _make_alert(alert_id: int = 1, status: str = "active", **kwargs) -> Alert:
    """Helper to create an Alert with sensible defaults."""
    return Alert(
        id=alert_id,
        server_id=kwargs.pop("server_id", 1),
        threshold_id=kwargs.pop("threshold_id", 10),
        title=kwargs.pop("title", "Alert: CPU on web-01"),
        message=kwargs.pop("message", "CPU reached 95.00%, crossing the threshold > 90.00%"),
        metric_type=kwargs.pop("metric_type", "cpu"),
        metric_value=kwargs.pop("metric_value", 95.0),
        threshold_value=kwargs.pop("threshold_value", 90.0),
        operator=kwargs.pop("operator", ">"),
        severity=kwargs.pop("severity", "critical"),
        status=status,
        triggered_at=kwargs.pop("triggered_at", TS),
        server_name=kwargs.pop("server_name", "web-01"),
        **kwargs,
    )


def _make_threshold(threshold_id: int = 10, **kwargs) -> Threshold:
    """Helper to create a Threshold with sensible defaults."""
    return Threshold(
        id=threshold_id,
        name=kwargs.pop("name", "High CPU"),
        metric_type=kwargs.pop("metric_type", "cpu"),
        operator=kwargs.pop("operator", ">"),
        value=kwargs.pop("value", 90.0),
        severity=kwargs.pop("severity", "critical"),
        created_at=kwargs.pop("created_at", TS),
        updated_at=kwargs.pop("updated_at", TS),
        **kwargs,
    )


@pytest.fixture
def mock_alert_service():
    """Mock AlertService with the default config."""
    service = AsyncMock(spec=AlertService)
    service.config = AlertConfig()
    service.list_alerts.return_value = []
    service.get_active_alerts.return_value = []
    service.list_thresholds.return_value = []
    service.get_applicable_thresholds.return_value = []
    return service


@pytest.fixture
def mock_ingestion_service():
    """Mock MetricIngestionService."""
    service = AsyncMock(spec=MetricIngestionService)
    service.history.return_value = []
    service.latest.return_value = None
    return service


@pytest.fixture
def mock_database():
    db = AsyncMock()
    db.health_check.return_value = True
    return db


@pytest.fixture
def client(mock_alert_service, mock_ingestion_service, mock_database):
    """FastAPI TestClient with all service dependencies overridden."""
    app = create_app()

    app.dependency_overrides[verify_api_key] = lambda: "test-key"
    app.dependency_overrides[get_alert_service] = lambda: mock_alert_service
    app.dependency_overrides[get_ingestion_service] = lambda: mock_ingestion_service
    app.dependency_overrides[get_database] = lambda: mock_database
    app.dependency_overrides[get_redis_client] = lambda: None

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
