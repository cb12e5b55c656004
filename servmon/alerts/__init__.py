"""Alert evaluation engine for server metrics.

Components:
- Threshold / Alert: Dataclasses mapping to alert_thresholds and alerts
- AlertConfig: Pydantic settings for lifecycle defaults and events
- ThresholdRepository / AlertRepository: asyncpg persistence
- ThresholdResolver: Direct + global + group threshold resolution
- conditions: Stateless value extraction, trigger and clear rules
- AlertService: Lifecycle orchestrator (open, acknowledge, resolve)
- NotificationChannel / DiscordChannel / WebhookChannel / EmailChannel
- CircuitBreaker: Resilience wrapper for channels
- NotificationConfig / NotificationDispatcher: Dispatch orchestration
- AlertEventPublisher: Redis pub/sub lifecycle events
"""

from servmon.alerts.channels import (
    CircuitBreaker,
    DiscordChannel,
    EmailChannel,
    NotificationChannel,
    WebhookChannel,
)
from servmon.alerts.config import AlertConfig
from servmon.alerts.dispatcher import NotificationConfig, NotificationDispatcher
from servmon.alerts.errors import (
    AlertingError,
    AlertNotFoundError,
    AlertTransitionError,
    NotFoundError,
    ThresholdNotFoundError,
    ThresholdValidationError,
)
from servmon.alerts.events import AlertEventPublisher
from servmon.alerts.repository import AlertRepository, ThresholdRepository
from servmon.alerts.resolver import ThresholdResolver
from servmon.alerts.schemas import (
    OPEN_STATUSES,
    VALID_METRIC_TYPES,
    VALID_OPERATORS,
    VALID_SEVERITIES,
    VALID_STATUSES,
    Alert,
    AlertSeverity,
    AlertStatus,
    EvaluationResult,
    MetricType,
    Operator,
    Threshold,
)
from servmon.alerts.service import AlertService

__all__ = [
    "Alert",
    "AlertConfig",
    "AlertEventPublisher",
    "AlertNotFoundError",
    "AlertRepository",
    "AlertService",
    "AlertSeverity",
    "AlertStatus",
    "AlertTransitionError",
    "AlertingError",
    "CircuitBreaker",
    "DiscordChannel",
    "EmailChannel",
    "EvaluationResult",
    "MetricType",
    "NotFoundError",
    "NotificationChannel",
    "NotificationConfig",
    "NotificationDispatcher",
    "OPEN_STATUSES",
    "Operator",
    "Threshold",
    "ThresholdNotFoundError",
    "ThresholdRepository",
    "ThresholdResolver",
    "ThresholdValidationError",
    "VALID_METRIC_TYPES",
    "VALID_OPERATORS",
    "VALID_SEVERITIES",
    "VALID_STATUSES",
    "WebhookChannel",
]
