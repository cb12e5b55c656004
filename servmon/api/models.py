"""
Request and response models for the servmon API.
"""

import datetime as dt
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from servmon.alerts.schemas import NULLABLE_THRESHOLD_FIELDS, Alert, Threshold
from servmon.ingestion.schemas import MetricSample

MetricTypeField = Literal["cpu", "memory", "disk", "network_in", "network_out"]
OperatorField = Literal[">", "<", ">=", "<=", "=="]
SeverityField = Literal["info", "warning", "critical"]


class ErrorResponse(BaseModel):
    """Response model for errors."""

    detail: str = Field(
        ...,
        description="Error message",
    )
    error_type: str = Field(
        default="error",
        description="Error type",
    )


# Health models


class ComponentHealth(BaseModel):
    """Health of a single infrastructure component."""

    status: str = Field(..., description="healthy or unhealthy")
    latency_ms: float | None = Field(default=None, description="Check latency")
    details: dict = Field(default_factory=dict, description="Extra diagnostics")


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(
        ...,
        description="Overall service status: healthy, degraded, or unhealthy",
    )
    components: dict[str, ComponentHealth] = Field(
        default_factory=dict,
        description="Per-component health",
    )
    version: str = Field(default="0.1.0", description="Service version")


# Alert models


class AlertItem(BaseModel):
    """Single alert record."""

    id: int = Field(..., description="Alert identifier")
    server_id: int = Field(..., description="Server the alert belongs to")
    server_name: str = Field(default="", description="Server hostname")
    threshold_id: int | None = Field(default=None, description="Threshold that opened it")
    title: str = Field(..., description="Short human-readable summary")
    message: str = Field(..., description="Detailed alert description")
    metric_type: str = Field(..., description="Metric that crossed the threshold")
    metric_value: float = Field(..., description="Value when the alert opened")
    threshold_value: float = Field(..., description="Threshold value when the alert opened")
    operator: str = Field(..., description="Threshold operator")
    severity: str = Field(..., description="Severity level: critical, warning, info")
    status: str = Field(..., description="active, acknowledged, resolved or suppressed")
    triggered_at: dt.datetime = Field(..., description="When the alert opened")
    resolved_at: dt.datetime | None = Field(default=None)
    acknowledged_at: dt.datetime | None = Field(default=None)
    acknowledged_by: int | None = Field(default=None)
    notified_at: dt.datetime | None = Field(default=None)
    notify_channels: list[str] = Field(
        default_factory=list,
        description="Channels that accepted the opening notification",
    )
    notes: str = Field(default="")

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertItem":
        return cls(
            id=alert.id,
            server_id=alert.server_id,
            server_name=alert.server_name,
            threshold_id=alert.threshold_id,
            title=alert.title,
            message=alert.message,
            metric_type=alert.metric_type,
            metric_value=alert.metric_value,
            threshold_value=alert.threshold_value,
            operator=alert.operator,
            severity=alert.severity,
            status=alert.status,
            triggered_at=alert.triggered_at,
            resolved_at=alert.resolved_at,
            acknowledged_at=alert.acknowledged_at,
            acknowledged_by=alert.acknowledged_by,
            notified_at=alert.notified_at,
            notify_channels=list(alert.notify_channels),
            notes=alert.notes,
        )


class AlertsResponse(BaseModel):
    """Response model for listing alerts."""

    alerts: list[AlertItem] = Field(..., description="List of alerts")
    total: int = Field(..., description="Number of alerts returned")
    latency_ms: float = Field(..., description="Processing latency in milliseconds")


class AlertActionRequest(BaseModel):
    """Request body for acknowledging or resolving an alert."""

    user_id: int = Field(..., ge=1, description="User performing the action")
    notes: str = Field(default="", max_length=2000, description="Operator notes")


# Threshold models


class ThresholdItem(BaseModel):
    """Single alert threshold."""

    id: int
    name: str
    description: str = ""
    metric_type: str
    operator: str
    value: float
    duration: int = 0
    severity: str
    enabled: bool = True
    cooldown_minutes: int
    server_id: int | None = None
    group_id: int | None = None
    enable_discord: bool = False
    enable_webhook: bool = False
    enable_email: bool = False
    webhook_url: str = ""
    created_by: int | None = None
    created_at: dt.datetime
    updated_at: dt.datetime
    last_triggered_at: dt.datetime | None = None

    @classmethod
    def from_threshold(cls, threshold: Threshold) -> "ThresholdItem":
        return cls(**{
            name: getattr(threshold, name) for name in cls.model_fields
        })


class ThresholdsResponse(BaseModel):
    """Response model for listing thresholds."""

    thresholds: list[ThresholdItem] = Field(..., description="List of thresholds")
    total: int = Field(..., description="Number of thresholds returned")


class ThresholdCreateRequest(BaseModel):
    """Request model for creating a threshold."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    metric_type: MetricTypeField
    operator: OperatorField
    value: float
    duration: int = Field(default=0, ge=0)
    severity: SeverityField = "warning"
    enabled: bool = True
    cooldown_minutes: int | None = Field(
        default=None,
        ge=0,
        description="Minutes between alert openings (defaults to ALERTS_DEFAULT_COOLDOWN_MINUTES)",
    )
    server_id: int | None = Field(default=None, ge=1)
    group_id: int | None = Field(default=None, ge=1)
    enable_discord: bool = False
    enable_webhook: bool = False
    enable_email: bool = False
    webhook_url: str = Field(default="", max_length=2000)
    created_by: int | None = None


class ThresholdUpdateRequest(BaseModel):
    """Request model for updating a threshold. Omitted fields are unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    metric_type: MetricTypeField | None = None
    operator: OperatorField | None = None
    value: float | None = None
    duration: int | None = Field(default=None, ge=0)
    severity: SeverityField | None = None
    enabled: bool | None = None
    cooldown_minutes: int | None = Field(default=None, ge=0)
    server_id: int | None = Field(default=None, ge=1)
    group_id: int | None = Field(default=None, ge=1)
    enable_discord: bool | None = None
    enable_webhook: bool | None = None
    enable_email: bool | None = None
    webhook_url: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _reject_explicit_nulls(self) -> "ThresholdUpdateRequest":
        # null is an instruction only where it means "clear": scope ids and the URL override
        nulled = sorted(
            name for name in self.model_fields_set - NULLABLE_THRESHOLD_FIELDS
            if getattr(self, name) is None
        )
        if nulled:
            raise ValueError(f"fields cannot be null: {', '.join(nulled)}")
        return self


# Metric models


class MetricSampleRequest(BaseModel):
    """A metric sample reported by a host agent."""

    server_id: int = Field(..., ge=1)
    timestamp: dt.datetime | None = Field(
        default=None,
        description="Measurement time (defaults to receipt time)",
    )
    cpu_usage: float = Field(default=0.0, ge=0.0)
    cpu_temp: float | None = None
    memory_total: int = Field(default=0, ge=0)
    memory_used: int = Field(default=0, ge=0)
    memory_free: int = Field(default=0, ge=0)
    disk_total: int = Field(default=0, ge=0)
    disk_used: int = Field(default=0, ge=0)
    disk_free: int = Field(default=0, ge=0)
    net_upload: int = Field(default=0, ge=0)
    net_download: int = Field(default=0, ge=0)


class MetricItem(BaseModel):
    """A stored metric sample."""

    id: int
    server_id: int
    timestamp: dt.datetime
    cpu_usage: float
    cpu_temp: float | None = None
    memory_total: int
    memory_used: int
    memory_free: int
    disk_total: int
    disk_used: int
    disk_free: int
    net_upload: int
    net_download: int

    @classmethod
    def from_sample(cls, sample: MetricSample) -> "MetricItem":
        return cls(**sample.to_dict())


class IngestResponse(BaseModel):
    """Response model for metric ingestion."""

    metric: MetricItem
    thresholds_checked: int = Field(default=0)
    alerts_opened: list[int] = Field(
        default_factory=list,
        description="Ids of alerts opened by this sample",
    )
    alerts_resolved: list[int] = Field(
        default_factory=list,
        description="Ids of alerts resolved by this sample",
    )
    evaluation_errors: list[str] = Field(default_factory=list)


class MetricsResponse(BaseModel):
    """Response model for metric history."""

    metrics: list[MetricItem]
    total: int
