"""Schema definitions for alert thresholds and alert records.

``Threshold`` maps 1:1 to the ``alert_thresholds`` table and ``Alert`` to
the ``alerts`` table. A threshold is an admin-defined rule over one metric
type; an alert is one incident opened when a threshold's condition first
holds for a server.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from servmon.alerts.errors import ThresholdValidationError

MetricType = Literal["cpu", "memory", "disk", "network_in", "network_out"]

VALID_METRIC_TYPES: frozenset[str] = frozenset({
    "cpu",
    "memory",
    "disk",
    "network_in",
    "network_out",
})

Operator = Literal[">", "<", ">=", "<=", "=="]

VALID_OPERATORS: frozenset[str] = frozenset({">", "<", ">=", "<=", "=="})

AlertSeverity = Literal["info", "warning", "critical"]

VALID_SEVERITIES: frozenset[str] = frozenset({
    "info",
    "warning",
    "critical",
})

AlertStatus = Literal["active", "acknowledged", "resolved", "suppressed"]

VALID_STATUSES: frozenset[str] = frozenset({
    "active",
    "acknowledged",
    "resolved",
    "suppressed",
})

# Statuses that count as "an incident is still open" for a (server, threshold)
OPEN_STATUSES: frozenset[str] = frozenset({"active", "acknowledged"})

# Threshold fields an update may set to null: clearing a scope id makes the
# rule wider, clearing webhook_url falls back to the generic webhook
NULLABLE_THRESHOLD_FIELDS: frozenset[str] = frozenset({"server_id", "group_id", "webhook_url"})

# Notification channel names, in dispatch order
CHANNEL_DISCORD = "discord"
CHANNEL_WEBHOOK = "webhook"
CHANNEL_EMAIL = "email"

METRIC_LABELS: dict[str, str] = {
    "cpu": "CPU",
    "memory": "Memory",
    "disk": "Disk",
    "network_in": "Network (in)",
    "network_out": "Network (out)",
}

METRIC_UNITS: dict[str, str] = {
    "cpu": "%",
    "memory": "%",
    "disk": "%",
    "network_in": " MB",
    "network_out": " MB",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class Threshold:
    """An alert rule from the alert_thresholds table.

    Attributes:
        name: Human-readable rule name.
        metric_type: Which sample field the rule watches.
        operator: Comparison applied as ``value <operator> threshold``.
        value: Threshold value (percent for cpu/memory/disk, MB for network).
        severity: Severity copied onto alerts opened by this rule.
        id: Database id (0 until persisted).
        description: Free-form description.
        duration: Seconds the condition should hold (informational).
        enabled: Disabled rules are never resolved for evaluation.
        cooldown_minutes: Minimum time between successive alert openings.
        server_id: Scope to one server (mutually exclusive with group_id).
        group_id: Scope to the direct members of one server group.
        enable_discord / enable_webhook / enable_email: Channel flags.
        webhook_url: Optional per-rule override of the generic webhook URL.
        created_by: Id of the user who created the rule.
        last_triggered_at: When an alert last opened under this rule.
    """

    name: str
    metric_type: str
    operator: str
    value: float
    severity: str
    id: int = 0
    description: str = ""
    duration: int = 0
    enabled: bool = True
    cooldown_minutes: int = 15
    server_id: int | None = None
    group_id: int | None = None
    enable_discord: bool = False
    enable_webhook: bool = False
    enable_email: bool = False
    webhook_url: str = ""
    created_by: int | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    last_triggered_at: datetime | None = None

    @property
    def scope(self) -> str:
        """``server``, ``group`` or ``global``."""
        if self.server_id is not None:
            return "server"
        if self.group_id is not None:
            return "group"
        return "global"

    @property
    def enabled_channels(self) -> set[str]:
        """Channel names whose flag is set on this rule."""
        channels = set()
        if self.enable_discord:
            channels.add(CHANNEL_DISCORD)
        if self.enable_webhook:
            channels.add(CHANNEL_WEBHOOK)
        if self.enable_email:
            channels.add(CHANNEL_EMAIL)
        return channels

    def validate(self) -> None:
        """Reject definitions the evaluation core cannot handle.

        Also catches wrongly typed fields (``None`` included), since an
        update applies caller-supplied values onto an existing rule.

        Raises:
            ThresholdValidationError: listing every problem found.
        """
        problems: list[str] = []
        if self.server_id is not None and self.group_id is not None:
            problems.append("server_id and group_id are mutually exclusive")
        if self.operator not in VALID_OPERATORS:
            problems.append(
                f"operator {self.operator!r} must be one of {sorted(VALID_OPERATORS)}"
            )
        if self.metric_type not in VALID_METRIC_TYPES:
            problems.append(
                f"metric_type {self.metric_type!r} must be one of {sorted(VALID_METRIC_TYPES)}"
            )
        if self.severity not in VALID_SEVERITIES:
            problems.append(
                f"severity {self.severity!r} must be one of {sorted(VALID_SEVERITIES)}"
            )
        if not _is_number(self.value):
            problems.append(f"value {self.value!r} must be a number")
        if not isinstance(self.cooldown_minutes, int) or isinstance(self.cooldown_minutes, bool):
            problems.append(f"cooldown_minutes {self.cooldown_minutes!r} must be an integer")
        elif self.cooldown_minutes < 0:
            problems.append("cooldown_minutes must be >= 0")
        if not isinstance(self.duration, int) or isinstance(self.duration, bool):
            problems.append(f"duration {self.duration!r} must be an integer")
        if not isinstance(self.name, str) or not self.name.strip():
            problems.append("name must not be empty")
        if not isinstance(self.description, str):
            problems.append("description must be a string")
        if not isinstance(self.webhook_url, str):
            problems.append("webhook_url must be a string")
        for flag in ("enabled", "enable_discord", "enable_webhook", "enable_email"):
            if not isinstance(getattr(self, flag), bool):
                problems.append(f"{flag} must be true or false")
        if problems:
            raise ThresholdValidationError(problems)

    def in_cooldown(self, now: datetime) -> bool:
        """True while ``now`` is inside ``[last_triggered_at, +cooldown)``."""
        if self.last_triggered_at is None:
            return False
        return within_cooldown(self.last_triggered_at, self.cooldown_minutes, now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "metric_type": self.metric_type,
            "operator": self.operator,
            "value": self.value,
            "duration": self.duration,
            "severity": self.severity,
            "enabled": self.enabled,
            "cooldown_minutes": self.cooldown_minutes,
            "server_id": self.server_id,
            "group_id": self.group_id,
            "enable_discord": self.enable_discord,
            "enable_webhook": self.enable_webhook,
            "enable_email": self.enable_email,
            "webhook_url": self.webhook_url,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_triggered_at": (
                self.last_triggered_at.isoformat() if self.last_triggered_at else None
            ),
        }


def within_cooldown(last_triggered_at: datetime, cooldown_minutes: int, now: datetime) -> bool:
    if last_triggered_at.tzinfo is None:
        last_triggered_at = last_triggered_at.replace(tzinfo=timezone.utc)
    elapsed = (now - last_triggered_at).total_seconds()
    return 0 <= elapsed < cooldown_minutes * 60


@dataclass
class Alert:
    """A persisted incident from the alerts table.

    Attributes:
        server_id: Server the incident belongs to.
        threshold_id: Rule that opened it (None for rule-less alerts).
        title: Short human-readable summary.
        message: Detailed description of the condition.
        metric_type: Metric that crossed the threshold.
        metric_value: Value observed when the alert opened.
        threshold_value: Rule value at the time the alert opened.
        operator: Rule operator at the time the alert opened.
        severity: Urgency level (info, warning, critical).
        status: active, acknowledged, resolved or suppressed.
        notify_channels: Channels the opening notification reached.
        server_name: Hostname for rendering (not persisted).
    """

    server_id: int
    threshold_id: int | None
    title: str
    message: str
    metric_type: str
    metric_value: float
    threshold_value: float
    operator: str
    severity: str
    id: int = 0
    status: str = "active"
    triggered_at: datetime = field(default_factory=_utcnow)
    resolved_at: datetime | None = None
    acknowledged_at: datetime | None = None
    acknowledged_by: int | None = None
    notified_at: datetime | None = None
    notify_channels: list[str] = field(default_factory=list)
    notes: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    server_name: str = ""
    server_ip: str = ""

    def __post_init__(self) -> None:
        if self.status not in VALID_STATUSES:
            raise ValueError(
                f"Invalid status {self.status!r}. "
                f"Must be one of: {sorted(VALID_STATUSES)}"
            )
        if self.severity not in VALID_SEVERITIES:
            raise ValueError(
                f"Invalid severity {self.severity!r}. "
                f"Must be one of: {sorted(VALID_SEVERITIES)}"
            )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def can_acknowledge(self) -> bool:
        return self.status == "active"

    def can_resolve(self) -> bool:
        return self.status in OPEN_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""

        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "server_id": self.server_id,
            "threshold_id": self.threshold_id,
            "title": self.title,
            "message": self.message,
            "metric_type": self.metric_type,
            "metric_value": self.metric_value,
            "threshold_value": self.threshold_value,
            "operator": self.operator,
            "severity": self.severity,
            "status": self.status,
            "triggered_at": self.triggered_at.isoformat(),
            "resolved_at": _iso(self.resolved_at),
            "acknowledged_at": _iso(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
            "notified_at": _iso(self.notified_at),
            "notify_channels": list(self.notify_channels),
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class EvaluationResult:
    """Outcome of evaluating one metric sample against its thresholds."""

    server_id: int
    thresholds_checked: int = 0
    opened: list[Alert] = field(default_factory=list)
    resolved: list[Alert] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
