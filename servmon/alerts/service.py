"""Alert service orchestrating threshold evaluation and the alert lifecycle.

For every ingested sample the service resolves the applicable thresholds,
evaluates each with the stateless functions in ``conditions.py`` and moves
the (server, threshold) pair through the lifecycle:

    none ──trigger──▶ active ──ack──▶ acknowledged
                        │                  │
                        └──clear/resolve───┴──▶ resolved

Opening is atomic in the repository (threshold row lock, cooldown and
open-alert re-check). Notifications and lifecycle events are sent after
the state change has been committed and never roll it back.
"""

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, NoReturn

from servmon.alerts.conditions import compare, extract_metric_value, should_clear
from servmon.alerts.config import AlertConfig
from servmon.alerts.dispatcher import NotificationDispatcher
from servmon.alerts.errors import (
    AlertNotFoundError,
    AlertTransitionError,
    ThresholdNotFoundError,
    ThresholdValidationError,
)
from servmon.alerts.events import (
    EVENT_ACKNOWLEDGED,
    EVENT_OPENED,
    EVENT_RESOLVED,
    AlertEventPublisher,
)
from servmon.alerts.repository import AlertRepository, ThresholdRepository
from servmon.alerts.resolver import ThresholdResolver
from servmon.alerts.schemas import (
    METRIC_LABELS,
    METRIC_UNITS,
    NULLABLE_THRESHOLD_FIELDS,
    Alert,
    EvaluationResult,
    Threshold,
)
from servmon.ingestion.schemas import MetricSample
from servmon.observability.metrics import AlertingMetrics
from servmon.servers.repository import ServerRepository
from servmon.servers.schemas import Server

logger = logging.getLogger(__name__)

# Fields an admin may change on an existing threshold
EDITABLE_THRESHOLD_FIELDS: frozenset[str] = frozenset({
    "name",
    "description",
    "metric_type",
    "operator",
    "value",
    "duration",
    "severity",
    "enabled",
    "cooldown_minutes",
    "server_id",
    "group_id",
    "enable_discord",
    "enable_webhook",
    "enable_email",
    "webhook_url",
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_alert(
    sample: MetricSample,
    threshold: Threshold,
    value: float,
    server: Server | None,
    now: datetime,
) -> Alert:
    """Build the (unsaved) alert for a triggered threshold."""
    label = METRIC_LABELS.get(threshold.metric_type, threshold.metric_type)
    unit = METRIC_UNITS.get(threshold.metric_type, "")
    server_name = server.hostname if server else f"Server #{sample.server_id}"

    return Alert(
        server_id=sample.server_id,
        threshold_id=threshold.id,
        title=f"Alert: {label} on {server_name}",
        message=(
            f"{label} reached {value:.2f}{unit}, crossing the threshold "
            f"{threshold.operator} {threshold.value:.2f}{unit} ({threshold.name})"
        ),
        metric_type=threshold.metric_type,
        metric_value=value,
        threshold_value=threshold.value,
        operator=threshold.operator,
        severity=threshold.severity,
        triggered_at=now,
        server_name=server.hostname if server else "",
        server_ip=server.ip if server else "",
    )


class AlertService:
    """Orchestrator for threshold evaluation and alert state transitions.

    Collaborators are injected; the dispatcher, event publisher and
    metrics are optional so the core can run without any outbound side
    channel. ``clock`` supplies the evaluation time.
    """

    def __init__(
        self,
        config: AlertConfig,
        threshold_repo: ThresholdRepository,
        alert_repo: AlertRepository,
        server_repo: ServerRepository,
        resolver: ThresholdResolver | None = None,
        dispatcher: NotificationDispatcher | None = None,
        events: AlertEventPublisher | None = None,
        metrics: AlertingMetrics | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._threshold_repo = threshold_repo
        self._alert_repo = alert_repo
        self._server_repo = server_repo
        self._resolver = resolver or ThresholdResolver(threshold_repo, server_repo)
        self._dispatcher = dispatcher
        self._events = events
        self._metrics = metrics
        self._clock = clock or _utcnow

    @property
    def config(self) -> AlertConfig:
        return self._config

    # ── Evaluation ────────────────────────────────────────────

    async def evaluate_metric(self, sample: MetricSample) -> EvaluationResult:
        """Evaluate a sample against every threshold applicable to its server.

        A failure while handling one threshold is logged, recorded in the
        result and does not stop the remaining thresholds.

        Raises:
            Exception: datastore errors while resolving thresholds.
        """
        started = time.monotonic()
        result = EvaluationResult(server_id=sample.server_id)

        thresholds = await self._resolver.resolve_applicable(sample.server_id)
        result.thresholds_checked = len(thresholds)
        server_cache: dict[int, Server | None] = {}

        for threshold in thresholds:
            try:
                await self._evaluate_threshold(sample, threshold, result, server_cache)
            except Exception as e:
                logger.error(
                    "Evaluation of threshold %s failed for server %s: %s",
                    threshold.id, sample.server_id, e,
                )
                result.errors.append(f"threshold {threshold.id}: {e}")

        if self._metrics is not None:
            self._metrics.record_evaluation(time.monotonic() - started)

        if result.opened or result.resolved:
            logger.info(
                "Server %s evaluated: %d thresholds, %d opened, %d resolved",
                sample.server_id,
                result.thresholds_checked,
                len(result.opened),
                len(result.resolved),
            )
        return result

    async def _evaluate_threshold(
        self,
        sample: MetricSample,
        threshold: Threshold,
        result: EvaluationResult,
        server_cache: dict[int, Server | None],
    ) -> None:
        value = extract_metric_value(sample, threshold.metric_type)
        if value is None:
            logger.debug(
                "Metric %s undefined for server %s, skipping threshold %s",
                threshold.metric_type, sample.server_id, threshold.id,
            )
            return

        now = self._clock()

        if compare(value, threshold.operator, threshold.value):
            if threshold.in_cooldown(now):
                return
            if sample.server_id not in server_cache:
                server_cache[sample.server_id] = await self._get_server(sample.server_id)
            opened = await self._open_alert(
                build_alert(sample, threshold, value, server_cache[sample.server_id], now),
                threshold,
                now,
            )
            if opened is not None:
                result.opened.append(opened)
            return

        if should_clear(value, threshold):
            open_alert = await self._alert_repo.get_open_for(
                sample.server_id, threshold.id, threshold.metric_type,
            )
            if open_alert is None:
                return
            resolved = await self.auto_resolve(open_alert, threshold)
            if resolved is not None:
                result.resolved.append(resolved)

    async def _get_server(self, server_id: int) -> Server | None:
        """Server lookup for alert rendering; a failure only degrades the title."""
        try:
            return await self._server_repo.get_by_id(server_id)
        except Exception as e:
            logger.warning("Server lookup failed for %s: %s", server_id, e)
            return None

    async def _open_alert(
        self,
        alert: Alert,
        threshold: Threshold,
        now: datetime,
    ) -> Alert | None:
        created = await self._alert_repo.open_alert(alert, now)
        if created is None:
            return None

        logger.info(
            "Alert %s opened: server=%s threshold=%s %s=%.2f",
            created.id, created.server_id, threshold.id,
            created.metric_type, created.metric_value,
        )
        if self._metrics is not None:
            self._metrics.record_alert_opened(created.severity)

        channels = await self._notify_alert(created, threshold)
        if channels:
            notified_at = self._clock()
            try:
                # Survives cancellation by the request deadline
                await asyncio.shield(
                    self._alert_repo.record_notification(created.id, channels, notified_at)
                )
                created.notify_channels = channels
                created.notified_at = notified_at
            except Exception as e:
                logger.error(
                    "Failed to record notification channels for alert %s: %s",
                    created.id, e,
                )

        await self._publish(EVENT_OPENED, created)
        return created

    # ── Transitions ───────────────────────────────────────────

    async def auto_resolve(
        self,
        alert: Alert,
        threshold: Threshold | None = None,
    ) -> Alert | None:
        """Resolve an open alert because its metric returned to normal.

        Cooldown does not apply. An alert that is no longer open (e.g.
        resolved concurrently) is left untouched.

        Returns:
            The resolved alert, or None if nothing changed.
        """
        if not alert.can_resolve():
            return None

        resolved = await self._alert_repo.resolve(
            alert.id, self._config.auto_resolve_note, self._clock(),
        )
        if resolved is None:
            logger.debug("Alert %s already closed, auto-resolve skipped", alert.id)
            return None

        logger.info("Alert %s resolved automatically", resolved.id)
        await self._after_resolve(resolved, threshold, mode="automatic")
        return resolved

    async def acknowledge_alert(
        self,
        alert_id: int,
        user_id: int,
        notes: str = "",
    ) -> Alert:
        """Acknowledge an active alert.

        Raises:
            AlertNotFoundError: no such alert.
            AlertTransitionError: the alert is not active.
        """
        updated = await self._alert_repo.acknowledge(alert_id, user_id, notes, self._clock())
        if updated is None:
            await self._raise_transition_error(alert_id, "acknowledge")

        logger.info("Alert %s acknowledged by user %s", alert_id, user_id)
        if self._metrics is not None:
            self._metrics.record_alert_acknowledged()
        await self._publish(EVENT_ACKNOWLEDGED, updated)
        return updated

    async def resolve_alert(
        self,
        alert_id: int,
        user_id: int,
        notes: str = "",
    ) -> Alert:
        """Manually resolve an active or acknowledged alert.

        Raises:
            AlertNotFoundError: no such alert.
            AlertTransitionError: the alert is already resolved or suppressed.
        """
        updated = await self._alert_repo.resolve(alert_id, notes, self._clock())
        if updated is None:
            await self._raise_transition_error(alert_id, "resolve")

        logger.info("Alert %s resolved by user %s", alert_id, user_id)
        threshold = None
        if updated.threshold_id is not None and updated.notify_channels:
            try:
                threshold = await self._threshold_repo.get_by_id(updated.threshold_id)
            except Exception as e:
                logger.warning(
                    "Threshold lookup failed for resolved alert %s: %s", alert_id, e,
                )
        await self._after_resolve(updated, threshold, mode="manual")
        return updated

    async def _raise_transition_error(self, alert_id: int, action: str) -> NoReturn:
        existing = await self._alert_repo.get_by_id(alert_id)
        if existing is None:
            raise AlertNotFoundError(alert_id)
        raise AlertTransitionError(alert_id, action, existing.status)

    async def _after_resolve(
        self,
        alert: Alert,
        threshold: Threshold | None,
        mode: str,
    ) -> None:
        if self._metrics is not None:
            self._metrics.record_alert_resolved(mode)
        if alert.notify_channels:
            await self._notify_resolved(alert, threshold)
        await self._publish(EVENT_RESOLVED, alert)

    # ── Side channels ─────────────────────────────────────────

    async def _notify_alert(self, alert: Alert, threshold: Threshold) -> list[str]:
        if self._dispatcher is None:
            return []
        try:
            return await self._dispatcher.notify_alert(alert, threshold)
        except Exception as e:
            logger.error("Notification dispatch failed for alert %s: %s", alert.id, e)
            return []

    async def _notify_resolved(self, alert: Alert, threshold: Threshold | None) -> None:
        if self._dispatcher is None:
            return
        try:
            await self._dispatcher.notify_resolved(alert, threshold)
        except Exception as e:
            logger.error(
                "Resolution notice dispatch failed for alert %s: %s", alert.id, e,
            )

    async def _publish(self, event_type: str, alert: Alert) -> None:
        if self._events is None or not self._config.publish_events:
            return
        await self._events.publish(event_type, alert)

    # ── Queries ───────────────────────────────────────────────

    async def get_alert(self, alert_id: int) -> Alert:
        alert = await self._alert_repo.get_by_id(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    async def list_alerts(self, **filters: Any) -> list[Alert]:
        """Recent alerts; see ``AlertRepository.get_recent`` for filters."""
        return await self._alert_repo.get_recent(**filters)

    async def get_active_alerts(self) -> list[Alert]:
        return await self._alert_repo.get_active(limit=self._config.active_list_limit)

    async def preview(self, sample: MetricSample) -> list[dict[str, Any]]:
        """Evaluate a sample without opening or resolving anything.

        Returns:
            One entry per applicable threshold with the computed value and
            whether the trigger and clear rules currently hold.
        """
        now = self._clock()
        rows: list[dict[str, Any]] = []
        for threshold in await self._resolver.resolve_applicable(sample.server_id):
            value = extract_metric_value(sample, threshold.metric_type)
            rows.append({
                "threshold": threshold,
                "value": value,
                "triggered": value is not None
                and compare(value, threshold.operator, threshold.value),
                "clears": value is not None and should_clear(value, threshold),
                "in_cooldown": threshold.in_cooldown(now),
            })
        return rows

    # ── Threshold administration ──────────────────────────────

    async def create_threshold(self, threshold: Threshold) -> Threshold:
        """Validate and persist a new threshold.

        Raises:
            ThresholdValidationError: the definition is invalid.
        """
        threshold.validate()
        created = await self._threshold_repo.create(threshold)
        logger.info(
            "Threshold %s created (%s %s %s, scope=%s)",
            created.id, created.metric_type, created.operator,
            created.value, created.scope,
        )
        return created

    async def update_threshold(
        self,
        threshold_id: int,
        changes: dict[str, Any],
    ) -> Threshold:
        """Apply ``changes`` to an existing threshold.

        Only fields in ``EDITABLE_THRESHOLD_FIELDS`` are applied; the
        cooldown timestamp is never editable.

        Raises:
            ThresholdNotFoundError: no such threshold.
            ThresholdValidationError: the result would be invalid.
        """
        existing = await self._threshold_repo.get_by_id(threshold_id)
        if existing is None:
            raise ThresholdNotFoundError(threshold_id)

        editable = {k: v for k, v in changes.items() if k in EDITABLE_THRESHOLD_FIELDS}
        nulled = sorted(
            k for k, v in editable.items()
            if v is None and k not in NULLABLE_THRESHOLD_FIELDS
        )
        if nulled:
            raise ThresholdValidationError([f"{k} cannot be null" for k in nulled])
        if "webhook_url" in editable and editable["webhook_url"] is None:
            editable["webhook_url"] = ""

        candidate = dataclasses.replace(existing, **editable)
        candidate.validate()

        updated = await self._threshold_repo.update(candidate)
        if updated is None:
            raise ThresholdNotFoundError(threshold_id)
        logger.info("Threshold %s updated: %s", threshold_id, sorted(editable))
        return updated

    async def delete_threshold(self, threshold_id: int) -> None:
        """Soft-delete a threshold.

        Raises:
            ThresholdNotFoundError: no such threshold.
        """
        if not await self._threshold_repo.soft_delete(threshold_id):
            raise ThresholdNotFoundError(threshold_id)
        logger.info("Threshold %s deleted", threshold_id)

    async def get_threshold(self, threshold_id: int) -> Threshold:
        threshold = await self._threshold_repo.get_by_id(threshold_id)
        if threshold is None:
            raise ThresholdNotFoundError(threshold_id)
        return threshold

    async def list_thresholds(self, **filters: Any) -> list[Threshold]:
        return await self._threshold_repo.get_all(**filters)

    async def get_applicable_thresholds(self, server_id: int) -> list[Threshold]:
        return await self._resolver.resolve_applicable(server_id)
