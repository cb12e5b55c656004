"""Tests for AlertService evaluation and lifecycle over in-memory repositories."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

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
from servmon.alerts.schemas import Threshold
from servmon.alerts.service import AlertService, build_alert
from servmon.ingestion.schemas import MetricSample

GIB = 1024 ** 3
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _cpu(value: float, server_id: int = 1) -> MetricSample:
    return MetricSample(server_id=server_id, cpu_usage=value, timestamp=T0)


@pytest.fixture
def mock_dispatcher():
    dispatcher = AsyncMock(spec=NotificationDispatcher)
    dispatcher.notify_alert.return_value = []
    dispatcher.notify_resolved.return_value = []
    return dispatcher


@pytest.fixture
def mock_events():
    return AsyncMock(spec=AlertEventPublisher)


@pytest.fixture
def wired_service(threshold_repo, alert_repo, server_repo, clock, mock_dispatcher, mock_events):
    """AlertService with a mocked dispatcher and event publisher."""
    return AlertService(
        config=AlertConfig(),
        threshold_repo=threshold_repo,
        alert_repo=alert_repo,
        server_repo=server_repo,
        dispatcher=mock_dispatcher,
        events=mock_events,
        metrics=MagicMock(),
        clock=clock,
    )


# ── build_alert ──────────────────────────────────────────


class TestBuildAlert:
    def test_title_and_message(self, sample_server):
        threshold = Threshold(
            id=3, name="High CPU", metric_type="cpu", operator=">",
            value=90.0, severity="critical",
        )
        alert = build_alert(_cpu(95.5), threshold, 95.5, sample_server, T0)

        assert alert.title == "Alert: CPU on web-01"
        assert "95.50%" in alert.message
        assert "> 90.00%" in alert.message
        assert alert.threshold_id == 3
        assert alert.severity == "critical"
        assert alert.server_name == "web-01"
        assert alert.triggered_at == T0

    def test_missing_server_falls_back_to_id(self):
        threshold = Threshold(
            id=3, name="Disk", metric_type="disk", operator=">=",
            value=80.0, severity="warning",
        )
        sample = MetricSample(server_id=42, disk_total=100, disk_used=90)
        alert = build_alert(sample, threshold, 90.0, None, T0)

        assert alert.title == "Alert: Disk on Server #42"
        assert alert.server_name == ""


# ── Opening ──────────────────────────────────────────────


class TestOpening:
    @pytest.mark.asyncio
    async def test_crossing_opens_alert(self, alert_service, threshold_repo, alert_repo):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, severity="critical")

        result = await alert_service.evaluate_metric(_cpu(95.0))

        assert result.thresholds_checked == 1
        assert len(result.opened) == 1
        alert = result.opened[0]
        assert alert.status == "active"
        assert alert.metric_value == 95.0
        assert alert.threshold_value == 90.0
        assert alert.severity == "critical"
        assert len(alert_repo.alerts) == 1

    @pytest.mark.asyncio
    async def test_below_threshold_opens_nothing(self, alert_service, threshold_repo):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0)

        result = await alert_service.evaluate_metric(_cpu(50.0))

        assert result.opened == []
        assert result.resolved == []

    @pytest.mark.asyncio
    async def test_one_open_alert_per_server_and_threshold(
        self, alert_service, threshold_repo, alert_repo, clock,
    ):
        # No cooldown so only the open-alert check can stop repeats
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, cooldown_minutes=0)

        for _ in range(3):
            await alert_service.evaluate_metric(_cpu(95.0))
            clock.advance(seconds=10)

        assert len(alert_repo.alerts) == 1

    @pytest.mark.asyncio
    async def test_last_triggered_at_set_on_open(
        self, alert_service, threshold_repo, clock,
    ):
        threshold = threshold_repo.add(metric_type="cpu", operator=">", value=90.0)

        await alert_service.evaluate_metric(_cpu(95.0))

        assert threshold_repo.thresholds[threshold.id].last_triggered_at == clock.now

    @pytest.mark.asyncio
    async def test_separate_servers_get_separate_alerts(
        self, alert_service, threshold_repo, alert_repo,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, cooldown_minutes=0)

        await alert_service.evaluate_metric(_cpu(95.0, server_id=1))
        await alert_service.evaluate_metric(_cpu(95.0, server_id=2))

        assert {a.server_id for a in alert_repo.alerts.values()} == {1, 2}

    @pytest.mark.asyncio
    async def test_unknown_server_alert_named_by_id(
        self, alert_service, threshold_repo,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0)

        result = await alert_service.evaluate_metric(_cpu(95.0, server_id=99))

        assert result.opened[0].title == "Alert: CPU on Server #99"

    @pytest.mark.asyncio
    async def test_server_lookup_failure_does_not_block_open(
        self, alert_service, threshold_repo, server_repo,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0)
        server_repo.get_by_id = AsyncMock(side_effect=ConnectionError("db gone"))

        result = await alert_service.evaluate_metric(_cpu(95.0))

        assert len(result.opened) == 1
        assert result.opened[0].title == "Alert: CPU on Server #1"
        assert result.errors == []


# ── Cooldown ─────────────────────────────────────────────


class TestCooldown:
    @pytest.mark.asyncio
    async def test_cooldown_blocks_reopen_after_resolve(
        self, alert_service, threshold_repo, alert_repo, clock,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, cooldown_minutes=2)

        first = await alert_service.evaluate_metric(_cpu(95.0))
        assert len(first.opened) == 1

        clock.advance(seconds=10)
        cleared = await alert_service.evaluate_metric(_cpu(50.0))
        assert len(cleared.resolved) == 1

        clock.advance(seconds=20)  # t0 + 30s, inside the 2 minute window
        blocked = await alert_service.evaluate_metric(_cpu(95.0))
        assert blocked.opened == []

        clock.now = T0 + timedelta(minutes=3)
        reopened = await alert_service.evaluate_metric(_cpu(95.0))
        assert len(reopened.opened) == 1
        assert len(alert_repo.alerts) == 2

    @pytest.mark.asyncio
    async def test_cooldown_boundary_is_exclusive(
        self, alert_service, threshold_repo, clock,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, cooldown_minutes=2)
        first = await alert_service.evaluate_metric(_cpu(95.0))
        await alert_service.auto_resolve(first.opened[0])

        clock.now = T0 + timedelta(minutes=2)
        result = await alert_service.evaluate_metric(_cpu(95.0))

        assert len(result.opened) == 1

    @pytest.mark.asyncio
    async def test_cooldown_does_not_gate_resolution(
        self, alert_service, threshold_repo, clock,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, cooldown_minutes=60)
        await alert_service.evaluate_metric(_cpu(95.0))

        clock.advance(seconds=5)
        result = await alert_service.evaluate_metric(_cpu(10.0))

        assert len(result.resolved) == 1

    @pytest.mark.asyncio
    async def test_zero_cooldown_reopens_immediately(
        self, alert_service, threshold_repo, alert_repo, clock,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, cooldown_minutes=0)

        await alert_service.evaluate_metric(_cpu(95.0))
        await alert_service.evaluate_metric(_cpu(50.0))
        result = await alert_service.evaluate_metric(_cpu(95.0))

        assert len(result.opened) == 1
        assert len(alert_repo.alerts) == 2


# ── Auto-resolution ──────────────────────────────────────


class TestAutoResolve:
    @pytest.mark.asyncio
    async def test_inclusive_operator_hysteresis(
        self, alert_service, threshold_repo, alert_repo, clock,
    ):
        threshold_repo.add(metric_type="cpu", operator=">=", value=90.0)

        await alert_service.evaluate_metric(_cpu(95.0))
        clock.advance(seconds=30)
        at_boundary = await alert_service.evaluate_metric(_cpu(90.0))
        (alert,) = alert_repo.alerts.values()
        assert at_boundary.resolved == []
        assert alert.status == "active"

        clock.advance(seconds=30)
        below = await alert_service.evaluate_metric(_cpu(89.0))
        assert len(below.resolved) == 1
        assert alert.status == "resolved"
        assert alert.resolved_at == clock.now

    @pytest.mark.asyncio
    async def test_strict_operator_clears_at_boundary(
        self, alert_service, threshold_repo,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0)

        await alert_service.evaluate_metric(_cpu(95.0))
        result = await alert_service.evaluate_metric(_cpu(90.0))

        assert len(result.resolved) == 1

    @pytest.mark.asyncio
    async def test_auto_resolve_note(self, alert_service, threshold_repo, alert_repo):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0)

        await alert_service.evaluate_metric(_cpu(95.0))
        await alert_service.evaluate_metric(_cpu(40.0))

        (alert,) = alert_repo.alerts.values()
        assert alert.notes == alert_service.config.auto_resolve_note
        assert "returned to normal" in alert.notes

    @pytest.mark.asyncio
    async def test_acknowledged_alert_auto_resolves_and_keeps_note(
        self, alert_service, threshold_repo, alert_repo,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0)
        opened = await alert_service.evaluate_metric(_cpu(95.0))
        await alert_service.acknowledge_alert(opened.opened[0].id, user_id=7, notes="on it")

        result = await alert_service.evaluate_metric(_cpu(40.0))

        assert len(result.resolved) == 1
        alert = alert_repo.alerts[opened.opened[0].id]
        assert alert.status == "resolved"
        assert alert.notes.startswith("on it\n")
        assert alert.acknowledged_by == 7

    @pytest.mark.asyncio
    async def test_clear_with_no_open_alert_is_noop(self, alert_service, threshold_repo):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0)

        result = await alert_service.evaluate_metric(_cpu(10.0))

        assert result.resolved == []

    @pytest.mark.asyncio
    async def test_auto_resolve_skips_closed_alert(self, alert_service, sample_alert):
        sample_alert.status = "resolved"
        assert await alert_service.auto_resolve(sample_alert) is None


# ── Metric extraction edge cases ─────────────────────────


class TestEvaluationEdgeCases:
    @pytest.mark.asyncio
    async def test_zero_memory_total_neither_triggers_nor_errors(
        self, alert_service, threshold_repo,
    ):
        threshold_repo.add(metric_type="memory", operator=">", value=0.0)
        sample = MetricSample(server_id=1, memory_total=0, memory_used=0)

        result = await alert_service.evaluate_metric(sample)

        assert result.opened == []
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_zero_total_does_not_clear_open_alert(
        self, alert_service, threshold_repo, alert_repo,
    ):
        threshold_repo.add(metric_type="disk", operator=">", value=80.0)
        await alert_service.evaluate_metric(
            MetricSample(server_id=1, disk_total=100 * GIB, disk_used=95 * GIB)
        )

        result = await alert_service.evaluate_metric(MetricSample(server_id=1, disk_total=0))

        assert result.resolved == []
        (alert,) = alert_repo.alerts.values()
        assert alert.status == "active"

    @pytest.mark.asyncio
    async def test_equality_operator_is_exact(self, alert_service, threshold_repo):
        threshold_repo.add(metric_type="cpu", operator="==", value=90.0, cooldown_minutes=0)

        near = await alert_service.evaluate_metric(_cpu(90.0000001))
        exact = await alert_service.evaluate_metric(_cpu(90.0))

        assert near.opened == []
        assert len(exact.opened) == 1

    @pytest.mark.asyncio
    async def test_network_measured_in_megabytes(self, alert_service, threshold_repo):
        threshold_repo.add(metric_type="network_in", operator=">", value=100.0)
        sample = MetricSample(server_id=1, net_download=150 * 1024 * 1024)

        result = await alert_service.evaluate_metric(sample)

        assert result.opened[0].metric_value == pytest.approx(150.0)


# ── Scope resolution in evaluation ───────────────────────


class TestScopes:
    @pytest.mark.asyncio
    async def test_direct_global_and_group_thresholds_evaluated(
        self, alert_service, threshold_repo, server_repo,
    ):
        server_repo.memberships[1] = [7]
        threshold_repo.add(id=1, metric_type="cpu", operator=">", value=90.0, server_id=1)
        threshold_repo.add(id=2, metric_type="cpu", operator=">", value=80.0)
        threshold_repo.add(id=3, metric_type="cpu", operator=">", value=70.0, group_id=7)
        threshold_repo.add(id=4, metric_type="cpu", operator=">", value=60.0, server_id=2)
        threshold_repo.add(id=5, metric_type="cpu", operator=">", value=50.0, group_id=8)
        threshold_repo.add(id=6, metric_type="cpu", operator=">", value=40.0, enabled=False)

        result = await alert_service.evaluate_metric(_cpu(95.0))

        assert result.thresholds_checked == 3
        assert [a.threshold_id for a in result.opened] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_disabled_threshold_never_opens(self, alert_service, threshold_repo):
        threshold_repo.add(metric_type="cpu", operator=">", value=10.0, enabled=False)

        result = await alert_service.evaluate_metric(_cpu(99.0))

        assert result.thresholds_checked == 0
        assert result.opened == []


# ── Failure isolation ────────────────────────────────────


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_one_threshold_failure_does_not_stop_others(
        self, alert_service, threshold_repo, alert_repo,
    ):
        threshold_repo.add(id=1, metric_type="cpu", operator=">", value=90.0)
        threshold_repo.add(id=2, metric_type="cpu", operator=">", value=80.0)
        real_open = alert_repo.open_alert

        async def flaky_open(alert, now):
            if alert.threshold_id == 1:
                raise ConnectionError("lock timeout")
            return await real_open(alert, now)

        alert_repo.open_alert = flaky_open

        result = await alert_service.evaluate_metric(_cpu(95.0))

        assert [a.threshold_id for a in result.opened] == [2]
        assert len(result.errors) == 1
        assert "threshold 1" in result.errors[0]

    @pytest.mark.asyncio
    async def test_resolver_failure_propagates(self, alert_service, threshold_repo):
        threshold_repo.get_enabled_direct_and_global = AsyncMock(
            side_effect=ConnectionError("db down")
        )

        with pytest.raises(ConnectionError):
            await alert_service.evaluate_metric(_cpu(95.0))


# ── Notifications and events ─────────────────────────────


class TestSideChannels:
    @pytest.mark.asyncio
    async def test_delivered_channels_recorded(
        self, wired_service, threshold_repo, alert_repo, mock_dispatcher,
    ):
        threshold_repo.add(
            metric_type="cpu", operator=">", value=90.0,
            enable_discord=True, enable_webhook=True,
        )
        # Webhook failed, Discord succeeded
        mock_dispatcher.notify_alert.return_value = ["discord"]

        result = await wired_service.evaluate_metric(_cpu(95.0))

        alert = result.opened[0]
        assert alert.notify_channels == ["discord"]
        assert alert.notified_at is not None
        assert alert_repo.record_notification_calls == [(alert.id, ["discord"])]

    @pytest.mark.asyncio
    async def test_no_delivery_leaves_notified_at_empty(
        self, wired_service, threshold_repo, alert_repo, mock_dispatcher,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, enable_discord=True)
        mock_dispatcher.notify_alert.return_value = []

        result = await wired_service.evaluate_metric(_cpu(95.0))

        assert result.opened[0].notified_at is None
        assert alert_repo.record_notification_calls == []

    @pytest.mark.asyncio
    async def test_dispatcher_error_does_not_undo_open(
        self, wired_service, threshold_repo, alert_repo, mock_dispatcher,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, enable_discord=True)
        mock_dispatcher.notify_alert.side_effect = RuntimeError("boom")

        result = await wired_service.evaluate_metric(_cpu(95.0))

        assert len(result.opened) == 1
        assert result.errors == []
        assert len(alert_repo.alerts) == 1

    @pytest.mark.asyncio
    async def test_record_notification_failure_is_logged(
        self, wired_service, threshold_repo, alert_repo, mock_dispatcher,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, enable_discord=True)
        mock_dispatcher.notify_alert.return_value = ["discord"]
        alert_repo.record_notification = AsyncMock(side_effect=ConnectionError("gone"))

        result = await wired_service.evaluate_metric(_cpu(95.0))

        assert len(result.opened) == 1
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_notification_record_survives_cancellation(
        self, wired_service, threshold_repo, alert_repo, mock_dispatcher,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, enable_discord=True)
        mock_dispatcher.notify_alert.return_value = ["discord"]
        started = asyncio.Event()
        release = asyncio.Event()
        recorded = []

        async def slow_record(alert_id, channels, notified_at):
            started.set()
            await release.wait()
            recorded.append((alert_id, list(channels)))

        alert_repo.record_notification = slow_record

        # The request deadline cancels evaluation mid-write
        task = asyncio.create_task(wired_service.evaluate_metric(_cpu(95.0)))
        await started.wait()
        task.cancel()
        release.set()
        with pytest.raises(asyncio.CancelledError):
            await task
        for _ in range(3):
            await asyncio.sleep(0)

        assert recorded == [(next(iter(alert_repo.alerts)), ["discord"])]

    @pytest.mark.asyncio
    async def test_resolution_notice_only_for_notified_alerts(
        self, wired_service, threshold_repo, mock_dispatcher,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, enable_discord=True)
        mock_dispatcher.notify_alert.return_value = []

        await wired_service.evaluate_metric(_cpu(95.0))
        await wired_service.evaluate_metric(_cpu(10.0))

        mock_dispatcher.notify_resolved.assert_not_called()

    @pytest.mark.asyncio
    async def test_resolution_notice_sent_to_notified_channels(
        self, wired_service, threshold_repo, mock_dispatcher,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, enable_discord=True)
        mock_dispatcher.notify_alert.return_value = ["discord"]

        await wired_service.evaluate_metric(_cpu(95.0))
        await wired_service.evaluate_metric(_cpu(10.0))

        mock_dispatcher.notify_resolved.assert_awaited_once()
        resolved_alert = mock_dispatcher.notify_resolved.call_args.args[0]
        assert resolved_alert.notify_channels == ["discord"]
        assert resolved_alert.status == "resolved"

    @pytest.mark.asyncio
    async def test_lifecycle_events_published(
        self, wired_service, threshold_repo, mock_events,
    ):
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0)

        opened = await wired_service.evaluate_metric(_cpu(95.0))
        await wired_service.acknowledge_alert(opened.opened[0].id, user_id=1)
        await wired_service.evaluate_metric(_cpu(10.0))

        event_types = [c.args[0] for c in mock_events.publish.call_args_list]
        assert event_types == [EVENT_OPENED, EVENT_ACKNOWLEDGED, EVENT_RESOLVED]

    @pytest.mark.asyncio
    async def test_events_disabled_by_config(
        self, threshold_repo, alert_repo, server_repo, clock, mock_events,
    ):
        service = AlertService(
            config=AlertConfig(publish_events=False),
            threshold_repo=threshold_repo,
            alert_repo=alert_repo,
            server_repo=server_repo,
            events=mock_events,
            clock=clock,
        )
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0)

        await service.evaluate_metric(_cpu(95.0))

        mock_events.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, threshold_repo, alert_repo, server_repo, clock):
        metrics = MagicMock()
        service = AlertService(
            config=AlertConfig(),
            threshold_repo=threshold_repo,
            alert_repo=alert_repo,
            server_repo=server_repo,
            metrics=metrics,
            clock=clock,
        )
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0, severity="critical")

        await service.evaluate_metric(_cpu(95.0))
        await service.evaluate_metric(_cpu(10.0))

        metrics.record_alert_opened.assert_called_once_with("critical")
        metrics.record_alert_resolved.assert_called_once_with("automatic")
        assert metrics.record_evaluation.call_count == 2


# ── Manual transitions ───────────────────────────────────


class TestManualTransitions:
    async def _open(self, alert_service, threshold_repo) -> int:
        threshold_repo.add(metric_type="cpu", operator=">", value=90.0)
        result = await alert_service.evaluate_metric(_cpu(95.0))
        return result.opened[0].id

    @pytest.mark.asyncio
    async def test_acknowledge_active(self, alert_service, threshold_repo, clock):
        open_alert_id = await self._open(alert_service, threshold_repo)
        alert = await alert_service.acknowledge_alert(open_alert_id, user_id=3, notes="looking")

        assert alert.status == "acknowledged"
        assert alert.acknowledged_by == 3
        assert alert.acknowledged_at == clock.now
        assert alert.notes == "looking"

    @pytest.mark.asyncio
    async def test_acknowledge_twice_rejected(self, alert_service, threshold_repo):
        open_alert_id = await self._open(alert_service, threshold_repo)
        await alert_service.acknowledge_alert(open_alert_id, user_id=3)

        with pytest.raises(AlertTransitionError) as exc_info:
            await alert_service.acknowledge_alert(open_alert_id, user_id=4)
        assert exc_info.value.status == "acknowledged"

    @pytest.mark.asyncio
    async def test_acknowledge_resolved_rejected(self, alert_service, threshold_repo):
        open_alert_id = await self._open(alert_service, threshold_repo)
        await alert_service.resolve_alert(open_alert_id, user_id=3)

        with pytest.raises(AlertTransitionError):
            await alert_service.acknowledge_alert(open_alert_id, user_id=3)

    @pytest.mark.asyncio
    async def test_acknowledge_missing(self, alert_service):
        with pytest.raises(AlertNotFoundError):
            await alert_service.acknowledge_alert(12345, user_id=1)

    @pytest.mark.asyncio
    async def test_resolve_acknowledged_appends_notes(self, alert_service, threshold_repo):
        open_alert_id = await self._open(alert_service, threshold_repo)
        await alert_service.acknowledge_alert(open_alert_id, user_id=3, notes="looking")

        alert = await alert_service.resolve_alert(open_alert_id, user_id=3, notes="fixed")

        assert alert.status == "resolved"
        assert alert.notes == "looking\nfixed"

    @pytest.mark.asyncio
    async def test_resolve_twice_rejected(self, alert_service, threshold_repo):
        open_alert_id = await self._open(alert_service, threshold_repo)
        await alert_service.resolve_alert(open_alert_id, user_id=3)

        with pytest.raises(AlertTransitionError) as exc_info:
            await alert_service.resolve_alert(open_alert_id, user_id=3)
        assert exc_info.value.action == "resolve"

    @pytest.mark.asyncio
    async def test_resolve_missing(self, alert_service):
        with pytest.raises(AlertNotFoundError):
            await alert_service.resolve_alert(12345, user_id=1)

    @pytest.mark.asyncio
    async def test_manual_resolve_recorded_as_manual(
        self, alert_service, threshold_repo,
    ):
        open_alert_id = await self._open(alert_service, threshold_repo)
        await alert_service.resolve_alert(open_alert_id, user_id=3)
        alert_service._metrics.record_alert_resolved.assert_called_with("manual")


# ── Threshold administration ─────────────────────────────


class TestThresholdAdmin:
    @pytest.mark.asyncio
    async def test_create_validates(self, alert_service, threshold_repo):
        bad = Threshold(
            name="both scopes", metric_type="cpu", operator=">", value=1.0,
            severity="info", server_id=1, group_id=2,
        )

        with pytest.raises(ThresholdValidationError):
            await alert_service.create_threshold(bad)
        assert threshold_repo.thresholds == {}

    @pytest.mark.asyncio
    async def test_create_assigns_id(self, alert_service):
        created = await alert_service.create_threshold(Threshold(
            name="cpu", metric_type="cpu", operator=">", value=90.0, severity="warning",
        ))
        assert created.id >= 1

    @pytest.mark.asyncio
    async def test_update_applies_editable_fields_only(
        self, alert_service, threshold_repo, clock,
    ):
        threshold = threshold_repo.add(metric_type="cpu", operator=">", value=90.0)
        threshold.last_triggered_at = clock.now

        updated = await alert_service.update_threshold(threshold.id, {
            "value": 85.0,
            "last_triggered_at": None,
            "id": 999,
        })

        assert updated.id == threshold.id
        assert updated.value == 85.0
        assert updated.last_triggered_at == clock.now

    @pytest.mark.asyncio
    async def test_update_rejects_invalid_result(self, alert_service, threshold_repo):
        threshold = threshold_repo.add(metric_type="cpu", operator=">", value=90.0, server_id=1)

        with pytest.raises(ThresholdValidationError):
            await alert_service.update_threshold(threshold.id, {"group_id": 4})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["name", "cooldown_minutes", "value", "operator", "enabled"])
    async def test_update_rejects_null(self, alert_service, threshold_repo, field):
        threshold = threshold_repo.add(metric_type="cpu", operator=">", value=90.0)

        with pytest.raises(ThresholdValidationError, match=f"{field} cannot be null"):
            await alert_service.update_threshold(threshold.id, {field: None})

        assert getattr(threshold_repo.thresholds[threshold.id], field) is not None

    @pytest.mark.asyncio
    async def test_update_null_clears_scope_and_webhook(self, alert_service, threshold_repo):
        threshold = threshold_repo.add(
            metric_type="cpu", operator=">", value=90.0,
            server_id=3, webhook_url="https://hooks.example.com/cpu",
        )

        updated = await alert_service.update_threshold(
            threshold.id, {"server_id": None, "webhook_url": None},
        )

        assert updated.scope == "global"
        assert updated.webhook_url == ""

    @pytest.mark.asyncio
    async def test_update_rejects_wrong_types(self, alert_service, threshold_repo):
        threshold = threshold_repo.add(metric_type="cpu", operator=">", value=90.0)

        with pytest.raises(ThresholdValidationError) as exc_info:
            await alert_service.update_threshold(
                threshold.id, {"value": "high", "cooldown_minutes": 2.5},
            )

        assert "value 'high' must be a number" in exc_info.value.problems
        assert "cooldown_minutes 2.5 must be an integer" in exc_info.value.problems

    @pytest.mark.asyncio
    async def test_update_missing(self, alert_service):
        with pytest.raises(ThresholdNotFoundError):
            await alert_service.update_threshold(77, {"value": 1.0})

    @pytest.mark.asyncio
    async def test_delete(self, alert_service, threshold_repo):
        threshold = threshold_repo.add(metric_type="cpu", operator=">", value=90.0)

        await alert_service.delete_threshold(threshold.id)

        assert threshold.id not in threshold_repo.thresholds
        with pytest.raises(ThresholdNotFoundError):
            await alert_service.delete_threshold(threshold.id)


# ── Preview ──────────────────────────────────────────────


class TestPreview:
    @pytest.mark.asyncio
    async def test_preview_changes_nothing(self, alert_service, threshold_repo, alert_repo):
        threshold_repo.add(id=1, metric_type="cpu", operator=">", value=90.0)
        threshold_repo.add(id=2, metric_type="memory", operator=">", value=50.0)

        rows = await alert_service.preview(
            MetricSample(server_id=1, cpu_usage=95.0, memory_total=0)
        )

        assert [r["threshold"].id for r in rows] == [1, 2]
        assert rows[0]["triggered"] is True
        assert rows[0]["clears"] is False
        assert rows[1]["value"] is None
        assert rows[1]["triggered"] is False
        assert alert_repo.alerts == {}
