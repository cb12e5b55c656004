"""In-memory repositories for exercising the alert lifecycle without Postgres.

The fakes mirror the guarantees of the asyncpg repositories: thresholds
come back as fresh copies on every read, ``open_alert`` re-checks
enabled/cooldown/open-alert before inserting, and status transitions only
apply from the allowed statuses.
"""

import dataclasses
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from servmon.alerts.config import AlertConfig
from servmon.alerts.schemas import OPEN_STATUSES, Alert, Threshold, within_cooldown
from servmon.alerts.service import AlertService
from servmon.servers.schemas import Server

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock passed to AlertService."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeThresholdRepository:
    def __init__(self):
        self.thresholds: dict[int, Threshold] = {}
        self._next_id = 1

    def add(self, **fields) -> Threshold:
        fields.setdefault("id", self._next_id)
        fields.setdefault("name", f"rule-{fields['id']}")
        fields.setdefault("severity", "warning")
        threshold = Threshold(**fields)
        self.thresholds[threshold.id] = threshold
        self._next_id = max(self._next_id, threshold.id) + 1
        return threshold

    async def create(self, threshold: Threshold) -> Threshold:
        created = dataclasses.replace(threshold, id=self._next_id)
        self.thresholds[created.id] = created
        self._next_id += 1
        return dataclasses.replace(created)

    async def update(self, threshold: Threshold) -> Threshold | None:
        existing = self.thresholds.get(threshold.id)
        if existing is None:
            return None
        # last_triggered_at is never written by an update
        updated = dataclasses.replace(
            threshold, last_triggered_at=existing.last_triggered_at,
        )
        self.thresholds[updated.id] = updated
        return dataclasses.replace(updated)

    async def soft_delete(self, threshold_id: int) -> bool:
        return self.thresholds.pop(threshold_id, None) is not None

    async def get_by_id(self, threshold_id: int) -> Threshold | None:
        threshold = self.thresholds.get(threshold_id)
        return dataclasses.replace(threshold) if threshold else None

    async def get_all(self, **filters) -> list[Threshold]:
        return [dataclasses.replace(t) for _, t in sorted(self.thresholds.items())]

    async def get_enabled_direct_and_global(self, server_id: int) -> list[Threshold]:
        matches = [
            t for t in self.thresholds.values()
            if t.enabled
            and (t.server_id == server_id or (t.server_id is None and t.group_id is None))
        ]
        matches.sort(key=lambda t: (t.server_id is None, t.id))
        return [dataclasses.replace(t) for t in matches]

    async def get_enabled_for_group(self, group_id: int) -> list[Threshold]:
        matches = sorted(
            (t for t in self.thresholds.values() if t.enabled and t.group_id == group_id),
            key=lambda t: t.id,
        )
        return [dataclasses.replace(t) for t in matches]


class FakeAlertRepository:
    def __init__(self, threshold_repo: FakeThresholdRepository):
        self._threshold_repo = threshold_repo
        self.alerts: dict[int, Alert] = {}
        self._next_id = 1
        self.record_notification_calls: list[tuple[int, list[str]]] = []

    def _copy(self, alert: Alert) -> Alert:
        return dataclasses.replace(alert, notify_channels=list(alert.notify_channels))

    async def open_alert(self, alert: Alert, now: datetime) -> Alert | None:
        threshold = self._threshold_repo.thresholds.get(alert.threshold_id)
        if threshold is None or not threshold.enabled:
            return None
        if threshold.last_triggered_at is not None and within_cooldown(
            threshold.last_triggered_at, threshold.cooldown_minutes, now,
        ):
            return None
        for existing in self.alerts.values():
            if (
                existing.server_id == alert.server_id
                and existing.threshold_id == alert.threshold_id
                and existing.status in OPEN_STATUSES
            ):
                return None

        created = dataclasses.replace(alert, id=self._next_id, status="active")
        self._next_id += 1
        self.alerts[created.id] = created
        if threshold.last_triggered_at is None or threshold.last_triggered_at < now:
            threshold.last_triggered_at = now
        return self._copy(created)

    async def record_notification(self, alert_id, channels, notified_at) -> None:
        self.record_notification_calls.append((alert_id, list(channels)))
        stored = self.alerts[alert_id]
        stored.notify_channels = list(channels)
        stored.notified_at = notified_at

    async def get_by_id(self, alert_id: int) -> Alert | None:
        alert = self.alerts.get(alert_id)
        return self._copy(alert) if alert else None

    async def get_open_for(self, server_id, threshold_id, metric_type) -> Alert | None:
        for alert in sorted(self.alerts.values(), key=lambda a: a.triggered_at, reverse=True):
            if (
                alert.server_id == server_id
                and alert.threshold_id == threshold_id
                and alert.metric_type == metric_type
                and alert.status in OPEN_STATUSES
            ):
                return self._copy(alert)
        return None

    async def get_recent(self, **filters) -> list[Alert]:
        return [self._copy(a) for a in self.alerts.values()]

    async def get_active(self, limit: int = 100) -> list[Alert]:
        return [self._copy(a) for a in self.alerts.values() if a.is_open][:limit]

    async def acknowledge(self, alert_id, user_id, notes, now) -> Alert | None:
        alert = self.alerts.get(alert_id)
        if alert is None or alert.status != "active":
            return None
        alert.status = "acknowledged"
        alert.acknowledged_at = now
        alert.acknowledged_by = user_id
        alert.notes = notes
        return self._copy(alert)

    async def resolve(self, alert_id, notes, now) -> Alert | None:
        alert = self.alerts.get(alert_id)
        if alert is None or alert.status not in OPEN_STATUSES:
            return None
        alert.status = "resolved"
        alert.resolved_at = now
        if notes:
            alert.notes = f"{alert.notes}\n{notes}" if alert.notes else notes
        return self._copy(alert)


class FakeServerRepository:
    def __init__(self):
        self.servers: dict[int, Server] = {}
        self.memberships: dict[int, list[int]] = {}

    async def get_by_id(self, server_id: int) -> Server | None:
        return self.servers.get(server_id)

    async def get_group_ids(self, server_id: int) -> list[int]:
        return sorted(self.memberships.get(server_id, []))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def threshold_repo():
    return FakeThresholdRepository()


@pytest.fixture
def alert_repo(threshold_repo):
    return FakeAlertRepository(threshold_repo)


@pytest.fixture
def server_repo(sample_server):
    repo = FakeServerRepository()
    repo.servers[sample_server.id] = sample_server
    return repo


@pytest.fixture
def alert_service(threshold_repo, alert_repo, server_repo, clock):
    """AlertService over the in-memory repositories, no side channels."""
    return AlertService(
        config=AlertConfig(),
        threshold_repo=threshold_repo,
        alert_repo=alert_repo,
        server_repo=server_repo,
        metrics=MagicMock(),
        clock=clock,
    )
