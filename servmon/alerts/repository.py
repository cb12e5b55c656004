"""Repositories for alert thresholds and alert records.

Both follow the asyncpg repository pattern used across the project: each
repository owns its DDL, builds filters with an incremental ``$n`` index,
and converts records with a module-level ``_row_to_*`` helper.

Opening an alert is the one multi-statement write. It runs in a single
transaction holding the threshold row lock so that concurrent samples for
the same (server, threshold) cannot both open an incident.
"""

import json
import logging
from datetime import datetime
from typing import Any

import asyncpg

from servmon.alerts.schemas import OPEN_STATUSES, Alert, Threshold, within_cooldown
from servmon.storage.database import Database

logger = logging.getLogger(__name__)

_OPEN_STATUSES = sorted(OPEN_STATUSES)

_CREATE_THRESHOLDS_SQL = """
CREATE TABLE IF NOT EXISTS alert_thresholds (
    id                BIGSERIAL PRIMARY KEY,
    name              TEXT NOT NULL,
    description       TEXT NOT NULL DEFAULT '',
    metric_type       TEXT NOT NULL,
    operator          TEXT NOT NULL,
    value             DOUBLE PRECISION NOT NULL,
    duration          INTEGER NOT NULL DEFAULT 0,
    severity          TEXT NOT NULL,
    enabled           BOOLEAN NOT NULL DEFAULT TRUE,
    cooldown_minutes  INTEGER NOT NULL DEFAULT 15 CHECK (cooldown_minutes >= 0),
    server_id         BIGINT REFERENCES servers(id),
    group_id          BIGINT REFERENCES server_groups(id),
    enable_discord    BOOLEAN NOT NULL DEFAULT FALSE,
    enable_webhook    BOOLEAN NOT NULL DEFAULT FALSE,
    enable_email      BOOLEAN NOT NULL DEFAULT FALSE,
    webhook_url       TEXT NOT NULL DEFAULT '',
    created_by        BIGINT,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    last_triggered_at TIMESTAMPTZ,
    deleted_at        TIMESTAMPTZ,
    CHECK (server_id IS NULL OR group_id IS NULL)
);

CREATE INDEX IF NOT EXISTS idx_alert_thresholds_server
    ON alert_thresholds(server_id) WHERE deleted_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_alert_thresholds_group
    ON alert_thresholds(group_id) WHERE deleted_at IS NULL;
"""

_CREATE_ALERTS_SQL = """
CREATE TABLE IF NOT EXISTS alerts (
    id               BIGSERIAL PRIMARY KEY,
    title            TEXT NOT NULL,
    message          TEXT NOT NULL DEFAULT '',
    metric_type      TEXT NOT NULL,
    metric_value     DOUBLE PRECISION NOT NULL,
    threshold_value  DOUBLE PRECISION NOT NULL,
    operator         TEXT NOT NULL,
    severity         TEXT NOT NULL,
    status           TEXT NOT NULL DEFAULT 'active',
    server_id        BIGINT NOT NULL REFERENCES servers(id),
    threshold_id     BIGINT REFERENCES alert_thresholds(id),
    triggered_at     TIMESTAMPTZ NOT NULL,
    resolved_at      TIMESTAMPTZ,
    acknowledged_at  TIMESTAMPTZ,
    acknowledged_by  BIGINT,
    notified_at      TIMESTAMPTZ,
    notify_channels  JSONB NOT NULL DEFAULT '[]'::jsonb,
    notes            TEXT NOT NULL DEFAULT '',
    created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    deleted_at       TIMESTAMPTZ
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_alerts_open_per_threshold
    ON alerts(server_id, threshold_id)
    WHERE status IN ('active', 'acknowledged') AND deleted_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_alerts_status ON alerts(status);
CREATE INDEX IF NOT EXISTS idx_alerts_triggered_at ON alerts(triggered_at DESC);
"""

# Alerts are always read joined to their server for rendering
_SELECT_ALERT_TEMPLATE = """
    SELECT a.*, s.hostname AS server_name, s.ip AS server_ip
    FROM {source} a
    LEFT JOIN servers s ON s.id = a.server_id
"""
_SELECT_ALERT = _SELECT_ALERT_TEMPLATE.format(source="alerts")
_SELECT_UPDATED_ALERT = _SELECT_ALERT_TEMPLATE.format(source="updated")

# Appends a note ($n) to the existing notes, newline separated
_APPEND_NOTE = (
    "CASE WHEN ${n} = '' THEN notes "
    "WHEN notes = '' THEN ${n} "
    "ELSE notes || E'\\n' || ${n} END"
)


class ThresholdRepository:
    """Repository for alert threshold definitions.

    Provides CRUD plus the scoped lookups used by the threshold resolver.
    Deletion is soft (``deleted_at``); soft-deleted rows are invisible to
    every query here.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the alert_thresholds table (idempotent)."""
        await self._db.execute(_CREATE_THRESHOLDS_SQL)
        logger.info("Alert threshold table ensured")

    async def create(self, threshold: Threshold) -> Threshold:
        """Insert a new threshold.

        Args:
            threshold: Threshold to persist. ``id`` is ignored.

        Returns:
            The created Threshold with DB-assigned id and timestamps.
        """
        sql = """
            INSERT INTO alert_thresholds (
                name, description, metric_type, operator, value, duration,
                severity, enabled, cooldown_minutes, server_id, group_id,
                enable_discord, enable_webhook, enable_email, webhook_url,
                created_by
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11,
                $12, $13, $14, $15, $16
            )
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            threshold.name,
            threshold.description,
            threshold.metric_type,
            threshold.operator,
            threshold.value,
            threshold.duration,
            threshold.severity,
            threshold.enabled,
            threshold.cooldown_minutes,
            threshold.server_id,
            threshold.group_id,
            threshold.enable_discord,
            threshold.enable_webhook,
            threshold.enable_email,
            threshold.webhook_url,
            threshold.created_by,
        )
        return _row_to_threshold(row)

    async def update(self, threshold: Threshold) -> Threshold | None:
        """Overwrite the editable fields of an existing threshold.

        ``last_triggered_at`` is owned by the alert lifecycle and is never
        written here, so an admin edit cannot move the cooldown window.

        Returns:
            The updated Threshold, or None if it does not exist.
        """
        sql = """
            UPDATE alert_thresholds SET
                name = $2,
                description = $3,
                metric_type = $4,
                operator = $5,
                value = $6,
                duration = $7,
                severity = $8,
                enabled = $9,
                cooldown_minutes = $10,
                server_id = $11,
                group_id = $12,
                enable_discord = $13,
                enable_webhook = $14,
                enable_email = $15,
                webhook_url = $16,
                updated_at = NOW()
            WHERE id = $1 AND deleted_at IS NULL
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            threshold.id,
            threshold.name,
            threshold.description,
            threshold.metric_type,
            threshold.operator,
            threshold.value,
            threshold.duration,
            threshold.severity,
            threshold.enabled,
            threshold.cooldown_minutes,
            threshold.server_id,
            threshold.group_id,
            threshold.enable_discord,
            threshold.enable_webhook,
            threshold.enable_email,
            threshold.webhook_url,
        )
        if row is None:
            return None
        return _row_to_threshold(row)

    async def soft_delete(self, threshold_id: int) -> bool:
        """Mark a threshold deleted.

        Returns:
            True if a live threshold was deleted, False if not found.
        """
        sql = """
            UPDATE alert_thresholds SET deleted_at = NOW(), updated_at = NOW()
            WHERE id = $1 AND deleted_at IS NULL
            RETURNING id
        """
        result = await self._db.fetchval(sql, threshold_id)
        return result is not None

    async def get_by_id(self, threshold_id: int) -> Threshold | None:
        sql = "SELECT * FROM alert_thresholds WHERE id = $1 AND deleted_at IS NULL"
        row = await self._db.fetchrow(sql, threshold_id)
        if row is None:
            return None
        return _row_to_threshold(row)

    async def get_all(
        self,
        *,
        enabled: bool | None = None,
        metric_type: str | None = None,
        server_id: int | None = None,
        group_id: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Threshold]:
        """List thresholds with optional filtering, ordered by id."""
        conditions: list[str] = ["deleted_at IS NULL"]
        params: list[Any] = []
        param_idx = 1

        if enabled is not None:
            conditions.append(f"enabled = ${param_idx}")
            params.append(enabled)
            param_idx += 1

        if metric_type is not None:
            conditions.append(f"metric_type = ${param_idx}")
            params.append(metric_type)
            param_idx += 1

        if server_id is not None:
            conditions.append(f"server_id = ${param_idx}")
            params.append(server_id)
            param_idx += 1

        if group_id is not None:
            conditions.append(f"group_id = ${param_idx}")
            params.append(group_id)
            param_idx += 1

        sql = f"""
            SELECT * FROM alert_thresholds
            WHERE {" AND ".join(conditions)}
            ORDER BY id
            LIMIT ${param_idx} OFFSET ${param_idx + 1}
        """
        params.extend([limit, offset])

        rows = await self._db.fetch(sql, *params)
        return [_row_to_threshold(row) for row in rows]

    async def get_enabled_direct_and_global(self, server_id: int) -> list[Threshold]:
        """Enabled thresholds scoped to the server, then global ones.

        Global means neither ``server_id`` nor ``group_id`` is set.
        Group-scoped rows are never returned here.
        """
        sql = """
            SELECT * FROM alert_thresholds
            WHERE enabled = TRUE AND deleted_at IS NULL
              AND (server_id = $1 OR (server_id IS NULL AND group_id IS NULL))
            ORDER BY (server_id IS NULL), id
        """
        rows = await self._db.fetch(sql, server_id)
        return [_row_to_threshold(row) for row in rows]

    async def get_enabled_for_group(self, group_id: int) -> list[Threshold]:
        sql = """
            SELECT * FROM alert_thresholds
            WHERE enabled = TRUE AND deleted_at IS NULL AND group_id = $1
            ORDER BY id
        """
        rows = await self._db.fetch(sql, group_id)
        return [_row_to_threshold(row) for row in rows]


class AlertRepository:
    """Repository for alert persistence and lifecycle updates.

    Status transitions are conditional UPDATEs guarded by the current
    status; a transition that matches no row returns None and the caller
    decides whether that is an error.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the alerts table and its open-alert unique index (idempotent)."""
        await self._db.execute(_CREATE_ALERTS_SQL)
        logger.info("Alerts table ensured")

    async def open_alert(self, alert: Alert, now: datetime) -> Alert | None:
        """Atomically open an alert for its (server, threshold) pair.

        Locks the threshold row, re-checks that it is live and enabled,
        that ``now`` is outside its cooldown window and that no
        active/acknowledged alert exists for the pair. Only then inserts the
        alert and advances ``last_triggered_at`` (never backwards).

        Args:
            alert: Alert to open. ``threshold_id`` must be set.
            now: Evaluation time used for the cooldown check.

        Returns:
            The created Alert, or None when any check suppressed it.
        """
        async with self._db.transaction() as conn:
            threshold_row = await conn.fetchrow(
                """
                SELECT enabled, cooldown_minutes, last_triggered_at
                FROM alert_thresholds
                WHERE id = $1 AND deleted_at IS NULL
                FOR UPDATE
                """,
                alert.threshold_id,
            )
            if threshold_row is None or not threshold_row["enabled"]:
                return None

            last_triggered_at = threshold_row["last_triggered_at"]
            if last_triggered_at is not None and within_cooldown(
                last_triggered_at, threshold_row["cooldown_minutes"], now,
            ):
                logger.debug(
                    "Threshold %s in cooldown for server %s",
                    alert.threshold_id, alert.server_id,
                )
                return None

            existing = await conn.fetchval(
                """
                SELECT id FROM alerts
                WHERE server_id = $1 AND threshold_id = $2
                  AND status = ANY($3::text[]) AND deleted_at IS NULL
                LIMIT 1
                """,
                alert.server_id,
                alert.threshold_id,
                _OPEN_STATUSES,
            )
            if existing is not None:
                return None

            # The savepoint keeps the transaction usable if the unique index
            # rejects the insert (another writer opened the pair first)
            try:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        INSERT INTO alerts (
                            title, message, metric_type, metric_value, threshold_value,
                            operator, severity, status, server_id, threshold_id,
                            triggered_at, notify_channels, notes
                        ) VALUES (
                            $1, $2, $3, $4, $5, $6, $7, 'active', $8, $9, $10, '[]'::jsonb, $11
                        )
                        RETURNING *
                        """,
                        alert.title,
                        alert.message,
                        alert.metric_type,
                        alert.metric_value,
                        alert.threshold_value,
                        alert.operator,
                        alert.severity,
                        alert.server_id,
                        alert.threshold_id,
                        alert.triggered_at,
                        alert.notes,
                    )
            except asyncpg.UniqueViolationError:
                logger.info(
                    "Alert for server %s threshold %s already open, insert skipped",
                    alert.server_id, alert.threshold_id,
                )
                return None

            await conn.execute(
                """
                UPDATE alert_thresholds
                SET last_triggered_at = GREATEST(COALESCE(last_triggered_at, $2), $2)
                WHERE id = $1
                """,
                alert.threshold_id,
                now,
            )

        created = _row_to_alert(row)
        created.server_name = alert.server_name
        created.server_ip = alert.server_ip
        return created

    async def record_notification(
        self,
        alert_id: int,
        channels: list[str],
        notified_at: datetime,
    ) -> None:
        """Store the channels that accepted the opening notification."""
        sql = """
            UPDATE alerts
            SET notify_channels = $2::jsonb, notified_at = $3, updated_at = NOW()
            WHERE id = $1
        """
        await self._db.execute(sql, alert_id, json.dumps(channels), notified_at)

    async def get_by_id(self, alert_id: int) -> Alert | None:
        sql = f"{_SELECT_ALERT} WHERE a.id = $1 AND a.deleted_at IS NULL"
        row = await self._db.fetchrow(sql, alert_id)
        if row is None:
            return None
        return _row_to_alert(row)

    async def get_open_for(
        self,
        server_id: int,
        threshold_id: int,
        metric_type: str,
    ) -> Alert | None:
        """The active or acknowledged alert for a (server, threshold), if any."""
        sql = f"""
            {_SELECT_ALERT}
            WHERE a.server_id = $1 AND a.threshold_id = $2 AND a.metric_type = $3
              AND a.status = ANY($4::text[]) AND a.deleted_at IS NULL
            ORDER BY a.triggered_at DESC
            LIMIT 1
        """
        row = await self._db.fetchrow(
            sql, server_id, threshold_id, metric_type, _OPEN_STATUSES,
        )
        if row is None:
            return None
        return _row_to_alert(row)

    async def get_recent(
        self,
        *,
        server_id: int | None = None,
        status: str | None = None,
        severity: str | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Alert]:
        """Get recent alerts with optional filtering.

        Returns:
            Alerts ordered by triggered_at descending.
        """
        conditions: list[str] = ["a.deleted_at IS NULL"]
        params: list[Any] = []
        param_idx = 1

        if server_id is not None:
            conditions.append(f"a.server_id = ${param_idx}")
            params.append(server_id)
            param_idx += 1

        if status is not None:
            conditions.append(f"a.status = ${param_idx}")
            params.append(status)
            param_idx += 1

        if severity is not None:
            conditions.append(f"a.severity = ${param_idx}")
            params.append(severity)
            param_idx += 1

        if start_time is not None:
            conditions.append(f"a.triggered_at >= ${param_idx}")
            params.append(start_time)
            param_idx += 1

        if end_time is not None:
            conditions.append(f"a.triggered_at <= ${param_idx}")
            params.append(end_time)
            param_idx += 1

        sql = f"""
            {_SELECT_ALERT}
            WHERE {" AND ".join(conditions)}
            ORDER BY a.triggered_at DESC
            LIMIT ${param_idx} OFFSET ${param_idx + 1}
        """
        params.extend([limit, offset])

        rows = await self._db.fetch(sql, *params)
        return [_row_to_alert(row) for row in rows]

    async def get_active(self, limit: int = 100) -> list[Alert]:
        """Active and acknowledged alerts, newest first."""
        sql = f"""
            {_SELECT_ALERT}
            WHERE a.status = ANY($1::text[]) AND a.deleted_at IS NULL
            ORDER BY a.triggered_at DESC
            LIMIT $2
        """
        rows = await self._db.fetch(sql, _OPEN_STATUSES, limit)
        return [_row_to_alert(row) for row in rows]

    async def acknowledge(
        self,
        alert_id: int,
        user_id: int,
        notes: str,
        now: datetime,
    ) -> Alert | None:
        """Move an active alert to acknowledged.

        Returns:
            The updated Alert, or None if it is missing or not active.
        """
        sql = f"""
            WITH updated AS (
                UPDATE alerts SET
                    status = 'acknowledged',
                    acknowledged_at = $2,
                    acknowledged_by = $3,
                    notes = $4,
                    updated_at = NOW()
                WHERE id = $1 AND status = 'active' AND deleted_at IS NULL
                RETURNING *
            )
            {_SELECT_UPDATED_ALERT}
        """
        row = await self._db.fetchrow(sql, alert_id, now, user_id, notes)
        if row is None:
            return None
        return _row_to_alert(row)

    async def resolve(self, alert_id: int, notes: str, now: datetime) -> Alert | None:
        """Move an active or acknowledged alert to resolved.

        ``notes`` is appended to any existing notes (e.g. the
        acknowledgement note) rather than replacing them.

        Returns:
            The updated Alert, or None if it is missing or already closed.
        """
        sql = f"""
            WITH updated AS (
                UPDATE alerts SET
                    status = 'resolved',
                    resolved_at = $2,
                    notes = {_APPEND_NOTE.format(n=3)},
                    updated_at = NOW()
                WHERE id = $1 AND status = ANY($4::text[]) AND deleted_at IS NULL
                RETURNING *
            )
            {_SELECT_UPDATED_ALERT}
        """
        row = await self._db.fetchrow(sql, alert_id, now, notes, _OPEN_STATUSES)
        if row is None:
            return None
        return _row_to_alert(row)


def _row_to_threshold(row: Any) -> Threshold:
    """Convert an asyncpg Record to a Threshold."""
    return Threshold(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        metric_type=row["metric_type"],
        operator=row["operator"],
        value=row["value"],
        duration=row["duration"],
        severity=row["severity"],
        enabled=row["enabled"],
        cooldown_minutes=row["cooldown_minutes"],
        server_id=row["server_id"],
        group_id=row["group_id"],
        enable_discord=row["enable_discord"],
        enable_webhook=row["enable_webhook"],
        enable_email=row["enable_email"],
        webhook_url=row["webhook_url"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        last_triggered_at=row["last_triggered_at"],
    )


def _row_to_alert(row: Any) -> Alert:
    """Convert an asyncpg Record to an Alert."""
    notify_channels = row.get("notify_channels", [])
    if isinstance(notify_channels, str):
        notify_channels = json.loads(notify_channels)

    return Alert(
        id=row["id"],
        server_id=row["server_id"],
        threshold_id=row["threshold_id"],
        title=row["title"],
        message=row["message"],
        metric_type=row["metric_type"],
        metric_value=row["metric_value"],
        threshold_value=row["threshold_value"],
        operator=row["operator"],
        severity=row["severity"],
        status=row["status"],
        triggered_at=row["triggered_at"],
        resolved_at=row["resolved_at"],
        acknowledged_at=row["acknowledged_at"],
        acknowledged_by=row["acknowledged_by"],
        notified_at=row["notified_at"],
        notify_channels=list(notify_channels or []),
        notes=row["notes"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        server_name=row.get("server_name") or "",
        server_ip=row.get("server_ip") or "",
    )
