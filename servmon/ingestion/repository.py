"""Metric sample repository.

Samples are append-only: there is no update path, and the only deletion
is the retention purge.
"""

import logging
from datetime import datetime
from typing import Any

from servmon.ingestion.schemas import MetricSample
from servmon.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS metrics (
    id            BIGSERIAL PRIMARY KEY,
    server_id     BIGINT NOT NULL REFERENCES servers(id),
    timestamp     TIMESTAMPTZ NOT NULL,
    cpu_usage     DOUBLE PRECISION NOT NULL DEFAULT 0,
    cpu_temp      DOUBLE PRECISION,
    memory_total  BIGINT NOT NULL DEFAULT 0,
    memory_used   BIGINT NOT NULL DEFAULT 0,
    memory_free   BIGINT NOT NULL DEFAULT 0,
    disk_total    BIGINT NOT NULL DEFAULT 0,
    disk_used     BIGINT NOT NULL DEFAULT 0,
    disk_free     BIGINT NOT NULL DEFAULT 0,
    net_upload    BIGINT NOT NULL DEFAULT 0,
    net_download  BIGINT NOT NULL DEFAULT 0,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_metrics_server_time
    ON metrics(server_id, timestamp DESC);
"""


class MetricRepository:
    """Repository for metric sample storage and time-range queries."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the metrics table (idempotent)."""
        await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Metrics table ensured")

    async def create(self, sample: MetricSample) -> MetricSample:
        """Insert a sample.

        Returns:
            The stored sample with its DB-assigned id.
        """
        sql = """
            INSERT INTO metrics (
                server_id, timestamp, cpu_usage, cpu_temp,
                memory_total, memory_used, memory_free,
                disk_total, disk_used, disk_free,
                net_upload, net_download
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            sample.server_id,
            sample.timestamp,
            sample.cpu_usage,
            sample.cpu_temp,
            sample.memory_total,
            sample.memory_used,
            sample.memory_free,
            sample.disk_total,
            sample.disk_used,
            sample.disk_free,
            sample.net_upload,
            sample.net_download,
        )
        return _row_to_sample(row)

    async def get_latest(self, server_id: int) -> MetricSample | None:
        sql = """
            SELECT * FROM metrics WHERE server_id = $1
            ORDER BY timestamp DESC LIMIT 1
        """
        row = await self._db.fetchrow(sql, server_id)
        if row is None:
            return None
        return _row_to_sample(row)

    async def get_by_server(
        self,
        server_id: int,
        *,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[MetricSample]:
        """Samples for a server, newest first, optionally within a time range."""
        conditions: list[str] = ["server_id = $1"]
        params: list[Any] = [server_id]
        param_idx = 2

        if start_time is not None:
            conditions.append(f"timestamp >= ${param_idx}")
            params.append(start_time)
            param_idx += 1

        if end_time is not None:
            conditions.append(f"timestamp <= ${param_idx}")
            params.append(end_time)
            param_idx += 1

        sql = f"""
            SELECT * FROM metrics
            WHERE {" AND ".join(conditions)}
            ORDER BY timestamp DESC
            LIMIT ${param_idx} OFFSET ${param_idx + 1}
        """
        params.extend([limit, offset])

        rows = await self._db.fetch(sql, *params)
        return [_row_to_sample(row) for row in rows]

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Purge samples taken before ``cutoff``.

        Returns:
            Number of deleted rows.
        """
        status = await self._db.execute(
            "DELETE FROM metrics WHERE timestamp < $1", cutoff,
        )
        # asyncpg returns "DELETE <count>"
        try:
            return int(status.split()[-1])
        except (ValueError, IndexError):
            return 0


def _row_to_sample(row: Any) -> MetricSample:
    """Convert an asyncpg Record to a MetricSample."""
    return MetricSample(
        id=row["id"],
        server_id=row["server_id"],
        timestamp=row["timestamp"],
        cpu_usage=row["cpu_usage"],
        cpu_temp=row["cpu_temp"],
        memory_total=row["memory_total"],
        memory_used=row["memory_used"],
        memory_free=row["memory_free"],
        disk_total=row["disk_total"],
        disk_used=row["disk_used"],
        disk_free=row["disk_free"],
        net_upload=row["net_upload"],
        net_download=row["net_download"],
    )
