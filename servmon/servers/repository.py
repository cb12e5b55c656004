"""Read-side repository for servers and group memberships."""

import logging

from servmon.servers.schemas import Server, ServerGroup
from servmon.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS servers (
    id          BIGSERIAL PRIMARY KEY,
    hostname    TEXT NOT NULL,
    ip          TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT '',
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    deleted_at  TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS server_groups (
    id          BIGSERIAL PRIMARY KEY,
    name        TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    parent_id   BIGINT REFERENCES server_groups(id),
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    deleted_at  TIMESTAMPTZ,
    CHECK (parent_id IS NULL OR parent_id <> id)
);

CREATE TABLE IF NOT EXISTS server_group_servers (
    server_group_id BIGINT NOT NULL REFERENCES server_groups(id),
    server_id       BIGINT NOT NULL REFERENCES servers(id),
    PRIMARY KEY (server_group_id, server_id)
);

CREATE INDEX IF NOT EXISTS idx_server_group_servers_server
    ON server_group_servers(server_id);
"""


def _record_to_server(record) -> Server:
    return Server(
        id=record["id"],
        hostname=record["hostname"],
        ip=record["ip"],
        description=record["description"],
    )


def _record_to_group(record) -> ServerGroup:
    return ServerGroup(
        id=record["id"],
        name=record["name"],
        parent_id=record["parent_id"],
        description=record["description"],
    )


class ServerRepository:
    """Lookups for servers, groups and memberships."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create server, group and membership tables (idempotent)."""
        await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Server tables ensured")

    async def get_by_id(self, server_id: int) -> Server | None:
        """Get a live (not soft-deleted) server by id."""
        row = await self._db.fetchrow(
            """
            SELECT id, hostname, ip, description FROM servers
            WHERE id = $1 AND deleted_at IS NULL
            """,
            server_id,
        )
        if row is None:
            return None
        return _record_to_server(row)

    async def get_group_ids(self, server_id: int) -> list[int]:
        """Ids of the groups the server directly belongs to.

        Ordered by group id so resolution order is deterministic. Ancestor
        groups are not included.
        """
        rows = await self._db.fetch(
            """
            SELECT g.id FROM server_groups g
            JOIN server_group_servers m ON m.server_group_id = g.id
            WHERE m.server_id = $1 AND g.deleted_at IS NULL
            ORDER BY g.id
            """,
            server_id,
        )
        return [row["id"] for row in rows]

    async def get_group(self, group_id: int) -> ServerGroup | None:
        """Get a live server group by id."""
        row = await self._db.fetchrow(
            """
            SELECT id, name, parent_id, description FROM server_groups
            WHERE id = $1 AND deleted_at IS NULL
            """,
            group_id,
        )
        if row is None:
            return None
        return _record_to_group(row)
