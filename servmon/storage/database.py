"""
asyncpg pool shared by the servmon repositories.

Every session runs in UTC so TIMESTAMPTZ columns (sample timestamps,
alert open/resolve times, cooldown checks) come back as aware UTC
datetimes regardless of the server's default time zone.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from servmon.config.settings import get_settings

logger = logging.getLogger(__name__)

SESSION_SETTINGS = {"timezone": "UTC", "application_name": "servmon"}


class Database:
    """
    Connection pool plus the query helpers the repositories call.

    One instance is shared by the API process (see ``api.dependencies``);
    CLI commands open their own and close it when the command ends.
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        command_timeout: float | None = None,
    ):
        settings = get_settings()

        self._database_url = database_url or str(settings.database_url)
        self._min_size = min_size or settings.db_pool_min_size
        self._max_size = max_size or settings.db_pool_max_size
        self._command_timeout = command_timeout or settings.db_command_timeout

        self._pool: asyncpg.Pool | None = None

    @property
    def connected(self) -> bool:
        return self._pool is not None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database not connected; call connect() first")
        return self._pool

    async def connect(self) -> None:
        """Open the pool. Calling it on a connected instance does nothing."""
        if self.connected:
            return

        try:
            self._pool = await asyncpg.create_pool(
                self._database_url,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
                server_settings=SESSION_SETTINGS,
            )
        except (OSError, asyncpg.PostgresError) as e:
            logger.error("Could not open database pool: %s", e)
            raise

        logger.info(
            "Database pool open (size %d-%d, command timeout %.0fs)",
            self._min_size, self._max_size, self._command_timeout,
        )

    async def close(self) -> None:
        if self._pool is None:
            return
        await self._pool.close()
        self._pool = None
        logger.info("Database pool closed")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Run several statements atomically on one pooled connection.

        Used where a check and a write must not interleave with another
        request, e.g. opening an alert only when no active one exists.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def execute(self, query: str, *args: Any) -> str:
        """Run a statement; returns the status tag (``"DELETE 3"``)."""
        return await self.pool.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        return await self.pool.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        return await self.pool.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        return await self.pool.fetchval(query, *args)

    async def health_check(self) -> bool:
        """True when the pool is open and answers ``SELECT 1``."""
        if not self.connected:
            return False
        try:
            return await self.fetchval("SELECT 1") == 1
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.warning("Database health check failed: %s", e)
            return False
