"""
Command-line interface for servmon.

Provides commands to run the API server, initialize the database,
purge old metric samples and inspect alert evaluation for a server.

Usage:
    servmon serve                 # Run the API server
    servmon init-db               # Create tables
    servmon health                # Check service health
    servmon cleanup --days 30     # Purge old metric samples
    servmon check-server 12       # Show thresholds and current evaluation
"""

import asyncio
import os
import sys

import click

from servmon.config.settings import get_settings
from servmon.observability.logging import setup_logging
from servmon.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """servmon - server metric ingestion and alerting."""
    if debug:
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def serve(host: str | None, port: int | None, reload: bool, metrics_port: int | None) -> None:
    """Start the API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    metrics_port = metrics_port or settings.metrics_port

    get_metrics().start_server(port=metrics_port)

    click.echo(f"Starting API server on {host}:{port}")
    click.echo(f"Metrics available on http://localhost:{metrics_port}/metrics")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "servmon.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from servmon.alerts.repository import AlertRepository, ThresholdRepository
    from servmon.ingestion.repository import MetricRepository
    from servmon.servers.repository import ServerRepository
    from servmon.storage.database import Database

    async def run():
        db = Database()
        await db.connect()

        try:
            # Order matters: later tables reference earlier ones
            await ServerRepository(db).create_tables()
            await ThresholdRepository(db).create_tables()
            await AlertRepository(db).create_tables()
            await MetricRepository(db).create_tables()
            click.echo("Database initialized successfully")
        finally:
            await db.close()

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        settings = get_settings()
        results: dict[str, bool] = {}

        try:
            from servmon.storage.database import Database
            db = Database()
            await db.connect()
            results["postgres"] = await db.health_check()
            await db.close()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        if settings.redis_enabled:
            try:
                import redis.asyncio as aioredis
                client = aioredis.from_url(str(settings.redis_url))
                results["redis"] = bool(await client.ping())
                await client.aclose()
            except Exception as e:
                results["redis"] = False
                logger.error("Redis health check failed", error=str(e))

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


@main.command()
@click.option("--days", default=None, type=int, help="Days of samples to keep")
def cleanup(days: int | None) -> None:
    """Remove metric samples older than the retention window.

    Example:
        servmon cleanup --days 30    # Delete samples older than 30 days
    """
    from servmon.ingestion.repository import MetricRepository
    from servmon.ingestion.service import MetricIngestionService
    from servmon.servers.repository import ServerRepository
    from servmon.storage.database import Database

    days = days or get_settings().metric_retention_days

    async def run():
        db = Database()
        await db.connect()

        try:
            service = MetricIngestionService(MetricRepository(db), ServerRepository(db))
            deleted = await service.purge(days)
            click.echo(f"\nDeleted {deleted} metric samples older than {days} days")
        finally:
            await db.close()

    asyncio.run(run())


@main.command("check-server")
@click.argument("server_id", type=int)
def check_server(server_id: int) -> None:
    """Show the thresholds applying to a server and how its latest sample evaluates.

    Nothing is opened, resolved or notified.
    """
    from servmon.alerts.config import AlertConfig
    from servmon.alerts.repository import AlertRepository, ThresholdRepository
    from servmon.alerts.service import AlertService
    from servmon.ingestion.repository import MetricRepository
    from servmon.servers.repository import ServerRepository
    from servmon.storage.database import Database

    async def run():
        db = Database()
        await db.connect()

        try:
            server_repo = ServerRepository(db)
            server = await server_repo.get_by_id(server_id)
            if server is None:
                click.echo(click.style(f"Server {server_id} not found", fg="red"))
                return 1

            service = AlertService(
                config=AlertConfig(),
                threshold_repo=ThresholdRepository(db),
                alert_repo=AlertRepository(db),
                server_repo=server_repo,
            )
            sample = await MetricRepository(db).get_latest(server_id)

            click.echo(f"\nServer {server.id}: {server.hostname} ({server.ip or '-'})")
            groups = []
            for group_id in await server_repo.get_group_ids(server_id):
                group = await server_repo.get_group(group_id)
                if group is not None:
                    groups.append(f"{group.name} (#{group.id})")
            click.echo(f"Groups: {', '.join(groups) or '-'}")
            click.echo("-" * 60)

            if sample is None:
                thresholds = await service.get_applicable_thresholds(server_id)
                for t in thresholds:
                    click.echo(
                        f"  #{t.id} [{t.scope}] {t.name}: "
                        f"{t.metric_type} {t.operator} {t.value}"
                    )
                click.echo(f"\n{len(thresholds)} thresholds, no samples yet")
                return 0

            rows = await service.preview(sample)
            for row in rows:
                t = row["threshold"]
                value = row["value"]
                shown = "n/a" if value is None else f"{value:.2f}"
                if row["triggered"]:
                    state, color = "TRIGGERED", "red"
                else:
                    state, color = "ok", "green"
                if row["in_cooldown"]:
                    state += " (cooldown)"
                click.echo(click.style(
                    f"  #{t.id} [{t.scope}] {t.name}: {t.metric_type}={shown} "
                    f"{t.operator} {t.value} -> {state}",
                    fg=color,
                ))

            click.echo(f"\n{len(rows)} thresholds evaluated against sample at "
                       f"{sample.timestamp.isoformat()}")
            return 0
        finally:
            await db.close()

    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
