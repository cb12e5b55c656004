"""
Metric ingestion service.

Entry point for samples reported by monitored hosts: the sample is stored
first, then handed to the alert service. Alert evaluation can never undo
or block the stored sample.
"""

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog

from servmon.alerts.schemas import EvaluationResult
from servmon.ingestion.repository import MetricRepository
from servmon.ingestion.schemas import MetricSample
from servmon.observability.metrics import AlertingMetrics
from servmon.servers.repository import ServerRepository

if TYPE_CHECKING:
    from servmon.alerts.service import AlertService

logger = structlog.get_logger(__name__)


class UnknownServerError(LookupError):
    """Raised when a sample references a server that does not exist."""

    def __init__(self, server_id: int):
        super().__init__(f"Server {server_id} not found")
        self.server_id = server_id


class MetricIngestionService:
    """
    Stores metric samples and triggers alert evaluation.

    The alert service is injected at construction time.

    Usage:
        service = MetricIngestionService(metric_repo, server_repo, alert_service)
        stored, result = await service.ingest(sample)
    """

    def __init__(
        self,
        metric_repo: MetricRepository,
        server_repo: ServerRepository,
        alert_service: "AlertService | None" = None,
        metrics: AlertingMetrics | None = None,
    ):
        self._metric_repo = metric_repo
        self._server_repo = server_repo
        self._alert_service = alert_service
        self._metrics = metrics

    async def ingest(
        self,
        sample: MetricSample,
    ) -> tuple[MetricSample, EvaluationResult | None]:
        """
        Persist a sample, then evaluate it.

        Args:
            sample: Sample reported by a host agent

        Returns:
            Tuple of (stored sample, evaluation result). The result is None
            when no alert service is configured or evaluation failed.

        Raises:
            UnknownServerError: If the server does not exist
        """
        server = await self._server_repo.get_by_id(sample.server_id)
        if server is None:
            raise UnknownServerError(sample.server_id)

        stored = await self._metric_repo.create(sample)
        if self._metrics is not None:
            self._metrics.record_sample()

        if self._alert_service is None:
            return stored, None

        try:
            result = await self._alert_service.evaluate_metric(stored)
        except Exception as e:
            if self._metrics is not None:
                self._metrics.record_evaluation_error()
            logger.error(
                "Alert evaluation failed",
                server_id=stored.server_id,
                metric_id=stored.id,
                error=str(e),
            )
            return stored, None

        if result.errors:
            logger.warning(
                "Alert evaluation completed with errors",
                server_id=stored.server_id,
                errors=result.errors,
            )
        return stored, result

    async def latest(self, server_id: int) -> MetricSample | None:
        return await self._metric_repo.get_latest(server_id)

    async def history(
        self,
        server_id: int,
        *,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[MetricSample]:
        return await self._metric_repo.get_by_server(
            server_id,
            start_time=start_time,
            end_time=end_time,
            limit=limit,
            offset=offset,
        )

    async def purge(self, retention_days: int) -> int:
        """
        Delete samples older than the retention window.

        Returns:
            Number of samples deleted
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        deleted = await self._metric_repo.delete_older_than(cutoff)
        logger.info(
            "Purged old metric samples",
            retention_days=retention_days,
            deleted=deleted,
        )
        return deleted
