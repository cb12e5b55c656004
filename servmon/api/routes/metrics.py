"""Metric ingestion and history endpoints."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from servmon.api.auth import verify_api_key
from servmon.api.dependencies import get_ingestion_service
from servmon.api.models import (
    ErrorResponse,
    IngestResponse,
    MetricItem,
    MetricSampleRequest,
    MetricsResponse,
)
from servmon.ingestion.schemas import MetricSample
from servmon.ingestion.service import MetricIngestionService, UnknownServerError

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/metrics",
    response_model=IngestResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse, "description": "Unknown server"}},
    summary="Ingest a metric sample",
    description=(
        "Store a sample reported by a host agent and evaluate the server's "
        "alert thresholds against it. Evaluation problems never reject the sample."
    ),
)
async def ingest_metric(
    body: MetricSampleRequest,
    api_key: str = Depends(verify_api_key),
    service: MetricIngestionService = Depends(get_ingestion_service),
) -> IngestResponse:
    # A missing timestamp means "measured now"
    sample = MetricSample.from_dict(body.model_dump())

    try:
        stored, result = await service.ingest(sample)
    except UnknownServerError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    response = IngestResponse(metric=MetricItem.from_sample(stored))
    if result is not None:
        response.thresholds_checked = result.thresholds_checked
        response.alerts_opened = [a.id for a in result.opened]
        response.alerts_resolved = [a.id for a in result.resolved]
        response.evaluation_errors = list(result.errors)
    return response


@router.get(
    "/metrics/server/{server_id}",
    response_model=MetricsResponse,
    summary="Metric history for a server",
)
async def server_metrics(
    server_id: int,
    start_time: datetime | None = Query(default=None),
    end_time: datetime | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=5000),
    offset: int = Query(default=0, ge=0),
    api_key: str = Depends(verify_api_key),
    service: MetricIngestionService = Depends(get_ingestion_service),
) -> MetricsResponse:
    samples = await service.history(
        server_id,
        start_time=start_time,
        end_time=end_time,
        limit=limit,
        offset=offset,
    )
    items = [MetricItem.from_sample(s) for s in samples]
    return MetricsResponse(metrics=items, total=len(items))


@router.get(
    "/metrics/server/{server_id}/latest",
    response_model=MetricItem,
    responses={404: {"model": ErrorResponse, "description": "No samples for server"}},
    summary="Latest sample for a server",
)
async def latest_metric(
    server_id: int,
    api_key: str = Depends(verify_api_key),
    service: MetricIngestionService = Depends(get_ingestion_service),
) -> MetricItem:
    sample = await service.latest(server_id)
    if sample is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No metrics for server {server_id}",
        )
    return MetricItem.from_sample(sample)
