"""Alert threshold administration endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
import structlog

from servmon.alerts.errors import ThresholdNotFoundError, ThresholdValidationError
from servmon.alerts.schemas import Threshold
from servmon.alerts.service import AlertService
from servmon.api.auth import verify_api_key
from servmon.api.dependencies import get_alert_service
from servmon.api.models import (
    ErrorResponse,
    ThresholdCreateRequest,
    ThresholdItem,
    ThresholdsResponse,
    ThresholdUpdateRequest,
)

logger = structlog.get_logger(__name__)
router = APIRouter()

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Threshold not found"}}
_INVALID = {422: {"model": ErrorResponse, "description": "Invalid threshold definition"}}


def _invalid(e: ThresholdValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=str(e),
    )


@router.get(
    "/thresholds",
    response_model=ThresholdsResponse,
    summary="List thresholds",
)
async def list_thresholds(
    enabled: bool | None = Query(default=None),
    metric_type: str | None = Query(default=None),
    server_id: int | None = Query(default=None),
    group_id: int | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> ThresholdsResponse:
    thresholds = await service.list_thresholds(
        enabled=enabled,
        metric_type=metric_type,
        server_id=server_id,
        group_id=group_id,
        limit=limit,
        offset=offset,
    )
    items = [ThresholdItem.from_threshold(t) for t in thresholds]
    return ThresholdsResponse(thresholds=items, total=len(items))


@router.get(
    "/thresholds/server/{server_id}",
    response_model=ThresholdsResponse,
    summary="Thresholds applicable to a server",
    description=(
        "The enabled thresholds evaluated for the server: direct ones, "
        "global ones, then those of the groups it belongs to."
    ),
)
async def applicable_thresholds(
    server_id: int,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> ThresholdsResponse:
    thresholds = await service.get_applicable_thresholds(server_id)
    items = [ThresholdItem.from_threshold(t) for t in thresholds]
    return ThresholdsResponse(thresholds=items, total=len(items))


@router.get(
    "/thresholds/{threshold_id}",
    response_model=ThresholdItem,
    responses=_NOT_FOUND,
    summary="Get threshold",
)
async def get_threshold(
    threshold_id: int,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> ThresholdItem:
    try:
        threshold = await service.get_threshold(threshold_id)
    except ThresholdNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return ThresholdItem.from_threshold(threshold)


@router.post(
    "/thresholds",
    response_model=ThresholdItem,
    status_code=status.HTTP_201_CREATED,
    responses=_INVALID,
    summary="Create threshold",
)
async def create_threshold(
    body: ThresholdCreateRequest,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> ThresholdItem:
    fields = body.model_dump()
    if fields["cooldown_minutes"] is None:
        fields["cooldown_minutes"] = service.config.default_cooldown_minutes

    try:
        created = await service.create_threshold(Threshold(**fields))
    except ThresholdValidationError as e:
        raise _invalid(e)

    logger.info(
        "Threshold created",
        threshold_id=created.id,
        metric_type=created.metric_type,
        scope=created.scope,
    )
    return ThresholdItem.from_threshold(created)


@router.put(
    "/thresholds/{threshold_id}",
    response_model=ThresholdItem,
    responses={**_NOT_FOUND, **_INVALID},
    summary="Update threshold",
)
async def update_threshold(
    threshold_id: int,
    body: ThresholdUpdateRequest,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> ThresholdItem:
    # exclude_unset keeps explicit nulls so scope can be cleared
    changes = body.model_dump(exclude_unset=True)
    try:
        updated = await service.update_threshold(threshold_id, changes)
    except ThresholdNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ThresholdValidationError as e:
        raise _invalid(e)

    logger.info("Threshold updated", threshold_id=threshold_id, fields=sorted(changes))
    return ThresholdItem.from_threshold(updated)


@router.delete(
    "/thresholds/{threshold_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=_NOT_FOUND,
    summary="Delete threshold",
    description="Soft-delete a threshold. Alerts it opened are kept.",
)
async def delete_threshold(
    threshold_id: int,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> Response:
    try:
        await service.delete_threshold(threshold_id)
    except ThresholdNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
