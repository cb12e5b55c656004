"""Alert endpoints for listing, acknowledging and resolving alerts."""

import time
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from servmon.alerts.errors import AlertNotFoundError, AlertTransitionError
from servmon.alerts.schemas import VALID_SEVERITIES, VALID_STATUSES
from servmon.alerts.service import AlertService
from servmon.api.auth import verify_api_key
from servmon.api.dependencies import get_alert_service
from servmon.api.models import (
    AlertActionRequest,
    AlertItem,
    AlertsResponse,
    ErrorResponse,
)

logger = structlog.get_logger(__name__)
router = APIRouter()

_ACTION_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Invalid API key"},
    404: {"model": ErrorResponse, "description": "Alert not found"},
    409: {"model": ErrorResponse, "description": "Action not allowed in the alert's status"},
}


@router.get(
    "/alerts",
    response_model=AlertsResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid API key"},
        422: {"model": ErrorResponse, "description": "Invalid filter parameter"},
        500: {"model": ErrorResponse, "description": "Server error"},
    },
    summary="List alerts",
    description=(
        "List alerts with optional filtering by server, status, severity "
        "and trigger time. Ordered by most recent first."
    ),
)
async def list_alerts(
    server_id: int | None = Query(default=None, description="Filter by server"),
    status_filter: str | None = Query(
        default=None,
        alias="status",
        description="Filter by status: active, acknowledged, resolved, suppressed",
    ),
    severity: str | None = Query(
        default=None,
        description="Filter by severity: critical, warning, info",
    ),
    start_time: datetime | None = Query(default=None, description="Triggered at or after"),
    end_time: datetime | None = Query(default=None, description="Triggered at or before"),
    limit: int = Query(default=50, ge=1, le=500, description="Maximum alerts to return"),
    offset: int = Query(default=0, ge=0, description="Offset for pagination"),
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertsResponse:
    start = time.perf_counter()

    try:
        if severity and severity not in VALID_SEVERITIES:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=(
                    f"Invalid severity {severity!r}. "
                    f"Must be one of: {sorted(VALID_SEVERITIES)}"
                ),
            )

        if status_filter and status_filter not in VALID_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=(
                    f"Invalid status {status_filter!r}. "
                    f"Must be one of: {sorted(VALID_STATUSES)}"
                ),
            )

        alerts = await service.list_alerts(
            server_id=server_id,
            status=status_filter,
            severity=severity,
            start_time=start_time,
            end_time=end_time,
            limit=limit,
            offset=offset,
        )

        items = [AlertItem.from_alert(a) for a in alerts]
        latency_ms = (time.perf_counter() - start) * 1000

        logger.info(
            "Alerts listed",
            total=len(items),
            server_id=server_id,
            status=status_filter,
            severity=severity,
            latency_ms=round(latency_ms, 2),
        )

        return AlertsResponse(
            alerts=items,
            total=len(items),
            latency_ms=round(latency_ms, 2),
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to list alerts: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list alerts: {str(e)}",
        )


@router.get(
    "/alerts/active",
    response_model=AlertsResponse,
    summary="List open alerts",
    description="Active and acknowledged alerts, most recent first.",
)
async def list_active_alerts(
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertsResponse:
    start = time.perf_counter()
    try:
        alerts = await service.get_active_alerts()
    except Exception as e:
        logger.error(f"Failed to list active alerts: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list active alerts: {str(e)}",
        )

    items = [AlertItem.from_alert(a) for a in alerts]
    return AlertsResponse(
        alerts=items,
        total=len(items),
        latency_ms=round((time.perf_counter() - start) * 1000, 2),
    )


@router.get(
    "/alerts/{alert_id}",
    response_model=AlertItem,
    responses={404: {"model": ErrorResponse, "description": "Alert not found"}},
    summary="Get alert",
)
async def get_alert(
    alert_id: int,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertItem:
    try:
        alert = await service.get_alert(alert_id)
    except AlertNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return AlertItem.from_alert(alert)


@router.post(
    "/alerts/{alert_id}/acknowledge",
    response_model=AlertItem,
    responses=_ACTION_RESPONSES,
    summary="Acknowledge alert",
    description="Mark an active alert as acknowledged. Only active alerts can be acknowledged.",
)
async def acknowledge_alert(
    alert_id: int,
    body: AlertActionRequest,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertItem:
    try:
        alert = await service.acknowledge_alert(alert_id, body.user_id, body.notes)
    except AlertNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except AlertTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info("Alert acknowledged", alert_id=alert_id, user_id=body.user_id)
    return AlertItem.from_alert(alert)


@router.post(
    "/alerts/{alert_id}/resolve",
    response_model=AlertItem,
    responses=_ACTION_RESPONSES,
    summary="Resolve alert",
    description=(
        "Resolve an active or acknowledged alert. Channels that received the "
        "alert are sent a resolution notice."
    ),
)
async def resolve_alert(
    alert_id: int,
    body: AlertActionRequest,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertItem:
    try:
        alert = await service.resolve_alert(alert_id, body.user_id, body.notes)
    except AlertNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except AlertTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info("Alert resolved", alert_id=alert_id, user_id=body.user_id)
    return AlertItem.from_alert(alert)
