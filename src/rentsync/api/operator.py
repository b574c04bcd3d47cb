"""Read-mostly operator views over the observability tables."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from src.rentsync.api.deps import get_error_logger
from src.rentsync.observability.errors import (
    DailyStatistics,
    ErrorLogger,
    ErrorSummary,
    IntegrationErrorRecord,
    WebhookEventRecord,
)

router = APIRouter(tags=["operator"])


class ResolveRequest(BaseModel):
    resolved_by: str = "operator"
    notes: str | None = None


@router.get("/errors/summary", response_model=ErrorSummary)
async def error_summary(errors: ErrorLogger = Depends(get_error_logger)) -> ErrorSummary:
    return await errors.get_error_summary()


@router.get("/errors/statistics", response_model=list[DailyStatistics])
async def error_statistics(
    days: int = Query(7, ge=1, le=365),
    errors: ErrorLogger = Depends(get_error_logger),
) -> list[DailyStatistics]:
    return await errors.get_error_statistics(days)


@router.get("/errors", response_model=list[IntegrationErrorRecord])
async def list_errors(
    limit: int = Query(50, ge=1, le=500),
    error_type: str | None = None,
    severity: str | None = None,
    resolved: bool | None = None,
    source_system: str | None = None,
    errors: ErrorLogger = Depends(get_error_logger),
) -> list[IntegrationErrorRecord]:
    return await errors.get_recent_errors(
        limit=limit,
        error_type=error_type,
        severity=severity,
        resolved=resolved,
        source_system=source_system,
    )


@router.post("/errors/{error_id}/resolve")
async def resolve_error(
    error_id: int,
    body: ResolveRequest | None = None,
    errors: ErrorLogger = Depends(get_error_logger),
) -> dict:
    """Mark an error resolved.

    Raises:
        HTTPException(404): The error does not exist or is already resolved.
    """
    body = body or ResolveRequest()
    if not await errors.resolve_error(error_id, resolved_by=body.resolved_by, notes=body.notes):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unresolved error {error_id} not found",
        )
    return {"status": "resolved", "id": error_id}


@router.get("/webhook-events", response_model=list[WebhookEventRecord])
async def list_webhook_events(
    limit: int = Query(50, ge=1, le=500),
    source: str | None = None,
    status_filter: str | None = Query(None, alias="status"),
    errors: ErrorLogger = Depends(get_error_logger),
) -> list[WebhookEventRecord]:
    return await errors.get_webhook_events(limit=limit, source=source, status=status_filter)
