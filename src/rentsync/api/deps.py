"""FastAPI dependencies resolving services built during lifespan startup."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.rentsync.observability.errors import ErrorLogger
from src.rentsync.webhooks.dispatcher import WebhookDispatcher


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} is not available. The service may not have finished starting.",
        )
    return value


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return _state(request, "dispatcher")


def get_error_logger(request: Request) -> ErrorLogger:
    return _state(request, "error_logger")
