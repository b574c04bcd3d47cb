"""Webhook receivers for both systems.

Both endpoints acknowledge immediately and hand the payload to the
dispatcher as a background task, so the sender never waits on (or
retries because of) sync work.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Body, Depends

from src.rentsync.api.deps import get_dispatcher
from src.rentsync.webhooks.dispatcher import SOURCE_CRM, SOURCE_OPS, WebhookDispatcher

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/crm")
async def crm_webhook(
    background_tasks: BackgroundTasks,
    payload: Any = Body(...),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> dict:
    """Receive a CRM notification batch (a JSON array of events)."""
    count = len(payload) if isinstance(payload, list) else 1
    logger.info("webhook.received", source=SOURCE_CRM, events=count)
    background_tasks.add_task(dispatcher.handle_batch, SOURCE_CRM, payload)
    return {"status": "ok"}


@router.post("/ops")
async def ops_webhook(
    background_tasks: BackgroundTasks,
    payload: dict = Body(...),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> dict:
    """Receive an operations-platform notification (one itemType, many items)."""
    logger.info(
        "webhook.received",
        source=SOURCE_OPS,
        item_type=payload.get("itemType"),
        event_type=payload.get("eventType"),
        items=len(payload.get("items") or []),
    )
    background_tasks.add_task(dispatcher.handle_batch, SOURCE_OPS, payload)
    return {"status": "ok"}
