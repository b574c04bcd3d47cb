"""Webhook ingestion -- burst deduplication and dispatch to entity sync operations."""

from src.rentsync.webhooks.dedup import filter_duplicate_events, is_ignored_source
from src.rentsync.webhooks.dispatcher import SOURCE_CRM, SOURCE_OPS, WebhookDispatcher

__all__ = [
    "SOURCE_CRM",
    "SOURCE_OPS",
    "WebhookDispatcher",
    "filter_duplicate_events",
    "is_ignored_source",
]
