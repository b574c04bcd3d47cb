"""Prometheus metrics for webhook processing and remote API traffic.

Provides:
- remote_api_calls_total: every outbound request, by system/method/status
- webhook_events_total: every dispatched notification, by source/status
- sync_operations_total: entity sync outcomes, by kind/action/outcome
- reconciliation_runs_total: sweep outcomes
- get_metrics_response(): /metrics payload
"""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, generate_latest
from starlette.responses import Response

remote_api_calls_total = Counter(
    "rentsync_remote_api_calls_total",
    "Outbound requests to the CRM and the operations platform",
    ["system", "method", "status"],
)

webhook_events_total = Counter(
    "rentsync_webhook_events_total",
    "Webhook notifications by final processing status",
    ["source", "status"],
)

sync_operations_total = Counter(
    "rentsync_sync_operations_total",
    "Entity sync operations",
    ["kind", "action", "outcome"],
)

reconciliation_runs_total = Counter(
    "rentsync_reconciliation_runs_total",
    "Reconciliation sweep runs",
    ["outcome"],
)


def get_metrics_response() -> Response:
    """Render all registered metrics in Prometheus text format."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
