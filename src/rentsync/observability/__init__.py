"""Error and observability logging.

Exports:
    ErrorLogger: Persists IntegrationError, WebhookEvent and ApiCallLog rows
        and keeps the daily error_statistics counters.
    ErrorCategory, Severity: Error taxonomy.
    categorize, severity, source_system: Pure classification functions.
    WebhookStatus: WebhookEvent lifecycle states.
"""

from src.rentsync.observability.errors import (
    ErrorCategory,
    ErrorLogger,
    Severity,
    categorize,
    severity,
    source_system,
)
from src.rentsync.observability.models import WebhookStatus

__all__ = [
    "ErrorCategory",
    "ErrorLogger",
    "Severity",
    "WebhookStatus",
    "categorize",
    "severity",
    "source_system",
]
