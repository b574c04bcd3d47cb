"""Tests for error categorization and the persistent error logger."""

from __future__ import annotations

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from src.rentsync.core.exceptions import (
    ApiError,
    ApiTimeoutError,
    AuthError,
    RateLimitError,
    ValidationError,
)
from src.rentsync.observability.errors import (
    ErrorCategory,
    Severity,
    categorize,
    severity,
    source_system,
)
from src.rentsync.observability.models import ApiCallLogModel, WebhookStatus


# ── Categorization ─────────────────────────────────────────────────────────


class TestCategorize:
    @pytest.mark.parametrize(
        ("error", "context", "expected"),
        [
            (httpx.ConnectError("refused"), {}, ErrorCategory.api),
            (ApiTimeoutError("crm", "/deals", "GET"), {}, ErrorCategory.timeout),
            (RuntimeError("read timeout"), {}, ErrorCategory.timeout),
            (RateLimitError("crm", "/deals", 5), {}, ErrorCategory.rate_limit),
            (AuthError("crm", 401, "no"), {}, ErrorCategory.auth),
            (ApiError("ops", 403, "forbidden"), {}, ErrorCategory.auth),
            (ValidationError("crm", 400, "bad"), {}, ErrorCategory.validation),
            (ApiError("crm", 422, "bad"), {}, ErrorCategory.validation),
            (OperationalError("SELECT 1", {}, Exception("locked")), {}, ErrorCategory.database),
            (KeyError("id"), {"webhook": True}, ErrorCategory.webhook),
            (KeyError("id"), {"sync": True}, ErrorCategory.sync),
            (ApiError("crm", 500, "oops"), {}, ErrorCategory.api),
            (KeyError("id"), {}, ErrorCategory.unknown),
        ],
    )
    def test_categories(self, error, context, expected):
        assert categorize(error, context) == expected

    def test_network_failure_wins_over_webhook_flag(self):
        assert categorize(httpx.ConnectError("x"), {"webhook": True}) == ErrorCategory.api


class TestSeverity:
    def test_auth_and_database_are_critical(self):
        assert severity(AuthError("crm", 401), ErrorCategory.auth) == Severity.critical
        assert severity(RuntimeError("db"), ErrorCategory.database) == Severity.critical

    def test_server_errors_are_errors(self):
        assert severity(ApiError("crm", 502), ErrorCategory.api) == Severity.error

    def test_rate_limit_and_validation_are_warnings(self):
        assert severity(RateLimitError("crm", "/x", 5), ErrorCategory.rate_limit) == Severity.warn
        assert severity(ValidationError("crm", 400), ErrorCategory.validation) == Severity.warn

    def test_source_system(self):
        assert source_system(ApiError("ops", 500)) == "ops"
        assert source_system(KeyError("x"), {"source_system": "crm"}) == "crm"
        assert source_system(KeyError("x")) == "internal"


# ── ErrorLogger ────────────────────────────────────────────────────────────


class TestErrorLogger:
    async def test_log_error_persists_row_and_statistics(self, error_logger):
        error_id = await error_logger.log_error(
            ApiError("crm", 500, "boom", "POST", "/crm/v3/objects/deals"),
            {"module": "webhooks.crm", "function": "deal.creation", "crm_id": 300, "webhook": True},
        )

        assert error_id is not None
        [row] = await error_logger.get_recent_errors()
        assert row.error_type == ErrorCategory.webhook.value
        assert row.severity == Severity.error.value
        assert row.source_system == "crm"
        assert row.source_module == "webhooks.crm"
        assert row.crm_id == "300"
        assert row.response_status == 500
        assert row.request_path == "/crm/v3/objects/deals"

        [today] = await error_logger.get_error_statistics(days=1)
        assert today.webhook_errors == 1
        assert today.error_count == 1
        assert today.crm_errors == 1
        assert today.unresolved_count == 1

    async def test_statistics_accumulate_per_day(self, error_logger):
        await error_logger.log_error(AuthError("ops", 401, "denied"))
        await error_logger.log_error(RuntimeError("plain"), {"sync": True})

        [today] = await error_logger.get_error_statistics(days=1)
        assert today.critical_count == 1
        assert today.error_count == 1
        assert today.sync_errors == 1
        assert today.ops_errors == 1
        assert today.internal_errors == 1
        assert today.unresolved_count == 2

    async def test_statistics_failure_keeps_the_error_row(self, error_logger, monkeypatch):
        async def broken(*args, **kwargs):
            raise OperationalError("INSERT INTO error_statistics", {}, Exception("locked"))

        monkeypatch.setattr(error_logger, "_bump_statistics", broken)

        error_id = await error_logger.log_error(RuntimeError("plain"), {"sync": True})

        assert error_id is not None
        [row] = await error_logger.get_recent_errors()
        assert row.id == error_id
        assert await error_logger.get_error_statistics(days=1) == []

    async def test_resolve_moves_counts(self, error_logger):
        error_id = await error_logger.log_error(RuntimeError("plain"), {"sync": True})

        assert await error_logger.resolve_error(error_id, resolved_by="ops-team", notes="fixed")
        assert not await error_logger.resolve_error(error_id)

        [row] = await error_logger.get_recent_errors(resolved=True)
        assert row.resolved_by == "ops-team"
        assert row.resolution_notes == "fixed"
        [today] = await error_logger.get_error_statistics(days=1)
        assert today.resolved_count == 1
        assert today.unresolved_count == 0

    async def test_resolve_unknown_error(self, error_logger):
        assert await error_logger.resolve_error(12345) is False

    async def test_unresolved_ordered_by_severity(self, error_logger):
        await error_logger.log_error(ValidationError("crm", 400, "bad"))
        await error_logger.log_error(AuthError("crm", 401, "denied"))
        await error_logger.log_error(ApiError("crm", 500, "oops"))

        severities = [e.severity for e in await error_logger.get_unresolved_errors()]
        assert severities == ["critical", "error", "warn"]

    async def test_filters(self, error_logger):
        await error_logger.log_error(ApiError("crm", 500, "oops"))
        await error_logger.log_error(ApiError("ops", 500, "oops"))

        assert len(await error_logger.get_recent_errors(source_system="ops")) == 1
        assert len(await error_logger.get_recent_errors(error_type="api")) == 2
        assert await error_logger.get_recent_errors(severity="critical") == []

    async def test_summary(self, error_logger):
        await error_logger.log_error(AuthError("crm", 401, "denied"))
        await error_logger.log_error(ValidationError("crm", 400, "bad"))

        summary = await error_logger.get_error_summary()

        assert summary.unresolved_count == 2
        assert summary.critical_count == 1
        assert len(summary.recent_errors) == 2
        assert summary.today is not None and summary.today.unresolved_count == 2

    async def test_webhook_lifecycle(self, error_logger):
        event_id = await error_logger.log_webhook_event(
            "crm", {"objectId": 5}, event_type="deal.creation", object_id="5"
        )
        await error_logger.update_webhook_event(event_id, WebhookStatus.processing)
        await error_logger.update_webhook_event(
            event_id, WebhookStatus.failed, error_message="kaboom"
        )

        [event] = await error_logger.get_webhook_events(source="crm")
        assert event.status == "failed"
        assert event.processing_started_at is not None
        assert event.processing_completed_at is not None
        assert event.processing_duration_ms is not None and event.processing_duration_ms >= 0
        assert event.error_message == "kaboom"
        assert await error_logger.get_webhook_events(status="completed") == []

    async def test_api_call_log(self, error_logger, session_factory):
        await error_logger.log_api_call(
            target_system="ops", method="GET", endpoint="/projects", response_status=200, duration_ms=12
        )

        async for session in session_factory():
            rows = (await session.execute(select(ApiCallLogModel))).scalars().all()
        assert len(rows) == 1
        assert rows[0].endpoint == "/projects"
