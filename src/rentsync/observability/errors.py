"""Error categorization and persistent error/webhook/API-call logging.

``categorize`` and ``severity`` are pure functions over an exception and a
context dict. ErrorLogger writes IntegrationError rows and keeps the
per-day ``error_statistics`` counters in step with them: the counters are
upserted in a savepoint, so a statistics failure never rolls back the
error row itself.
"""

from __future__ import annotations

import traceback
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import case, desc, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from src.rentsync.core.database import SessionFactory, dialect_insert
from src.rentsync.core.exceptions import (
    ApiTimeoutError,
    AuthError,
    RateLimitError,
    ValidationError,
)
from src.rentsync.observability.models import (
    STATISTICS_COUNTERS,
    ApiCallLogModel,
    ErrorStatisticsModel,
    IntegrationErrorModel,
    WebhookEventModel,
    WebhookStatus,
)

logger = structlog.get_logger(__name__)


class ErrorCategory(str, Enum):
    webhook = "webhook"
    api = "api"
    database = "database"
    validation = "validation"
    sync = "sync"
    timeout = "timeout"
    rate_limit = "rate_limit"
    auth = "auth"
    unknown = "unknown"


class Severity(str, Enum):
    debug = "debug"
    info = "info"
    warn = "warn"
    error = "error"
    critical = "critical"


SEVERITY_RANK = {
    Severity.critical.value: 0,
    Severity.error.value: 1,
    Severity.warn.value: 2,
    Severity.info.value: 3,
    Severity.debug.value: 4,
}

_CATEGORY_COUNTER = {
    ErrorCategory.webhook: "webhook_errors",
    ErrorCategory.api: "api_errors",
    ErrorCategory.database: "database_errors",
    ErrorCategory.validation: "validation_errors",
    ErrorCategory.sync: "sync_errors",
}

_SEVERITY_COUNTER = {
    Severity.critical: "critical_count",
    Severity.error: "error_count",
    Severity.warn: "warn_count",
}

_SYSTEM_COUNTER = {"crm": "crm_errors", "ops": "ops_errors"}


# ── Categorization ──────────────────────────────────────────────────────────


def _status(error: BaseException) -> int | None:
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def categorize(error: BaseException, context: dict[str, Any] | None = None) -> ErrorCategory:
    """Map an exception plus context flags to an error category.

    Checked in order: network failures, timeouts, rate limiting, auth,
    validation, database, then the ``webhook``/``sync`` context flags, and
    finally any remaining HTTP error status.
    """
    context = context or {}
    status = _status(error)
    message = str(error).lower()

    if isinstance(error, (httpx.NetworkError, ConnectionError)):
        return ErrorCategory.api
    if isinstance(error, (ApiTimeoutError, TimeoutError, httpx.TimeoutException)) or "timeout" in message:
        return ErrorCategory.timeout
    if isinstance(error, RateLimitError) or status == 429 or "rate limit" in message:
        return ErrorCategory.rate_limit
    if isinstance(error, AuthError) or status in (401, 403):
        return ErrorCategory.auth
    if (
        isinstance(error, (ValidationError, SchemaValidationError))
        or status in (400, 422)
        or "validation" in message
    ):
        return ErrorCategory.validation
    if isinstance(error, SQLAlchemyError) or "database" in message or "sql" in message:
        return ErrorCategory.database
    if context.get("webhook"):
        return ErrorCategory.webhook
    if context.get("sync"):
        return ErrorCategory.sync
    if status is not None and status >= 400:
        return ErrorCategory.api
    return ErrorCategory.unknown


def severity(error: BaseException, category: ErrorCategory) -> Severity:
    """Severity for a categorized error. Auth and database are always critical."""
    status = _status(error)
    if category in (ErrorCategory.auth, ErrorCategory.database):
        return Severity.critical
    if status is not None and status >= 500:
        return Severity.error
    if category in (ErrorCategory.rate_limit, ErrorCategory.validation):
        return Severity.warn
    return Severity.error


def source_system(error: BaseException, context: dict[str, Any] | None = None) -> str:
    """Which system an error came from: crm, ops or internal."""
    system = getattr(error, "system", None) or (context or {}).get("source_system")
    return system if system in _SYSTEM_COUNTER else "internal"


# ── Schemas ─────────────────────────────────────────────────────────────────


class IntegrationErrorRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    error_type: str
    severity: str
    source_module: str | None = None
    source_function: str | None = None
    source_system: str | None = None
    error_message: str
    error_code: str | None = None
    request_method: str | None = None
    request_path: str | None = None
    response_status: int | None = None
    crm_id: str | None = None
    ops_id: str | None = None
    webhook_event_id: int | None = None
    context: Any | None = None
    resolved: bool = False
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution_notes: str | None = None
    created_at: datetime | None = None


class WebhookEventRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source: str
    event_id: str | None = None
    event_type: str | None = None
    subscription_type: str | None = None
    object_type: str | None = None
    object_id: str | None = None
    status: str
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    processing_duration_ms: int | None = None
    error_id: int | None = None
    error_message: str | None = None
    created_at: datetime | None = None


class DailyStatistics(BaseModel):
    day: date
    webhook_errors: int = 0
    api_errors: int = 0
    database_errors: int = 0
    validation_errors: int = 0
    sync_errors: int = 0
    other_errors: int = 0
    critical_count: int = 0
    error_count: int = 0
    warn_count: int = 0
    crm_errors: int = 0
    ops_errors: int = 0
    internal_errors: int = 0
    resolved_count: int = 0
    unresolved_count: int = 0


class ErrorSummary(BaseModel):
    unresolved_count: int
    critical_count: int
    recent_errors: list[IntegrationErrorRecord]
    today: DailyStatistics | None = None


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _model_to_statistics(model: ErrorStatisticsModel) -> DailyStatistics:
    """Convert an ErrorStatisticsModel row to a DailyStatistics schema."""
    return DailyStatistics(day=model.date, **{name: getattr(model, name) for name in STATISTICS_COUNTERS})


# ── Logger ──────────────────────────────────────────────────────────────────


class ErrorLogger:
    """Persists errors, webhook lifecycles and outbound call traces.

    Args:
        session_factory: Async callable yielding AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def log_error(
        self, error: BaseException, context: dict[str, Any] | None = None
    ) -> int | None:
        """Record a categorized error and bump today's statistics.

        Context keys used: module, function, webhook_event_id, crm_id,
        ops_id, webhook, sync, source_system. Everything else is stored in
        the row's JSON context.

        Returns:
            The IntegrationError id, or None when the insert itself failed.
        """
        context = dict(context or {})
        category = categorize(error, context)
        level = severity(error, category)
        system = source_system(error, context)

        log = logger.warning if level == Severity.warn else logger.error
        log(
            "integration_error",
            error_type=category.value,
            severity=level.value,
            source_system=system,
            module=context.get("module"),
            error=str(error),
        )

        row = IntegrationErrorModel(
            error_type=category.value,
            severity=level.value,
            source_module=context.pop("module", None),
            source_function=context.pop("function", None),
            source_system=system,
            error_message=str(error) or type(error).__name__,
            error_code=_optional_str(_status(error)) or type(error).__name__,
            stack_trace="".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ),
            request_method=getattr(error, "method", None),
            request_path=getattr(error, "endpoint", None),
            response_status=_status(error),
            response_body=(getattr(error, "body", None) or None),
            crm_id=_optional_str(context.pop("crm_id", None)),
            ops_id=_optional_str(context.pop("ops_id", None)),
            webhook_event_id=context.pop("webhook_event_id", None),
            context={k: _optional_str(v) for k, v in context.items()} or None,
        )

        try:
            async for session in self._session_factory():
                session.add(row)
                await session.flush()
                try:
                    async with session.begin_nested():
                        await self._bump_statistics(session, category, level, system)
                except SQLAlchemyError:
                    logger.warning("error_logger.statistics_failed", error_id=row.id, exc_info=True)
                await session.commit()
                return row.id
        except SQLAlchemyError:
            logger.error("error_logger.insert_failed", error_type=category.value, exc_info=True)
        return None

    async def _bump_statistics(
        self,
        session,
        category: ErrorCategory,
        level: Severity,
        system: str,
    ) -> None:
        increments = dict.fromkeys(STATISTICS_COUNTERS, 0)
        increments[_CATEGORY_COUNTER.get(category, "other_errors")] += 1
        if level in _SEVERITY_COUNTER:
            increments[_SEVERITY_COUNTER[level]] += 1
        increments[_SYSTEM_COUNTER.get(system, "internal_errors")] += 1
        increments["unresolved_count"] += 1

        table = ErrorStatisticsModel.__table__
        stmt = dialect_insert(session, ErrorStatisticsModel).values(date=_today(), **increments)
        set_: dict[str, Any] = {
            name: table.c[name] + getattr(stmt.excluded, name)
            for name, amount in increments.items()
            if amount
        }
        set_["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=["date"], set_=set_)
        await session.execute(stmt)

    # ── Webhook events ─────────────────────────────────────────────────────

    async def log_webhook_event(
        self,
        source: str,
        event: dict[str, Any],
        status: WebhookStatus = WebhookStatus.received,
        **fields: Any,
    ) -> int:
        """Insert a WebhookEvent row and return its id."""
        row = WebhookEventModel(source=source, status=status.value, raw_payload=event, **fields)
        async for session in self._session_factory():
            session.add(row)
            await session.commit()
        return row.id

    async def update_webhook_event(
        self,
        event_id: int,
        status: WebhookStatus,
        error_id: int | None = None,
        error_message: str | None = None,
    ) -> None:
        """Advance a WebhookEvent through its lifecycle."""
        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {"status": status.value}
        if status == WebhookStatus.processing:
            values["processing_started_at"] = now
        if status in (WebhookStatus.completed, WebhookStatus.failed):
            values["processing_completed_at"] = now
        if error_id is not None:
            values["error_id"] = error_id
        if error_message is not None:
            values["error_message"] = error_message[:2000]

        async for session in self._session_factory():
            if "processing_completed_at" in values:
                started = (
                    await session.execute(
                        select(WebhookEventModel.processing_started_at).where(
                            WebhookEventModel.id == event_id
                        )
                    )
                ).scalar_one_or_none()
                if started is not None:
                    if started.tzinfo is None:
                        started = started.replace(tzinfo=timezone.utc)
                    values["processing_duration_ms"] = int((now - started).total_seconds() * 1000)
            await session.execute(
                update(WebhookEventModel).where(WebhookEventModel.id == event_id).values(**values)
            )
            await session.commit()

    async def get_webhook_events(
        self,
        limit: int = 50,
        source: str | None = None,
        status: str | None = None,
    ) -> list[WebhookEventRecord]:
        query = select(WebhookEventModel).order_by(desc(WebhookEventModel.id)).limit(limit)
        if source:
            query = query.where(WebhookEventModel.source == source)
        if status:
            query = query.where(WebhookEventModel.status == status)
        async for session in self._session_factory():
            rows = (await session.execute(query)).scalars().all()
            return [WebhookEventRecord.model_validate(row) for row in rows]
        return []

    # ── API calls ──────────────────────────────────────────────────────────

    async def log_api_call(
        self,
        target_system: str,
        method: str,
        endpoint: str,
        request_body: Any = None,
        response_status: int | None = None,
        response_body: str | None = None,
        duration_ms: int | None = None,
        webhook_event_id: int | None = None,
        error_id: int | None = None,
    ) -> None:
        """Append one outbound call trace. Used as the clients' recorder hook."""
        async for session in self._session_factory():
            session.add(
                ApiCallLogModel(
                    target_system=target_system,
                    method=method,
                    endpoint=endpoint,
                    request_body=request_body,
                    response_status=response_status,
                    response_body=response_body,
                    duration_ms=duration_ms,
                    webhook_event_id=webhook_event_id,
                    error_id=error_id,
                )
            )
            await session.commit()

    # ── Queries ────────────────────────────────────────────────────────────

    async def get_recent_errors(
        self,
        limit: int = 50,
        error_type: str | None = None,
        severity: str | None = None,
        resolved: bool | None = None,
        source_system: str | None = None,
    ) -> list[IntegrationErrorRecord]:
        query = select(IntegrationErrorModel).order_by(desc(IntegrationErrorModel.id)).limit(limit)
        if error_type:
            query = query.where(IntegrationErrorModel.error_type == error_type)
        if severity:
            query = query.where(IntegrationErrorModel.severity == severity)
        if resolved is not None:
            query = query.where(IntegrationErrorModel.resolved == resolved)
        if source_system:
            query = query.where(IntegrationErrorModel.source_system == source_system)
        async for session in self._session_factory():
            rows = (await session.execute(query)).scalars().all()
            return [IntegrationErrorRecord.model_validate(row) for row in rows]
        return []

    async def get_unresolved_errors(self, limit: int = 10) -> list[IntegrationErrorRecord]:
        """Unresolved errors, most severe first, then newest first."""
        rank = case(SEVERITY_RANK, value=IntegrationErrorModel.severity, else_=5)
        query = (
            select(IntegrationErrorModel)
            .where(IntegrationErrorModel.resolved.is_(False))
            .order_by(rank, desc(IntegrationErrorModel.id))
            .limit(limit)
        )
        async for session in self._session_factory():
            rows = (await session.execute(query)).scalars().all()
            return [IntegrationErrorRecord.model_validate(row) for row in rows]
        return []

    async def resolve_error(
        self, error_id: int, resolved_by: str = "system", notes: str | None = None
    ) -> bool:
        """Mark an error resolved and move one count from unresolved to resolved today.

        Returns False when the error does not exist or was already resolved.
        """
        async for session in self._session_factory():
            result = await session.execute(
                update(IntegrationErrorModel)
                .where(IntegrationErrorModel.id == error_id)
                .where(IntegrationErrorModel.resolved.is_(False))
                .values(
                    resolved=True,
                    resolved_at=datetime.now(timezone.utc),
                    resolved_by=resolved_by,
                    resolution_notes=notes,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                return False
            await session.execute(
                update(ErrorStatisticsModel)
                .where(ErrorStatisticsModel.date == _today())
                .values(
                    resolved_count=ErrorStatisticsModel.resolved_count + 1,
                    unresolved_count=case(
                        (ErrorStatisticsModel.unresolved_count > 0, ErrorStatisticsModel.unresolved_count - 1),
                        else_=0,
                    ),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            logger.info("integration_error.resolved", error_id=error_id, resolved_by=resolved_by)
            return True
        return False

    async def get_error_statistics(self, days: int = 7) -> list[DailyStatistics]:
        since = _today() - timedelta(days=days)
        query = (
            select(ErrorStatisticsModel)
            .where(ErrorStatisticsModel.date >= since)
            .order_by(desc(ErrorStatisticsModel.date))
        )
        async for session in self._session_factory():
            rows = (await session.execute(query)).scalars().all()
            return [_model_to_statistics(row) for row in rows]
        return []

    async def get_error_summary(self) -> ErrorSummary:
        """Operator overview: open error counts, the worst recent errors, today's counters."""
        recent = await self.get_unresolved_errors(limit=10)
        unresolved = IntegrationErrorModel.resolved.is_(False)
        async for session in self._session_factory():
            unresolved_count = (
                await session.execute(select(func.count(IntegrationErrorModel.id)).where(unresolved))
            ).scalar_one()
            critical_count = (
                await session.execute(
                    select(func.count(IntegrationErrorModel.id)).where(
                        unresolved,
                        IntegrationErrorModel.severity.in_(
                            [Severity.critical.value, Severity.error.value]
                        ),
                    )
                )
            ).scalar_one()
            today = (
                await session.execute(
                    select(ErrorStatisticsModel).where(ErrorStatisticsModel.date == _today())
                )
            ).scalar_one_or_none()
            return ErrorSummary(
                unresolved_count=unresolved_count,
                critical_count=critical_count,
                recent_errors=recent,
                today=_model_to_statistics(today) if today else None,
            )
        return ErrorSummary(unresolved_count=0, critical_count=0, recent_errors=recent)
