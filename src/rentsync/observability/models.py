"""Observability persistence models.

Four append-mostly tables owned by the error logger:
- WebhookEventModel (webhook_events): one row per received notification and
  its processing lifecycle (received -> processing -> completed/failed, or ignored)
- IntegrationErrorModel (integration_errors): categorized failures with
  resolution metadata
- ApiCallLogModel (api_call_log): per-request trace of outbound calls
- ErrorStatisticsModel (error_statistics): one counter row per calendar day
"""

from __future__ import annotations

import datetime as dt
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.rentsync.core.database import Base


class WebhookStatus(str, Enum):
    received = "received"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    ignored = "ignored"


class WebhookEventModel(Base):
    """Audit row for one inbound notification."""

    __tablename__ = "webhook_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    event_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    event_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    subscription_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    object_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    object_id: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WebhookStatus.received.value, index=True
    )
    raw_payload: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processing_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processing_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("integration_errors.id", ondelete="SET NULL"), nullable=True
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


class IntegrationErrorModel(Base):
    """One categorized failure."""

    __tablename__ = "integration_errors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    error_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    source_module: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_function: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_system: Mapped[str | None] = mapped_column(String(20), nullable=True)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    stack_trace: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_method: Mapped[str | None] = mapped_column(String(10), nullable=True)
    request_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_body: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    crm_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    ops_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    webhook_event_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    context: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


class ApiCallLogModel(Base):
    """Trace of one outbound request."""

    __tablename__ = "api_call_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    target_system: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    request_headers: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    request_body: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    webhook_event_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


STATISTICS_COUNTERS = (
    "webhook_errors",
    "api_errors",
    "database_errors",
    "validation_errors",
    "sync_errors",
    "other_errors",
    "critical_count",
    "error_count",
    "warn_count",
    "crm_errors",
    "ops_errors",
    "internal_errors",
    "resolved_count",
    "unresolved_count",
)


class ErrorStatisticsModel(Base):
    """Per-day error counters, upserted with every new error."""

    __tablename__ = "error_statistics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, unique=True, index=True)
    webhook_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    api_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    database_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    validation_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sync_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    other_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    critical_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    warn_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    crm_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ops_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    internal_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    resolved_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unresolved_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
