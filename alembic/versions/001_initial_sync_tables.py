"""Initial schema: mapping tables and observability tables.

Revision ID: 001_initial_sync_tables
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_sync_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _mapping_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(300), nullable=True),
        sa.Column("ops_id", sa.String(50), nullable=False),
        sa.Column("crm_id", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _fk(name: str, target: str) -> sa.Column:
    return sa.Column(
        name, sa.Integer(), sa.ForeignKey(f"{target}.id", ondelete="SET NULL"), nullable=True
    )


def _index_mapping(table: str) -> None:
    op.create_index(f"ix_{table}_ops_id", table, ["ops_id"], unique=True)
    op.create_index(f"ix_{table}_crm_id", table, ["crm_id"], unique=True)


def upgrade() -> None:
    # ── Mapping tables ──────────────────────────────────────────────────────
    op.create_table("synced_companies", *_mapping_columns())
    _index_mapping("synced_companies")

    op.create_table(
        "synced_contacts",
        *_mapping_columns(),
        sa.Column("crm_company_id", sa.String(50), nullable=True),
    )
    _index_mapping("synced_contacts")

    op.create_table(
        "synced_deals",
        *_mapping_columns(),
        _fk("company_id", "synced_companies"),
        _fk("contact_id", "synced_contacts"),
    )
    _index_mapping("synced_deals")

    op.create_table(
        "synced_order",
        *_mapping_columns(),
        _fk("deal_id", "synced_deals"),
        _fk("company_id", "synced_companies"),
        _fk("contact_id", "synced_contacts"),
    )
    _index_mapping("synced_order")

    op.create_table(
        "synced_request",
        *_mapping_columns(),
        _fk("company_id", "synced_companies"),
    )
    _index_mapping("synced_request")

    # ── Observability tables ────────────────────────────────────────────────
    op.create_table(
        "integration_errors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("error_type", sa.String(30), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("source_module", sa.String(100), nullable=True),
        sa.Column("source_function", sa.String(100), nullable=True),
        sa.Column("source_system", sa.String(20), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("error_code", sa.String(50), nullable=True),
        sa.Column("stack_trace", sa.Text(), nullable=True),
        sa.Column("request_method", sa.String(10), nullable=True),
        sa.Column("request_path", sa.Text(), nullable=True),
        sa.Column("request_body", sa.JSON(), nullable=True),
        sa.Column("response_status", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("crm_id", sa.String(50), nullable=True),
        sa.Column("ops_id", sa.String(50), nullable=True),
        sa.Column("webhook_event_id", sa.Integer(), nullable=True),
        sa.Column("context", sa.JSON(), nullable=True),
        sa.Column("resolved", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(100), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_integration_errors_error_type", "integration_errors", ["error_type"])
    op.create_index("ix_integration_errors_severity", "integration_errors", ["severity"])
    op.create_index("ix_integration_errors_resolved", "integration_errors", ["resolved"])
    op.create_index("ix_integration_errors_webhook_event_id", "integration_errors", ["webhook_event_id"])
    op.create_index("ix_integration_errors_created_at", "integration_errors", ["created_at"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("event_id", sa.String(100), nullable=True),
        sa.Column("event_type", sa.String(100), nullable=True),
        sa.Column("subscription_type", sa.String(100), nullable=True),
        sa.Column("object_type", sa.String(50), nullable=True),
        sa.Column("object_id", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("raw_payload", sa.JSON(), nullable=True),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_duration_ms", sa.Integer(), nullable=True),
        sa.Column(
            "error_id",
            sa.Integer(),
            sa.ForeignKey("integration_errors.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_webhook_events_source", "webhook_events", ["source"])
    op.create_index("ix_webhook_events_object_id", "webhook_events", ["object_id"])
    op.create_index("ix_webhook_events_status", "webhook_events", ["status"])
    op.create_index("ix_webhook_events_created_at", "webhook_events", ["created_at"])

    op.create_table(
        "api_call_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("target_system", sa.String(20), nullable=False),
        sa.Column("method", sa.String(10), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("request_headers", sa.JSON(), nullable=True),
        sa.Column("request_body", sa.JSON(), nullable=True),
        sa.Column("response_status", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("webhook_event_id", sa.Integer(), nullable=True),
        sa.Column("error_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_api_call_log_target_system", "api_call_log", ["target_system"])
    op.create_index("ix_api_call_log_created_at", "api_call_log", ["created_at"])

    counters = [
        sa.Column(name, sa.Integer(), nullable=False, server_default="0")
        for name in (
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
    ]
    op.create_table(
        "error_statistics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("date", sa.Date(), nullable=False),
        *counters,
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_error_statistics_date", "error_statistics", ["date"], unique=True)


def downgrade() -> None:
    op.drop_table("error_statistics")
    op.drop_table("api_call_log")
    op.drop_table("webhook_events")
    op.drop_table("integration_errors")
    op.drop_table("synced_request")
    op.drop_table("synced_order")
    op.drop_table("synced_deals")
    op.drop_table("synced_contacts")
    op.drop_table("synced_companies")
