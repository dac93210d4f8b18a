"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # ── users ──
    op.create_table(
        "users",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=True),
        sa.Column("api_token", sa.String(255), unique=True, nullable=False),
        *_timestamps(),
    )

    # ── artifacts ──
    op.create_table(
        "artifacts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("url", sa.String(1024), nullable=False),
        sa.Column("size_bytes", sa.Integer, server_default="0"),
        sa.Column("process_type", sa.String(64), nullable=False),
        *_timestamps(),
    )

    # ── jobs ──
    op.create_table(
        "jobs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("job_type", sa.String(64), nullable=False),
        sa.Column("status", sa.String(32), server_default="PENDING", nullable=False),
        sa.Column("priority", sa.Integer, server_default="1", nullable=False),
        sa.Column("progress", sa.Integer, server_default="0", nullable=False),
        sa.Column("current_step", sa.String(255), nullable=True),
        sa.Column("total_steps", sa.Integer, server_default="1", nullable=False),
        sa.Column("completed_steps", sa.Integer, server_default="0", nullable=False),
        sa.Column("input_data", JSONB, server_default="{}", nullable=False),
        sa.Column("output_data", JSONB, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("retry_count", sa.Integer, server_default="0", nullable=False),
        sa.Column("max_retries", sa.Integer, server_default="3", nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("project_id", UUID(as_uuid=True), nullable=True),
        sa.Column(
            "artifact_id",
            UUID(as_uuid=True),
            sa.ForeignKey("artifacts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index("ix_jobs_status_priority_created", "jobs", ["status", "priority", "created_at"])
    op.create_index("ix_jobs_user_id", "jobs", ["user_id"])
    op.create_index(
        "ix_jobs_status_processing", "jobs", ["started_at"],
        postgresql_where=sa.text("status = 'PROCESSING'"),
    )

    # ── events ──
    op.create_table(
        "events",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("level", sa.String(16), server_default="info"),
        sa.Column("source", sa.String(128), nullable=True),
        sa.Column("job_id", UUID(as_uuid=True), nullable=True),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_events_type", "events", ["event_type"])
    op.create_index("ix_events_job_id", "events", ["job_id"])


def downgrade() -> None:
    for table in ["events", "jobs", "artifacts", "users"]:
        op.drop_table(table)
