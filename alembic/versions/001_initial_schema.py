"""Initial schema: directory, email queue, in-app notifications, audit logs.

Revision ID: 001
Revises: None
Create Date: 2026-09-28
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

employee_status = sa.Enum("active", "inactive", name="employeestatus")
queue_status = sa.Enum("pending", "sent", "failed", "cancelled", name="queuestatus")
priority = sa.Enum("low", "normal", "high", "urgent", name="priority")


def upgrade() -> None:
    # --- Directory (read-only for the pipeline) ---
    op.create_table(
        "employees",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), server_default=""),
        sa.Column("full_name", sa.String(255), server_default=""),
        sa.Column("manager_id", UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="SET NULL"), nullable=True),
        sa.Column("status", employee_status, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_employees_email", "employees", ["email"])
    op.create_index("ix_employees_manager_id", "employees", ["manager_id"])

    op.create_table(
        "roles",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(50), unique=True, nullable=False),
    )

    op.create_table(
        "employee_roles",
        sa.Column("employee_id", UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role_id", UUID(as_uuid=True), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
    )
    op.create_index("idx_employee_roles_role", "employee_roles", ["role_id"])

    # --- Email queue ---
    op.create_table(
        "email_queue",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("module", sa.String(50), nullable=False),
        sa.Column("reference_id", sa.String(100), nullable=False),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("scope", sa.String(50), nullable=False, server_default=""),
        sa.Column("priority", priority, nullable=False, server_default="normal"),
        sa.Column("subject", sa.String(500), server_default=""),
        sa.Column("recipients", JSONB(), nullable=False),
        sa.Column("payload", JSONB(), nullable=False),
        sa.Column("status", queue_status, nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("claimed_by", sa.String(100), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_history", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("last_error", sa.Text(), server_default=""),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("retry_count >= 0 AND retry_count <= max_retries", name="ck_email_queue_retry_bound"),
    )
    # At most one non-cancelled entry per dedup key
    op.create_index(
        "uq_email_queue_dedup_active",
        "email_queue",
        ["module", "reference_id", "kind", "scope"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
    )
    op.create_index("idx_email_queue_status_scheduled", "email_queue", ["status", "scheduled_at"])
    op.create_index("idx_email_queue_module_reference", "email_queue", ["module", "reference_id"])
    op.create_index("idx_email_queue_created", "email_queue", ["created_at"])

    # --- In-app notifications ---
    op.create_table(
        "notifications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("recipient_id", UUID(as_uuid=True), nullable=False),
        sa.Column("module", sa.String(50), nullable=False, server_default=""),
        sa.Column("reference_id", sa.String(100), nullable=False, server_default=""),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("scope", sa.String(50), nullable=False, server_default=""),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), server_default=""),
        sa.Column("payload", JSONB(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_notifications_recipient_read", "notifications", ["recipient_id", "is_read"])
    op.create_index(
        "idx_notifications_dedup", "notifications", ["module", "reference_id", "kind", "scope", "recipient_id"]
    )
    op.create_index("idx_notifications_created", "notifications", ["created_at"])

    # --- Audit log ---
    op.create_table(
        "audit_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("actor", sa.String(100), nullable=False, server_default=""),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("detail", sa.Text(), server_default=""),
        sa.Column("ip_address", sa.String(45), server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("notifications")
    op.drop_table("email_queue")
    op.drop_table("employee_roles")
    op.drop_table("roles")
    op.drop_table("employees")
    bind = op.get_bind()
    priority.drop(bind, checkfirst=True)
    queue_status.drop(bind, checkfirst=True)
    employee_status.drop(bind, checkfirst=True)
