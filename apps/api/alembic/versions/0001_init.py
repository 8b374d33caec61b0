"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-12
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

_uuid = sa.Uuid(as_uuid=False)
_json = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
  op.create_table(
    "users",
    sa.Column("id", _uuid, primary_key=True),
    sa.Column("email", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("role", sa.String(), nullable=False),
    sa.Column("avatar_url", sa.String(), nullable=True),
    sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_users_email", "users", ["email"], unique=True)

  op.create_table(
    "api_tokens",
    sa.Column("id", _uuid, primary_key=True),
    sa.Column("user_id", _uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("name", sa.String(), nullable=False, server_default=""),
    sa.Column("token_hash", sa.String(), nullable=False, unique=True),
    sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_api_tokens_user_id", "api_tokens", ["user_id"])

  op.create_table(
    "workflow_definitions",
    sa.Column("id", _uuid, primary_key=True),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("statuses", _json, nullable=False),
    sa.Column("transitions", _json, nullable=False),
    sa.Column("role_restrictions", _json, nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  # At most one default workflow.
  op.create_index(
    "ux_workflow_definitions_single_default",
    "workflow_definitions",
    ["is_default"],
    unique=True,
    postgresql_where=sa.text("is_default"),
    sqlite_where=sa.text("is_default = 1"),
  )

  op.create_table(
    "tasks",
    sa.Column("id", _uuid, primary_key=True),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("status", sa.String(), nullable=False, server_default="pending"),
    sa.Column("priority", sa.String(), nullable=False, server_default="medium"),
    sa.Column("workflow_id", _uuid, sa.ForeignKey("workflow_definitions.id"), nullable=True),
    sa.Column("due_date", sa.Date(), nullable=True),
    sa.Column("assignee_id", _uuid, sa.ForeignKey("users.id"), nullable=True),
    sa.Column("creator_id", _uuid, sa.ForeignKey("users.id"), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
  )
  op.create_index("ix_tasks_status", "tasks", ["status"])
  op.create_index("ix_tasks_due_date", "tasks", ["due_date"])
  op.create_index("ix_tasks_assignee_id", "tasks", ["assignee_id"])

  op.create_table(
    "notification_preferences",
    sa.Column("id", _uuid, primary_key=True),
    sa.Column("user_id", _uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
    sa.Column("task_assigned_in_app", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("task_assigned_email", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("mentioned_in_app", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("mentioned_email", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("status_changed_in_app", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("status_changed_email", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("due_soon_in_app", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("due_soon_email", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("overdue_in_app", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("overdue_email", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("due_soon_days", sa.Integer(), nullable=False, server_default="1"),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )

  op.create_table(
    "notifications",
    sa.Column("id", _uuid, primary_key=True),
    sa.Column("user_id", _uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("type", sa.String(), nullable=False),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("content", sa.Text(), nullable=True),
    sa.Column("task_id", _uuid, sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True),
    sa.Column("actor_id", _uuid, sa.ForeignKey("users.id"), nullable=True),
    sa.Column("metadata", _json, nullable=False),
    sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
  )
  op.create_index("ix_notifications_user_read", "notifications", ["user_id", "is_read"])
  op.create_index("ix_notifications_created_at", "notifications", ["created_at"])

  op.create_table(
    "email_queue",
    sa.Column("id", _uuid, primary_key=True),
    sa.Column("to_email", sa.String(), nullable=False),
    sa.Column("to_name", sa.String(), nullable=True),
    sa.Column("subject", sa.String(), nullable=False),
    sa.Column("html_body", sa.Text(), nullable=False),
    sa.Column("text_body", sa.Text(), nullable=False),
    sa.Column("status", sa.String(), nullable=False, server_default="pending"),  # pending|sending|sent|failed
    sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("last_error", sa.Text(), nullable=True),
    sa.Column("notification_id", _uuid, sa.ForeignKey("notifications.id", ondelete="SET NULL"), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
  )
  op.create_index("ix_email_queue_status_created", "email_queue", ["status", "created_at"])

  op.create_table(
    "email_logs",
    sa.Column("id", _uuid, primary_key=True),
    sa.Column("job_id", _uuid, nullable=True),
    sa.Column("to_email", sa.String(), nullable=False),
    sa.Column("to_name", sa.String(), nullable=True),
    sa.Column("subject", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("notification_id", _uuid, nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_email_logs_job_id", "email_logs", ["job_id"])

  op.create_table(
    "due_date_reminders",
    sa.Column("id", _uuid, primary_key=True),
    sa.Column("task_id", _uuid, sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
    sa.Column("user_id", _uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("reminder_type", sa.String(), nullable=False),
    sa.Column("reminder_date", sa.Date(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("task_id", "user_id", "reminder_type", "reminder_date", name="ux_due_date_reminders_tuple"),
  )

  op.create_table(
    "email_config",
    sa.Column("id", _uuid, primary_key=True),
    sa.Column("smtp_host", sa.String(), nullable=False, server_default=""),
    sa.Column("smtp_port", sa.Integer(), nullable=False, server_default="587"),
    sa.Column("smtp_secure", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("smtp_user", sa.String(), nullable=False, server_default=""),
    sa.Column("smtp_password_encrypted", sa.Text(), nullable=True),
    sa.Column("from_email", sa.String(), nullable=False, server_default=""),
    sa.Column("from_name", sa.String(), nullable=False, server_default="Task Tracker"),
    sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )

  op.create_table(
    "audit_events",
    sa.Column("id", _uuid, primary_key=True),
    sa.Column("actor_id", _uuid, nullable=True),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("entity_type", sa.String(), nullable=False),
    sa.Column("entity_id", sa.String(), nullable=True),
    sa.Column("payload", _json, nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )


def downgrade() -> None:
  op.drop_table("audit_events")
  op.drop_table("email_config")
  op.drop_table("due_date_reminders")
  op.drop_index("ix_email_logs_job_id", table_name="email_logs")
  op.drop_table("email_logs")
  op.drop_index("ix_email_queue_status_created", table_name="email_queue")
  op.drop_table("email_queue")
  op.drop_index("ix_notifications_created_at", table_name="notifications")
  op.drop_index("ix_notifications_user_read", table_name="notifications")
  op.drop_table("notifications")
  op.drop_table("notification_preferences")
  op.drop_index("ix_tasks_assignee_id", table_name="tasks")
  op.drop_index("ix_tasks_due_date", table_name="tasks")
  op.drop_index("ix_tasks_status", table_name="tasks")
  op.drop_table("tasks")
  op.drop_index("ux_workflow_definitions_single_default", table_name="workflow_definitions")
  op.drop_table("workflow_definitions")
  op.drop_index("ix_api_tokens_user_id", table_name="api_tokens")
  op.drop_table("api_tokens")
  op.drop_index("ix_users_email", table_name="users")
  op.drop_table("users")
