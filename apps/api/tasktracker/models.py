from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def new_id() -> str:
  return str(uuid.uuid4())


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  role: Mapped[str] = mapped_column(String, nullable=False, default="member")  # admin | manager | member
  avatar_url: Mapped[str | None] = mapped_column(String, nullable=True)
  active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class ApiToken(Base):
  __tablename__ = "api_tokens"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False, default="")
  token_hash: Mapped[str] = mapped_column(String, nullable=False, unique=True)
  revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="pending", index=True)
  priority: Mapped[str] = mapped_column(String, nullable=False, default="medium")
  workflow_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), ForeignKey("workflow_definitions.id"), nullable=True)
  due_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
  assignee_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=True, index=True)
  creator_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
  deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class WorkflowDefinition(Base):
  __tablename__ = "workflow_definitions"
  __table_args__ = (
    # At most one default workflow.
    Index(
      "ux_workflow_definitions_single_default",
      "is_default",
      unique=True,
      postgresql_where=text("is_default"),
      sqlite_where=text("is_default = 1"),
    ),
  )

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  name: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  statuses: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, nullable=False, default=list)
  transitions: Mapped[list[dict[str, Any]]] = mapped_column(JsonType, nullable=False, default=list)
  role_restrictions: Mapped[dict[str, list[str]]] = mapped_column(JsonType, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class NotificationPreference(Base):
  __tablename__ = "notification_preferences"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
  task_assigned_in_app: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  task_assigned_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  mentioned_in_app: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  mentioned_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  status_changed_in_app: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  status_changed_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  due_soon_in_app: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  due_soon_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  overdue_in_app: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  overdue_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  due_soon_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Notification(Base):
  __tablename__ = "notifications"
  __table_args__ = (Index("ix_notifications_user_read", "user_id", "is_read"),)

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
  # task_assigned | mentioned | status_changed | priority_changed | due_soon | overdue | comment_added
  type: Mapped[str] = mapped_column(String, nullable=False)
  title: Mapped[str] = mapped_column(String, nullable=False)
  content: Mapped[str | None] = mapped_column(Text, nullable=True)
  task_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True)
  actor_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id"), nullable=True)
  meta: Mapped[dict[str, Any]] = mapped_column("metadata", JsonType, nullable=False, default=dict)
  is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
  read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class EmailJob(Base):
  __tablename__ = "email_queue"
  __table_args__ = (Index("ix_email_queue_status_created", "status", "created_at"),)

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  to_email: Mapped[str] = mapped_column(String, nullable=False)
  to_name: Mapped[str | None] = mapped_column(String, nullable=True)
  subject: Mapped[str] = mapped_column(String, nullable=False)
  html_body: Mapped[str] = mapped_column(Text, nullable=False)
  text_body: Mapped[str] = mapped_column(Text, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, default="pending")  # pending|sending|sent|failed
  attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
  notification_id: Mapped[str | None] = mapped_column(
    Uuid(as_uuid=False), ForeignKey("notifications.id", ondelete="SET NULL"), nullable=True
  )
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
  claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class EmailLogEntry(Base):
  __tablename__ = "email_logs"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  job_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True, index=True)
  to_email: Mapped[str] = mapped_column(String, nullable=False)
  to_name: Mapped[str | None] = mapped_column(String, nullable=True)
  subject: Mapped[str] = mapped_column(String, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False)  # sent | failed
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  notification_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class DueDateReminder(Base):
  __tablename__ = "due_date_reminders"
  __table_args__ = (
    UniqueConstraint("task_id", "user_id", "reminder_type", "reminder_date", name="ux_due_date_reminders_tuple"),
  )

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  task_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
  user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
  reminder_type: Mapped[str] = mapped_column(String, nullable=False)  # due_soon | overdue
  reminder_date: Mapped[date] = mapped_column(Date, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class EmailConfig(Base):
  __tablename__ = "email_config"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  smtp_host: Mapped[str] = mapped_column(String, nullable=False, default="")
  smtp_port: Mapped[int] = mapped_column(Integer, nullable=False, default=587)
  smtp_secure: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  smtp_user: Mapped[str] = mapped_column(String, nullable=False, default="")
  smtp_password_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
  from_email: Mapped[str] = mapped_column(String, nullable=False, default="")
  from_name: Mapped[str] = mapped_column(String, nullable=False, default="Task Tracker")
  is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class AuditEvent(Base):
  __tablename__ = "audit_events"

  id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)
  actor_id: Mapped[str | None] = mapped_column(Uuid(as_uuid=False), nullable=True)
  event_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
  payload: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
